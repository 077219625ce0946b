# salesync/models/delisting_preferences.py
from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, Numeric, String

from salesync.core.enums import DelistingPreference
from salesync.core.utils import new_id, utc_now
from salesync.database import Base


class UserDelistingPreferences(Base):
    __tablename__ = "user_delisting_preferences"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, unique=True, index=True)

    auto_delist_enabled = Column(Boolean, nullable=False, default=True)
    default_preference = Column(String(30), nullable=False, default=DelistingPreference.IMMEDIATE.value)
    delay_minutes = Column(Integer, nullable=False, default=0)
    require_confirmation = Column(Boolean, nullable=False, default=False)

    # Marketplaces whose listings are never ended automatically
    exclude_marketplaces = Column(JSON, nullable=False, default=list)
    # Sales outside this range do not trigger delisting
    min_sale_amount = Column(Numeric(10, 2), nullable=True)
    max_sale_amount = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<UserDelistingPreferences(user={self.user_id}, auto={self.auto_delist_enabled}, pref='{self.default_preference}')>"
