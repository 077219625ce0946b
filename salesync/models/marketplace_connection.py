# salesync/models/marketplace_connection.py
from sqlalchemy import Column, DateTime, JSON, String, Text

from salesync.core.enums import ConnectionStatus
from salesync.core.utils import new_id, utc_now
from salesync.database import Base


class MarketplaceConnection(Base):
    """Credentials linking a user account to a marketplace account."""
    __tablename__ = "marketplace_connections"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    marketplace_type = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ConnectionStatus.ACTIVE.value, index=True)

    # --- Credentials ---
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)
    api_key = Column(Text, nullable=True)
    api_secret = Column(Text, nullable=True)
    shop_id = Column(String(255), nullable=True)
    api_endpoint_base = Column(String(255), nullable=True)
    connection_metadata = Column(JSON, nullable=True)

    last_error = Column(Text, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<MarketplaceConnection(user={self.user_id}, marketplace='{self.marketplace_type}', status='{self.status}')>"
