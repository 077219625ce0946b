# salesync/models/delisting_job.py
from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, Numeric, String, Text

from salesync.core.enums import DelistingJobStatus, DelistingTriggerType
from salesync.core.utils import new_id, utc_now
from salesync.database import Base


class DelistingJob(Base):
    """
    One unit of cross-marketplace cleanup: end every listing of an inventory
    item on the targeted marketplaces.

    Status only moves forward (pending -> processing -> completed /
    partially_failed / failed). Failed and partially failed jobs may be reset
    to pending by the retry manager while retry_count < max_retries.
    """
    __tablename__ = "delisting_jobs"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    inventory_item_id = Column(String(36), nullable=False, index=True)

    # --- Trigger ---
    trigger_type = Column(String(30), nullable=False, default=DelistingTriggerType.SALE_DETECTED.value)
    trigger_data = Column(JSON, nullable=True)
    status = Column(String(30), nullable=False, default=DelistingJobStatus.PENDING.value, index=True)

    # --- Sale Context ---
    sold_on_marketplace = Column(String(50), nullable=True)
    sale_price = Column(Numeric(10, 2), nullable=True)
    sale_date = Column(DateTime, nullable=True)
    sale_external_id = Column(String(255), nullable=True)

    # --- Targets and Outcome ---
    marketplaces_targeted = Column(JSON, nullable=False, default=list)
    marketplaces_completed = Column(JSON, nullable=False, default=list)
    marketplaces_failed = Column(JSON, nullable=False, default=list)
    success_log = Column(JSON, nullable=False, default=dict)
    error_log = Column(JSON, nullable=False, default=dict)
    total_delisted = Column(Integer, nullable=False, default=0)
    total_failed = Column(Integer, nullable=False, default=0)

    # --- Confirmation ---
    requires_user_confirmation = Column(Boolean, nullable=False, default=False)
    user_confirmed_at = Column(DateTime, nullable=True)
    user_cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # --- Scheduling ---
    scheduled_for = Column(DateTime, nullable=False, default=utc_now, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)

    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    @property
    def awaiting_confirmation(self) -> bool:
        return bool(self.requires_user_confirmation) and self.user_confirmed_at is None

    def __repr__(self):
        return (f"<DelistingJob(id={self.id}, item={self.inventory_item_id}, status='{self.status}', "
                f"retry={self.retry_count}/{self.max_retries})>")
