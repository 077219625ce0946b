# salesync/models/sale_event.py
from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, Numeric, String, Text

from salesync.core.utils import new_id, utc_now
from salesync.database import Base


class SaleEvent(Base):
    """
    A normalized sale signal received from a webhook or found by polling.

    `event_hash` is the deduplication key: two signals for the same real-world
    sale collapse into one row whichever way they were detected. Rows are
    immutable after insert apart from the processing fields.
    """
    __tablename__ = "sale_events"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    inventory_item_id = Column(String(36), nullable=True, index=True)
    listing_id = Column(String(36), nullable=True, index=True)
    marketplace_type = Column(String(50), nullable=False, index=True)
    source = Column(String(20), nullable=False, default="webhook")

    # --- Sale Details ---
    event_type = Column(String(100), nullable=False)
    external_event_id = Column(String(255), nullable=True, index=True)
    external_listing_id = Column(String(255), nullable=True, index=True)
    external_transaction_id = Column(String(255), nullable=True)
    sale_price = Column(Numeric(10, 2), nullable=True)
    sale_currency = Column(String(3), nullable=False, default="USD")
    sale_date = Column(DateTime, nullable=True)
    buyer_id = Column(String(255), nullable=True)
    payment_status = Column(String(50), nullable=True)

    # --- Raw Payloads ---
    raw_webhook_data = Column(JSON, nullable=True)
    raw_polling_data = Column(JSON, nullable=True)

    # --- Deduplication ---
    event_hash = Column(String(64), nullable=False, unique=True, index=True)

    # --- Verification ---
    verified = Column(Boolean, nullable=False, default=False)
    verification_attempts = Column(Integer, nullable=False, default=0)
    verification_error = Column(Text, nullable=True)

    # --- Processing ---
    processed = Column(Boolean, nullable=False, default=False, index=True)
    processed_at = Column(DateTime, nullable=True)
    processing_error = Column(Text, nullable=True)
    delisting_job_id = Column(String(36), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    @property
    def raw_data(self):
        return self.raw_webhook_data if self.raw_webhook_data is not None else self.raw_polling_data

    def __repr__(self):
        return (f"<SaleEvent(id={self.id}, marketplace='{self.marketplace_type}', "
                f"listing='{self.external_listing_id}', processed={self.processed})>")
