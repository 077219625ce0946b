# salesync/models/listing.py
from sqlalchemy import Column, DateTime, Numeric, String, Index

from salesync.core.enums import ListingStatus
from salesync.core.utils import new_id, utc_now
from salesync.database import Base


class Listing(Base):
    """
    A user's listing of one inventory item on one marketplace.

    The delisting pipeline only reads and transitions `status`: to `cancelled`
    when the listing is ended after a sale elsewhere, to `sold` when polling
    observes the sale on this marketplace.
    """
    __tablename__ = "listings"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    inventory_item_id = Column(String(36), nullable=False, index=True)
    marketplace_type = Column(String(50), nullable=False, index=True)
    external_listing_id = Column(String(255), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=ListingStatus.ACTIVE.value, index=True)

    sale_price = Column(Numeric(10, 2), nullable=True)
    sale_date = Column(DateTime, nullable=True)

    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_listings_marketplace_external", "marketplace_type", "external_listing_id"),
    )

    def __repr__(self):
        return (f"<Listing(id={self.id}, item={self.inventory_item_id}, "
                f"marketplace='{self.marketplace_type}', status='{self.status}')>")
