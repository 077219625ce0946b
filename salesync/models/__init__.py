from .listing import Listing
from .marketplace_connection import MarketplaceConnection
from .sale_event import SaleEvent
from .delisting_job import DelistingJob
from .delisting_audit_log import DelistingAuditLog
from .delisting_preferences import UserDelistingPreferences

__all__ = [
    "Listing",
    "MarketplaceConnection",
    "SaleEvent",
    "DelistingJob",
    "DelistingAuditLog",
    "UserDelistingPreferences",
]
