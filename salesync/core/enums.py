# salesync/core/enums.py
from enum import Enum


class MarketplaceType(str, Enum):
    EBAY = "ebay"
    POSHMARK = "poshmark"
    MERCARI = "mercari"
    DEPOP = "depop"
    FACEBOOK_MARKETPLACE = "facebook_marketplace"
    VINTED = "vinted"
    GRAILED = "grailed"
    THE_REALREAL = "the_realreal"
    VESTIAIRE_COLLECTIVE = "vestiaire_collective"
    TRADESY = "tradesy"
    ETSY = "etsy"
    AMAZON = "amazon"
    SHOPIFY = "shopify"
    CUSTOM = "custom"

    @property
    def display_name(self) -> str:
        """Human readable name used in log and error messages"""
        return self.value.replace("_", " ").title()


class ListingStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PENDING = "pending"
    SOLD = "sold"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @classmethod
    def delistable(cls):
        """Statuses a listing can be in for it to be ended on its marketplace"""
        return [cls.ACTIVE.value, cls.PENDING.value]


class ConnectionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    ERROR = "error"


class SaleEventSource(str, Enum):
    WEBHOOK = "webhook"
    POLLING = "polling"


class DelistingJobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def retryable(cls):
        return [cls.FAILED.value, cls.PARTIALLY_FAILED.value]


class DelistingTriggerType(str, Enum):
    SALE_DETECTED = "sale_detected"
    MANUAL = "manual"


class DelistingPreference(str, Enum):
    IMMEDIATE = "immediate"
    DELAYED = "delayed"
    MANUAL_CONFIRMATION = "manual_confirmation"


class DelistingErrorCode(str, Enum):
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    LISTING_NOT_FOUND = "LISTING_NOT_FOUND"
    LISTING_ALREADY_ENDED = "LISTING_ALREADY_ENDED"
    LISTING_CANNOT_BE_ENDED = "LISTING_CANNOT_BE_ENDED"
    API_UNAVAILABLE = "API_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    INVALID_REQUEST = "INVALID_REQUEST"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class AuditAction(str, Enum):
    JOB_CREATED = "job_created"
    JOB_CONFIRMED = "job_confirmed"
    JOB_CANCELLED = "job_cancelled"
    JOB_RETRIED = "job_retried"
    JOB_COMPLETED = "job_completed"
    JOB_RETRIES_ABANDONED = "job_retries_abandoned"
    SALE_EVENT_PROCESSED = "sale_event_processed"
    LISTING_DELISTED = "listing_delisted"
    LISTING_DELIST_FAILED = "listing_delist_failed"


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"
