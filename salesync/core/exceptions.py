from typing import Any, Dict, Optional


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class ValidationError(BaseServiceError):
    """Raised when data validation fails."""
    pass

class DatabaseError(BaseServiceError):
    """Exception raised for database-related errors."""
    pass

class SaleEventStoreError(DatabaseError):
    """Raised when a sale event cannot be persisted. The caller should retry."""

    retryable = True

class DelistingServiceError(BaseServiceError):
    """Base exception for delisting job errors."""
    pass

class JobNotFoundError(DelistingServiceError):
    """Raised when a delisting job does not exist."""
    pass

class JobStateError(DelistingServiceError):
    """Raised when a delisting job is not in a state that allows the operation."""
    pass

class AuthorizationError(DelistingServiceError):
    """Raised when a caller acts on a job it does not own."""
    pass

class UnsupportedMarketplaceError(BaseServiceError):
    """Raised when a marketplace has no sale detection support."""
    pass

class WebhookConfigurationError(BaseServiceError):
    """Raised when a marketplace webhook secret is not configured."""
    pass

class WebhookSignatureError(BaseServiceError):
    """Raised when a webhook signature is missing or invalid."""
    pass

class MarketplaceAPIError(BaseServiceError):
    """Raised when marketplace API calls fail."""

    def __init__(
        self,
        message: str,
        marketplace: Optional[str] = None,
        status: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.marketplace = marketplace
        self.status = status
        self.code = code

class AuthenticationError(MarketplaceAPIError):
    """Raised when marketplace credentials are rejected."""
    pass

class RateLimitError(MarketplaceAPIError):
    """Raised when a marketplace rate limit is hit."""
    pass

class AdapterNotRegisteredError(MarketplaceAPIError):
    """Raised when no adapter is registered for a marketplace."""
    pass


class DelistingError(BaseServiceError):
    """
    Typed failure of a single marketplace delisting.

    Every adapter error is mapped into one of these before it is recorded
    on the job, so the retry manager can tell permanent failures from
    transient ones.
    """

    def __init__(
        self,
        code: str,
        message: str,
        marketplace: Optional[str] = None,
        listing_id: Optional[str] = None,
        external_id: Optional[str] = None,
        retry_after: Optional[int] = None,
        permanent: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.marketplace = marketplace
        self.listing_id = listing_id
        self.external_id = external_id
        self.retry_after = retry_after
        self.permanent = permanent

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "marketplace": self.marketplace,
            "listing_id": self.listing_id,
            "external_id": self.external_id,
            "retry_after": self.retry_after,
            "permanent": self.permanent,
        }
