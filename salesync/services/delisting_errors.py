# salesync/services/delisting_errors.py
"""
Classification of marketplace adapter failures.

Adapter errors are never recorded verbatim: map_adapter_error turns each one
into a DelistingError with a code, a permanent flag and an optional
retry_after hint. Marketplace-specific patterns from the registry are checked
before the common table.
"""

import asyncio
from typing import Iterable, Optional

import httpx

from salesync.core.enums import DelistingErrorCode
from salesync.core.exceptions import DelistingError
from salesync.services.marketplace_registry import ErrorPattern, get_profile

E = DelistingErrorCode

COMMON_ERROR_PATTERNS = (
    ErrorPattern(("authentication", "unauthorized"), E.INVALID_TOKEN, permanent=True),
    ErrorPattern(("not found", "invalid listing"), E.LISTING_NOT_FOUND, permanent=True),
    ErrorPattern(("already ended", "already sold"), E.LISTING_ALREADY_ENDED, permanent=True),
    ErrorPattern(("cannot be ended", "not allowed"), E.LISTING_CANNOT_BE_ENDED, permanent=True),
    ErrorPattern(("rate limit",), E.RATE_LIMITED, retry_after=60),
    ErrorPattern(("timeout", "timed out"), E.TIMEOUT),
    ErrorPattern(("network",), E.NETWORK_ERROR),
)

RETRYABLE_CODES = frozenset({E.API_UNAVAILABLE, E.RATE_LIMITED, E.NETWORK_ERROR, E.TIMEOUT})

PERMANENT_CODES = frozenset({
    E.INVALID_TOKEN,
    E.TOKEN_EXPIRED,
    E.INSUFFICIENT_PERMISSIONS,
    E.LISTING_NOT_FOUND,
    E.LISTING_ALREADY_ENDED,
    E.LISTING_CANNOT_BE_ENDED,
    E.INVALID_REQUEST,
})

RATE_LIMIT_RETRY_AFTER = 60


def is_retryable_error(code) -> bool:
    try:
        return DelistingErrorCode(code) in RETRYABLE_CODES
    except ValueError:
        return False


def is_permanent_error(code) -> bool:
    try:
        return DelistingErrorCode(code) in PERMANENT_CODES
    except ValueError:
        return False


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status", None)
    if status is None:
        status = getattr(error, "status_code", None)
    if status is None and isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _match(message: str, patterns: Iterable[ErrorPattern]) -> Optional[ErrorPattern]:
    for pattern in patterns:
        if any(p in message for p in pattern.patterns):
            return pattern
    return None


def map_adapter_error(
    error: BaseException,
    marketplace: Optional[str] = None,
    listing_id: Optional[str] = None,
    external_id: Optional[str] = None,
) -> DelistingError:
    """Map any exception raised by an adapter into a typed DelistingError."""
    if isinstance(error, DelistingError):
        return error

    message = str(error) or type(error).__name__
    lowered = message.lower()
    status = _status_of(error)
    adapter_code = str(getattr(error, "code", "") or "").upper()

    def build(code: DelistingErrorCode, permanent: bool = False, retry_after: Optional[int] = None) -> DelistingError:
        return DelistingError(
            code=code.value,
            message=message,
            marketplace=marketplace,
            listing_id=listing_id,
            external_id=external_id,
            retry_after=retry_after,
            permanent=permanent,
        )

    extra_patterns = get_profile(marketplace).error_patterns if marketplace else ()
    pattern = _match(lowered, extra_patterns) or _match(lowered, COMMON_ERROR_PATTERNS)
    if pattern is not None:
        return build(pattern.code, pattern.permanent, pattern.retry_after)

    if status == 429 or adapter_code == E.RATE_LIMITED.value:
        return build(E.RATE_LIMITED, retry_after=RATE_LIMIT_RETRY_AFTER)
    if adapter_code == E.TIMEOUT.value or isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return build(E.TIMEOUT)
    if adapter_code == E.NETWORK_ERROR.value or isinstance(error, (httpx.TransportError, ConnectionError)):
        return build(E.NETWORK_ERROR)
    if status is not None and status >= 500:
        return build(E.API_UNAVAILABLE)
    if adapter_code in DelistingErrorCode.__members__:
        code = DelistingErrorCode(adapter_code)
        return build(code, permanent=code in PERMANENT_CODES)

    return build(E.UNKNOWN_ERROR)
