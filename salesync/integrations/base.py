"""
Capability contract every marketplace adapter implements.

The delisting pipeline only needs two operations from a marketplace:
- get_listing_by_id: current snapshot of a listing (status, sale price/date when sold)
- end_listing: end/withdraw a listing

Adapters raise MarketplaceAPIError subclasses whose message and status map
onto the delisting error codes (see services/delisting_errors.py).
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from salesync.core.enums import MarketplaceType
from salesync.core.exceptions import AuthenticationError, MarketplaceAPIError, RateLimitError

logger = logging.getLogger(__name__)


class EndListingOptions(BaseModel):
    reason: str = "Item sold on another marketplace"
    sold_to_buyer: Optional[str] = None


class MarketplaceAdapter(ABC):
    marketplace: MarketplaceType
    BASE_URL: str = ""

    def __init__(self, credentials: Dict[str, Any], base_url: Optional[str] = None, timeout: float = 30.0):
        self.credentials = credentials
        self.base_url = (base_url or credentials.get("api_endpoint_base") or self.BASE_URL).rstrip("/")
        self.timeout = timeout

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests"""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        token = self.credentials.get("access_token")
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict:
        """
        Make a request to the marketplace API

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint (without base URL)
            data: Request payload for POST/PUT requests
            params: Query parameters

        Returns:
            Dict: Response data

        Raises:
            RateLimitError: On HTTP 429
            AuthenticationError: On HTTP 401/403
            MarketplaceAPIError: On any other failure
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        marketplace = self.marketplace.value

        logger.debug(f"Making {method} request to {url}")
        if params:
            logger.debug(f"Params: {params}")
        if data:
            logger.debug(f"Data: {json.dumps(data)[:500]}...")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._get_headers(),
                    json=data,
                    params=params
                )
        except httpx.TimeoutException as e:
            raise MarketplaceAPIError(f"Request timeout: {e}", marketplace, code="TIMEOUT") from e
        except httpx.RequestError as e:
            raise MarketplaceAPIError(f"API request failed: network error {e}", marketplace, code="NETWORK_ERROR") from e

        if response.status_code == 429:
            raise RateLimitError("Rate limit exceeded", marketplace, status=429, code="RATE_LIMITED")

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Authentication failed: {response.text}", marketplace, status=response.status_code
            )

        if response.status_code == 404:
            raise MarketplaceAPIError(f"Listing not found: {response.text}", marketplace, status=404)

        if response.status_code not in (200, 201, 202, 204):
            logger.error(f"{marketplace} API error ({response.status_code}): {response.text}")
            raise MarketplaceAPIError(
                f"Request failed ({response.status_code}): {response.text}",
                marketplace,
                status=response.status_code
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise MarketplaceAPIError(f"Invalid JSON response: {e}", marketplace, status=response.status_code) from e

    @abstractmethod
    async def get_listing_by_id(self, external_id: str) -> Dict[str, Any]:
        """
        Fetch the current state of a listing.

        The returned dict carries the marketplace's own fields plus the
        normalized keys `status` ('active', 'sold', ...), and when sold,
        `sale_price` and `sale_date`.
        """
        pass

    @abstractmethod
    async def end_listing(self, external_id: str, options: EndListingOptions) -> Dict[str, Any]:
        """End a listing on the marketplace, returning the marketplace's response"""
        pass
