"""
Purpose: Registry of marketplace adapters and the factory that builds one from a
user's marketplace connection.

Contents:
register_adapter: Adds (or replaces) the adapter class used for a marketplace.
get_connection_credentials: Extracts the credential fields an adapter needs from a MarketplaceConnection row.
create_adapter: Default adapter factory used by the delisting engine and the sale poller.
setup_adapter_registry: Registers the built-in eBay, Poshmark and Facebook Marketplace adapters.
"""

import logging
from typing import Any, Callable, Dict, Optional, Type

from salesync.core.config import get_settings
from salesync.core.enums import MarketplaceType
from salesync.core.exceptions import AdapterNotRegisteredError
from salesync.integrations.base import MarketplaceAdapter
from salesync.integrations.platforms.ebay import EbayAdapter
from salesync.integrations.platforms.facebook import FacebookMarketplaceAdapter
from salesync.integrations.platforms.poshmark import PoshmarkAdapter
from salesync.models.marketplace_connection import MarketplaceConnection

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[MarketplaceConnection], MarketplaceAdapter]

_adapters: Dict[MarketplaceType, Type[MarketplaceAdapter]] = {}


def register_adapter(marketplace: MarketplaceType, adapter_cls: Type[MarketplaceAdapter]) -> None:
    _adapters[MarketplaceType(marketplace)] = adapter_cls
    logger.info(f"Registered {MarketplaceType(marketplace).value} marketplace adapter: {adapter_cls.__name__}")


def registered_marketplaces():
    return sorted(m.value for m in _adapters)


def get_connection_credentials(connection: MarketplaceConnection) -> Dict[str, Any]:
    """Credential fields of a connection, leaving out the ones that are not set"""
    creds = {
        "access_token": connection.access_token,
        "refresh_token": connection.refresh_token,
        "api_key": connection.api_key,
        "api_secret": connection.api_secret,
        "shop_id": connection.shop_id,
        "api_endpoint_base": connection.api_endpoint_base,
    }
    return {k: v for k, v in creds.items() if v}


def _default_base_url(marketplace: MarketplaceType) -> Optional[str]:
    settings = get_settings()
    return {
        MarketplaceType.EBAY: settings.EBAY_API_BASE_URL,
        MarketplaceType.POSHMARK: settings.POSHMARK_API_BASE_URL,
        MarketplaceType.FACEBOOK_MARKETPLACE: settings.FACEBOOK_GRAPH_API_BASE_URL,
    }.get(marketplace)


def create_adapter(connection: MarketplaceConnection) -> MarketplaceAdapter:
    """
    Build the adapter for a connection.

    Raises:
        AdapterNotRegisteredError: If no adapter is registered for the connection's marketplace
    """
    marketplace = MarketplaceType(connection.marketplace_type)
    adapter_cls = _adapters.get(marketplace)
    if adapter_cls is None:
        raise AdapterNotRegisteredError(
            f"No adapter registered for marketplace: {marketplace.value}",
            marketplace.value,
            code="INTERNAL_ERROR"
        )
    credentials = get_connection_credentials(connection)
    return adapter_cls(
        credentials,
        base_url=credentials.get("api_endpoint_base") or _default_base_url(marketplace),
        timeout=get_settings().MARKETPLACE_REQUEST_TIMEOUT,
    )


def setup_adapter_registry() -> None:
    """Register the built-in adapters"""
    register_adapter(MarketplaceType.EBAY, EbayAdapter)
    register_adapter(MarketplaceType.POSHMARK, PoshmarkAdapter)
    register_adapter(MarketplaceType.FACEBOOK_MARKETPLACE, FacebookMarketplaceAdapter)


setup_adapter_registry()
