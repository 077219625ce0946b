# salesync/services/marketplace_registry.py
"""
Per-marketplace behaviour in one table.

A MarketplaceProfile holds everything the pipeline needs to know about a
marketplace: its polling configuration, how its webhooks are signed, how its
payloads map onto a SaleEventDraft, and extra error patterns its adapter
produces. New marketplaces call register_marketplace() instead of touching
the poller, the webhook handler or the delisting engine.
"""

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

from salesync.core.enums import DelistingErrorCode, MarketplaceType
from salesync.integrations.events import SaleEventDraft
from salesync.normalizers import mappers

WebhookMapper = Callable[[dict], Optional[SaleEventDraft]]
PollingMapper = Callable[[dict], SaleEventDraft]


@dataclass(frozen=True)
class PollingConfig:
    enabled: bool
    interval_minutes: int
    max_items_per_poll: int
    lookback_days: int


@dataclass(frozen=True)
class WebhookConfig:
    secret_setting: str
    signature_header: str
    signature_prefix: Optional[str] = None


@dataclass(frozen=True)
class ErrorPattern:
    """Substrings (matched case-insensitively) that identify an error code."""
    patterns: Tuple[str, ...]
    code: DelistingErrorCode
    permanent: bool = False
    retry_after: Optional[int] = None


@dataclass(frozen=True)
class MarketplaceProfile:
    marketplace: MarketplaceType
    polling: PollingConfig
    webhook: Optional[WebhookConfig] = None
    webhook_mapper: Optional[WebhookMapper] = None
    polling_mapper: Optional[PollingMapper] = None
    error_patterns: Tuple[ErrorPattern, ...] = field(default_factory=tuple)
    unsupported_reason: Optional[str] = None

    @property
    def supports_polling(self) -> bool:
        return self.polling_mapper is not None

    @property
    def supports_webhooks(self) -> bool:
        return self.webhook is not None and self.webhook_mapper is not None


POLLING_DISABLED = PollingConfig(enabled=False, interval_minutes=0, max_items_per_poll=0, lookback_days=0)
POLLING_FAST = PollingConfig(enabled=True, interval_minutes=15, max_items_per_poll=100, lookback_days=1)
POLLING_STANDARD = PollingConfig(enabled=True, interval_minutes=30, max_items_per_poll=50, lookback_days=2)
POLLING_SLOW = PollingConfig(enabled=True, interval_minutes=60, max_items_per_poll=25, lookback_days=3)


def _unsupported(marketplace: MarketplaceType) -> str:
    return f"{marketplace.display_name} does not support automated sale detection yet"


def _default_profiles() -> List[MarketplaceProfile]:
    M = MarketplaceType
    return [
        MarketplaceProfile(
            M.EBAY, POLLING_DISABLED,
            webhook=WebhookConfig("EBAY_WEBHOOK_SECRET", "x-ebay-signature", "sha256="),
            webhook_mapper=mappers.map_ebay_webhook,
            polling_mapper=mappers.make_generic_listing_mapper(M.EBAY),
            error_patterns=(
                ErrorPattern(("itemnotfound",), DelistingErrorCode.LISTING_NOT_FOUND, permanent=True),
                ErrorPattern(("itemalreadyended",), DelistingErrorCode.LISTING_ALREADY_ENDED, permanent=True),
            ),
        ),
        MarketplaceProfile(
            M.POSHMARK, POLLING_DISABLED,
            webhook=WebhookConfig("POSHMARK_WEBHOOK_SECRET", "x-poshmark-signature", "sha256="),
            webhook_mapper=mappers.map_poshmark_webhook,
            polling_mapper=mappers.make_generic_listing_mapper(M.POSHMARK),
        ),
        MarketplaceProfile(
            M.FACEBOOK_MARKETPLACE, POLLING_DISABLED,
            webhook=WebhookConfig("FACEBOOK_WEBHOOK_SECRET", "x-hub-signature-256", "sha256="),
            webhook_mapper=mappers.map_facebook_webhook,
            polling_mapper=mappers.make_generic_listing_mapper(M.FACEBOOK_MARKETPLACE),
            error_patterns=(
                ErrorPattern(("does not exist",), DelistingErrorCode.LISTING_NOT_FOUND, permanent=True),
                ErrorPattern(("cannot delete",), DelistingErrorCode.LISTING_CANNOT_BE_ENDED, permanent=True),
            ),
        ),
        MarketplaceProfile(
            M.MERCARI, POLLING_FAST,
            webhook=WebhookConfig("MERCARI_WEBHOOK_SECRET", "x-mercari-signature"),
            polling_mapper=mappers.map_mercari_listing,
        ),
        MarketplaceProfile(
            M.DEPOP, POLLING_STANDARD,
            webhook=WebhookConfig("DEPOP_WEBHOOK_SECRET", "x-depop-signature"),
            polling_mapper=mappers.map_depop_listing,
        ),
        MarketplaceProfile(
            M.VINTED, POLLING_STANDARD,
            webhook=WebhookConfig("VINTED_WEBHOOK_SECRET", "x-vinted-signature"),
            polling_mapper=mappers.make_generic_listing_mapper(M.VINTED),
        ),
        MarketplaceProfile(
            M.GRAILED, POLLING_SLOW,
            webhook=WebhookConfig("GRAILED_WEBHOOK_SECRET", "x-grailed-signature"),
            polling_mapper=mappers.make_generic_listing_mapper(M.GRAILED),
        ),
        MarketplaceProfile(
            M.ETSY, POLLING_STANDARD,
            webhook=WebhookConfig("ETSY_WEBHOOK_SECRET", "x-etsy-signature"),
            polling_mapper=mappers.map_etsy_listing,
        ),
        MarketplaceProfile(
            M.THE_REALREAL, POLLING_SLOW,
            webhook=WebhookConfig("THE_REALREAL_WEBHOOK_SECRET", "x-realreal-signature"),
            unsupported_reason=_unsupported(M.THE_REALREAL),
        ),
        MarketplaceProfile(
            M.VESTIAIRE_COLLECTIVE, POLLING_SLOW,
            webhook=WebhookConfig("VESTIAIRE_WEBHOOK_SECRET", "x-vestiaire-signature"),
            unsupported_reason=_unsupported(M.VESTIAIRE_COLLECTIVE),
        ),
        MarketplaceProfile(
            M.TRADESY, POLLING_SLOW,
            webhook=WebhookConfig("TRADESY_WEBHOOK_SECRET", "x-tradesy-signature"),
            unsupported_reason=_unsupported(M.TRADESY),
        ),
        MarketplaceProfile(
            M.AMAZON, POLLING_FAST,
            webhook=WebhookConfig("AMAZON_WEBHOOK_SECRET", "x-amzn-signature"),
            unsupported_reason=_unsupported(M.AMAZON),
        ),
        MarketplaceProfile(
            M.SHOPIFY, POLLING_FAST,
            webhook=WebhookConfig("SHOPIFY_WEBHOOK_SECRET", "x-shopify-hmac-sha256"),
            unsupported_reason=_unsupported(M.SHOPIFY),
        ),
        MarketplaceProfile(
            M.CUSTOM, POLLING_SLOW,
            webhook=WebhookConfig("CUSTOM_WEBHOOK_SECRET", "x-signature"),
            unsupported_reason="Custom marketplaces do not support automated sale detection via polling",
        ),
    ]


_profiles: Dict[MarketplaceType, MarketplaceProfile] = {p.marketplace: p for p in _default_profiles()}


def register_marketplace(profile: MarketplaceProfile) -> None:
    """Add or replace the profile of a marketplace"""
    _profiles[profile.marketplace] = profile


def get_profile(marketplace) -> MarketplaceProfile:
    """
    Resolve a marketplace's profile.

    Raises:
        ValueError: If the value is not a known marketplace type
    """
    marketplace = MarketplaceType(marketplace)
    profile = _profiles.get(marketplace)
    if profile is None:
        profile = MarketplaceProfile(marketplace, POLLING_DISABLED, unsupported_reason=_unsupported(marketplace))
    return profile


def all_profiles() -> List[MarketplaceProfile]:
    return [get_profile(m) for m in MarketplaceType]


def reset_registry() -> None:
    """Restore the built-in profiles (used by tests after register_marketplace)"""
    _profiles.clear()
    _profiles.update({p.marketplace: p for p in _default_profiles()})


def with_polling(marketplace, **changes) -> MarketplaceProfile:
    """Copy of a profile with some polling settings changed"""
    profile = get_profile(marketplace)
    return replace(profile, polling=replace(profile.polling, **changes))
