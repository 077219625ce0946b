# salesync/services/event_normalizer.py
"""
Turns marketplace-specific payloads into SaleEventDraft objects.

Both detection paths go through here:
- normalize_webhook_payload for pushed notifications
- normalize_polled_listing for listing snapshots found sold by the poller

compute_event_hash is the single definition of the deduplication key, so a
sale seen by a webhook and by polling collapses into one stored event.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from salesync.core.utils import format_price
from salesync.integrations.events import SaleEventDraft
from salesync.services.marketplace_registry import get_profile

logger = logging.getLogger(__name__)


@dataclass
class NormalizationResult:
    """
    supported=False: the marketplace has no mapper for this path (error says why).
    supported=True, draft=None: a valid payload that is not a sale.
    """
    supported: bool
    draft: Optional[SaleEventDraft] = None
    error: Optional[str] = None

    @property
    def is_sale(self) -> bool:
        return self.draft is not None


def compute_event_hash(
    marketplace: str,
    external_event_id: Optional[str],
    external_listing_id: Optional[str],
    sale_price: Any,
    sale_date: Optional[str],
) -> str:
    """SHA-256 hex digest of marketplace|event id|listing id|price|date."""
    hash_input = "|".join([
        getattr(marketplace, "value", marketplace) or "",
        external_event_id or "",
        external_listing_id or "",
        format_price(sale_price),
        sale_date or "",
    ])
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()


def _with_hash(draft: SaleEventDraft) -> SaleEventDraft:
    draft.event_hash = compute_event_hash(
        draft.marketplace_type.value,
        draft.external_event_id,
        draft.external_listing_id,
        draft.sale_price,
        draft.sale_date,
    )
    return draft


def normalize_webhook_payload(marketplace, payload: Dict[str, Any]) -> NormalizationResult:
    profile = get_profile(marketplace)
    if profile.webhook_mapper is None:
        return NormalizationResult(
            supported=False,
            error=profile.unsupported_reason or f"Webhooks not supported for marketplace: {profile.marketplace.value}",
        )
    draft = profile.webhook_mapper(payload)
    if draft is None:
        logger.debug(f"{profile.marketplace.value} webhook payload is not a sale event")
        return NormalizationResult(supported=True)
    return NormalizationResult(supported=True, draft=_with_hash(draft))


def normalize_polled_listing(marketplace, listing: Dict[str, Any]) -> NormalizationResult:
    profile = get_profile(marketplace)
    if profile.polling_mapper is None:
        return NormalizationResult(
            supported=False,
            error=profile.unsupported_reason or f"Polling not supported for marketplace: {profile.marketplace.value}",
        )
    return NormalizationResult(supported=True, draft=_with_hash(profile.polling_mapper(listing)))
