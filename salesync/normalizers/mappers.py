"""
Per-marketplace field mappers.

Each mapper is a pure function from a marketplace-specific payload to a
SaleEventDraft (without its event_hash). Webhook mappers may return None
for payloads that are valid notifications but not sales.
"""
from typing import Any, Dict, Optional

from salesync.core.enums import MarketplaceType
from salesync.core.utils import epoch_to_iso, to_decimal
from salesync.integrations.events import SaleEventDraft


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _get(payload: Dict[str, Any], *path: str) -> Any:
    current: Any = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


# Webhooks

def map_ebay_webhook(payload: Dict[str, Any]) -> Optional[SaleEventDraft]:
    return SaleEventDraft(
        marketplace_type=MarketplaceType.EBAY,
        event_type=payload.get("eBayEventType") or "item_sold",
        external_event_id=_text(payload.get("notificationId")),
        external_listing_id=_text(payload.get("itemId")),
        external_transaction_id=_text(payload.get("transactionId")),
        sale_price=to_decimal(_get(payload, "currentPrice", "amount")),
        sale_currency=_get(payload, "currentPrice", "currency") or "USD",
        sale_date=_text(payload.get("saleDate")),
        buyer_id=_text(payload.get("buyerId")),
        payment_status=_text(payload.get("paymentStatus")),
        raw_data=payload,
    )


def map_poshmark_webhook(payload: Dict[str, Any]) -> Optional[SaleEventDraft]:
    data = payload.get("data") or {}
    return SaleEventDraft(
        marketplace_type=MarketplaceType.POSHMARK,
        event_type=payload.get("event_type") or "item_sold",
        external_event_id=_text(payload.get("event_id")),
        external_listing_id=_text(data.get("listing_id")),
        external_transaction_id=_text(data.get("transaction_id")),
        sale_price=to_decimal(data.get("price")),
        sale_currency=data.get("currency") or "USD",
        sale_date=_text(data.get("sold_at")),
        buyer_id=_text(data.get("buyer_username")),
        payment_status=_text(data.get("payment_status")),
        raw_data=payload,
    )


def map_facebook_webhook(payload: Dict[str, Any]) -> Optional[SaleEventDraft]:
    """Facebook batches changes per entry; the first sold marketplace listing wins."""
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            if change.get("field") != "marketplace_listing" or value.get("status") != "sold":
                continue
            return SaleEventDraft(
                marketplace_type=MarketplaceType.FACEBOOK_MARKETPLACE,
                event_type="listing_status_changed",
                external_event_id=f"{entry.get('id')}_{entry.get('time')}",
                external_listing_id=_text(value.get("marketplace_listing_id")),
                external_transaction_id=_text(value.get("transaction_id")),
                sale_price=to_decimal(value.get("sale_price")),
                sale_currency=value.get("currency") or "USD",
                sale_date=_text(value.get("sold_at")),
                buyer_id=_text(value.get("buyer_id")),
                payment_status="completed",
                raw_data=payload,
            )
    return None


# Polled listing snapshots

def map_mercari_listing(listing: Dict[str, Any]) -> SaleEventDraft:
    return SaleEventDraft(
        marketplace_type=MarketplaceType.MERCARI,
        event_type="item_sold",
        external_event_id=f"{listing.get('id')}_sold_{listing.get('sold_date')}",
        external_listing_id=_text(listing.get("id")),
        external_transaction_id=_text(listing.get("transaction_id")),
        sale_price=to_decimal(listing.get("sold_price")),
        sale_currency=listing.get("currency") or "USD",
        sale_date=_text(listing.get("sold_date")),
        buyer_id=_text(listing.get("buyer_id")),
        payment_status=listing.get("payment_status") or "completed",
        raw_data=listing,
    )


def map_depop_listing(listing: Dict[str, Any]) -> SaleEventDraft:
    receipt = listing.get("receipt") or {}
    price_cents = to_decimal(_get(listing, "price", "priceCents"))
    sale_price = price_cents / 100 if price_cents is not None else None
    return SaleEventDraft(
        marketplace_type=MarketplaceType.DEPOP,
        event_type="product_sold",
        external_event_id=f"{listing.get('id')}_{listing.get('dateUpdated')}",
        external_listing_id=_text(listing.get("id")),
        external_transaction_id=_text(receipt.get("id")),
        sale_price=sale_price,
        sale_currency=_get(listing, "price", "currencyCode") or "USD",
        sale_date=_text(receipt.get("dateCreated")),
        buyer_id=_text(_get(receipt, "buyerUser", "id")),
        payment_status="completed",
        raw_data=listing,
    )


def map_etsy_listing(listing: Dict[str, Any]) -> SaleEventDraft:
    return SaleEventDraft(
        marketplace_type=MarketplaceType.ETSY,
        event_type="listing_sold",
        external_event_id=f"{listing.get('listing_id')}_{listing.get('last_modified_tsz')}",
        external_listing_id=_text(listing.get("listing_id")),
        external_transaction_id=_text(listing.get("receipt_id")),
        sale_price=to_decimal(listing.get("price")),
        sale_currency=listing.get("currency_code") or "USD",
        sale_date=epoch_to_iso(listing.get("last_modified_tsz")),
        buyer_id=_text(listing.get("buyer_user_id")),
        payment_status="completed",
        raw_data=listing,
    )


def make_generic_listing_mapper(marketplace: MarketplaceType):
    """Mapper for marketplaces whose adapters already return the common snapshot keys."""

    def map_listing(listing: Dict[str, Any]) -> SaleEventDraft:
        listing_id = listing.get("id") or listing.get("listing_id")
        price = listing.get("price")
        if price is None or price == "":
            price = listing.get("sale_price")
        return SaleEventDraft(
            marketplace_type=marketplace,
            event_type="item_sold",
            external_event_id=f"{listing_id}_polling",
            external_listing_id=_text(listing_id),
            external_transaction_id=_text(listing.get("transaction_id")),
            sale_price=to_decimal(price),
            sale_currency=listing.get("currency") or "USD",
            sale_date=_text(listing.get("sold_date") or listing.get("sale_date")),
            buyer_id=_text(listing.get("buyer_id")),
            payment_status=listing.get("payment_status") or "completed",
            raw_data=listing,
        )

    map_listing.__name__ = f"map_{marketplace.value}_listing"
    return map_listing
