"""
Projection of a raw Square inventory count into a denormalized InventoryRecord.

Everything here is pure: the same count, catalog index, merchant, location and
`now` always produce an equal record, which is what lets repeated sync passes
converge on the same documents.

Field defaults when the catalog cannot resolve something:

    item_name       "Unknown"
    variation_name  None
    sku / gtin      None
    category        legacy item category_id, else first category reference, else None
    tax_names       unresolved tax ids dropped
    tax_percentages unresolved tax ids dropped (filtered independently of names)
    price/currency  None when the variation has no price money
    qty             0.0 when the quantity is missing or not a number
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import logging

from schemas import (
    CatalogIndex, CatalogItem, CatalogVariation, InventoryRecord, Location,
    MerchantAccount, RawCount
)
from services.errors import DataShapeError

logger = logging.getLogger(__name__)

UNKNOWN_ITEM_NAME = "Unknown"
PLACEHOLDER_STATE = "MISSING"


def inventory_document_id(merchant_id: str, location_id: str, catalog_object_id: str, state: str) -> str:
    return f"{merchant_id}_{location_id}_{catalog_object_id}_{state}"


def _resolve_category_id(item: Optional[CatalogItem]) -> Optional[str]:
    if item is None:
        return None
    if item.category_id:
        return item.category_id
    if item.category_ids:
        return item.category_ids[0]
    return None


def _parse_quantity(raw: Optional[str]) -> float:
    if raw is None:
        return 0.0
    try:
        return float(raw)
    except ValueError:
        logger.debug("Unparseable inventory quantity %r, using 0", raw)
        return 0.0


def _price(variation: Optional[CatalogVariation]):
    money = variation.price_money if variation is not None else None
    if money is None:
        return None, None
    price = Decimal(money.amount) / 100 if money.amount is not None else None
    return price, money.currency


def project_count(
    count: RawCount,
    index: CatalogIndex,
    merchant: MerchantAccount,
    location: Location,
    now: datetime,
) -> InventoryRecord:
    """Resolve one count against the catalog index."""
    if count.state == PLACEHOLDER_STATE:
        # MISSING ids are reserved for coverage placeholders.
        raise DataShapeError(f"count for {count.catalog_object_id} uses reserved state {PLACEHOLDER_STATE}")

    variation = index.variations.get(count.catalog_object_id)
    item = index.items.get(variation.item_id) if variation and variation.item_id else None

    category_id = _resolve_category_id(item)
    category = index.categories.get(category_id) if category_id else None

    tax_ids: List[str] = list(item.tax_ids) if item else []
    taxes = [index.taxes.get(tax_id) for tax_id in tax_ids]
    tax_names = [t.name for t in taxes if t is not None and t.name]
    tax_percentages = [t.percentage for t in taxes if t is not None and t.percentage]

    image_ids: List[str] = list(item.image_ids) if item else []
    images = [index.images.get(image_id) for image_id in image_ids]
    image_urls = [img.url for img in images if img is not None and img.url]

    price, currency = _price(variation)

    return InventoryRecord(
        merchant_id=merchant.id,
        merchant_name=merchant.business_name,
        location_id=location.id,
        location_name=location.name,
        catalog_object_id=count.catalog_object_id,
        item_id=variation.item_id if variation else None,
        variation_id=variation.id if variation else None,
        item_name=(item.name if item and item.name else UNKNOWN_ITEM_NAME),
        variation_name=variation.name if variation else None,
        sku=variation.sku if variation else None,
        gtin=variation.upc if variation else None,
        category_id=category_id,
        category_name=category.name if category else None,
        tax_ids=tax_ids,
        tax_names=tax_names,
        tax_percentages=tax_percentages,
        price=price,
        currency=currency,
        qty=_parse_quantity(count.quantity),
        state=count.state,
        calculated_at=count.calculated_at,
        updated_at=now,
        image_ids=image_ids,
        image_urls=image_urls,
    )
