"""
Inventory Sync Schemas
======================

Typed shapes for everything that flows through the sync and coverage pipelines.

CATALOG OBJECTS (remote, read-only):
------------------------------------
- CatalogItem       - ITEM: name, legacy category_id, category reference list, tax ids, image ids
- CatalogVariation  - ITEM_VARIATION: parent item_id, name, sku, upc (surfaced as GTIN), price money
- CatalogCategory   - CATEGORY: name
- CatalogTax        - TAX: name, percentage (decimal string, e.g. "8.875")
- CatalogImage      - IMAGE: url

Absent remote fields are None (or an empty tuple for lists), never missing
attributes, so resolvers do not need existence checks.

PERSISTED DOCUMENTS:
--------------------
- InventoryRecord   - denormalized row written to both `inventory` and
                      `merchant_inventory` under the same document id.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, TypedDict, Union
import logging

from services.errors import DataShapeError

logger = logging.getLogger(__name__)


def _text(value: Any) -> Optional[str]:
    """Trimmed string or None when empty."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _ids(values: Any) -> Tuple[str, ...]:
    if not isinstance(values, (list, tuple)):
        return ()
    return tuple(str(v) for v in values if v)


def to_lower_or_none(value: Optional[Any]) -> Optional[str]:
    """Lowercase search companion for a text field."""
    text = _text(value)
    return text.lower() if text else None


# =============================================================================
# CATALOG OBJECTS
# =============================================================================

@dataclass(frozen=True)
class Money:
    amount: Optional[int]  # minor units (cents)
    currency: Optional[str]

    @classmethod
    def from_api(cls, payload: Any) -> Optional["Money"]:
        if not isinstance(payload, Mapping):
            return None
        amount = payload.get("amount")
        try:
            amount = int(amount) if amount is not None else None
        except (TypeError, ValueError):
            amount = None
        return cls(amount=amount, currency=_text(payload.get("currency")))


@dataclass(frozen=True)
class CatalogItem:
    TYPE: ClassVar[str] = "ITEM"

    id: str
    name: Optional[str] = None
    category_id: Optional[str] = None
    category_ids: Tuple[str, ...] = ()
    tax_ids: Tuple[str, ...] = ()
    image_ids: Tuple[str, ...] = ()

    @classmethod
    def from_api(cls, object_id: str, payload: Mapping[str, Any]) -> "CatalogItem":
        data = payload.get("item_data") or {}
        categories = data.get("categories") or []
        return cls(
            id=object_id,
            name=_text(data.get("name")),
            category_id=_text(data.get("category_id")),
            category_ids=tuple(
                str(c["id"]) for c in categories if isinstance(c, Mapping) and c.get("id")
            ),
            tax_ids=_ids(data.get("tax_ids")),
            image_ids=_ids(data.get("image_ids")),
        )


@dataclass(frozen=True)
class CatalogVariation:
    TYPE: ClassVar[str] = "ITEM_VARIATION"

    id: str
    item_id: Optional[str] = None
    name: Optional[str] = None
    sku: Optional[str] = None
    upc: Optional[str] = None
    price_money: Optional[Money] = None

    @classmethod
    def from_api(cls, object_id: str, payload: Mapping[str, Any]) -> "CatalogVariation":
        data = payload.get("item_variation_data") or {}
        return cls(
            id=object_id,
            item_id=_text(data.get("item_id")),
            name=_text(data.get("name")),
            sku=_text(data.get("sku")),
            upc=_text(data.get("upc")),
            price_money=Money.from_api(data.get("price_money")),
        )


@dataclass(frozen=True)
class CatalogCategory:
    TYPE: ClassVar[str] = "CATEGORY"

    id: str
    name: Optional[str] = None

    @classmethod
    def from_api(cls, object_id: str, payload: Mapping[str, Any]) -> "CatalogCategory":
        data = payload.get("category_data") or {}
        return cls(id=object_id, name=_text(data.get("name")))


@dataclass(frozen=True)
class CatalogTax:
    TYPE: ClassVar[str] = "TAX"

    id: str
    name: Optional[str] = None
    percentage: Optional[str] = None

    @classmethod
    def from_api(cls, object_id: str, payload: Mapping[str, Any]) -> "CatalogTax":
        data = payload.get("tax_data") or {}
        return cls(
            id=object_id,
            name=_text(data.get("name")),
            percentage=_text(data.get("percentage")),
        )


@dataclass(frozen=True)
class CatalogImage:
    TYPE: ClassVar[str] = "IMAGE"

    id: str
    url: Optional[str] = None

    @classmethod
    def from_api(cls, object_id: str, payload: Mapping[str, Any]) -> "CatalogImage":
        data = payload.get("image_data") or {}
        return cls(id=object_id, url=_text(data.get("url")))


CatalogObject = Union[CatalogItem, CatalogVariation, CatalogCategory, CatalogTax, CatalogImage]

_CATALOG_TYPES = {
    cls.TYPE: cls
    for cls in (CatalogItem, CatalogVariation, CatalogCategory, CatalogTax, CatalogImage)
}


def parse_catalog_object(payload: Any) -> CatalogObject:
    """Turn one raw catalog object into its typed variant."""
    if not isinstance(payload, Mapping):
        raise DataShapeError(f"catalog object is not a mapping: {type(payload).__name__}")
    object_id = _text(payload.get("id"))
    if not object_id:
        raise DataShapeError("catalog object without id")
    object_type = payload.get("type")
    variant = _CATALOG_TYPES.get(object_type)
    if variant is None:
        raise DataShapeError(f"unsupported catalog object type {object_type!r} ({object_id})")
    return variant.from_api(object_id, payload)


@dataclass(frozen=True)
class CatalogIndex:
    """Read-only id -> object maps for one merchant's catalog."""
    items: Mapping[str, CatalogItem] = field(default_factory=dict)
    variations: Mapping[str, CatalogVariation] = field(default_factory=dict)
    categories: Mapping[str, CatalogCategory] = field(default_factory=dict)
    taxes: Mapping[str, CatalogTax] = field(default_factory=dict)
    images: Mapping[str, CatalogImage] = field(default_factory=dict)

    def __post_init__(self):
        for name in ("items", "variations", "categories", "taxes", "images"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    def sizes(self) -> Dict[str, int]:
        return {
            "items": len(self.items),
            "variations": len(self.variations),
            "categories": len(self.categories),
            "taxes": len(self.taxes),
            "images": len(self.images),
        }


# =============================================================================
# LOCATIONS, COUNTS, MERCHANTS
# =============================================================================

@dataclass(frozen=True)
class Location:
    id: str
    name: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Any) -> "Location":
        if not isinstance(payload, Mapping) or not _text(payload.get("id")):
            raise DataShapeError("location without id")
        return cls(id=_text(payload.get("id")), name=_text(payload.get("name")))


@dataclass(frozen=True)
class RawCount:
    """One stock observation for a catalog object at a location."""
    catalog_object_id: str
    location_id: Optional[str]
    quantity: Optional[str]
    state: str
    calculated_at: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Any) -> "RawCount":
        if not isinstance(payload, Mapping):
            raise DataShapeError("inventory count is not a mapping")
        catalog_object_id = _text(payload.get("catalog_object_id"))
        state = _text(payload.get("state"))
        if not catalog_object_id or not state:
            raise DataShapeError("inventory count without catalog_object_id or state")
        quantity = payload.get("quantity")
        return cls(
            catalog_object_id=catalog_object_id,
            location_id=_text(payload.get("location_id")),
            quantity=str(quantity) if quantity is not None else None,
            state=state,
            calculated_at=_text(payload.get("calculated_at")),
        )


@dataclass(frozen=True)
class MerchantAccount:
    id: str
    business_name: Optional[str] = None
    access_token: Optional[str] = field(default=None, repr=False)
    env: str = "production"

    @property
    def display_name(self) -> str:
        return self.business_name or self.id


# =============================================================================
# PERSISTED INVENTORY DOCUMENT
# =============================================================================

class InventoryDocumentDict(TypedDict, total=False):
    """Column payload written to the inventory collections."""
    merchant_id: str
    merchant_name: Optional[str]
    merchant_name_lc: Optional[str]
    location_id: Optional[str]
    location_name: Optional[str]
    location_name_lc: Optional[str]
    catalog_object_id: Optional[str]
    item_id: Optional[str]
    variation_id: Optional[str]
    item_name: str
    item_name_lc: Optional[str]
    variation_name: Optional[str]
    sku: Optional[str]
    sku_lc: Optional[str]
    gtin: Optional[str]
    category_id: Optional[str]
    category_name: Optional[str]
    category_name_lc: Optional[str]
    tax_ids: List[str]
    tax_names: List[str]
    tax_percentages: List[str]
    price: Optional[Decimal]
    currency: Optional[str]
    image_ids: List[str]
    image_urls: List[str]
    qty: float
    state: str
    calculated_at: Optional[str]
    updated_at: datetime
    synthetic: bool
    synthetic_reason: Optional[str]


@dataclass
class InventoryRecord:
    """Denormalized inventory row.

    `synthetic` is None for real records so that merge writes never touch the
    placeholder flags on an existing document.
    """
    merchant_id: str
    merchant_name: Optional[str]
    location_id: Optional[str]
    location_name: Optional[str]
    catalog_object_id: Optional[str]
    item_id: Optional[str]
    variation_id: Optional[str]
    item_name: str
    variation_name: Optional[str]
    sku: Optional[str]
    gtin: Optional[str]
    category_id: Optional[str]
    category_name: Optional[str]
    tax_ids: List[str]
    tax_names: List[str]
    tax_percentages: List[str]
    price: Optional[Decimal]
    currency: Optional[str]
    qty: float
    state: str
    calculated_at: Optional[str]
    updated_at: datetime
    image_ids: List[str] = field(default_factory=list)
    image_urls: List[str] = field(default_factory=list)
    synthetic: Optional[bool] = None
    synthetic_reason: Optional[str] = None

    def to_document(self) -> InventoryDocumentDict:
        doc: InventoryDocumentDict = {
            "merchant_id": self.merchant_id,
            "merchant_name": self.merchant_name,
            "merchant_name_lc": to_lower_or_none(self.merchant_name),
            "location_id": self.location_id,
            "location_name": self.location_name,
            "location_name_lc": to_lower_or_none(self.location_name),
            "catalog_object_id": self.catalog_object_id,
            "item_id": self.item_id,
            "variation_id": self.variation_id,
            "item_name": self.item_name,
            "item_name_lc": to_lower_or_none(self.item_name),
            "variation_name": self.variation_name,
            "sku": self.sku,
            "sku_lc": to_lower_or_none(self.sku),
            "gtin": self.gtin,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_name_lc": to_lower_or_none(self.category_name),
            "tax_ids": list(self.tax_ids),
            "tax_names": list(self.tax_names),
            "tax_percentages": list(self.tax_percentages),
            "price": self.price,
            "currency": self.currency,
            "image_ids": list(self.image_ids),
            "image_urls": list(self.image_urls),
            "qty": self.qty,
            "state": self.state,
            "calculated_at": self.calculated_at,
            "updated_at": self.updated_at,
        }
        if self.synthetic is not None:
            doc["synthetic"] = self.synthetic
            doc["synthetic_reason"] = self.synthetic_reason
        return doc
