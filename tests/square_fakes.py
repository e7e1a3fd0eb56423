"""In-process stand-ins for the Square API used across the test suite."""
from typing import Any, Dict, List, Optional, Sequence

from services.square_client import Page


def item(object_id, name=None, category_id=None, categories=(), tax_ids=(), image_ids=()):
    data: Dict[str, Any] = {"tax_ids": list(tax_ids), "image_ids": list(image_ids)}
    if name is not None:
        data["name"] = name
    if category_id is not None:
        data["category_id"] = category_id
    if categories:
        data["categories"] = [{"id": c} for c in categories]
    return {"type": "ITEM", "id": object_id, "item_data": data}


def variation(object_id, item_id=None, name=None, sku=None, upc=None, amount=None, currency="USD"):
    data: Dict[str, Any] = {"item_id": item_id, "name": name, "sku": sku, "upc": upc}
    if amount is not None:
        data["price_money"] = {"amount": amount, "currency": currency}
    return {"type": "ITEM_VARIATION", "id": object_id, "item_variation_data": data}


def category(object_id, name):
    return {"type": "CATEGORY", "id": object_id, "category_data": {"name": name}}


def tax(object_id, name, percentage):
    return {"type": "TAX", "id": object_id, "tax_data": {"name": name, "percentage": percentage}}


def image(object_id, url):
    return {"type": "IMAGE", "id": object_id, "image_data": {"url": url}}


def count(catalog_object_id, location_id, quantity="1", state="IN_STOCK", calculated_at="2024-05-01T10:00:00Z"):
    return {
        "catalog_object_id": catalog_object_id,
        "catalog_object_type": "ITEM_VARIATION",
        "location_id": location_id,
        "quantity": quantity,
        "state": state,
        "calculated_at": calculated_at,
    }


def _paged(pages: Sequence[List[Any]], cursor: Optional[str], prefix: str) -> Page:
    index = int(cursor.split(":", 1)[1]) if cursor else 0
    items = list(pages[index]) if index < len(pages) else []
    next_cursor = f"{prefix}:{index + 1}" if index + 1 < len(pages) else None
    return Page(items=items, cursor=next_cursor)


class FakeSquareClient:
    """Serves canned catalog, location and count pages and records every call."""

    def __init__(
        self,
        catalog_pages: Sequence[List[Dict[str, Any]]] = ([],),
        locations: Sequence[Dict[str, Any]] = (),
        count_pages: Optional[Dict[str, Sequence[List[Dict[str, Any]]]]] = None,
        endless_counts: bool = False,
        fail_with: Optional[Exception] = None,
    ):
        self.catalog_pages = list(catalog_pages)
        self.locations = list(locations)
        self.count_pages = count_pages or {}
        self.endless_counts = endless_counts
        self.fail_with = fail_with
        self.calls: List[tuple] = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

    async def list_catalog(self, cursor=None, types=()):
        self.calls.append(("list_catalog", cursor))
        if self.fail_with is not None:
            raise self.fail_with
        return _paged(self.catalog_pages, cursor, "catalog")

    async def list_locations(self):
        self.calls.append(("list_locations", None))
        return list(self.locations)

    async def batch_retrieve_inventory_counts(self, location_ids, cursor=None):
        location_id = location_ids[0]
        self.calls.append(("batch_retrieve_inventory_counts", location_id, cursor))
        if self.endless_counts:
            page_no = int(cursor.split(":", 1)[1]) if cursor else 0
            return Page(items=[count(f"VAR_{page_no}", location_id)], cursor=f"counts:{page_no + 1}")
        return _paged(self.count_pages.get(location_id, [[]]), cursor, "counts")

    def count_calls(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)
