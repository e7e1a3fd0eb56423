import asyncio

import pytest

from schemas import CatalogItem, CatalogVariation, parse_catalog_object
from services.catalog_index import CatalogIndexBuilder
from services.errors import DataShapeError
from square_fakes import FakeSquareClient, category, image, item, tax, variation


def test_builds_maps_across_all_pages():
    client = FakeSquareClient(catalog_pages=[
        [item("I1", name="Tea"), variation("V1", item_id="I1")],
        [category("C1", "Drinks"), tax("T1", "Sales", "5")],
        [image("IMG1", "https://img.example/tea.png"), {"type": "DISCOUNT", "id": "D1"}],
    ])

    index = asyncio.run(CatalogIndexBuilder(client).build())

    assert client.count_calls("list_catalog") == 3
    assert index.sizes() == {"items": 1, "variations": 1, "categories": 1, "taxes": 1, "images": 1}
    assert isinstance(index.items["I1"], CatalogItem)
    assert isinstance(index.variations["V1"], CatalogVariation)
    assert index.variations["V1"].item_id == "I1"


def test_empty_catalog_builds_empty_index():
    client = FakeSquareClient()
    index = asyncio.run(CatalogIndexBuilder(client).build())
    assert index.sizes() == {"items": 0, "variations": 0, "categories": 0, "taxes": 0, "images": 0}


def test_index_maps_are_read_only():
    client = FakeSquareClient(catalog_pages=[[item("I1", name="Tea")]])
    index = asyncio.run(CatalogIndexBuilder(client).build())
    with pytest.raises(TypeError):
        index.items["I2"] = index.items["I1"]


def test_listing_errors_propagate():
    client = FakeSquareClient(fail_with=RuntimeError("boom"))
    with pytest.raises(RuntimeError):
        asyncio.run(CatalogIndexBuilder(client).build())


def test_parse_catalog_object_rejects_unusable_payloads():
    with pytest.raises(DataShapeError):
        parse_catalog_object({"type": "ITEM"})
    with pytest.raises(DataShapeError):
        parse_catalog_object({"type": "MODIFIER", "id": "X"})
    with pytest.raises(DataShapeError):
        parse_catalog_object("ITEM")
