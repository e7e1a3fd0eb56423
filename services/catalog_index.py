"""
Catalog index construction: page the whole Square catalog into typed lookup maps.
"""
from typing import Dict
import logging

from schemas import (
    CatalogCategory, CatalogImage, CatalogIndex, CatalogItem, CatalogTax,
    CatalogVariation, parse_catalog_object
)
from services.errors import DataShapeError
from settings import CATALOG_OBJECT_TYPES

logger = logging.getLogger(__name__)


class CatalogIndexBuilder:
    """Builds a CatalogIndex for one merchant.

    There is no page cap here; the catalog listing always ends with an empty
    cursor. I/O errors are not caught.
    """

    def __init__(self, client, types=CATALOG_OBJECT_TYPES):
        self.client = client
        self.types = tuple(types)

    async def build(self) -> CatalogIndex:
        buckets: Dict[type, Dict[str, object]] = {
            CatalogItem: {},
            CatalogVariation: {},
            CatalogCategory: {},
            CatalogTax: {},
            CatalogImage: {},
        }
        skipped = 0
        cursor = None
        page = 0

        while True:
            result = await self.client.list_catalog(cursor, self.types)
            logger.info("Catalog page %d, objects: %d", page, len(result.items))
            for payload in result.items:
                try:
                    obj = parse_catalog_object(payload)
                except DataShapeError as exc:
                    skipped += 1
                    logger.debug("Skipping catalog object: %s", exc)
                    continue
                buckets[type(obj)][obj.id] = obj

            cursor = result.cursor
            page += 1
            if not cursor:
                break

        index = CatalogIndex(
            items=buckets[CatalogItem],
            variations=buckets[CatalogVariation],
            categories=buckets[CatalogCategory],
            taxes=buckets[CatalogTax],
            images=buckets[CatalogImage],
        )
        sizes = index.sizes()
        logger.info(
            "Catalog maps built: pages=%d items=%d variations=%d categories=%d taxes=%d images=%d skipped=%d",
            page, sizes["items"], sizes["variations"], sizes["categories"],
            sizes["taxes"], sizes["images"], skipped,
        )
        return index
