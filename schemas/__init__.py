"""
Inventory Schemas Package
Provides typed catalog, count and inventory document structures.
"""

from .inventory_schemas import (
    # Catalog variants
    CatalogObject,
    CatalogItem,
    CatalogVariation,
    CatalogCategory,
    CatalogTax,
    CatalogImage,
    CatalogIndex,
    Money,

    # Remote entities
    Location,
    RawCount,
    MerchantAccount,

    # Persisted documents
    InventoryRecord,
    InventoryDocumentDict,

    # Helper functions
    parse_catalog_object,
    to_lower_or_none,
)
