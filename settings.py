"""
Centralized configuration for the inventory sync and coverage jobs.
"""
from __future__ import annotations

import os
from typing import Any, Iterable, List, Optional

from dotenv import load_dotenv

# Real environment always wins over the dotenv file.
load_dotenv(os.getenv("ENV_FILE") or ".env", override=False)

_TRUE_VALUES = ("1", "true", "t", "yes", "y", "on")
_FALSE_VALUES = ("0", "false", "f", "no", "n", "off")


def bool_env(name: str, default: bool = True) -> bool:
    """Read a boolean flag; unrecognized or empty values fall back to default."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return default


def optional_int_env(name: str) -> Optional[int]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def int_env(name: str, default: int) -> int:
    value = optional_int_env(name)
    return default if value is None else value


def sanitize_merchant_id(value: Optional[Any]) -> Optional[str]:
    """Normalize raw merchant ids (strip whitespace). Square ids are case sensitive."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_merchant_ids(*sources: Optional[Any]) -> List[str]:
    """
    Parse comma separated merchant id lists, keeping first-seen order and
    dropping blanks and duplicates. The first non-empty source wins.
    """
    for source in sources:
        if not source:
            continue
        if isinstance(source, str):
            parts: Iterable[Any] = source.split(",")
        else:
            parts = source
        ids: List[str] = []
        for part in parts:
            merchant_id = sanitize_merchant_id(part)
            if merchant_id and merchant_id not in ids:
                ids.append(merchant_id)
        if ids:
            return ids
    return []


# Persistence
DATABASE_URL: str = os.getenv("DATABASE_URL", "")
SQLITE_PATH: str = os.getenv("SQLITE_PATH") or "inventory_sync.db"

# Logging
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Square API
SQUARE_ENV: str = (os.getenv("SQUARE_ENV") or "production").strip().lower()
SQUARE_VERSION: str = os.getenv("SQUARE_VERSION") or "2025-01-23"
SQUARE_TIMEOUT_SECONDS: float = float(os.getenv("SQUARE_TIMEOUT_SECONDS") or 30)
CATALOG_OBJECT_TYPES: tuple[str, ...] = ("ITEM", "ITEM_VARIATION", "CATEGORY", "TAX", "IMAGE")

# Ingestion
MAX_INVENTORY_PAGES: int = 50
WRITE_BATCH_LIMIT: int = 400
MERCHANT_ID: Optional[str] = sanitize_merchant_id(os.getenv("MERCHANT_ID"))

# Coverage reconciliation
DRY_RUN: bool = bool_env("DRY_RUN", True)
GTIN_SAMPLE_LIMIT: Optional[int] = optional_int_env("GTIN_SAMPLE_LIMIT")
READ_PAGE_SIZE: int = min(int_env("READ_PAGE_SIZE", 1000), 5000)
MERCHANT_IDS: List[str] = parse_merchant_ids(os.getenv("MERCHANT_IDS"))
REPORT_SAMPLE_SIZE: int = 200

# Nightly runner steps
RUN_SYNC: bool = bool_env("RUN_SYNC", True)
RUN_COVERAGE: bool = bool_env("RUN_COVERAGE", True)
RUN_META: bool = bool_env("RUN_META", True)
