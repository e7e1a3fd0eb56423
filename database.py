# --- models and engine for the inventory document collections ---

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import (
    JSON, String, Text, Float, Numeric, DateTime, Boolean, func, Index
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy import text
from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging

from settings import DATABASE_URL as _RAW_DATABASE_URL, SQLITE_PATH

logger = logging.getLogger(__name__)

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests and local runs)
JsonType = JSON().with_variant(JSONB(), "postgresql")


def normalize_database_url(url: str) -> str:
    """Force the async drivers (asyncpg / aiosqlite) onto plain URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and "+aiosqlite" not in url:
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------
DATABASE_URL = normalize_database_url(_RAW_DATABASE_URL) if _RAW_DATABASE_URL else ""

if DATABASE_URL.startswith("postgresql+asyncpg://"):
    engine = create_async_engine(
        DATABASE_URL,
        pool_size=5,
        max_overflow=5,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_timeout=20,
        connect_args={
            "server_settings": {"application_name": "square_inventory_sync"},
            "command_timeout": 60,
            "timeout": 30,
        },
    )
elif DATABASE_URL:
    engine = create_async_engine(DATABASE_URL)
else:
    DATABASE_URL = f"sqlite+aiosqlite:///{SQLITE_PATH}"
    engine = create_async_engine(DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _redact_db_url(url: str) -> str:
    if "@" in url and "://" in url:
        head, tail = url.split("://", 1)
        creds, hostpart = tail.split("@", 1)
        user = creds.split(":", 1)[0]
        return f"{head}://{user}:******@{hostpart}"
    return url


logger.info("Creating SQL engine for %s", _redact_db_url(DATABASE_URL))


async def probe_db_connection(bind=None) -> None:
    async with (bind or engine).begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("DB connectivity probe: OK")


# -------------------------------------------------------------------
# Base
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass


# -------------------------------------------------------------------
# MODELS
# -------------------------------------------------------------------

class Merchant(Base):
    __tablename__ = "merchants"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    business_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    env: Mapped[str] = mapped_column(String, nullable=False, default="production")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)


class InventoryColumns:
    """Denormalized inventory document body shared by both inventory collections."""

    merchant_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    merchant_name_lc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    location_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location_name_lc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    catalog_object_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    item_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    variation_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    item_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    item_name_lc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    variation_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    sku: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sku_lc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    gtin: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)

    category_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    category_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category_name_lc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    tax_ids: Mapped[Optional[list]] = mapped_column(JsonType, nullable=True)
    tax_names: Mapped[Optional[list]] = mapped_column(JsonType, nullable=True)
    tax_percentages: Mapped[Optional[list]] = mapped_column(JsonType, nullable=True)

    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    image_ids: Mapped[Optional[list]] = mapped_column(JsonType, nullable=True)
    image_urls: Mapped[Optional[list]] = mapped_column(JsonType, nullable=True)

    qty: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    calculated_at: Mapped[Optional[str]] = mapped_column(String, nullable=True)  # verbatim from Square
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    synthetic: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    synthetic_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class InventoryDocument(InventoryColumns, Base):
    """Global `inventory` collection (every merchant)."""
    __tablename__ = "inventory"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    merchant_id: Mapped[str] = mapped_column(String, index=True, nullable=False)


class MerchantInventoryDocument(InventoryColumns, Base):
    """Per-merchant `merchants/{merchant_id}/inventory` subcollection."""
    __tablename__ = "merchant_inventory"

    merchant_id: Mapped[str] = mapped_column(String, primary_key=True)
    id: Mapped[str] = mapped_column(String, primary_key=True)


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    payload: Mapped[dict] = mapped_column(JsonType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class MetaDocument(Base):
    __tablename__ = "meta"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    data: Mapped[dict] = mapped_column(JsonType, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# -------------------------------------------------------------------
# Indexes
# -------------------------------------------------------------------
Index('ix_inventory_merchant_gtin', InventoryDocument.merchant_id, InventoryDocument.gtin)
Index('ix_reports_type_created', Report.type, Report.created_at)

# -------------------------------------------------------------------
# Init helpers
# -------------------------------------------------------------------
async def init_db(bind=None):
    """Ensure tables exist."""
    target = bind or engine
    await probe_db_connection(target)
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB init complete (tables ensured).")
