"""
Storage Service Layer
Document-style access (collections, merge upserts, write batches, key-ordered
paging) over the SQL tables declared in database.py.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging
import uuid

from database import (
    AsyncSessionLocal, Merchant, InventoryDocument, MerchantInventoryDocument,
    Report, MetaDocument
)
from schemas import MerchantAccount
from services.errors import TransientIOError
from settings import SQUARE_ENV, sanitize_merchant_id

logger = logging.getLogger(__name__)

INVENTORY = "inventory"
MERCHANT_INVENTORY = "merchant_inventory"
MERCHANTS = "merchants"
REPORTS = "reports"
META = "meta"

_MODELS = {
    INVENTORY: InventoryDocument,
    MERCHANT_INVENTORY: MerchantInventoryDocument,
    MERCHANTS: Merchant,
    REPORTS: Report,
    META: MetaDocument,
}


@dataclass(frozen=True)
class DocumentRef:
    """Address of one document: collection + id (+ parent merchant for subcollections)."""
    collection: str
    doc_id: str
    merchant_id: Optional[str] = None

    @property
    def path(self) -> str:
        if self.collection == MERCHANT_INVENTORY:
            return f"merchants/{self.merchant_id}/inventory/{self.doc_id}"
        return f"{self.collection}/{self.doc_id}"


class WriteBatch:
    """Queued merge-upserts committed atomically in one transaction."""

    def __init__(self, store: "InventoryStore"):
        self._store = store
        self._writes: List[Tuple[DocumentRef, Dict[str, Any], bool]] = []
        self.committed = False

    def __len__(self) -> int:
        return len(self._writes)

    def set(self, ref: DocumentRef, data: Dict[str, Any], merge: bool = True) -> "WriteBatch":
        if self.committed:
            raise RuntimeError("write batch already committed")
        self._writes.append((ref, dict(data), merge))
        return self

    async def commit(self) -> int:
        if self.committed:
            raise RuntimeError("write batch already committed")
        self.committed = True
        if not self._writes:
            return 0
        try:
            async with self._store.get_session() as session:
                async with session.begin():
                    for ref, data, merge in self._writes:
                        await session.execute(self._store._upsert_statement(session, ref, data, merge))
        except SQLAlchemyError as exc:
            raise TransientIOError(f"batch commit of {len(self._writes)} writes failed: {exc}") from exc
        return len(self._writes)


class InventoryStore:
    """Storage service providing document operations for the sync pipelines"""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self._session_factory = session_factory or AsyncSessionLocal

    def get_session(self) -> AsyncSession:
        """Get database session context manager"""
        return self._session_factory()

    # ---------- refs & batches ----------

    @staticmethod
    def inventory_ref(doc_id: str) -> DocumentRef:
        return DocumentRef(INVENTORY, doc_id)

    @staticmethod
    def merchant_inventory_ref(merchant_id: str, doc_id: str) -> DocumentRef:
        return DocumentRef(MERCHANT_INVENTORY, doc_id, merchant_id=merchant_id)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def _table_column_names(self, table):
        return {c.name for c in table.columns}

    def _filter_columns(self, table, row: Dict[str, Any]) -> Dict[str, Any]:
        """Drop keys that don't exist on the SQLAlchemy table (prevents invalid kw errors)."""
        allowed = self._table_column_names(table)
        return {k: v for k, v in row.items() if k in allowed}

    def _upsert_statement(self, session: AsyncSession, ref: DocumentRef, data: Dict[str, Any], merge: bool):
        model = _MODELS[ref.collection]
        table = model.__table__
        row = self._filter_columns(table, data)
        row["id"] = ref.doc_id
        if ref.collection == MERCHANT_INVENTORY:
            row["merchant_id"] = ref.merchant_id

        pks = [c.name for c in table.primary_key.columns]
        if not merge:
            # Full overwrite: columns missing from the payload are reset.
            for column in table.columns:
                if column.name not in row and column.default is None:
                    row[column.name] = None

        insert = pg_insert if session.get_bind().dialect.name == "postgresql" else sqlite_insert
        stmt = insert(table).values(**row)
        update_cols = {k: getattr(stmt.excluded, k) for k in row if k not in pks}
        if not update_cols:
            return stmt.on_conflict_do_nothing(index_elements=pks)
        return stmt.on_conflict_do_update(index_elements=pks, set_=update_cols)

    # ---------- document reads ----------

    async def get_document(self, ref: DocumentRef) -> Optional[Dict[str, Any]]:
        model = _MODELS[ref.collection]
        query = select(model).where(model.id == ref.doc_id)
        if ref.collection == MERCHANT_INVENTORY:
            query = query.where(model.merchant_id == ref.merchant_id)
        async with self.get_session() as session:
            result = await session.execute(query)
            row = result.scalar_one_or_none()
        return self._row_to_dict(row) if row is not None else None

    async def page_merchant_inventory(
        self,
        merchant_id: str,
        *,
        limit: int,
        start_after: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """One key-ordered page of a merchant's inventory subcollection."""
        query = (
            select(MerchantInventoryDocument)
            .where(MerchantInventoryDocument.merchant_id == merchant_id)
            .order_by(MerchantInventoryDocument.id)
            .limit(limit)
        )
        if start_after is not None:
            query = query.where(MerchantInventoryDocument.id > start_after)
        try:
            async with self.get_session() as session:
                result = await session.execute(query)
                rows = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise TransientIOError(f"inventory page read failed for merchant {merchant_id}: {exc}") from exc
        return [self._row_to_dict(row) for row in rows]

    async def count_documents(self, collection: str, merchant_id: Optional[str] = None) -> int:
        model = _MODELS[collection]
        query = select(func.count()).select_from(model)
        if merchant_id is not None:
            query = query.where(model.merchant_id == merchant_id)
        async with self.get_session() as session:
            result = await session.execute(query)
            return result.scalar() or 0

    def _row_to_dict(self, row) -> Dict[str, Any]:
        return {c.name: getattr(row, c.key) for c in row.__table__.columns}

    # ---------- merchants ----------

    def _to_account(self, row: Merchant) -> MerchantAccount:
        return MerchantAccount(
            id=row.id,
            business_name=row.business_name,
            access_token=row.access_token,
            env=(row.env or SQUARE_ENV).lower(),
        )

    async def list_merchants(self) -> List[MerchantAccount]:
        try:
            async with self.get_session() as session:
                result = await session.execute(select(Merchant).order_by(Merchant.id))
                rows = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise TransientIOError(f"listing merchants failed: {exc}") from exc
        return [self._to_account(row) for row in rows]

    async def get_merchant(self, merchant_id: str) -> Optional[MerchantAccount]:
        merchant_id = sanitize_merchant_id(merchant_id)
        if not merchant_id:
            return None
        try:
            async with self.get_session() as session:
                row = await session.get(Merchant, merchant_id)
        except SQLAlchemyError as exc:
            raise TransientIOError(f"loading merchant {merchant_id} failed: {exc}") from exc
        return self._to_account(row) if row is not None else None

    async def upsert_merchant(self, merchant: MerchantAccount) -> None:
        data = {
            "business_name": merchant.business_name,
            "access_token": merchant.access_token,
            "env": merchant.env,
        }
        await self.batch().set(DocumentRef(MERCHANTS, merchant.id), data).commit()
        logger.info("Storage: upserted merchant %s (%s)", merchant.id, merchant.env)

    # ---------- reports & meta ----------

    async def save_report(self, report_type: str, payload: Dict[str, Any], latest_id: Optional[str] = None) -> str:
        """Write a history document and, if given, merge the same payload into a stable latest id."""
        created_at = datetime.now(timezone.utc)
        history_id = str(uuid.uuid4())
        batch = self.batch()
        data = {"type": report_type, "payload": payload, "created_at": created_at}
        batch.set(DocumentRef(REPORTS, history_id), data)
        if latest_id:
            batch.set(DocumentRef(REPORTS, latest_id), data)
        await batch.commit()
        return history_id

    async def update_meta(self, doc_id: str, data: Dict[str, Any]) -> None:
        """Merge keys into a meta document (JSON body merged key by key)."""
        existing = await self.get_document(DocumentRef(META, doc_id))
        merged = dict(existing["data"]) if existing else {}
        merged.update(data)
        await self.batch().set(
            DocumentRef(META, doc_id),
            {"data": merged, "updated_at": datetime.now(timezone.utc)},
        ).commit()
