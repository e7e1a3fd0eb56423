"""
Batched merge-upserts into the global and per-merchant inventory collections.
"""
from typing import Optional
import logging

from schemas import InventoryRecord
from settings import WRITE_BATCH_LIMIT

logger = logging.getLogger(__name__)


class DualWriteCommitter:
    """Queues every record twice (global + merchant subcollection, same id).

    A batch is committed as soon as it holds `batch_limit` queued writes;
    `flush()` commits whatever is left. Counters are cumulative for the
    lifetime of the committer.
    """

    def __init__(self, store, batch_limit: int = WRITE_BATCH_LIMIT):
        if batch_limit < 2:
            raise ValueError("batch_limit must allow both writes of a record")
        self.store = store
        self.batch_limit = batch_limit
        self._batch = None
        self.write_calls = 0
        self.commits = 0
        self.documents = 0

    @property
    def pending(self) -> int:
        return len(self._batch) if self._batch is not None else 0

    async def __aenter__(self) -> "DualWriteCommitter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.flush()

    async def stage(self, doc_id: str, record: InventoryRecord) -> None:
        document = record.to_document()
        for ref in (
            self.store.inventory_ref(doc_id),
            self.store.merchant_inventory_ref(record.merchant_id, doc_id),
        ):
            if self._batch is None:
                self._batch = self.store.batch()
            self._batch.set(ref, document, merge=True)
            self.write_calls += 1
            if len(self._batch) >= self.batch_limit:
                await self._commit()
        self.documents += 1

    async def flush(self) -> Optional[int]:
        if not self.pending:
            return None
        return await self._commit()

    async def _commit(self) -> int:
        batch, self._batch = self._batch, None
        written = await batch.commit()
        self.commits += 1
        logger.info("Committed write batch #%d (%d writes)", self.commits, written)
        return written
