import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from schemas import InventoryRecord
from services.dual_write import DualWriteCommitter
from services.storage import INVENTORY, MERCHANT_INVENTORY, DocumentRef

NOW = datetime(2024, 5, 2, 8, 30, tzinfo=timezone.utc)


def _record(merchant_id="M1", gtin="111", qty=3.0) -> InventoryRecord:
    return InventoryRecord(
        merchant_id=merchant_id,
        merchant_name="Corner Shop",
        location_id="L1",
        location_name="Main Street",
        catalog_object_id="V1",
        item_id="I1",
        variation_id="V1",
        item_name="Tea",
        variation_name="Regular",
        sku="TEA-1",
        gtin=gtin,
        category_id="C1",
        category_name="Drinks",
        tax_ids=["T1"],
        tax_names=["Sales"],
        tax_percentages=["5"],
        price=Decimal("2.50"),
        currency="USD",
        qty=qty,
        state="IN_STOCK",
        calculated_at="2024-05-01T10:00:00Z",
        updated_at=NOW,
    )


class RecordingBatch:
    def __init__(self, store):
        self.store = store
        self.writes = []

    def __len__(self):
        return len(self.writes)

    def set(self, ref, data, merge=True):
        self.writes.append((ref, data, merge))
        return self

    async def commit(self):
        self.store.committed.append(list(self.writes))
        return len(self.writes)


class RecordingStore:
    """Captures batches instead of writing them."""

    def __init__(self):
        self.committed = []

    def inventory_ref(self, doc_id):
        return DocumentRef(INVENTORY, doc_id)

    def merchant_inventory_ref(self, merchant_id, doc_id):
        return DocumentRef(MERCHANT_INVENTORY, doc_id, merchant_id=merchant_id)

    def batch(self):
        return RecordingBatch(self)


async def _stage_many(committer, n):
    for i in range(n):
        await committer.stage(f"M1_L1_V{i}_IN_STOCK", _record())
    await committer.flush()


def test_commits_whenever_batch_reaches_limit():
    store = RecordingStore()
    committer = DualWriteCommitter(store, batch_limit=400)

    asyncio.run(_stage_many(committer, 450))

    assert [len(batch) for batch in store.committed] == [400, 400, 100]
    assert committer.commits == 3
    assert committer.write_calls == 900
    assert committer.documents == 450
    assert committer.pending == 0


def test_every_record_goes_to_both_collections_under_one_id():
    store = RecordingStore()
    committer = DualWriteCommitter(store, batch_limit=10)

    asyncio.run(_stage_many(committer, 1))

    (batch,) = store.committed
    (global_ref, global_doc, global_merge), (merchant_ref, merchant_doc, merchant_merge) = batch
    assert global_ref == DocumentRef(INVENTORY, "M1_L1_V0_IN_STOCK")
    assert merchant_ref == DocumentRef(MERCHANT_INVENTORY, "M1_L1_V0_IN_STOCK", merchant_id="M1")
    assert global_doc == merchant_doc
    assert global_merge and merchant_merge


def test_flush_without_pending_writes_does_nothing():
    store = RecordingStore()
    committer = DualWriteCommitter(store)
    assert asyncio.run(committer.flush()) is None
    assert store.committed == []
    assert committer.commits == 0


def test_context_manager_flushes_on_exit():
    store = RecordingStore()

    async def scenario():
        async with DualWriteCommitter(store) as committer:
            await committer.stage("doc", _record())
        return committer

    committer = asyncio.run(scenario())
    assert committer.commits == 1
    assert len(store.committed[0]) == 2


def test_batch_limit_must_fit_a_record():
    with pytest.raises(ValueError):
        DualWriteCommitter(RecordingStore(), batch_limit=1)


def test_rewrites_converge_and_merge_preserves_other_fields(memory_store):
    async def scenario():
        async with memory_store() as store:
            committer = DualWriteCommitter(store)
            await committer.stage("M1_L1_V1_IN_STOCK", _record(qty=3.0))
            await committer.flush()
            await committer.stage("M1_L1_V1_IN_STOCK", _record(qty=3.0))
            await committer.flush()

            await store.batch().set(
                store.merchant_inventory_ref("M1", "M1_L1_V1_IN_STOCK"), {"qty": 9.0}
            ).commit()

            global_doc = await store.get_document(store.inventory_ref("M1_L1_V1_IN_STOCK"))
            merchant_doc = await store.get_document(store.merchant_inventory_ref("M1", "M1_L1_V1_IN_STOCK"))
            totals = (
                await store.count_documents(INVENTORY),
                await store.count_documents(MERCHANT_INVENTORY, merchant_id="M1"),
            )
            return global_doc, merchant_doc, totals

    global_doc, merchant_doc, totals = asyncio.run(scenario())

    assert totals == (1, 1)
    assert global_doc["qty"] == 3.0
    assert merchant_doc["qty"] == 9.0
    assert merchant_doc["item_name"] == "Tea"
    assert merchant_doc["category_name"] == "Drinks"
    assert merchant_doc["tax_names"] == ["Sales"]
    assert merchant_doc["price"] == Decimal("2.50")
    assert merchant_doc["item_name_lc"] == "tea"
