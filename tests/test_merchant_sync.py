import asyncio
from datetime import datetime, timezone

import pytest

from schemas import MerchantAccount
from services.errors import FatalDriverError, SquareAuthError
from services.merchant_sync import MerchantSyncOrchestrator
from services.storage import INVENTORY, MERCHANT_INVENTORY
from square_fakes import FakeSquareClient, category, count, item, variation

NOW = datetime(2024, 5, 2, 8, 30, tzinfo=timezone.utc)


def _scenario_a_client():
    return FakeSquareClient(
        catalog_pages=[[
            item("I1", name="Oat Milk", category_id="C1"),
            variation("V1", item_id="I1", upc="0123456789012", amount=399),
            category("C1", "Dairy Alternatives"),
        ]],
        locations=[{"id": "L1", "name": "Main Street"}, {"id": "L2", "name": "Harbor"}],
        count_pages={"L1": [[count("V1", "L1", quantity="4")]], "L2": [[]]},
    )


def test_single_count_is_written_to_both_collections(memory_store):
    client = _scenario_a_client()

    async def scenario():
        async with memory_store() as store:
            await store.upsert_merchant(MerchantAccount(id="M1", business_name="Corner Shop", access_token="tok"))
            orchestrator = MerchantSyncOrchestrator(store, client_factory=lambda m: client, clock=lambda: NOW)
            results = await orchestrator.sync_all()
            doc_id = "M1_L1_V1_IN_STOCK"
            return (
                results,
                await store.get_document(store.inventory_ref(doc_id)),
                await store.get_document(store.merchant_inventory_ref("M1", doc_id)),
                await store.count_documents(INVENTORY),
                await store.count_documents(MERCHANT_INVENTORY),
            )

    results, global_doc, merchant_doc, n_global, n_merchant = asyncio.run(scenario())

    (result,) = results
    assert result.ok
    assert result.locations == 2
    assert result.counts == 1
    assert result.documents == 1
    assert (n_global, n_merchant) == (1, 1)
    for doc in (global_doc, merchant_doc):
        assert doc["item_name"] == "Oat Milk"
        assert doc["category_name"] == "Dairy Alternatives"
        assert doc["gtin"] == "0123456789012"
        assert doc["qty"] == 4.0
        assert doc["location_name"] == "Main Street"
        assert doc["merchant_name"] == "Corner Shop"
    assert client.closed
    # The catalog is fully indexed before any counts are requested.
    first_count_call = next(i for i, call in enumerate(client.calls) if call[0] == "batch_retrieve_inventory_counts")
    assert all(call[0] != "list_catalog" for call in client.calls[first_count_call:])


def test_resync_is_idempotent(memory_store):
    async def scenario():
        async with memory_store() as store:
            await store.upsert_merchant(MerchantAccount(id="M1", business_name="Corner Shop", access_token="tok"))
            orchestrator = MerchantSyncOrchestrator(
                store, client_factory=lambda m: _scenario_a_client(), clock=lambda: NOW
            )
            await orchestrator.sync_all()
            first = await store.get_document(store.inventory_ref("M1_L1_V1_IN_STOCK"))
            await orchestrator.sync_all()
            second = await store.get_document(store.inventory_ref("M1_L1_V1_IN_STOCK"))
            return first, second, await store.count_documents(INVENTORY)

    first, second, total = asyncio.run(scenario())
    assert first == second
    assert total == 1


def test_failing_merchant_does_not_stop_the_others(memory_store):
    clients = {
        "M1": FakeSquareClient(fail_with=SquareAuthError("rejected", status_code=401)),
        "M2": _scenario_a_client(),
    }

    async def scenario():
        async with memory_store() as store:
            await store.upsert_merchant(MerchantAccount(id="M1", business_name="Broken", access_token="bad"))
            await store.upsert_merchant(MerchantAccount(id="M2", business_name="Works", access_token="tok"))
            orchestrator = MerchantSyncOrchestrator(store, client_factory=lambda m: clients[m.id], clock=lambda: NOW)
            results = await orchestrator.sync_all()
            return results, await store.count_documents(MERCHANT_INVENTORY, merchant_id="M2")

    results, m2_docs = asyncio.run(scenario())

    assert [r.merchant_id for r in results] == ["M1", "M2"]
    assert results[0].ok is False
    assert "SquareAuthError" in results[0].error
    assert results[1].ok is True
    assert m2_docs == 1


def test_missing_token_is_isolated_to_its_merchant(memory_store):
    async def scenario():
        async with memory_store() as store:
            await store.upsert_merchant(MerchantAccount(id="M1", business_name="No Token"))
            orchestrator = MerchantSyncOrchestrator(store)
            return await orchestrator.sync_all()

    (result,) = asyncio.run(scenario())
    assert result.ok is False
    assert "SquareAuthError" in result.error


def test_only_targeted_merchant_is_synced(memory_store):
    seen = []

    def factory(merchant):
        seen.append(merchant.id)
        return _scenario_a_client()

    async def scenario():
        async with memory_store() as store:
            await store.upsert_merchant(MerchantAccount(id="M1", access_token="tok"))
            await store.upsert_merchant(MerchantAccount(id="M2", access_token="tok"))
            return await MerchantSyncOrchestrator(store, client_factory=factory).sync_all(" M2 ")

    results = asyncio.run(scenario())
    assert seen == ["M2"]
    assert [r.merchant_id for r in results] == ["M2"]


def test_unknown_target_merchant_is_fatal(memory_store):
    async def scenario():
        async with memory_store() as store:
            await MerchantSyncOrchestrator(store).sync_all("NOPE")

    with pytest.raises(FatalDriverError):
        asyncio.run(scenario())


def test_merchant_listing_failure_is_fatal():
    class BrokenStore:
        async def list_merchants(self):
            raise RuntimeError("store unavailable")

    with pytest.raises(FatalDriverError):
        asyncio.run(MerchantSyncOrchestrator(BrokenStore()).sync_all())


def test_truncated_locations_are_reported(memory_store):
    client = FakeSquareClient(locations=[{"id": "L1", "name": "Main"}], endless_counts=True)

    async def scenario():
        async with memory_store() as store:
            await store.upsert_merchant(MerchantAccount(id="M1", access_token="tok"))
            orchestrator = MerchantSyncOrchestrator(
                store, client_factory=lambda m: client, max_inventory_pages=3, clock=lambda: NOW
            )
            return await orchestrator.sync_all()

    (result,) = asyncio.run(scenario())
    assert result.ok
    assert result.truncated_locations == ["L1"]
    assert result.counts == 3
