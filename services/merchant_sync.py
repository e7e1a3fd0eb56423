"""
Merchant Sync Orchestrator
Square catalog + per-location counts -> inventory collections, one merchant at a time.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional
import logging
import time

from schemas import Location, MerchantAccount
from services.catalog_index import CatalogIndexBuilder
from services.dual_write import DualWriteCommitter
from services.errors import DataShapeError, FatalDriverError
from services.inventory_fetcher import LocationInventoryFetcher
from services.record_projector import inventory_document_id, project_count
from services.square_client import create_square_client
from settings import MAX_INVENTORY_PAGES, WRITE_BATCH_LIMIT

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MerchantSyncResult:
    merchant_id: str
    ok: bool = False
    locations: int = 0
    counts: int = 0
    skipped_counts: int = 0
    documents: int = 0
    truncated_locations: List[str] = field(default_factory=list)
    error: Optional[str] = None
    duration_ms: float = 0.0


class MerchantSyncOrchestrator:
    """Runs catalog index -> fetch -> project -> dual write for each merchant.

    Merchants are processed strictly one after another. Any exception inside a
    merchant pass is logged and recorded on its result; the run continues.
    """

    def __init__(
        self,
        store,
        client_factory: Optional[Callable] = None,
        *,
        max_inventory_pages: int = MAX_INVENTORY_PAGES,
        batch_limit: int = WRITE_BATCH_LIMIT,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.client_factory = client_factory or create_square_client
        self.max_inventory_pages = max_inventory_pages
        self.batch_limit = batch_limit
        self.clock = clock

    async def _load_merchants(self, merchant_id: Optional[str]) -> List[MerchantAccount]:
        try:
            if merchant_id:
                merchant = await self.store.get_merchant(merchant_id)
                if merchant is None:
                    raise FatalDriverError(f'Merchant "{merchant_id}" not found')
                return [merchant]
            return await self.store.list_merchants()
        except FatalDriverError:
            raise
        except Exception as exc:
            raise FatalDriverError(f"Unable to list merchants: {exc}") from exc

    async def sync_all(self, merchant_id: Optional[str] = None) -> List[MerchantSyncResult]:
        merchants = await self._load_merchants(merchant_id)
        logger.info("Starting inventory sync for %d merchant(s) (target=%s)", len(merchants), merchant_id or "ALL")

        results: List[MerchantSyncResult] = []
        for merchant in merchants:
            results.append(await self.sync_merchant(merchant))

        failed = [r.merchant_id for r in results if not r.ok]
        logger.info(
            "Finished inventory sync: merchants=%d ok=%d failed=%s",
            len(results), len(results) - len(failed), failed or "none",
        )
        return results

    async def sync_merchant(self, merchant: MerchantAccount) -> MerchantSyncResult:
        result = MerchantSyncResult(merchant_id=merchant.id)
        start = time.time()
        logger.info("Syncing inventory for merchant %s (%s)", merchant.id, merchant.business_name)
        try:
            await self._sync_merchant(merchant, result)
            result.ok = True
        except Exception as exc:
            result.error = f"{type(exc).__name__}: {exc}"
            logger.exception("Failed to sync merchant %s", merchant.id)
        result.duration_ms = (time.time() - start) * 1000
        return result

    async def _sync_merchant(self, merchant: MerchantAccount, result: MerchantSyncResult) -> None:
        async with self.client_factory(merchant) as client:
            index = await CatalogIndexBuilder(client).build()

            raw_locations = await client.list_locations()
            locations = []
            for payload in raw_locations:
                try:
                    locations.append(Location.from_api(payload))
                except DataShapeError as exc:
                    logger.debug("Skipping location for merchant %s: %s", merchant.id, exc)
            result.locations = len(locations)
            logger.info("Found %d locations for merchant %s", len(locations), merchant.id)

            committer = DualWriteCommitter(self.store, batch_limit=self.batch_limit)
            for location in locations:
                logger.info("Syncing inventory for location %s (%s)", location.id, location.name)
                fetcher = LocationInventoryFetcher(client, max_pages=self.max_inventory_pages)
                counts = await fetcher.fetch(location.id)
                if fetcher.truncated:
                    result.truncated_locations.append(location.id)

                now = self.clock()
                for count in counts:
                    try:
                        record = project_count(count, index, merchant, location, now)
                    except DataShapeError as exc:
                        result.skipped_counts += 1
                        logger.debug("Skipping count: %s", exc)
                        continue
                    doc_id = inventory_document_id(merchant.id, location.id, count.catalog_object_id, count.state)
                    await committer.stage(doc_id, record)
                    result.counts += 1
                await committer.flush()
                logger.info("Finished location %s for merchant %s", location.id, merchant.id)

            result.documents = committer.documents
        logger.info(
            "Done syncing inventory for merchant %s: counts=%d documents=%d",
            merchant.id, result.counts, result.documents,
        )
