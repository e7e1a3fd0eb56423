"""
Gap reconciliation: placeholder inventory records for GTINs a merchant lacks.

Placeholders use their own id scheme (`{merchant}_{location}_{gtin}_MISSING`),
so they never overwrite a record written by the Square sync. They are also
never retracted here once the merchant starts carrying the GTIN for real.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Sequence
import logging
import re

from schemas import InventoryRecord, MerchantAccount
from services.coverage_scanner import CoverageState, DefaultLocation, GtinSample
from services.dual_write import DualWriteCommitter
from services.record_projector import PLACEHOLDER_STATE
from settings import REPORT_SAMPLE_SIZE, WRITE_BATCH_LIMIT

logger = logging.getLogger(__name__)

SYNTHETIC_REASON = "missing_in_merchant_sync"
FALLBACK_LOCATION = DefaultLocation(location_id="DEFAULT", location_name="Default Location")
REPORT_TYPE = "gtin_presence_report"
REPORT_LATEST_ID = "gtin_presence_latest"

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9]")


def sanitize_gtin(gtin: str) -> str:
    return _UNSAFE_ID_CHARS.sub("_", gtin)


def placeholder_document_id(merchant_id: str, location_id: str, gtin: str) -> str:
    return f"{merchant_id}_{location_id}_{sanitize_gtin(gtin)}_{PLACEHOLDER_STATE}"


def build_placeholder(
    merchant: MerchantAccount,
    gtin: str,
    sample: GtinSample,
    location: DefaultLocation,
    now: datetime,
) -> InventoryRecord:
    return InventoryRecord(
        merchant_id=merchant.id,
        merchant_name=merchant.display_name,
        location_id=location.location_id or FALLBACK_LOCATION.location_id,
        location_name=location.location_name or FALLBACK_LOCATION.location_name,
        catalog_object_id=None,
        item_id=None,
        variation_id=None,
        item_name=sample.item_name or f"Unknown Item {gtin}",
        variation_name=sample.variation_name,
        sku=sample.sku,
        gtin=gtin,
        category_id=None,
        category_name=sample.category_name,
        tax_ids=list(sample.tax_ids),
        tax_names=list(sample.tax_names),
        tax_percentages=list(sample.tax_percentages),
        price=sample.price,
        currency=sample.currency,
        qty=0.0,
        state=PLACEHOLDER_STATE,
        calculated_at=None,
        updated_at=now,
        image_urls=list(sample.image_urls),
        synthetic=True,
        synthetic_reason=SYNTHETIC_REASON,
    )


@dataclass
class ReconcileSummary:
    dry_run: bool
    union_count: int = 0
    missing_by_merchant: Dict[str, List[str]] = field(default_factory=dict)
    created: int = 0
    skipped_merchants: List[str] = field(default_factory=list)

    @property
    def missing_counts(self) -> Dict[str, int]:
        return {mid: len(gtins) for mid, gtins in self.missing_by_merchant.items()}

    def to_report(self, sample_size: int = REPORT_SAMPLE_SIZE) -> Dict[str, object]:
        return {
            "type": REPORT_TYPE,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "merchants": list(self.missing_by_merchant),
            "unionCount": self.union_count,
            "missingCounts": self.missing_counts,
            "missingSamples": {mid: gtins[:sample_size] for mid, gtins in self.missing_by_merchant.items()},
            "created": self.created,
            "skippedMerchants": list(self.skipped_merchants),
        }


class GapReconciler:
    """Computes `union - merchant` per merchant and writes placeholders.

    Dry run is the default: everything is computed and logged but the store
    is never touched. Writing requires dry_run=False explicitly.
    """

    def __init__(
        self,
        store,
        *,
        dry_run: bool = True,
        batch_limit: int = WRITE_BATCH_LIMIT,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.dry_run = dry_run
        self.clock = clock
        self.committer = DualWriteCommitter(store, batch_limit=batch_limit)

    async def reconcile(self, merchants: Sequence[MerchantAccount], state: CoverageState) -> ReconcileSummary:
        summary = ReconcileSummary(dry_run=self.dry_run, union_count=len(state.global_gtins))

        for merchant in merchants:
            if merchant.id not in state.gtins_by_merchant:
                summary.skipped_merchants.append(merchant.id)
                logger.info("Merchant %s was not scanned, skipping reconciliation", merchant.id)
                continue

            missing = state.missing_for(merchant.id)
            summary.missing_by_merchant[merchant.id] = missing
            logger.info(
                "Merchant %s (%s) is missing %d GTINs out of %d.",
                merchant.id, merchant.display_name, len(missing), len(state.global_gtins),
            )
            if not missing:
                continue
            if self.dry_run:
                logger.info("DRY_RUN mode: would create placeholder inventory docs. Sample missing: %s", missing[:10])
                continue

            summary.created += await self._write_placeholders(merchant, missing, state)

        if not self.dry_run:
            await self.committer.flush()
            await self.store.save_report(REPORT_TYPE, summary.to_report(), latest_id=REPORT_LATEST_ID)
        return summary

    async def _write_placeholders(self, merchant: MerchantAccount, missing: List[str], state: CoverageState) -> int:
        location = state.default_locations.get(merchant.id) or FALLBACK_LOCATION
        location_id = location.location_id or FALLBACK_LOCATION.location_id
        now = self.clock()

        for gtin in missing:
            sample = state.samples.get(gtin) or GtinSample(gtin=gtin)
            record = build_placeholder(merchant, gtin, sample, location, now)
            await self.committer.stage(placeholder_document_id(merchant.id, location_id, gtin), record)

        logger.info("Merchant %s: staged %d placeholder inventory docs for missing GTINs.", merchant.id, len(missing))
        return len(missing)
