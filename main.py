"""
Command Line Entry Point
Square Inventory Sync - sync, coverage reconciliation and the nightly runner.

    python main.py sync [MERCHANT_ID]
    python main.py coverage [--merchants a,b] [--no-dry-run] [--limit-gtins N] [--read-page N]
    python main.py nightly
"""
from datetime import datetime, timezone
from typing import List, Optional, Sequence
import argparse
import asyncio
import json
import logging
import sys

import settings
from database import init_db
from schemas import MerchantAccount
from services.coverage_scanner import CoverageScanner
from services.errors import FatalDriverError
from services.gap_reconciler import GapReconciler, ReconcileSummary
from services.merchant_sync import MerchantSyncOrchestrator, MerchantSyncResult
from services.storage import InventoryStore

logger = logging.getLogger(__name__)

SYNC_STATUS_DOC = "sync_status"


# ---- Logging setup (JSON lines on stdout) ----
class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "severity": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Include traceback if present
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: Optional[str] = None) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.LOG_LEVEL)

    # Crank down noisy libs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)  # bump to INFO to see SQL


# ---- Jobs ----
async def run_sync(store: InventoryStore, merchant_id: Optional[str] = None) -> List[MerchantSyncResult]:
    orchestrator = MerchantSyncOrchestrator(store)
    return await orchestrator.sync_all(merchant_id)


async def resolve_coverage_merchants(
    store: InventoryStore,
    merchant_ids: Sequence[str] = (),
) -> List[MerchantAccount]:
    """Explicit ids are looked up one by one (unknown ones skipped); otherwise every merchant."""
    try:
        if not merchant_ids:
            return await store.list_merchants()
        merchants = []
        for merchant_id in merchant_ids:
            merchant = await store.get_merchant(merchant_id)
            if merchant is None:
                logger.warning("Merchant %s not found, skipping", merchant_id)
                continue
            merchants.append(merchant)
        return merchants
    except Exception as exc:
        raise FatalDriverError(f"Unable to list merchants: {exc}") from exc


async def run_coverage(
    store: InventoryStore,
    merchant_ids: Sequence[str] = (),
    *,
    dry_run: bool = True,
    sample_limit: Optional[int] = None,
    page_size: int = settings.READ_PAGE_SIZE,
) -> Optional[ReconcileSummary]:
    merchants = await resolve_coverage_merchants(store, merchant_ids)
    if not merchants:
        logger.warning("No merchants found, nothing to reconcile")
        return None

    logger.info(
        "Starting GTIN coverage: merchants=%d dry_run=%s sample_limit=%s page_size=%d",
        len(merchants), dry_run, sample_limit or "none", page_size,
    )
    scanner = CoverageScanner(store, page_size=page_size, sample_limit=sample_limit)
    state = await scanner.scan([m.id for m in merchants])

    reconciler = GapReconciler(store, dry_run=dry_run)
    summary = await reconciler.reconcile(merchants, state)
    logger.info(
        "GTIN coverage done: union=%d created=%d write_calls=%d missing=%s",
        summary.union_count, summary.created, reconciler.committer.write_calls, summary.missing_counts,
    )
    return summary


async def run_nightly(store: InventoryStore) -> List[str]:
    steps: List[str] = []
    if settings.RUN_SYNC:
        await run_sync(store, settings.MERCHANT_ID)
        steps.append("sync")
    if settings.RUN_COVERAGE:
        await run_coverage(
            store,
            settings.MERCHANT_IDS,
            dry_run=settings.DRY_RUN,
            sample_limit=settings.GTIN_SAMPLE_LIMIT,
        )
        steps.append("coverage")
    if settings.RUN_META:
        await store.update_meta(SYNC_STATUS_DOC, {
            "last_full_sync_at": datetime.now(timezone.utc).isoformat(),
            "steps": list(steps),
        })
        steps.append("meta")
    logger.info("Nightly run complete: steps=%s", steps or "none")
    return steps


# ---- CLI ----
def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Square inventory sync and GTIN coverage jobs")
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Sync Square catalog and inventory into the store")
    sync.add_argument("merchant_id", nargs="?", default=None, help="Only sync this merchant (default: MERCHANT_ID or all)")

    coverage = sub.add_parser("coverage", help="Scan stored inventory and fill missing GTINs with placeholders")
    coverage.add_argument("--merchants", default=None, help="Comma separated merchant ids (default: MERCHANT_IDS or all)")
    coverage.add_argument("--dry-run", dest="dry_run", action="store_true", default=None, help="Compute and log only")
    coverage.add_argument("--no-dry-run", dest="dry_run", action="store_false", help="Write placeholders and the report")
    coverage.add_argument("--limit-gtins", type=int, default=None, help="Stop scanning once the union holds N GTINs")
    coverage.add_argument("--read-page", type=int, default=None, help="Inventory docs per read page (max 5000)")

    sub.add_parser("nightly", help="Run the steps enabled by RUN_SYNC / RUN_COVERAGE / RUN_META")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    await init_db()
    store = InventoryStore()

    if args.command == "sync":
        merchant_id = settings.sanitize_merchant_id(args.merchant_id) or settings.MERCHANT_ID
        await run_sync(store, merchant_id)
    elif args.command == "coverage":
        merchant_ids = settings.parse_merchant_ids(args.merchants, settings.MERCHANT_IDS)
        dry_run = settings.DRY_RUN if args.dry_run is None else args.dry_run
        sample_limit = args.limit_gtins if args.limit_gtins and args.limit_gtins > 0 else settings.GTIN_SAMPLE_LIMIT
        page_size = min(args.read_page, 5000) if args.read_page and args.read_page > 0 else settings.READ_PAGE_SIZE
        await run_coverage(store, merchant_ids, dry_run=dry_run, sample_limit=sample_limit, page_size=page_size)
    else:
        await run_nightly(store)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    configure_logging()
    try:
        return asyncio.run(_run(args))
    except FatalDriverError as exc:
        logger.error("Fatal error: %s", exc, exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
