#!/usr/bin/env python3
"""Register (or update) a Square merchant in the store.

The sync job reads each merchant's access token and Square environment from
the merchants collection. This utility writes that record:

    python scripts/register_merchant.py MERCHANT_ID --token sq0atp-... --name "Corner Shop"
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import List

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from database import init_db
from schemas import MerchantAccount
from services.storage import InventoryStore
from settings import SQUARE_ENV, sanitize_merchant_id


async def _register(merchant: MerchantAccount) -> None:
    await init_db()
    store = InventoryStore()
    await store.upsert_merchant(merchant)


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("merchant_id", help="Square merchant id")
    parser.add_argument("--name", dest="business_name", default=None, help="Business name shown in inventory docs")
    parser.add_argument(
        "--token",
        dest="access_token",
        default=None,
        help="Square access token (defaults to SQUARE_ACCESS_TOKEN)",
    )
    parser.add_argument(
        "--env",
        choices=("production", "sandbox"),
        default=SQUARE_ENV if SQUARE_ENV in ("production", "sandbox") else "production",
        help="Square environment for this merchant",
    )
    return parser.parse_args(argv)


def main(argv: List[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])

    merchant_id = sanitize_merchant_id(args.merchant_id)
    if not merchant_id:
        raise SystemExit("✗ merchant_id is required")

    access_token = args.access_token or os.getenv("SQUARE_ACCESS_TOKEN")
    if not access_token:
        raise SystemExit("✗ access token is required (--token or SQUARE_ACCESS_TOKEN)")

    merchant = MerchantAccount(
        id=merchant_id,
        business_name=args.business_name,
        access_token=access_token,
        env=args.env,
    )
    try:
        asyncio.run(_register(merchant))
    except Exception as exc:
        print(f"✗ Failed to register merchant {merchant_id}: {exc}", file=sys.stderr)
        return 1

    print(f"✓ Registered merchant {merchant_id} ({merchant.env})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
