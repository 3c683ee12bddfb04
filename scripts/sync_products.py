#!/usr/bin/env python3
"""CLI script to run a product sync for a store in the current process."""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import orjson
import structlog

from catalog_sync.config import get_settings
from catalog_sync.exceptions import SyncInProgressError
from catalog_sync.infrastructure.database.connection import (
    create_session_factory,
    get_async_engine,
)
from catalog_sync.logging_config import configure_logging
from catalog_sync.services.source_client import SourceCredentials, SourceFilters
from catalog_sync.services.sync_options import SyncOptions
from catalog_sync.services.sync_orchestrator import SyncOrchestrator

logger = structlog.get_logger()


def parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Sync Shopify products into the catalog mirror")
    parser.add_argument("--shop", default=settings.shopify_store_domain, help="Shop domain")
    parser.add_argument("--token", default=settings.shopify_access_token, help="Admin API token")
    parser.add_argument("--store-id", help="Store id to sync into (defaults to the shop domain)")
    parser.add_argument("--full", action="store_true", help="Force a full sync")
    parser.add_argument("--max-items", type=int, help="Stop after this many unique items")
    parser.add_argument("--batch-size", type=int, help="Item ids per enumeration page")
    parser.add_argument("--product-type", help="Only sync this product type")
    parser.add_argument("--vendor", help="Only sync this vendor")
    parser.add_argument("--status", action="store_true", help="Print sync state and exit")
    parser.add_argument("--reset-stale", action="store_true", help="Fail stuck runs and exit")
    return parser.parse_args()


async def main(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings)

    store_id = args.store_id or args.shop
    if not store_id:
        logger.error("A shop domain or store id is required")
        return 2

    engine = get_async_engine(settings)
    try:
        orchestrator = SyncOrchestrator(create_session_factory(engine), settings)

        if args.status:
            state = await orchestrator.get_status(store_id)
            print(orjson.dumps(state.model_dump(mode="json") if state else None, option=orjson.OPT_INDENT_2).decode())
            return 0

        if args.reset_stale:
            reset = await orchestrator.reset_stale_runs()
            logger.info("Stale runs reset", run_ids=[run.run_id for run in reset])
            return 0

        if not args.token:
            logger.error("An access token is required")
            return 2

        options = SyncOptions(
            filters=SourceFilters(product_type=args.product_type, vendor=args.vendor),
            force_full_sync=args.full,
            max_items=args.max_items,
            batch_size=args.batch_size,
        )
        credentials = SourceCredentials(shop_domain=args.shop, access_token=args.token)
        try:
            summary = await orchestrator.run_sync(store_id, credentials, options)
        except SyncInProgressError:
            logger.error("A sync is already in progress", store_id=store_id)
            return 1

        logger.info("Sync finished", **summary.model_dump(mode="json"))
        return 0 if summary.status == "completed" else 1
    finally:
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(main(parse_args())))
