"""
Catalog import scheduler for the scrapyard backend.

Periodically runs a full-catalog import (already imported products are
skipped, so repeated runs only pick up new listings).

Usage:
    python -m scrapyard.services.scheduler          # Start daemon mode (infinite loop)
    python -m scrapyard.services.scheduler --once   # Run a single cycle then exit
"""

import argparse
import asyncio
import logging
import time
from datetime import datetime, timedelta

from scrapyard.config import (
    IMPORT_BATCH_DELAY,
    IMPORT_INTERVAL_HOURS,
    IMPORT_PAGE_SIZE,
    setup_logging,
)
from scrapyard.errors import CatalogError
from scrapyard.services.asset_ingestor import build_storage
from scrapyard.services.pipeline import CatalogPipeline, load_active_config
from scrapyard.storage.supabase_client import create_repository

logger = logging.getLogger(__name__)


async def run_import_cycle(
    page_size: int = IMPORT_PAGE_SIZE,
    delay: float = IMPORT_BATCH_DELAY,
) -> dict:
    """
    Execute a single full-catalog import cycle.

    Steps:
        1. Load the active catalog credentials (stored, else environment).
        2. Probe the catalog; abort the cycle if it is unreachable.
        3. Import every product and log the summary.

    Returns:
        A stats dict with keys: import_stats, duration_seconds, started_at,
        finished_at, and success.
    """
    started_at = datetime.now()
    logger.info("Starting import cycle at %s", started_at.isoformat())

    cycle_start = time.monotonic()
    stats: dict = {
        "started_at": started_at.isoformat(),
        "import_stats": None,
        "duration_seconds": 0.0,
        "finished_at": None,
        "success": False,
    }

    repository = await create_repository()
    config = await load_active_config(repository)

    async with CatalogPipeline(config, repository, build_storage()) as pipeline:
        if not await pipeline.client.probe():
            stats["import_stats"] = {"error": f"Catalog at {config.url} is unreachable"}
        else:
            try:
                result = await pipeline.coordinator.import_all(
                    page_size=page_size, inter_batch_delay=delay,
                )
                stats["import_stats"] = result.model_dump(exclude={"results"})
                stats["success"] = True
            except CatalogError as exc:
                logger.error("Import cycle aborted: %s", exc)
                stats["import_stats"] = {"error": str(exc)}

    duration = time.monotonic() - cycle_start
    finished_at = datetime.now()
    stats["duration_seconds"] = round(duration, 2)
    stats["finished_at"] = finished_at.isoformat()

    logger.info("Cycle finished at %s (%ss)", stats["finished_at"], stats["duration_seconds"])
    logger.info("Summary: %s", stats["import_stats"])
    return stats


async def run_scheduler() -> None:
    """
    Run the import cycle in an infinite loop, sleeping
    IMPORT_INTERVAL_HOURS between each run.
    """
    logger.info("Scheduler started. Interval: %dh", IMPORT_INTERVAL_HOURS)

    while True:
        await run_import_cycle()

        next_run = datetime.now() + timedelta(hours=IMPORT_INTERVAL_HOURS)
        logger.info("Next run scheduled at %s", next_run.isoformat())

        await asyncio.sleep(IMPORT_INTERVAL_HOURS * 3600)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scrapyard catalog import scheduler",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single import cycle and exit instead of looping.",
    )
    parser.add_argument(
        "--page-size",
        type=int,
        default=IMPORT_PAGE_SIZE,
        help="Products requested per catalog page.",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=IMPORT_BATCH_DELAY,
        help="Seconds to pause between catalog pages.",
    )
    return parser


if __name__ == "__main__":
    args = _build_parser().parse_args()
    setup_logging()

    if args.once:
        logger.info("Running single cycle (--once mode).")
        result = asyncio.run(run_import_cycle(page_size=args.page_size, delay=args.delay))
        logger.info("Done. Success: %s", result["success"])
    else:
        logger.info("Starting daemon mode.")
        try:
            asyncio.run(run_scheduler())
        except KeyboardInterrupt:
            logger.info("Scheduler stopped by user (KeyboardInterrupt).")
