"""
Removal of parts that were created by catalog imports.

Each part is deleted together with its photo rows and stored files. A part
that cannot be removed does not stop the others: it is reported in
``PurgeReport.errors`` so callers can see a degraded cleanup.
"""

from __future__ import annotations

import asyncio
import logging

from botocore.exceptions import BotoCoreError, ClientError

from scrapyard.errors import PersistenceError
from scrapyard.models.imports import PurgeError, PurgeReport
from scrapyard.services.asset_ingestor import part_prefix
from scrapyard.storage.local_storage import LocalStorage
from scrapyard.storage.r2_client import R2Storage
from scrapyard.storage.repository import InventoryRepository

logger = logging.getLogger(__name__)

# Sold or reserved parts stay even if they came from the catalog
PROTECTED_PART_STATUSES: set[str] = {"vendida", "reservada"}


async def purge_imported_parts(
    repository: InventoryRepository,
    storage: LocalStorage | R2Storage,
) -> PurgeReport:
    """Delete every imported part that is not sold or reserved."""
    report = PurgeReport()
    parts = await repository.list_imported_parts()

    for part in parts:
        if part.status in PROTECTED_PART_STATUSES:
            report.skipped += 1
            continue
        try:
            await repository.delete_photos_for_part(part.id)
            await asyncio.to_thread(storage.delete_prefix, part_prefix(part.id))
            await repository.delete_part(part.id)
        except (PersistenceError, OSError, BotoCoreError, ClientError) as exc:
            logger.error("Could not delete imported part %s: %s", part.id, exc)
            report.errors.append(PurgeError(part_id=part.id, error=str(exc)))
            continue
        report.deleted += 1

    logger.info(
        "Purged imported parts: %d deleted, %d kept, %d errors",
        report.deleted, report.skipped, len(report.errors),
    )
    return report
