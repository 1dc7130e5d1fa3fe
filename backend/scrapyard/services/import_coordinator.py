"""
Import orchestration: one product, an explicit list, or the whole catalog.

Every entry point funnels into the same per-product algorithm:

1. Skip (as ``already_imported``) if a part already carries the external id.
2. Fetch the product, unless the listing already handed us its payload.
3. Map it to vehicle / part / photo fields.
4. Reuse the vehicle with the same chassis number or create one.
5. Create the part, then ingest its photos.

Batch runs never stop on a bad product: failures become ImportResult
entries and the loop moves on. Only the pre-flight listing request of a
full-catalog run raises to the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
import time
import weakref
from datetime import date
from typing import Awaitable, Callable

from scrapyard.config import (
    IMPORT_BATCH_DELAY,
    IMPORT_PAGE_SIZE,
    LARGE_CATALOG_WARNING,
    SYNTHETIC_PLATE_PREFIX,
)
from scrapyard.errors import (
    NotFoundError,
    PersistenceError,
    SchemaError,
    UpstreamError,
)
from scrapyard.models.imports import ImportOutcome, ImportResult, ImportStats
from scrapyard.models.inventory import MappedProduct, PartCreate, VehicleCreate
from scrapyard.services.asset_ingestor import AssetIngestor
from scrapyard.services.catalog_client import CatalogClient
from scrapyard.services.product_mapper import map_product
from scrapyard.storage.repository import InventoryRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, ImportResult], Awaitable[None] | None]

_PLATE_ATTEMPTS = 5


def normalize_external_id(external_id: int | str) -> int | str:
    """Catalog ids are integers; path parameters arrive as strings."""
    if isinstance(external_id, str) and external_id.strip().isdigit():
        return int(external_id.strip())
    return external_id


def synthesize_plate() -> str:
    """Time-derived placeholder plate, e.g. ``WC-48213907-3FA1``."""
    millis = int(time.time() * 1000) % 100_000_000
    return f"{SYNTHETIC_PLATE_PREFIX}{millis:08d}-{secrets.token_hex(2).upper()}"


async def _notify(progress: ProgressCallback | None, stats: ImportStats, result: ImportResult) -> None:
    if progress is None:
        return
    outcome = progress(stats.processed, stats.total, result)
    if inspect.isawaitable(outcome):
        await outcome


def _stop_requested(cancel: asyncio.Event | None, stats: ImportStats) -> bool:
    if cancel is None or not cancel.is_set():
        return False
    stats.cancelled = True
    logger.info("Full-catalog import cancelled after %d products", stats.processed)
    return True


# ---------------------------------------------------------------------------
# Result builders
# ---------------------------------------------------------------------------


def _failed(external_id, name: str | None, message: str, exc: Exception, kind: str) -> ImportResult:
    return ImportResult(
        success=False,
        message=message,
        outcome=ImportOutcome.FAILED,
        external_id=external_id,
        product_name=name,
        error=str(exc),
        error_kind=kind,
    )


def failure_for(external_id, name: str | None, exc: Exception) -> ImportResult:
    """Translate a per-product exception into a failed ImportResult."""
    if isinstance(exc, NotFoundError):
        return _failed(
            external_id, name,
            f"El producto con ID {external_id} no existe en el catálogo externo",
            exc, "not_found",
        )
    if isinstance(exc, UpstreamError):
        return _failed(
            external_id, name,
            f"Error al obtener el producto {external_id} del catálogo externo",
            exc, "upstream",
        )
    if isinstance(exc, SchemaError):
        return _failed(
            external_id, name,
            f"El producto {external_id} tiene un formato no válido",
            exc, "schema",
        )
    if isinstance(exc, PersistenceError):
        return _failed(external_id, name, "Error al crear la pieza", exc, "persistence")
    return _failed(
        external_id, name, f"Error al procesar el producto {external_id}", exc, "unexpected",
    )


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class ImportCoordinator:
    """Runs imports against one catalog connection and one repository."""

    def __init__(
        self,
        client: CatalogClient,
        repository: InventoryRepository,
        ingestor: AssetIngestor,
        page_size: int = IMPORT_PAGE_SIZE,
        inter_batch_delay: float = IMPORT_BATCH_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.repository = repository
        self.ingestor = ingestor
        self.page_size = page_size
        self.inter_batch_delay = inter_batch_delay
        self._sleep = sleep
        # One lock per external id guards the check-then-create window
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

    def _lock_for(self, key: int | str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # -----------------------------------------------------------------------
    # Per-product algorithm
    # -----------------------------------------------------------------------

    async def _create_vehicle(self, mapped: MappedProduct) -> int:
        fields = dict(mapped.vehicle_fields)

        plate = (fields.get("plate") or "").strip()
        if plate and await self.repository.plate_exists(plate):
            logger.warning(
                "Product %s: plate %s already belongs to another vehicle, generating one",
                mapped.external_id, plate,
            )
            plate = ""
        for _ in range(_PLATE_ATTEMPTS):
            if plate:
                break
            candidate = synthesize_plate()
            if not await self.repository.plate_exists(candidate):
                plate = candidate
        if not plate:
            raise PersistenceError("Could not generate a unique plate for the imported vehicle")

        fields["plate"] = plate
        if fields.get("year") is None:
            fields["year"] = date.today().year
        fields["registration_date"] = date.today()

        vehicle = await self.repository.create_vehicle(VehicleCreate(**fields))
        logger.info("Created vehicle %s (VIN %s) for product %s", vehicle.id, vehicle.vin, mapped.external_id)
        return vehicle.id

    async def _resolve_vehicle(self, mapped: MappedProduct) -> int | None:
        """Existing vehicle with the same chassis number, a new one, or None."""
        vin = mapped.vehicle_lookup_key
        if not vin:
            return None
        vehicle = await self.repository.find_vehicle_by_vin(vin)
        if vehicle is not None:
            logger.info("Product %s: reusing vehicle %s (VIN %s)", mapped.external_id, vehicle.id, vin)
            return vehicle.id
        return await self._create_vehicle(mapped)

    async def _import(self, external_id: int | str, payload: dict | None = None) -> ImportResult:
        """Run the per-product algorithm; domain errors propagate."""
        key = normalize_external_id(external_id)

        async with self._lock_for(key):
            existing = await self.repository.find_part_by_external_id(key)
            if existing is not None:
                return ImportResult(
                    success=False,
                    message=f"Ya existe una pieza importada para este producto (ID: {existing.id})",
                    outcome=ImportOutcome.ALREADY_IMPORTED,
                    external_id=key,
                    product_name=(payload or {}).get("name"),
                    part_id=existing.id,
                )

            if payload is None:
                payload = await self.client.get_product(key)

            mapped = map_product(payload)
            vehicle_id = await self._resolve_vehicle(mapped)

            part = await self.repository.create_part(PartCreate(
                **mapped.part_fields,
                vehicle_id=vehicle_id,
                extraction_date=date.today(),
            ))
            photos = await self.ingestor.ingest(part.id, mapped.photo_sources)

        logger.info(
            "Imported product %s as part %s (%d photos, vehicle %s)",
            key, part.id, len(photos), vehicle_id,
        )
        return ImportResult(
            success=True,
            message=f"Pieza creada correctamente a partir del producto {mapped.product_name}",
            outcome=ImportOutcome.IMPORTED,
            external_id=key,
            product_name=mapped.product_name,
            part_id=part.id,
        )

    # -----------------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------------

    async def import_one(self, external_id: int | str) -> ImportResult:
        """Import a single product by id.

        Domain failures (missing upstream product, upstream errors, bad
        payloads, failed writes) come back as a failed ImportResult whose
        ``error_kind`` tells the caller what went wrong.
        """
        try:
            return await self._import(external_id)
        except (NotFoundError, UpstreamError, SchemaError, PersistenceError) as exc:
            logger.warning("Import of product %s failed: %s", external_id, exc)
            return failure_for(normalize_external_id(external_id), None, exc)

    async def _import_batch_item(self, external_id, name: str | None, payload: dict | None) -> ImportResult:
        if external_id is None:
            return failure_for(None, name, SchemaError("Product payload has no 'id'"))
        try:
            return await self._import(external_id, payload)
        except Exception as exc:
            logger.exception("Error processing product %s", external_id)
            return failure_for(normalize_external_id(external_id), name, exc)

    async def import_many(
        self,
        external_ids: list[int | str],
        progress: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ImportStats:
        """Import an explicit list of product ids, one after another."""
        stats = ImportStats(total=len(external_ids))
        for external_id in external_ids:
            if cancel is not None and cancel.is_set():
                stats.cancelled = True
                logger.info("Import of %d products cancelled after %d", stats.total, stats.processed)
                break
            result = await self._import_batch_item(external_id, None, None)
            stats.record(result)
            await _notify(progress, stats, result)
        return stats

    async def import_all(
        self,
        page_size: int | None = None,
        inter_batch_delay: float | None = None,
        progress: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
        stats: ImportStats | None = None,
    ) -> ImportStats:
        """
        Import every product of the catalog, page by page.

        The first page doubles as the pre-flight probe: its totals plan the
        run, and a failure there raises. Later page failures are recorded in
        ``stats.lost_pages`` and skipped. *cancel* is checked before every
        product; work already committed stays in place. Pass *stats* to
        observe the run live from elsewhere.
        """
        page_size = page_size or self.page_size
        delay = self.inter_batch_delay if inter_batch_delay is None else inter_batch_delay
        stats = stats if stats is not None else ImportStats()

        first_page = await self.client.list_products(page=1, per_page=page_size)
        stats.total = first_page.total_count
        if stats.total == 0:
            logger.info("Catalog reports no products, nothing to import")
            return stats
        if stats.total > LARGE_CATALOG_WARNING:
            logger.warning("Catalog holds %d products, this run will take a long time", stats.total)

        total_pages = max(first_page.total_pages, 1)
        logger.info("Importing %d products in %d pages of %d", stats.total, total_pages, page_size)

        for page in range(1, total_pages + 1):
            if page == 1:
                items = first_page.items
            else:
                try:
                    items = (await self.client.list_products(page=page, per_page=page_size)).items
                except (NotFoundError, UpstreamError) as exc:
                    logger.error("Could not fetch page %d of %d: %s", page, total_pages, exc)
                    stats.lost_pages.append(page)
                    continue

            for item in items:
                if _stop_requested(cancel, stats):
                    return stats
                result = await self._import_batch_item(item.get("id"), item.get("name"), item)
                stats.record(result)
                await _notify(progress, stats, result)

            if page < total_pages:
                if _stop_requested(cancel, stats):
                    return stats
                await self._sleep(delay)

        logger.info(
            "Full-catalog import finished: %d imported, %d already present, %d failed, %d pages lost",
            stats.succeeded, stats.skipped, stats.failed, len(stats.lost_pages),
        )
        return stats
