"""Tests for single, list and full-catalog imports."""

import asyncio
import logging
import re

import httpx
import pytest

from conftest import make_product, serve_images
from scrapyard.errors import UpstreamError
from scrapyard.models.imports import ImportOutcome, ImportStats
from scrapyard.models.inventory import VehicleCreate
from scrapyard.services.asset_ingestor import AssetIngestor
from scrapyard.services import import_coordinator
from scrapyard.services.catalog_client import CatalogClient
from scrapyard.services.import_coordinator import (
    ImportCoordinator,
    failure_for,
    normalize_external_id,
    synthesize_plate,
)


@pytest.fixture
def coordinator(pipeline):
    return pipeline.coordinator


class SleepRecorder:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


# ---------------------------------------------------------------------------
# Single product
# ---------------------------------------------------------------------------

class TestImportOne:
    async def test_creates_part_with_photos(self, coordinator, catalog, repository, image_bytes):
        catalog.products = [make_product(7, name="Alternador Bosch")]
        serve_images(catalog, image_bytes)

        result = await coordinator.import_one(7)

        assert result.success is True
        assert result.outcome is ImportOutcome.IMPORTED
        part = repository.parts[result.part_id]
        assert part.provenance["external_id"] == 7
        assert part.status == "nueva"
        assert part.extraction_date is not None
        photos = await repository.list_photos_for_part(part.id)
        assert len(photos) == 1 and photos[0].is_primary

    async def test_second_import_is_skipped(self, coordinator, catalog, repository):
        catalog.products = [make_product(7)]

        first = await coordinator.import_one(7)
        second = await coordinator.import_one("7")

        assert second.success is False
        assert second.outcome is ImportOutcome.ALREADY_IMPORTED
        assert second.part_id == first.part_id
        assert len(repository.parts) == 1

    async def test_skip_does_not_contact_catalog(self, coordinator, catalog):
        catalog.products = [make_product(7)]
        await coordinator.import_one(7)
        requests_before = len(catalog.requests)

        await coordinator.import_one(7)

        assert len(catalog.requests) == requests_before

    async def test_missing_product(self, coordinator, repository):
        result = await coordinator.import_one(999)

        assert result.outcome is ImportOutcome.FAILED
        assert result.error_kind == "not_found"
        assert "999" in result.message
        assert repository.parts == {}

    async def test_upstream_failure(self, catalog_config, repository, storage):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with CatalogClient(catalog_config, transport=transport) as client, httpx.AsyncClient(transport=transport) as http:
            ingestor = AssetIngestor(repository, storage, http=http)
            result = await ImportCoordinator(client, repository, ingestor).import_one(7)

        assert result.error_kind == "upstream"

    async def test_persistence_failure_then_retry(self, coordinator, catalog, repository):
        catalog.products = [make_product(7)]
        repository.fail_part_creates = 1

        failed = await coordinator.import_one(7)
        retried = await coordinator.import_one(7)

        assert failed.error_kind == "persistence"
        assert failed.message == "Error al crear la pieza"
        assert retried.outcome is ImportOutcome.IMPORTED

    async def test_photo_row_failure_keeps_the_part(self, coordinator, catalog, repository, image_bytes):
        catalog.products = [make_product(7)]
        serve_images(catalog, image_bytes)
        repository.fail_photo_creates = 1

        result = await coordinator.import_one(7)
        again = await coordinator.import_one(7)

        assert result.outcome is ImportOutcome.IMPORTED
        assert result.part_id is not None
        assert await repository.list_photos_for_part(result.part_id) == []
        assert again.outcome is ImportOutcome.ALREADY_IMPORTED
        assert again.part_id == result.part_id
        assert len(repository.parts) == 1

    async def test_concurrent_imports_of_same_product(self, coordinator, catalog, repository):
        catalog.products = [make_product(7)]

        results = await asyncio.gather(coordinator.import_one(7), coordinator.import_one(7))

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["already_imported", "imported"]
        assert len(repository.parts) == 1


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------

class TestVehicles:
    async def test_same_vin_reuses_vehicle(self, coordinator, catalog, repository):
        catalog.products = [
            make_product(1, vin="VF1BB05CF12345678", brand="Renault", model="Megane", plate="1234ABC"),
            make_product(2, vin="VF1BB05CF12345678", brand="Renault", model="Megane", plate="1234ABC"),
        ]

        first = await coordinator.import_one(1)
        second = await coordinator.import_one(2)

        assert len(repository.vehicles) == 1
        vehicle = next(iter(repository.vehicles.values()))
        assert repository.parts[first.part_id].vehicle_id == vehicle.id
        assert repository.parts[second.part_id].vehicle_id == vehicle.id
        assert vehicle.plate == "1234ABC"
        assert vehicle.brand == "Renault"

    async def test_no_vin_no_vehicle(self, coordinator, catalog, repository):
        catalog.products = [make_product(1, plate="1234ABC")]

        result = await coordinator.import_one(1)

        assert repository.vehicles == {}
        assert repository.parts[result.part_id].vehicle_id is None

    async def test_missing_plate_is_synthesized(self, coordinator, catalog, repository):
        catalog.products = [make_product(1, vin="WVWZZZ1JZXW000001")]

        await coordinator.import_one(1)

        vehicle = next(iter(repository.vehicles.values()))
        assert vehicle.plate.startswith("WC-")
        assert vehicle.year is not None
        assert vehicle.registration_date is not None

    async def test_taken_plate_is_replaced(self, coordinator, catalog, repository):
        await repository.create_vehicle(VehicleCreate(plate="1234ABC", vin="OTHERVIN000000001"))
        catalog.products = [make_product(1, vin="WVWZZZ1JZXW000001", plate="1234ABC")]

        result = await coordinator.import_one(1)

        assert result.outcome is ImportOutcome.IMPORTED
        plates = sorted(v.plate for v in repository.vehicles.values())
        assert plates[0] == "1234ABC"
        assert plates[1].startswith("WC-")

    async def test_year_from_catalog(self, coordinator, catalog, repository):
        catalog.products = [make_product(1, vin="WVWZZZ1JZXW000001", year="2004")]
        await coordinator.import_one(1)
        assert next(iter(repository.vehicles.values())).year == 2004


# ---------------------------------------------------------------------------
# Explicit list
# ---------------------------------------------------------------------------

class TestImportMany:
    async def test_mixed_outcomes_in_order(self, coordinator, catalog):
        catalog.products = [make_product(1), make_product(2)]

        stats = await coordinator.import_many([1, 999, 2, 1])

        assert [r.outcome for r in stats.results] == [
            ImportOutcome.IMPORTED,
            ImportOutcome.FAILED,
            ImportOutcome.IMPORTED,
            ImportOutcome.ALREADY_IMPORTED,
        ]
        assert (stats.total, stats.succeeded, stats.failed, stats.skipped) == (4, 2, 1, 1)

    async def test_progress_and_cancel(self, coordinator, catalog):
        catalog.products = [make_product(i) for i in range(1, 5)]
        cancel = asyncio.Event()
        seen = []

        def progress(processed, total, result):
            seen.append((processed, total))
            if processed == 2:
                cancel.set()

        stats = await coordinator.import_many([1, 2, 3, 4], progress=progress, cancel=cancel)

        assert seen == [(1, 4), (2, 4)]
        assert stats.cancelled is True
        assert stats.processed == 2


# ---------------------------------------------------------------------------
# Full catalog
# ---------------------------------------------------------------------------

class TestImportAll:
    async def test_every_page_fetched_once_in_order(self, coordinator, catalog, repository, image_bytes):
        catalog.products = [make_product(i) for i in range(1, 6)]
        serve_images(catalog, image_bytes)

        stats = await coordinator.import_all(page_size=2)

        pages = [r.url.params["page"] for r in catalog.listing_requests]
        assert pages == ["1", "2", "3"]
        assert stats.total == 5
        assert stats.succeeded == 5
        assert stats.processed == 5
        assert len(repository.parts) == 5

    async def test_bad_product_does_not_stop_the_run(self, coordinator, catalog, repository):
        nameless = make_product(3)
        del nameless["name"]
        catalog.products = [make_product(1), make_product(2), nameless, make_product(4)]

        stats = await coordinator.import_all(page_size=2)

        assert stats.succeeded == 3
        assert stats.failed == 1
        failure = next(r for r in stats.results if r.outcome is ImportOutcome.FAILED)
        assert failure.external_id == 3
        assert failure.error_kind == "schema"
        assert len(repository.parts) == 3

    async def test_rerun_skips_everything(self, coordinator, catalog, repository):
        catalog.products = [make_product(i) for i in range(1, 4)]
        await coordinator.import_all(page_size=2)

        stats = await coordinator.import_all(page_size=2)

        assert stats.skipped == 3
        assert stats.succeeded == 0
        assert len(repository.parts) == 3

    async def test_lost_page_is_recorded(self, coordinator, catalog):
        catalog.products = [make_product(i) for i in range(1, 6)]
        catalog.failing_pages = {2}

        stats = await coordinator.import_all(page_size=2)

        assert stats.lost_pages == [2]
        assert [r.external_id for r in stats.results] == [1, 2, 5]

    @pytest.mark.parametrize("body", [
        pytest.param([{"id": 3, "name": "Producto 3"}, None], id="null-item"),
        pytest.param(b"<html><body>Service unavailable</body></html>", id="html"),
    ])
    async def test_malformed_page_is_lost_not_fatal(self, coordinator, catalog, repository, body):
        catalog.products = [make_product(i) for i in range(1, 6)]
        catalog.page_bodies[2] = body

        stats = await coordinator.import_all(page_size=2)

        assert stats.lost_pages == [2]
        assert [r.external_id for r in stats.results] == [1, 2, 5]
        assert len(repository.parts) == 3

    async def test_first_page_failure_raises(self, coordinator, catalog, repository):
        catalog.products = [make_product(1)]
        catalog.failing_pages = {1}

        with pytest.raises(UpstreamError):
            await coordinator.import_all(page_size=2)
        assert repository.parts == {}

    async def test_empty_catalog(self, coordinator, catalog):
        stats = await coordinator.import_all(page_size=2)

        assert stats.total == 0
        assert stats.processed == 0
        assert len(catalog.listing_requests) == 1

    async def test_sleeps_between_pages_only(self, pipeline, catalog, repository):
        catalog.products = [make_product(i) for i in range(1, 6)]
        sleep = SleepRecorder()
        coordinator = ImportCoordinator(
            pipeline.client, repository, pipeline.ingestor, inter_batch_delay=0.25, sleep=sleep,
        )

        await coordinator.import_all(page_size=2)

        assert sleep.calls == [0.25, 0.25]

    async def test_cancel_keeps_committed_work(self, coordinator, catalog, repository):
        catalog.products = [make_product(i) for i in range(1, 6)]
        cancel = asyncio.Event()

        async def progress(processed, total, result):
            if processed == 3:
                cancel.set()

        stats = await coordinator.import_all(page_size=2, progress=progress, cancel=cancel)

        assert stats.cancelled is True
        assert stats.processed == 3
        assert len(repository.parts) == 3

    async def test_cancel_at_page_end_skips_pause_and_next_page(self, pipeline, catalog, repository):
        catalog.products = [make_product(i) for i in range(1, 6)]
        sleep = SleepRecorder()
        coordinator = ImportCoordinator(
            pipeline.client, repository, pipeline.ingestor, inter_batch_delay=0.25, sleep=sleep,
        )
        cancel = asyncio.Event()

        async def progress(processed, total, result):
            if processed == 2:
                cancel.set()

        stats = await coordinator.import_all(page_size=2, progress=progress, cancel=cancel)

        assert stats.cancelled is True
        assert stats.processed == 2
        assert sleep.calls == []
        assert [r.url.params["page"] for r in catalog.listing_requests] == ["1"]

    async def test_live_stats_object_is_updated(self, coordinator, catalog):
        catalog.products = [make_product(i) for i in range(1, 4)]
        live = ImportStats()

        returned = await coordinator.import_all(page_size=2, stats=live)

        assert returned is live
        assert live.succeeded == 3

    async def test_large_catalog_warning(self, coordinator, catalog, monkeypatch, caplog):
        monkeypatch.setattr(import_coordinator, "LARGE_CATALOG_WARNING", 2)
        catalog.products = [make_product(i) for i in range(1, 4)]

        with caplog.at_level(logging.WARNING, logger="scrapyard.services.import_coordinator"):
            await coordinator.import_all(page_size=10)

        assert any("will take a long time" in r.getMessage() for r in caplog.records)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_synthesized_plates_look_right_and_differ(self):
        plates = {synthesize_plate() for _ in range(20)}
        assert len(plates) == 20
        assert all(re.fullmatch(r"WC-\d{8}-[0-9A-F]{4}", p) for p in plates)

    @pytest.mark.parametrize("raw, expected", [("42", 42), (" 7 ", 7), (13, 13), ("abc", "abc")])
    def test_normalize_external_id(self, raw, expected):
        assert normalize_external_id(raw) == expected

    def test_unexpected_error_kind(self):
        result = failure_for(5, "Faro", RuntimeError("boom"))
        assert result.error_kind == "unexpected"
        assert result.product_name == "Faro"
        assert result.error == "boom"
