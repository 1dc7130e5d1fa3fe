"""Wiring of one import/sync pipeline for a single run or app lifetime."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from scrapyard.config import CatalogConfig, load_catalog_config
from scrapyard.services.asset_ingestor import AssetIngestor
from scrapyard.services.catalog_client import CatalogClient
from scrapyard.services.import_coordinator import ImportCoordinator
from scrapyard.services.sync_engine import SyncEngine
from scrapyard.storage.local_storage import LocalStorage
from scrapyard.storage.r2_client import R2Storage
from scrapyard.storage.repository import InventoryRepository

logger = logging.getLogger(__name__)


class CatalogSettingsStore(Protocol):
    async def get_catalog_config(self) -> CatalogConfig | None: ...


async def load_active_config(store: CatalogSettingsStore | None = None) -> CatalogConfig:
    """Stored credentials when present, otherwise the environment."""
    if store is not None:
        stored = await store.get_catalog_config()
        if stored is not None:
            return stored
        logger.info("No stored catalog credentials, falling back to environment")
    return load_catalog_config()


class CatalogPipeline:
    """Client, ingestor, coordinator and sync engine sharing one config."""

    def __init__(
        self,
        config: CatalogConfig,
        repository: InventoryRepository,
        storage: LocalStorage | R2Storage,
        transport: httpx.AsyncBaseTransport | None = None,
        asset_http: httpx.AsyncClient | None = None,
        **coordinator_options,
    ):
        self.config = config
        self.client = CatalogClient(config, transport=transport)
        self.ingestor = AssetIngestor(repository, storage, http=asset_http)
        self.coordinator = ImportCoordinator(
            self.client, repository, self.ingestor, **coordinator_options
        )
        self.sync = SyncEngine(self.client, repository, self.ingestor)

    async def __aenter__(self) -> CatalogPipeline:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()
        await self.ingestor.aclose()
