"""Re-apply the current catalog state onto an already imported part."""

from __future__ import annotations

import logging

from scrapyard.errors import NotFoundError
from scrapyard.models.imports import SyncResult
from scrapyard.services.asset_ingestor import AssetIngestor
from scrapyard.services.catalog_client import CatalogClient
from scrapyard.services.import_coordinator import normalize_external_id
from scrapyard.services.product_mapper import map_product
from scrapyard.storage.repository import InventoryRepository

logger = logging.getLogger(__name__)

# Part columns owned by the catalog; everything else is left alone
SYNCED_PART_FIELDS = (
    "description",
    "category",
    "sale_price",
    "cost_price",
    "scan_code",
    "provenance",
)


class SyncEngine:
    def __init__(
        self,
        client: CatalogClient,
        repository: InventoryRepository,
        ingestor: AssetIngestor,
    ):
        self.client = client
        self.repository = repository
        self.ingestor = ingestor

    async def sync_part(self, part_id: int, external_id: int | str) -> SyncResult:
        """
        Overwrite a part's catalog-owned fields and photos with upstream data.

        Sync is an explicit user action, so failures are raised rather than
        absorbed: ``NotFoundError`` for a missing part or product,
        ``UpstreamError`` / ``SchemaError`` / ``PersistenceError`` as they
        come. The linked vehicle is never touched.
        """
        key = normalize_external_id(external_id)

        part = await self.repository.get_part(part_id)
        if part is None:
            raise NotFoundError(f"No se encontró la pieza con ID {part_id}")

        payload = await self.client.get_product(key)
        mapped = map_product(payload)

        fields = {name: mapped.part_fields[name] for name in SYNCED_PART_FIELDS}
        await self.repository.update_part(part_id, fields)

        photos = await self.ingestor.replace(part_id, mapped.photo_sources)

        logger.info("Synced part %s with product %s (%d photos)", part_id, key, len(photos))
        return SyncResult(
            success=True,
            message=f"Pieza {part_id} sincronizada correctamente con el producto {key}",
            part_id=part_id,
            external_id=key,
            photo_count=len(photos),
        )
