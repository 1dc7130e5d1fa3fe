"""
Supabase repository for the scrapyard backend: handles all database
operations for vehicles, parts, photos and stored catalog credentials.
"""

from __future__ import annotations

import logging

from pydantic_core import to_jsonable_python
from supabase import AsyncClient, PostgrestAPIError, acreate_client

from scrapyard.config import SUPABASE_SERVICE_KEY, SUPABASE_URL, CatalogConfig
from scrapyard.errors import PersistenceError
from scrapyard.models.inventory import (
    Part,
    PartCreate,
    Photo,
    PhotoCreate,
    Vehicle,
    VehicleCreate,
)

logger = logging.getLogger(__name__)

CATALOG_SETTINGS_CATEGORY = "woocommerce"


async def create_repository() -> SupabaseRepository:
    """Open an async Supabase client from the environment settings."""
    client = await acreate_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    return SupabaseRepository(client)


class SupabaseRepository:
    """``InventoryRepository`` backed by the ``vehicles``, ``parts`` and
    ``photos`` tables."""

    def __init__(self, client: AsyncClient):
        self.client = client

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    async def _execute(self, query, action: str) -> list[dict]:
        try:
            result = await query.execute()
        except PostgrestAPIError as exc:
            raise PersistenceError(f"Could not {action}: {exc}") from exc
        return result.data or []

    # -----------------------------------------------------------------------
    # Parts
    # -----------------------------------------------------------------------

    async def find_part_by_external_id(self, external_id: int | str) -> Part | None:
        """Return the part whose provenance embeds *external_id*, if any."""
        rows = await self._execute(
            self.client.table("parts")
            .select("*")
            .contains("provenance", {"external_id": external_id})
            .limit(1),
            "look up imported part",
        )
        return Part.model_validate(rows[0]) if rows else None

    async def get_part(self, part_id: int) -> Part | None:
        rows = await self._execute(
            self.client.table("parts").select("*").eq("id", part_id).limit(1),
            f"load part {part_id}",
        )
        return Part.model_validate(rows[0]) if rows else None

    async def list_imported_parts(self) -> list[Part]:
        """All parts that came from the external catalog."""
        rows = await self._execute(
            self.client.table("parts")
            .select("*")
            .not_.is_("provenance->>external_id", "null")
            .order("id"),
            "list imported parts",
        )
        return [Part.model_validate(row) for row in rows]

    async def create_part(self, part: PartCreate) -> Part:
        rows = await self._execute(
            self.client.table("parts").insert(part.model_dump(mode="json")),
            "create part",
        )
        if not rows:
            raise PersistenceError("Part insert returned no row")
        return Part.model_validate(rows[0])

    async def update_part(self, part_id: int, fields: dict) -> Part:
        """Overwrite *fields* on an existing part."""
        payload = to_jsonable_python(fields)
        rows = await self._execute(
            self.client.table("parts").update(payload).eq("id", part_id),
            f"update part {part_id}",
        )
        if not rows:
            raise PersistenceError(f"Part {part_id} vanished during update")
        return Part.model_validate(rows[0])

    async def delete_part(self, part_id: int) -> None:
        await self._execute(
            self.client.table("parts").delete().eq("id", part_id),
            f"delete part {part_id}",
        )

    # -----------------------------------------------------------------------
    # Vehicles
    # -----------------------------------------------------------------------

    async def find_vehicle_by_vin(self, vin: str) -> Vehicle | None:
        rows = await self._execute(
            self.client.table("vehicles").select("*").eq("vin", vin).limit(1),
            "look up vehicle by VIN",
        )
        return Vehicle.model_validate(rows[0]) if rows else None

    async def plate_exists(self, plate: str) -> bool:
        rows = await self._execute(
            self.client.table("vehicles").select("id").eq("plate", plate).limit(1),
            "check plate",
        )
        return bool(rows)

    async def create_vehicle(self, vehicle: VehicleCreate) -> Vehicle:
        rows = await self._execute(
            self.client.table("vehicles").insert(vehicle.model_dump(mode="json")),
            "create vehicle",
        )
        if not rows:
            raise PersistenceError("Vehicle insert returned no row")
        return Vehicle.model_validate(rows[0])

    # -----------------------------------------------------------------------
    # Photos
    # -----------------------------------------------------------------------

    async def list_photos_for_part(self, part_id: int) -> list[Photo]:
        rows = await self._execute(
            self.client.table("photos").select("*").eq("part_id", part_id).order("id"),
            f"list photos of part {part_id}",
        )
        return [Photo.model_validate(row) for row in rows]

    async def create_photo(self, photo: PhotoCreate) -> Photo:
        rows = await self._execute(
            self.client.table("photos").insert(photo.model_dump(mode="json")),
            "create photo",
        )
        if not rows:
            raise PersistenceError("Photo insert returned no row")
        return Photo.model_validate(rows[0])

    async def delete_photos_for_part(self, part_id: int) -> int:
        """Delete every photo row of *part_id*; returns the number removed."""
        rows = await self._execute(
            self.client.table("photos").delete().eq("part_id", part_id),
            f"delete photos of part {part_id}",
        )
        return len(rows)

    # -----------------------------------------------------------------------
    # Catalog credentials
    # -----------------------------------------------------------------------

    async def get_catalog_config(self) -> CatalogConfig | None:
        """Load the active catalog credentials from the ``configuration``
        table. Returns None when nothing usable is stored."""
        rows = await self._execute(
            self.client.table("configuration")
            .select("key, value")
            .eq("category", CATALOG_SETTINGS_CATEGORY),
            "load catalog settings",
        )
        values = {row["key"]: row["value"] for row in rows}
        if not values.get("url"):
            return None
        try:
            return CatalogConfig(
                url=values.get("url", ""),
                consumer_key=values.get("consumer_key", ""),
                consumer_secret=values.get("consumer_secret", ""),
                version=values.get("version") or "wc/v3",
            )
        except ValueError as exc:
            logger.warning("Stored catalog settings are invalid: %s", exc)
            return None

    async def save_catalog_config(self, config: CatalogConfig) -> None:
        rows = [
            {
                "category": CATALOG_SETTINGS_CATEGORY,
                "key": key,
                "value": str(value),
            }
            for key, value in config.model_dump(include={"url", "consumer_key", "consumer_secret", "version"}).items()
        ]
        await self._execute(
            self.client.table("configuration").upsert(rows, on_conflict="category,key"),
            "save catalog settings",
        )
