"""Persistence contract consumed by the import pipeline."""

from typing import Protocol

from scrapyard.models.inventory import (
    Part,
    PartCreate,
    Photo,
    PhotoCreate,
    Vehicle,
    VehicleCreate,
)


class InventoryRepository(Protocol):
    """Async CRUD over vehicles, parts and photos.

    Implementations raise ``PersistenceError`` when a write fails.
    """

    async def find_part_by_external_id(self, external_id: int | str) -> Part | None: ...

    async def get_part(self, part_id: int) -> Part | None: ...

    async def list_imported_parts(self) -> list[Part]: ...

    async def create_part(self, part: PartCreate) -> Part: ...

    async def update_part(self, part_id: int, fields: dict) -> Part: ...

    async def delete_part(self, part_id: int) -> None: ...

    async def find_vehicle_by_vin(self, vin: str) -> Vehicle | None: ...

    async def plate_exists(self, plate: str) -> bool: ...

    async def create_vehicle(self, vehicle: VehicleCreate) -> Vehicle: ...

    async def list_photos_for_part(self, part_id: int) -> list[Photo]: ...

    async def create_photo(self, photo: PhotoCreate) -> Photo: ...

    async def delete_photos_for_part(self, part_id: int) -> int: ...
