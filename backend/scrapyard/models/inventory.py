"""Pydantic v2 models for the yard's own inventory records."""

from datetime import date, datetime

from pydantic import BaseModel

from scrapyard.config import PHOTO_ORIGIN_MANUAL


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------

class VehicleBase(BaseModel):
    """All vehicle fields from the database."""

    model_config = {"from_attributes": True}

    brand: str = ""
    model: str = ""
    trim: str = ""
    year: int | None = None
    color: str = ""
    plate: str
    vin: str | None = None
    fuel_type: str = ""
    mileage: int = 0
    registration_date: date | None = None
    status: str = ""
    location: str = ""
    notes: str = ""


class VehicleCreate(VehicleBase):
    """Input model for a new vehicle. Identical to VehicleBase."""

    pass


class Vehicle(VehicleBase):
    """Vehicle as stored, with its primary key."""

    id: int
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------

class PartBase(BaseModel):
    """All part fields from the database."""

    model_config = {"from_attributes": True}

    vehicle_id: int | None = None
    category: str
    description: str
    status: str = ""
    storage_location: str = ""
    scan_code: str = ""
    extraction_date: date | None = None
    cost_price: float = 0.0
    sale_price: float = 0.0
    sellable: bool = True
    notes: str = ""

    # External catalog provenance: external_id, external_sku, external_url, ...
    provenance: dict | None = None


class PartCreate(PartBase):
    pass


class Part(PartBase):
    id: int
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Photos
# ---------------------------------------------------------------------------

class PhotoBase(BaseModel):
    model_config = {"from_attributes": True}

    part_id: int
    name: str
    description: str = ""
    url: str
    size_bytes: int = 0
    is_primary: bool = False
    origin: str = PHOTO_ORIGIN_MANUAL


class PhotoCreate(PhotoBase):
    pass


class Photo(PhotoBase):
    id: int
    uploaded_at: datetime | None = None


# ---------------------------------------------------------------------------
# Mapping output
# ---------------------------------------------------------------------------

class PhotoSource(BaseModel):
    """A remote image to ingest, in the order it should be tried."""

    url: str
    name: str | None = None
    alt: str | None = None


class MappedProduct(BaseModel):
    """Everything the importer needs to persist one external product."""

    external_id: int
    product_name: str
    vehicle_lookup_key: str | None = None
    vehicle_fields: dict = {}
    part_fields: dict
    photo_sources: list[PhotoSource] = []
