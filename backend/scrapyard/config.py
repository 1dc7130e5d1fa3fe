"""
Central configuration module for the scrapyard backend.

Loads environment variables, defines import constants, storage settings,
business-policy knobs for imported parts, and the table that maps the
external catalog's vehicle attributes onto our own vehicle fields.
"""

import logging
import os
import sys

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

load_dotenv()

# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY", "")

CATALOG_URL = os.getenv("CATALOG_URL", "")
CATALOG_CONSUMER_KEY = os.getenv("CATALOG_CONSUMER_KEY", "")
CATALOG_CONSUMER_SECRET = os.getenv("CATALOG_CONSUMER_SECRET", "")
CATALOG_API_VERSION = os.getenv("CATALOG_API_VERSION", "wc/v3")
CATALOG_TIMEOUT = float(os.getenv("CATALOG_TIMEOUT", "30"))

STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
UPLOAD_URL_PREFIX = os.getenv("UPLOAD_URL_PREFIX", "/uploads")

CF_ACCOUNT_ID = os.getenv("CF_ACCOUNT_ID", "")
R2_ACCESS_KEY = os.getenv("R2_ACCESS_KEY", "")
R2_SECRET_KEY = os.getenv("R2_SECRET_KEY", "")
R2_BUCKET = os.getenv("R2_BUCKET", "scrapyard-photos")
R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")

IMPORT_INTERVAL_HOURS = int(os.getenv("IMPORT_INTERVAL_HOURS", "24"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ---------------------------------------------------------------------------
# Full-catalog import pacing
# ---------------------------------------------------------------------------
IMPORT_PAGE_SIZE = int(os.getenv("IMPORT_PAGE_SIZE", "100"))
IMPORT_BATCH_DELAY = float(os.getenv("IMPORT_BATCH_DELAY", "0.5"))  # seconds between pages
LARGE_CATALOG_WARNING = 150_000  # the admin UI warns above this many products

# ---------------------------------------------------------------------------
# Image ingestion
# ---------------------------------------------------------------------------
IMAGE_FETCH_TIMEOUT = float(os.getenv("IMAGE_FETCH_TIMEOUT", "15"))
IMAGE_CONVERT_WEBP = os.getenv("IMAGE_CONVERT_WEBP", "false").lower() in ("1", "true", "yes")
IMAGE_MAX_SIZE = int(os.getenv("IMAGE_MAX_SIZE", "1600"))  # longest side in px when converting

# ---------------------------------------------------------------------------
# Business policy for imported parts
# ---------------------------------------------------------------------------
# The catalog exposes no cost data. This ratio is a placeholder policy agreed
# with the yard, not something derived from upstream prices.
COST_PRICE_RATIO = float(os.getenv("COST_PRICE_RATIO", "0.70"))

UNCATEGORIZED_LABEL = "Sin categorizar"
IMPORTED_PART_STATUS = "nueva"
IMPORTED_VEHICLE_STATUS = "importado"
IMPORT_LOCATION_LABEL = "Importado de WooCommerce"

PHOTO_ORIGIN_MANUAL = "manual"
PHOTO_ORIGIN_CATALOG = "external-catalog"

# Prefix for plates synthesized when an imported vehicle carries none
SYNTHETIC_PLATE_PREFIX = "WC-"

# ---------------------------------------------------------------------------
# Upstream vehicle facts -> internal field names
#
# Keys are matched case-insensitively against product meta_data keys first,
# then against attribute names.
# ---------------------------------------------------------------------------
VEHICLE_FACT_KEYS: dict[str, str] = {
    "bastidor": "vin",
    "vin": "vin",
    "chassis_number": "vin",
    "matricula": "plate",
    "plate": "plate",
    "color": "color",
    "colour": "color",
    "kilometraje": "mileage",
    "mileage": "mileage",
    "anyovehiculo": "year",
    "anio_vehiculo": "year",
    "year": "year",
    "nombremarca": "brand",
    "marca": "brand",
    "brand": "brand",
    "nombremodelo": "model",
    "modelo": "model",
    "model": "model",
    "nombreversion": "trim",
    "version": "trim",
    "trim": "trim",
    "combustible": "fuel_type",
    "fuel": "fuel_type",
    "codigomotor": "engine_code",
    "engine_code": "engine_code",
    "puertas": "doors",
    "doors": "doors",
    "cilindrada": "displacement",
    "displacement": "displacement",
    "potenciahp": "power_hp",
    "power": "power_hp",
    "transmision": "transmission",
    "transmission": "transmission",
    "observaciones_publicas": "public_notes",
    "public_notes": "public_notes",
}

# Facts that have a first-class column on the vehicles table
VEHICLE_COLUMN_FACTS: set[str] = {
    "vin", "plate", "color", "mileage", "year", "brand", "model", "trim", "fuel_type",
}


# ---------------------------------------------------------------------------
# External catalog credentials
# ---------------------------------------------------------------------------

VALID_API_VERSIONS: set[str] = {
    "wc/v1", "wc/v2", "wc/v3", "wc-api/v1", "wc-api/v2", "wc-api/v3",
}


class CatalogConfig(BaseModel):
    """Connection settings for the external catalog, loaded once per run."""

    url: str
    consumer_key: str
    consumer_secret: str
    version: str = "wc/v3"
    timeout: float = 30.0

    @field_validator("url")
    @classmethod
    def must_be_http_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("Catalog URL must start with http:// or https://")
        return v

    @field_validator("consumer_key", "consumer_secret")
    @classmethod
    def must_be_non_empty(cls, v: str, info) -> str:  # noqa: N805
        if not v or not v.strip():
            raise ValueError(f"'{info.field_name}' must be a non-empty string.")
        return v.strip()

    @field_validator("version")
    @classmethod
    def must_be_known_version(cls, v: str) -> str:
        if v not in VALID_API_VERSIONS:
            raise ValueError(f"Unsupported API version '{v}'")
        return v

    @property
    def api_base(self) -> str:
        return f"{self.url}/wp-json/{self.version}"

    def masked(self) -> dict:
        """Return the settings with the consumer secret hidden."""
        data = self.model_dump()
        secret = data.get("consumer_secret") or ""
        data["consumer_secret"] = "*" * max(len(secret) - 4, 0) + secret[-4:]
        return data


def load_catalog_config() -> CatalogConfig:
    """Build a CatalogConfig from the environment."""
    return CatalogConfig(
        url=CATALOG_URL,
        consumer_key=CATALOG_CONSUMER_KEY,
        consumer_secret=CATALOG_CONSUMER_SECRET,
        version=CATALOG_API_VERSION,
        timeout=CATALOG_TIMEOUT,
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def setup_logging(level: str | None = None) -> None:
    """Configure root logging for CLI and API entry points."""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
