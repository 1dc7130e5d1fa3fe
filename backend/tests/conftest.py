"""Shared fixtures: in-memory repository, fake catalog, image bytes."""

import io
import math
from datetime import datetime

import httpx
import pytest
from PIL import Image

from scrapyard.config import CatalogConfig
from scrapyard.errors import PersistenceError
from scrapyard.models.inventory import Part, Photo, Vehicle
from scrapyard.services.pipeline import CatalogPipeline
from scrapyard.storage.local_storage import LocalStorage

CATALOG_URL = "https://shop.example.com"
API_PREFIX = "/wp-json/wc/v3"


# ---------------------------------------------------------------------------
# In-memory repository
# ---------------------------------------------------------------------------

class InMemoryRepository:
    """Dict-backed InventoryRepository with the same uniqueness rules as the
    real tables (unique plate, unique VIN)."""

    def __init__(self):
        self.vehicles: dict[int, Vehicle] = {}
        self.parts: dict[int, Part] = {}
        self.photos: dict[int, Photo] = {}
        self._ids = {"vehicle": 0, "part": 0, "photo": 0}
        self.fail_part_creates = 0
        self.fail_photo_creates = 0
        self.catalog_config: CatalogConfig | None = None

    def _next(self, kind: str) -> int:
        self._ids[kind] += 1
        return self._ids[kind]

    async def find_part_by_external_id(self, external_id):
        for part in self.parts.values():
            if (part.provenance or {}).get("external_id") == external_id:
                return part
        return None

    async def get_part(self, part_id):
        return self.parts.get(part_id)

    async def list_imported_parts(self):
        return [p for p in self.parts.values() if (p.provenance or {}).get("external_id") is not None]

    async def create_part(self, part):
        if self.fail_part_creates:
            self.fail_part_creates -= 1
            raise PersistenceError("simulated insert failure on parts")
        stored = Part(id=self._next("part"), created_at=datetime.now(), **part.model_dump())
        self.parts[stored.id] = stored
        return stored

    async def update_part(self, part_id, fields):
        if part_id not in self.parts:
            raise PersistenceError(f"Part {part_id} vanished during update")
        updated = self.parts[part_id].model_copy(update=fields)
        self.parts[part_id] = updated
        return updated

    async def delete_part(self, part_id):
        self.parts.pop(part_id, None)

    async def find_vehicle_by_vin(self, vin):
        return next((v for v in self.vehicles.values() if v.vin == vin), None)

    async def plate_exists(self, plate):
        return any(v.plate == plate for v in self.vehicles.values())

    async def create_vehicle(self, vehicle):
        if await self.plate_exists(vehicle.plate):
            raise PersistenceError(f"duplicate key value violates unique constraint (plate={vehicle.plate})")
        if vehicle.vin and await self.find_vehicle_by_vin(vehicle.vin):
            raise PersistenceError(f"duplicate key value violates unique constraint (vin={vehicle.vin})")
        stored = Vehicle(id=self._next("vehicle"), **vehicle.model_dump())
        self.vehicles[stored.id] = stored
        return stored

    async def list_photos_for_part(self, part_id):
        return [p for p in self.photos.values() if p.part_id == part_id]

    async def create_photo(self, photo):
        if self.fail_photo_creates:
            self.fail_photo_creates -= 1
            raise PersistenceError("simulated insert failure on photos")
        stored = Photo(id=self._next("photo"), **photo.model_dump())
        self.photos[stored.id] = stored
        return stored

    async def delete_photos_for_part(self, part_id):
        doomed = [pid for pid, p in self.photos.items() if p.part_id == part_id]
        for pid in doomed:
            del self.photos[pid]
        return len(doomed)

    async def get_catalog_config(self):
        return self.catalog_config

    async def save_catalog_config(self, config):
        self.catalog_config = config


# ---------------------------------------------------------------------------
# Fake catalog + image host
# ---------------------------------------------------------------------------

def make_product(product_id: int, name: str | None = None, **overrides) -> dict:
    """A realistic catalog payload; pass ``vin=...`` etc. as meta shortcuts."""
    meta_keys = {
        "vin": "bastidor",
        "plate": "matricula",
        "brand": "nombreMarca",
        "model": "nombreModelo",
        "year": "anyoVehiculo",
        "engine_code": "codigoMotor",
    }
    meta = []
    for short, key in meta_keys.items():
        if short in overrides:
            meta.append({"id": len(meta) + 1, "key": key, "value": overrides.pop(short)})

    product = {
        "id": product_id,
        "name": name if name is not None else f"Producto {product_id}",
        "description": f"<p>Pieza <strong>{product_id}</strong> en buen estado</p>",
        "short_description": "",
        "price": "100.00",
        "regular_price": "100.00",
        "sku": f"SKU-{product_id}",
        "permalink": f"{CATALOG_URL}/producto/{product_id}",
        "images": [
            {"id": product_id * 10, "src": f"https://img.example.com/{product_id}/front.png", "name": "front", "alt": "Front"},
        ],
        "categories": [{"id": 1, "name": "Motor", "slug": "motor"}],
        "attributes": [],
        "meta_data": meta,
    }
    product.update(overrides)
    return product


class FakeCatalog:
    """Serves products and images through ``httpx.MockTransport``."""

    def __init__(self, products: list[dict] | None = None):
        self.products: list[dict] = list(products or [])
        self.images: dict[str, bytes] = {}
        self.failing_pages: set[int] = set()
        # page -> raw bytes (sent as HTML) or a JSON value served instead of the products
        self.page_bodies: dict[int, bytes | list] = {}
        self.requests: list[httpx.Request] = []

    @property
    def listing_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == f"{API_PREFIX}/products"]

    def _listing(self, request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        per_page = int(request.url.params.get("per_page", "10"))
        if page in self.failing_pages:
            return httpx.Response(500, json={"code": "internal_error"})
        items = self.products
        search = request.url.params.get("search")
        if search:
            items = [p for p in items if search.lower() in str(p.get("name", "")).lower()]
        start = (page - 1) * per_page
        headers = {
            "X-WP-Total": str(len(items)),
            "X-WP-TotalPages": str(math.ceil(len(items) / per_page)),
        }
        body = self.page_bodies.get(page)
        if isinstance(body, bytes):
            return httpx.Response(200, content=body, headers={**headers, "Content-Type": "text/html"})
        if body is not None:
            return httpx.Response(200, json=body, headers=headers)
        return httpx.Response(200, json=items[start:start + per_page], headers=headers)

    def _single(self, product_id: str) -> httpx.Response:
        for product in self.products:
            if str(product.get("id")) == product_id:
                return httpx.Response(200, json=product)
        return httpx.Response(404, json={"code": "woocommerce_rest_product_invalid_id"})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.url.host == "img.example.com":
            body = self.images.get(str(request.url))
            if body is None:
                return httpx.Response(404)
            return httpx.Response(200, content=body, headers={"Content-Type": "image/png"})
        if path == f"{API_PREFIX}/products":
            return self._listing(request)
        if path.startswith(f"{API_PREFIX}/products/"):
            return self._single(path.rsplit("/", 1)[-1])
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def png_bytes(color: str = "red", size: tuple[int, int] = (8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def image_bytes() -> bytes:
    return png_bytes()


@pytest.fixture
def catalog_config() -> CatalogConfig:
    return CatalogConfig(url=CATALOG_URL, consumer_key="ck_test", consumer_secret="cs_test_secret")


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(root=tmp_path / "uploads", url_prefix="/uploads")


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


def serve_images(catalog: FakeCatalog, data: bytes) -> None:
    """Make every image referenced by the catalog's products downloadable."""
    for product in catalog.products:
        for image in product.get("images") or []:
            catalog.images.setdefault(image["src"], data)


@pytest.fixture
async def pipeline(catalog, catalog_config, repository, storage):
    transport = catalog.transport()
    asset_http = httpx.AsyncClient(transport=transport)
    async with CatalogPipeline(
        catalog_config,
        repository,
        storage,
        transport=transport,
        asset_http=asset_http,
        inter_batch_delay=0,
    ) as built:
        yield built
    await asset_http.aclose()
