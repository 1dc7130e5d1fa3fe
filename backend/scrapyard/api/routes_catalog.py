"""External catalog API routes: connection, listing, import, sync, purge."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from scrapyard.config import IMPORT_BATCH_DELAY, IMPORT_PAGE_SIZE, CatalogConfig
from scrapyard.errors import CatalogError
from scrapyard.models.imports import ImportResult, ImportStats, PurgeReport, SyncResult
from scrapyard.services.cleanup import purge_imported_parts
from scrapyard.services.pipeline import CatalogPipeline, load_active_config
from scrapyard.services.product_mapper import strip_html

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/catalog", tags=["catalog"])

# HTTP status for each failed ImportResult kind
IMPORT_ERROR_STATUS: dict[str, int] = {
    "not_found": 404,
    "upstream": 502,
    "schema": 422,
    "persistence": 500,
    "unexpected": 500,
}


# ---------------------------------------------------------------------------
# Request / state models
# ---------------------------------------------------------------------------

class ImportManyRequest(BaseModel):
    ids: list[int] = Field(min_length=1)


class ImportAllRequest(BaseModel):
    page_size: int = Field(default=IMPORT_PAGE_SIZE, ge=1, le=100)
    delay: float = Field(default=IMPORT_BATCH_DELAY, ge=0)


class ImportJob:
    """The one full-catalog run this process may have in flight."""

    def __init__(self):
        self.running = False
        self.stats = ImportStats()
        self.cancel = asyncio.Event()
        self.error: str | None = None
        self.started_at: str | None = None
        self.finished_at: str | None = None

    def reset(self) -> None:
        self.running = True
        self.stats = ImportStats()
        self.cancel = asyncio.Event()
        self.error = None
        self.started_at = datetime.now().isoformat()
        self.finished_at = None

    def snapshot(self) -> dict:
        return {
            "running": self.running,
            "processed": self.stats.processed,
            "error": self.error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "stats": self.stats.model_dump(mode="json"),
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _open_pipeline(request: Request) -> CatalogPipeline:
    """Build a pipeline with the credentials active right now."""
    factory = getattr(request.app.state, "pipeline_factory", None)
    if factory is not None:
        return await factory()
    config = await load_active_config(request.app.state.settings_store)
    return CatalogPipeline(config, request.app.state.repository, request.app.state.storage)


def _job(request: Request) -> ImportJob:
    if not hasattr(request.app.state, "import_job"):
        request.app.state.import_job = ImportJob()
    return request.app.state.import_job


def _summary(product: dict) -> dict:
    """Subset of product fields for list responses."""
    images = product.get("images") or []
    return {
        "id": product.get("id"),
        "name": product.get("name"),
        "sku": product.get("sku"),
        "price": product.get("price"),
        "permalink": product.get("permalink"),
        "categories": [c.get("name") for c in product.get("categories") or [] if isinstance(c, dict)],
        "image": images[0].get("src") if images and isinstance(images[0], dict) else None,
        "short_description": strip_html(product.get("short_description")),
    }


async def _run_full_import(request: Request, job: ImportJob, body: ImportAllRequest) -> None:
    try:
        async with await _open_pipeline(request) as pipeline:
            if not await pipeline.client.probe():
                job.error = "No se pudo conectar con el catálogo externo"
                return
            await pipeline.coordinator.import_all(
                page_size=body.page_size,
                inter_batch_delay=body.delay,
                cancel=job.cancel,
                stats=job.stats,
            )
    except CatalogError as exc:
        logger.error("Full-catalog import aborted: %s", exc)
        job.error = str(exc)
    except Exception as exc:
        logger.exception("Full-catalog import crashed")
        job.error = str(exc) or type(exc).__name__
    finally:
        job.running = False
        job.finished_at = datetime.now().isoformat()


# --------------------------------------------------------------------------- #
# 1. Connection settings
# --------------------------------------------------------------------------- #

@router.get("/config")
async def get_config(request: Request):
    """Return the active catalog settings with the secret masked."""
    try:
        config = await load_active_config(request.app.state.settings_store)
    except ValidationError:
        raise HTTPException(status_code=404, detail="El catálogo externo no está configurado")
    return {"data": config.masked(), "success": True}


@router.post("/config")
async def save_config(config: CatalogConfig, request: Request):
    """Persist new catalog credentials."""
    store = request.app.state.settings_store
    if store is None:
        raise HTTPException(status_code=501, detail="No hay almacén de configuración disponible")
    await store.save_catalog_config(config)
    return {"success": True, "message": "Configuración guardada correctamente"}


@router.post("/test-connection")
async def test_connection(request: Request, config: CatalogConfig | None = None):
    """Probe the catalog with posted credentials, or the stored ones."""
    if config is not None:
        pipeline = CatalogPipeline(config, request.app.state.repository, request.app.state.storage)
    else:
        pipeline = await _open_pipeline(request)
    async with pipeline:
        ok = await pipeline.client.probe()
    return {
        "success": ok,
        "message": "Conexión exitosa con el catálogo" if ok else "Error al conectar con el catálogo",
    }


# --------------------------------------------------------------------------- #
# 2. Browsing the catalog
# --------------------------------------------------------------------------- #

@router.get("/products")
async def list_products(
    request: Request,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=100),
    search: str | None = Query(default=None, description="Free-text search on the catalog"),
):
    """One catalog page with its pagination totals."""
    async with await _open_pipeline(request) as pipeline:
        result = await pipeline.client.list_products(page=page, per_page=per_page, search=search)
    return {
        "data": {
            "products": [_summary(p) for p in result.items],
            "pagination": {
                "total": result.total_count,
                "totalPages": result.total_pages,
                "page": page,
                "perPage": per_page,
            },
        },
        "success": True,
    }


@router.get("/products/{product_id}")
async def get_product(product_id: int, request: Request):
    """Raw catalog payload for one product (404 if it does not exist)."""
    async with await _open_pipeline(request) as pipeline:
        product = await pipeline.client.get_product(product_id)
    return {"data": product, "success": True}


# --------------------------------------------------------------------------- #
# 3. Imports
# --------------------------------------------------------------------------- #

@router.post("/products/{product_id}/import", response_model=ImportResult)
async def import_product(product_id: int, request: Request):
    """Import one product as a part."""
    async with await _open_pipeline(request) as pipeline:
        result = await pipeline.coordinator.import_one(product_id)
    status_code = IMPORT_ERROR_STATUS.get(result.error_kind or "", 200)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


@router.post("/products/import-many", response_model=ImportStats)
async def import_many(body: ImportManyRequest, request: Request):
    """Import an explicit selection of products, sequentially."""
    async with await _open_pipeline(request) as pipeline:
        return await pipeline.coordinator.import_many(body.ids)


@router.post("/products/import-all", status_code=202)
async def import_all(request: Request, background: BackgroundTasks, body: ImportAllRequest | None = None):
    """Start a full-catalog import in the background."""
    job = _job(request)
    if job.running:
        raise HTTPException(status_code=409, detail="Ya hay una importación completa en curso")
    job.reset()
    background.add_task(_run_full_import, request, job, body or ImportAllRequest())
    return {"success": True, "message": "Importación completa iniciada"}


@router.get("/products/import-all/status")
async def import_all_status(request: Request):
    """Live progress of the current (or last) full-catalog import."""
    return _job(request).snapshot()


@router.post("/products/import-all/cancel")
async def cancel_import_all(request: Request):
    job = _job(request)
    if not job.running:
        return {"success": False, "message": "No hay ninguna importación en curso"}
    job.cancel.set()
    return {"success": True, "message": "Cancelación solicitada"}


# --------------------------------------------------------------------------- #
# 4. Sync and cleanup
# --------------------------------------------------------------------------- #

@router.post("/parts/{part_id}/sync/{product_id}", response_model=SyncResult)
async def sync_part(part_id: int, product_id: int, request: Request):
    """Overwrite an imported part with the current catalog data."""
    async with await _open_pipeline(request) as pipeline:
        return await pipeline.sync.sync_part(part_id, product_id)


@router.delete("/imported", response_model=PurgeReport)
async def purge_imported(request: Request):
    """Delete every imported part (sold or reserved ones are kept)."""
    return await purge_imported_parts(request.app.state.repository, request.app.state.storage)
