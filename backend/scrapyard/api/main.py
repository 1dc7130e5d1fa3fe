"""
Scrapyard API - Main FastAPI Application Entry Point

Back office for a vehicle dismantling yard: exposes the external catalog
import / sync pipeline to the admin front end.

Run with:
    uvicorn scrapyard.api.main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from scrapyard.api.routes_catalog import router as catalog_router
from scrapyard.config import setup_logging
from scrapyard.errors import (
    CatalogError,
    NotFoundError,
    PersistenceError,
    SchemaError,
    UpstreamError,
)
from scrapyard.services.asset_ingestor import build_storage

logger = logging.getLogger(__name__)

# Map known error types to status codes and user-facing messages
ERROR_RESPONSES: dict[type, tuple[int, str]] = {
    NotFoundError: (404, "El recurso solicitado no existe."),
    SchemaError: (422, "El producto del catálogo tiene un formato no válido."),
    UpstreamError: (502, "Error al comunicarse con el catálogo externo."),
    PersistenceError: (500, "Error al guardar los datos."),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database and storage unless they were injected already."""
    setup_logging()
    if getattr(app.state, "repository", None) is None:
        from scrapyard.storage.supabase_client import create_repository

        repository = await create_repository()
        app.state.repository = repository
        app.state.settings_store = repository
    if getattr(app.state, "storage", None) is None:
        app.state.storage = build_storage()
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="Scrapyard API",
        description="Vehicle dismantling yard back office",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.repository = None
    app.state.settings_store = None
    app.state.storage = None

    # -----------------------------------------------------------------------
    # CORS middleware (the admin front end runs on its own origin)
    # -----------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------
    @app.exception_handler(CatalogError)
    async def catalog_exception_handler(request: Request, exc: CatalogError):
        """Translate pipeline errors into structured JSON error responses."""
        error_type = type(exc).__name__
        status_code, message = 500, "Error en la integración con el catálogo."
        for exc_type, (code, text) in ERROR_RESPONSES.items():
            if isinstance(exc, exc_type):
                status_code, message = code, text
                break

        logger.error("%s: %s | Path: %s", error_type, exc, request.url.path)

        return JSONResponse(
            status_code=status_code,
            content={
                "success": False,
                "error": error_type,
                "message": message,
                "detail": str(exc),
            },
        )

    @app.exception_handler(ValidationError)
    async def config_validation_handler(request: Request, exc: ValidationError):
        """Invalid or missing catalog credentials."""
        logger.error("Invalid configuration: %s | Path: %s", exc, request.url.path)
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "ValidationError",
                "message": "La configuración del catálogo no es válida.",
                "detail": str(exc),
            },
        )

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------
    app.include_router(catalog_router)

    @app.get("/")
    async def root():
        """Root endpoint returning basic API information."""
        return {
            "name": "Scrapyard API",
            "version": "0.1.0",
            "status": "running",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring and load balancers."""
        return {"status": "healthy"}

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Convenience: run directly with `python -m scrapyard.api.main`
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("scrapyard.api.main:app", host="0.0.0.0", port=8000, reload=True)
