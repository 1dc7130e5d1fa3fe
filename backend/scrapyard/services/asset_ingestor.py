"""
Photo ingestion for imported parts.

Downloads remote product images one by one, validates them with Pillow,
optionally normalises them to WebP, writes them to the configured storage
backend under ``parts/{part_id}/`` and records a photo row for each.
A failed image is logged and skipped; it never aborts the batch.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
from pathlib import PurePosixPath
from urllib.parse import unquote, urlparse

import httpx
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from scrapyard.config import (
    IMAGE_CONVERT_WEBP,
    IMAGE_FETCH_TIMEOUT,
    IMAGE_MAX_SIZE,
    PHOTO_ORIGIN_CATALOG,
    STORAGE_BACKEND,
)
from scrapyard.errors import AssetFetchError, PersistenceError
from scrapyard.models.inventory import Photo, PhotoCreate, PhotoSource
from scrapyard.storage.local_storage import LocalStorage
from scrapyard.storage.r2_client import R2Storage
from scrapyard.storage.repository import InventoryRepository

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def build_storage(backend: str = STORAGE_BACKEND) -> LocalStorage | R2Storage:
    """Storage backend selected by ``STORAGE_BACKEND``."""
    if backend == "r2":
        return R2Storage()
    if backend == "local":
        return LocalStorage()
    raise ValueError(f"Unknown storage backend '{backend}'")


def part_prefix(part_id: int) -> str:
    return f"parts/{part_id}"


# ---------------------------------------------------------------------------
# Image helpers
# ---------------------------------------------------------------------------


def verify_image(image_bytes: bytes) -> str:
    """Check that *image_bytes* decode as an image; return its format."""
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
        raise AssetFetchError(f"Downloaded data is not a readable image: {exc}") from exc
    return (img.format or "").lower()


def convert_to_webp(image_bytes: bytes, max_size: int = IMAGE_MAX_SIZE) -> bytes:
    """Resize so the longest side is at most *max_size* and encode as WebP."""
    img = Image.open(io.BytesIO(image_bytes))
    img = img.convert("RGB")

    w, h = img.size
    if max(w, h) > max_size:
        scale = max_size / max(w, h)
        img = img.resize((int(w * scale), int(h * scale)), Image.LANCZOS)

    buf = io.BytesIO()
    img.save(buf, format="WEBP", quality=85)
    return buf.getvalue()


def file_name_for(url: str, index: int, image_format: str = "") -> str:
    """Stable, filesystem-safe name: ``{index:03d}_{basename}``."""
    basename = unquote(PurePosixPath(urlparse(url).path).name)
    basename = _UNSAFE_CHARS.sub("_", basename).strip("._") or "image"
    if "." not in basename and image_format:
        basename = f"{basename}.{'jpg' if image_format == 'jpeg' else image_format}"
    return f"{index:03d}_{basename[:120]}"


# ---------------------------------------------------------------------------
# Ingestor
# ---------------------------------------------------------------------------


class AssetIngestor:
    """Turns an ordered list of remote images into stored photos of a part."""

    def __init__(
        self,
        repository: InventoryRepository,
        storage: LocalStorage | R2Storage,
        http: httpx.AsyncClient | None = None,
        convert_webp: bool = IMAGE_CONVERT_WEBP,
    ):
        self.repository = repository
        self.storage = storage
        self.convert_webp = convert_webp
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=IMAGE_FETCH_TIMEOUT, follow_redirects=True)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def fetch_bytes(self, url: str) -> bytes:
        """Download *url*; any failure becomes ``AssetFetchError``."""
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise AssetFetchError(
                f"HTTP {exc.response.status_code} downloading '{url}'"
            ) from exc
        except httpx.RequestError as exc:
            raise AssetFetchError(f"Request error downloading '{url}': {exc}") from exc
        if not response.content:
            raise AssetFetchError(f"Empty body downloading '{url}'")
        return response.content

    async def _store(self, part_id: int, source: PhotoSource, index: int) -> tuple[str, int]:
        """Fetch, validate and store one image; returns (key, size)."""
        data = await self.fetch_bytes(source.url)
        image_format = verify_image(data)

        if self.convert_webp:
            try:
                data = await asyncio.to_thread(convert_to_webp, data)
            except (Image.DecompressionBombError, OSError, ValueError) as exc:
                raise AssetFetchError(f"Could not convert '{source.url}' to WebP: {exc}") from exc
            name = PurePosixPath(file_name_for(source.url, index)).stem + ".webp"
        else:
            name = file_name_for(source.url, index, image_format)

        key = f"{part_prefix(part_id)}/{name}"
        try:
            size = await asyncio.to_thread(self.storage.write_file, key, data)
        except (OSError, BotoCoreError, ClientError) as exc:
            raise AssetFetchError(f"Could not store '{source.url}' as {key}: {exc}") from exc
        return key, size

    async def ingest(self, part_id: int, sources: list[PhotoSource]) -> list[Photo]:
        """
        Ingest *sources* in order and return the created photos.

        The first source that is stored successfully becomes the primary
        photo; failed sources are skipped, so primary is assigned among
        successes, not among requested positions.
        """
        photos: list[Photo] = []

        for index, source in enumerate(sources):
            try:
                key, size = await self._store(part_id, source, index)
            except AssetFetchError as exc:
                logger.warning("Part %s: skipping image %d (%s): %s", part_id, index + 1, source.url, exc)
                continue

            try:
                photo = await self.repository.create_photo(PhotoCreate(
                    part_id=part_id,
                    name=source.name or f"Imagen {index + 1} del catálogo",
                    description=source.alt or "Imagen importada del catálogo externo",
                    url=self.storage.public_url(key),
                    size_bytes=size,
                    is_primary=not photos,
                    origin=PHOTO_ORIGIN_CATALOG,
                ))
            except PersistenceError as exc:
                logger.warning("Part %s: could not record image %d (%s): %s", part_id, index + 1, key, exc)
                continue
            photos.append(photo)

        logger.info("Part %s: stored %d of %d images", part_id, len(photos), len(sources))
        return photos

    async def replace(self, part_id: int, sources: list[PhotoSource]) -> list[Photo]:
        """Delete every existing photo of the part, then ingest *sources*."""
        removed = await self.repository.delete_photos_for_part(part_id)
        files = await asyncio.to_thread(self.storage.delete_prefix, part_prefix(part_id))
        logger.info("Part %s: removed %d photos (%d files) before re-ingest", part_id, removed, files)
        return await self.ingest(part_id, sources)
