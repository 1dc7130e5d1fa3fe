"""
Local filesystem storage for ingested part photos.

Files live under ``UPLOAD_DIR`` and are served by the web front end from
``UPLOAD_URL_PREFIX``. Keys are relative, slash-separated paths such as
``parts/42/000_front.jpg``.
"""

import logging
import shutil
from pathlib import Path

from scrapyard.config import UPLOAD_DIR, UPLOAD_URL_PREFIX

logger = logging.getLogger(__name__)


class LocalStorage:
    """Write/delete photo files below a single root directory."""

    def __init__(self, root: Path | str = UPLOAD_DIR, url_prefix: str = UPLOAD_URL_PREFIX):
        self.root = Path(root).resolve()
        self.url_prefix = url_prefix.rstrip("/")

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"Storage key '{key}' escapes the upload directory")
        return path

    def write_file(self, key: str, data: bytes) -> int:
        """Write *data* under *key* and return the stored size in bytes."""
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path.stat().st_size

    def delete_prefix(self, prefix: str) -> int:
        """Remove every file below *prefix*; returns how many were removed."""
        path = self._path_for(prefix)
        if not path.exists():
            return 0
        if path.is_file():
            path.unlink()
            return 1
        removed = sum(1 for p in path.rglob("*") if p.is_file())
        shutil.rmtree(path)
        logger.debug("Removed %d files under %s", removed, path)
        return removed

    def public_url(self, key: str) -> str:
        return f"{self.url_prefix}/{key.lstrip('/')}"
