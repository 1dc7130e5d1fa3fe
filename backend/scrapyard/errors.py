"""Exception types raised by the catalog import pipeline."""


class CatalogError(Exception):
    """Base class for every import/sync failure."""


class NotFoundError(CatalogError):
    """A product (upstream) or a part (locally) does not exist."""


class SchemaError(CatalogError):
    """The external product payload is missing required fields."""


class UpstreamError(CatalogError):
    """The external catalog answered with a non-2xx, non-404 response.

    ``status_code`` is ``None`` when the request never got an answer
    (timeouts, DNS, refused connections).
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AssetFetchError(CatalogError):
    """A single image could not be downloaded or decoded."""


class PersistenceError(CatalogError):
    """A repository write failed."""
