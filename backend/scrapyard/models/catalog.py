"""Pydantic v2 models for products read from the external catalog."""

from typing import Any

from pydantic import BaseModel, field_validator


class ExternalImage(BaseModel):
    """One image descriptor attached to an external product."""

    model_config = {"extra": "ignore"}

    id: int | None = None
    src: str = ""
    name: str | None = None
    alt: str | None = None


class ExternalCategory(BaseModel):
    model_config = {"extra": "ignore"}

    id: int | None = None
    name: str
    slug: str | None = None


class ExternalAttribute(BaseModel):
    """Free-form attribute, e.g. ``{"name": "Color", "options": ["Rojo"]}``."""

    model_config = {"extra": "ignore"}

    id: int | None = None
    name: str
    options: list[str] = []


class ExternalMeta(BaseModel):
    model_config = {"extra": "ignore"}

    id: int | None = None
    key: str
    value: Any = None


class ExternalProduct(BaseModel):
    """Product as returned by the catalog's ``/products`` endpoints.

    Only ``id`` and ``name`` are required; everything else is best-effort.
    """

    model_config = {"extra": "ignore"}

    # Identity
    id: int
    name: str
    sku: str | None = None
    permalink: str | None = None

    # Text
    description: str | None = None
    short_description: str | None = None

    # Pricing (the API sends decimals as strings, sometimes empty)
    price: str | float | None = None
    regular_price: str | float | None = None
    sale_price: str | float | None = None

    # Classification & media
    images: list[ExternalImage] = []
    categories: list[ExternalCategory] = []
    attributes: list[ExternalAttribute] = []
    meta_data: list[ExternalMeta] = []

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Product name must be a non-empty string.")
        return v


class ProductPage(BaseModel):
    """One page of a catalog listing plus the upstream pagination totals."""

    items: list[dict]
    total_count: int
    total_pages: int
    page: int = 1
    per_page: int = 10
