"""
Pure mapping from an external catalog product to our inventory fields.

No I/O happens here. The only exception this module raises is
``SchemaError``, when a payload lacks a usable ``id`` or ``name``; every other
defect (bad prices, malformed images, odd attributes) degrades to a default
so that a single sloppy listing never blocks an import.
"""

from __future__ import annotations

import html
import logging
import math
import re
from collections import defaultdict

from pydantic import ValidationError

from scrapyard.config import (
    COST_PRICE_RATIO,
    IMPORT_LOCATION_LABEL,
    IMPORTED_PART_STATUS,
    IMPORTED_VEHICLE_STATUS,
    UNCATEGORIZED_LABEL,
    VEHICLE_COLUMN_FACTS,
    VEHICLE_FACT_KEYS,
)
from scrapyard.errors import SchemaError
from scrapyard.models.catalog import ExternalProduct
from scrapyard.models.inventory import MappedProduct, PhotoSource

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = {"id", "name"}
_MAX_REPAIR_PASSES = 3

_TAG_PATTERN = re.compile(r"<\/?[A-Za-z][^>]*>")
_WHITESPACE_PATTERN = re.compile(r"\s+")
_DIGITS_PATTERN = re.compile(r"-?\d+")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def strip_html(text: str | None) -> str:
    """Remove markup and entities, collapsing whitespace."""
    if not text:
        return ""
    cleaned = _TAG_PATTERN.sub(" ", text)
    cleaned = html.unescape(cleaned)
    return _WHITESPACE_PATTERN.sub(" ", cleaned).strip()


def parse_price(value) -> float:
    """Parse an upstream price; anything unparseable becomes 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    text = str(value).strip().replace(",", ".")
    if not text:
        return 0.0
    try:
        price = float(text)
    except ValueError:
        return 0.0
    if math.isnan(price) or math.isinf(price) or price < 0:
        return 0.0
    return round(price, 2)


def _parse_int(value: str | None) -> int | None:
    """Pull the first integer out of strings like ``"123.456 km"``."""
    if not value:
        return None
    match = _DIGITS_PATTERN.search(value.replace(".", "").replace(",", ""))
    if not match:
        return None
    return int(match.group(0))


def _validate_product(payload) -> ExternalProduct:
    """Validate *payload*, dropping malformed optional parts instead of failing.

    Errors on ``id`` or ``name`` are fatal; errors elsewhere remove the
    offending list element (or the whole optional field) and retry.
    """
    if isinstance(payload, ExternalProduct):
        return payload
    if not isinstance(payload, dict):
        raise SchemaError(f"Product payload must be an object, got {type(payload).__name__}")

    data = dict(payload)
    for _ in range(_MAX_REPAIR_PASSES):
        try:
            return ExternalProduct.model_validate(data)
        except ValidationError as exc:
            drop_fields: set[str] = set()
            drop_items: dict[str, set[int]] = defaultdict(set)
            for err in exc.errors():
                loc = err.get("loc") or ()
                field = loc[0] if loc else None
                if field is None or field in _REQUIRED_FIELDS:
                    raise SchemaError(
                        f"Product payload has invalid '{field}': {err.get('msg')}"
                    ) from exc
                if len(loc) > 1 and isinstance(loc[1], int):
                    drop_items[field].add(loc[1])
                else:
                    drop_fields.add(field)

            for field in drop_fields:
                data.pop(field, None)
            for field, indexes in drop_items.items():
                if field in drop_fields:
                    continue
                data[field] = [v for i, v in enumerate(data[field]) if i not in indexes]
            logger.warning(
                "Product %s: dropped malformed fields %s",
                data.get("id"), sorted(drop_fields | set(drop_items)),
            )

    raise SchemaError(f"Product {data.get('id')} could not be repaired into a valid shape")


def collect_vehicle_facts(product: ExternalProduct) -> dict[str, str]:
    """Read vehicle facts from meta_data first, then from attributes."""
    facts: dict[str, str] = {}

    for meta in product.meta_data:
        field = VEHICLE_FACT_KEYS.get(meta.key.strip().lower())
        if field is None or meta.value is None:
            continue
        value = str(meta.value).strip()
        if value and field not in facts:
            facts[field] = value

    for attr in product.attributes:
        key = attr.name.strip().lower().replace(" ", "_")
        field = VEHICLE_FACT_KEYS.get(key) or VEHICLE_FACT_KEYS.get(key.replace("_", ""))
        if field is None or field in facts:
            continue
        value = ", ".join(o.strip() for o in attr.options if o and o.strip())
        if value:
            facts[field] = value

    return facts


def _photo_sources(product: ExternalProduct) -> list[PhotoSource]:
    sources: list[PhotoSource] = []
    for image in product.images:
        url = (image.src or "").strip()
        if not url:
            continue
        # Avoid mixed-content warnings in the admin UI
        if url.startswith("http:"):
            url = "https:" + url[len("http:"):]
        sources.append(PhotoSource(url=url, name=image.name or None, alt=image.alt or None))
    return sources


# ---------------------------------------------------------------------------
# Core
# ---------------------------------------------------------------------------


def map_product(payload: dict | ExternalProduct) -> MappedProduct:
    """
    Convert one external product into vehicle, part and photo fields.

    - Part description is the HTML-stripped description, or the product name.
    - Sale price comes from ``price`` (then ``regular_price``); cost price is
      estimated with ``COST_PRICE_RATIO``.
    - A chassis number, when present, becomes ``vehicle_lookup_key``.
    - Facts without a vehicle column, plus SKU, permalink and raw
      attributes, are kept verbatim in the part's provenance blob.

    Raises:
        SchemaError: the payload has no usable ``id`` or ``name``.
    """
    product = _validate_product(payload)
    facts = collect_vehicle_facts(product)

    description = strip_html(product.description) or product.name.strip()

    sale_price = parse_price(product.price)
    if not sale_price:
        sale_price = parse_price(product.regular_price)
    cost_price = round(sale_price * COST_PRICE_RATIO, 2)

    category = product.categories[0].name.strip() if product.categories else ""
    category = category or UNCATEGORIZED_LABEL

    vin = facts.get("vin", "").strip()
    lookup_key = vin or None

    vehicle_fields: dict = {}
    if lookup_key:
        vehicle_fields = {
            "brand": facts.get("brand", ""),
            "model": facts.get("model", ""),
            "trim": facts.get("trim", ""),
            "year": _parse_int(facts.get("year")),
            "color": facts.get("color", ""),
            "plate": facts.get("plate", ""),
            "vin": lookup_key,
            "fuel_type": facts.get("fuel_type", ""),
            "mileage": _parse_int(facts.get("mileage")) or 0,
            "status": IMPORTED_VEHICLE_STATUS,
            "location": IMPORT_LOCATION_LABEL,
            "notes": (
                "Vehículo creado automáticamente desde el catálogo externo. "
                f"ID producto: {product.id}"
            ),
        }

    provenance: dict = {
        "external_id": product.id,
        "external_sku": product.sku or "",
        "external_url": product.permalink or "",
        "external_images": [img.src for img in product.images if img.src],
        "categories": [c.name for c in product.categories],
        "attributes": [a.model_dump(exclude_none=True) for a in product.attributes],
    }
    # Vehicle facts without a column on the vehicles table still travel along
    for field, value in facts.items():
        if field not in VEHICLE_COLUMN_FACTS:
            provenance[field] = value
    provenance["vehicle_facts"] = facts

    part_fields = {
        "category": category,
        "description": description,
        "status": IMPORTED_PART_STATUS,
        "storage_location": IMPORT_LOCATION_LABEL,
        "scan_code": product.sku or "",
        "cost_price": cost_price,
        "sale_price": sale_price,
        "sellable": True,
        "notes": facts.get("public_notes") or strip_html(product.short_description),
        "provenance": provenance,
    }

    return MappedProduct(
        external_id=product.id,
        product_name=product.name,
        vehicle_lookup_key=lookup_key,
        vehicle_fields=vehicle_fields,
        part_fields=part_fields,
        photo_sources=_photo_sources(product),
    )
