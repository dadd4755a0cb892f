"""
Field extraction for loosely-typed OLX JSON.

The same field shows up under different keys depending on the endpoint (and
sometimes the day), so every lookup goes through ``_FIELD_PATHS``: the first
non-empty value wins.
"""
from __future__ import annotations

from typing import Any

_FIELD_PATHS: dict[str, tuple[str, ...]] = {
    "id": ("id", "listing_id", "data.id"),
    "title": ("title", "name", "data.title"),
    "description": (
        "additional.description",
        "data.additional.description",
        "description",
        "data.description",
        "short_description",
    ),
    "price": ("price", "data.price", "display_price"),
    "status": ("status", "listing_status", "data.status"),
    "category_id": ("category_id", "category.id", "data.category_id", "data.category.id"),
    "location_id": (
        "city_id",
        "location_id",
        "location.id",
        "city.id",
        "data.city_id",
        "data.location_id",
        "data.location.id",
    ),
    "latitude": ("location.lat", "location.latitude", "lat", "latitude", "data.location.lat"),
    "longitude": ("location.lon", "location.lng", "location.longitude", "lon", "lng", "longitude", "data.location.lon"),
    "attributes": ("attributes", "data.attributes"),
    "images": ("images", "photos", "pictures", "data.images"),
    "sku": ("sku_number", "sku", "data.sku_number"),
    "state": ("state", "condition", "data.state"),
    "listing_type": ("listing_type", "type", "data.listing_type"),
    "last_page": ("meta.last_page", "last_page", "meta.total_pages", "total_pages"),
    "current_page": ("meta.current_page", "current_page"),
    "attribute_id": ("id", "attribute_id", "attr_id"),
    "attribute_value": ("value", "values", "value_name"),
    "user_id": ("user.id", "user_id"),
    "user_name": ("user.username", "username", "user.name"),
}

_IMAGE_URL_KEYS = ("url", "link", "original", "large", "medium", "src")


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _dig(raw: Any, path: str) -> Any:
    current = raw
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def extract(raw: Any, field: str, default: Any = None) -> Any:
    if not isinstance(raw, dict):
        return default
    for path in _FIELD_PATHS[field]:
        value = _dig(raw, path)
        if not _is_empty(value):
            return value
    return default


def unwrap(raw: Any) -> dict:
    """Return the listing object itself, whether or not it sits under ``data``."""
    if isinstance(raw, dict) and isinstance(raw.get("data"), dict):
        return raw["data"]
    return raw if isinstance(raw, dict) else {}


def items_of(raw: Any, *keys: str) -> list:
    """Collection payloads come back either bare or wrapped under one of ``keys``."""
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        for key in keys or ("data",):
            value = raw.get(key)
            if isinstance(value, list):
                return value
    return []


def extract_int(raw: Any, field: str) -> int | None:
    value = extract(raw, field)
    if isinstance(value, dict):
        value = value.get("id")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def extract_float(raw: Any, field: str) -> float | None:
    value = extract(raw, field)
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def extract_attributes(raw: Any) -> list[dict]:
    """Attributes normalized to ``[{"id": ..., "value": ...}]`` in remote order."""
    attributes = extract(raw, "attributes", [])
    if isinstance(attributes, dict):
        attributes = [{"id": key, "value": value} for key, value in attributes.items()]
    result = []
    for item in attributes if isinstance(attributes, list) else []:
        if not isinstance(item, dict):
            continue
        attr_id = extract(item, "attribute_id")
        value = extract(item, "attribute_value")
        if attr_id is None or value is None:
            continue
        result.append({"id": attr_id, "value": value})
    return result


def extract_image_urls(raw: Any) -> list[str]:
    images = extract(raw, "images", [])
    urls = []
    for image in images if isinstance(images, list) else []:
        if isinstance(image, str):
            url = image
        elif isinstance(image, dict):
            url = next((image[k] for k in _IMAGE_URL_KEYS if isinstance(image.get(k), str) and image.get(k)), None)
        else:
            url = None
        if url and url not in urls:
            urls.append(url)
    return urls
