from __future__ import annotations

import logging
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from olxsync import olx_fields
from olxsync.exceptions import ArgumentError
from olxsync.models import OlxCategoryAttribute, OlxCategoryTemplate, Product
from olxsync.services.listing.description import auto_populate, compose_description
from olxsync.services.listing.extractors import extract_attributes
from olxsync.services.listing.mapping_rules import RuleContext, resolve
from olxsync.services.listing.option_matching import match_option, normalize
from olxsync.settings import settings

logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"\d+(?:[.,]\d+)?")


def round_price(value: Any) -> int:
    """Whole currency units, half-up (19.5 -> 20, 21.9945 -> 22)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clean_numeric(value: str) -> str:
    """'77.0 Ah' -> '77'. Values without a number are returned unchanged."""
    match = _NUMBER.search(value)
    if not match:
        return value
    return str(int(float(match.group(0).replace(",", "."))))


class ListingPayloadBuilder:
    def __init__(self, title_max_length: int | None = None, short_description_max_length: int | None = None):
        self.title_max_length = title_max_length or settings.olx_title_max_length
        self.short_description_max_length = short_description_max_length or settings.olx_short_description_max_length

    def validate(self, product: Product, template: OlxCategoryTemplate | None = None) -> OlxCategoryTemplate:
        template = template or product.olx_category_template
        if not (product.title or "").strip():
            raise ArgumentError("Product must have a title", context={"product_id": str(product.id)})
        if template is None:
            raise ArgumentError(
                "Product has no OLX category template assigned", context={"product_id": str(product.id)}
            )
        if template.olx_category is None:
            raise ArgumentError(
                f"Template '{template.name}' has no OLX category", context={"template_id": str(template.id)}
            )
        if template.olx_location is None:
            logger.info(f"Template {template.id} has no location; GPS coordinates will be sent")
        return template

    def build(self, product: Product, template: OlxCategoryTemplate | None = None) -> dict[str, Any]:
        template = self.validate(product, template)
        auto_populate(product, template)

        payload: dict[str, Any] = {
            "title": self.build_title(product),
            "description": product.olx_description or compose_description(product, template),
            "category_id": template.olx_category.external_id,
            "listing_type": template.default_listing_type or settings.olx_default_listing_type,
            "state": template.default_state or settings.olx_default_state,
            "available": (product.stock or 0) > 0,
        }

        price = product.final_price if product.final_price is not None else product.price
        if price is not None:
            payload["price"] = round_price(price)

        short_description = (product.olx_description or product.description or "").strip()
        if short_description:
            payload["short_description"] = short_description[: self.short_description_max_length]
        if product.sku:
            payload["sku_number"] = product.sku

        payload.update(self.build_location(product, template))

        payload["attributes"] = self.build_attributes(product, template)
        return payload

    def build_title(self, product: Product) -> str:
        title = (product.olx_title or product.title or "").strip()
        return title[: self.title_max_length]

    # ------------------------------------------------------------ location

    def build_location(self, product: Product, template: OlxCategoryTemplate) -> dict[str, Any]:
        if template.olx_location is not None:
            return {"city_id": template.olx_location.external_id}
        coordinates = self._synced_coordinates(product)
        if coordinates is None:
            coordinates = (settings.olx_default_latitude, settings.olx_default_longitude)
        return {"location": {"lat": coordinates[0], "lon": coordinates[1]}}

    def _synced_coordinates(self, product: Product) -> tuple[float, float] | None:
        listing = product.olx_listing
        if listing is None or not listing.extra:
            return None
        latitude = olx_fields.extract_float(listing.extra, "latitude")
        longitude = olx_fields.extract_float(listing.extra, "longitude")
        if latitude is None or longitude is None:
            return None
        return latitude, longitude

    # ------------------------------------------------------------ attributes

    def build_attributes(self, product: Product, template: OlxCategoryTemplate) -> list[dict[str, Any]]:
        if product.is_marketplace_origin:
            return self.stored_attributes(product)
        return self.derived_attributes(product, template)

    def stored_attributes(self, product: Product) -> list[dict[str, Any]]:
        """Attributes exactly as last observed on OLX; no mapping, no option matching."""
        listing = product.olx_listing
        if listing is None or not listing.extra:
            return []
        return olx_fields.extract_attributes(listing.extra)

    def derived_attributes(self, product: Product, template: OlxCategoryTemplate) -> list[dict[str, Any]]:
        category = template.olx_category
        definitions = list(category.attributes)
        by_id = {d.external_id: d for d in definitions}

        values: dict[int, str] = {}
        for external_id, value in extract_attributes(product, category.external_id).items():
            if external_id in by_id:
                values[external_id] = value

        context = RuleContext.for_product(product, template)
        for key, rule in (template.attribute_mappings or {}).items():
            definition = self._find_definition(definitions, key)
            if definition is None:
                logger.debug(f"Mapping '{key}' matches no attribute of category {category.external_id}")
                continue
            value = resolve(rule, context)
            if value:
                values[definition.external_id] = value

        attributes = []
        for external_id, raw in values.items():
            value = self.finalize_value(by_id[external_id], raw)
            if value is None:
                logger.info(
                    f"Dropping attribute {by_id[external_id].name} ({external_id}) for product {product.id}: "
                    f"'{raw}' matches no allowed option"
                )
                continue
            attributes.append({"id": external_id, "value": value})
        return attributes

    @staticmethod
    def _find_definition(definitions: list[OlxCategoryAttribute], key: str) -> OlxCategoryAttribute | None:
        key = str(key).strip()
        for definition in definitions:
            if definition.name == key or str(definition.external_id) == key:
                return definition
        normalized = normalize(key)
        for definition in definitions:
            if normalize(definition.name) == normalized:
                return definition
        return None

    @staticmethod
    def finalize_value(definition: OlxCategoryAttribute, raw: Any) -> str | None:
        value = str(raw).strip()
        if not value:
            return None
        if definition.is_numeric:
            value = clean_numeric(value)
        options = definition.possible_values
        if options:
            return match_option(value, options)
        return value
