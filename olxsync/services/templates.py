from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from olxsync.exceptions import ArgumentError
from olxsync.models import OlxCategory, OlxCategoryTemplate, OlxLocation, Shop
from olxsync.services.listing.mapping_rules import RuleSyntaxError, parse_rule
from olxsync.settings import settings

logger = logging.getLogger(__name__)


def validate_mappings(attribute_mappings: dict | None) -> None:
    for key, rule in (attribute_mappings or {}).items():
        try:
            parse_rule(rule)
        except RuleSyntaxError as e:
            raise ArgumentError(f"Invalid mapping for '{key}': {e}") from e


def create_template(
    session: Session,
    shop: Shop,
    *,
    name: str,
    category: OlxCategory,
    location: OlxLocation | None = None,
    default_listing_type: str | None = None,
    default_state: str | None = None,
    attribute_mappings: dict | None = None,
    description_filter: list[str] | None = None,
    title_template: str | None = None,
    description_template: str | None = None,
) -> OlxCategoryTemplate:
    """User-created template. Names need not be unique; the category must be a leaf."""
    if not name or not name.strip():
        raise ArgumentError("Template name is required")
    if category is None:
        raise ArgumentError("Template category is required")
    if not category.is_leaf:
        raise ArgumentError(f"Category '{category.name}' has subcategories; pick a leaf category")
    validate_mappings(attribute_mappings)

    template = OlxCategoryTemplate(
        shop=shop,
        name=name.strip(),
        olx_category=category,
        olx_location=location,
        default_listing_type=default_listing_type or settings.olx_default_listing_type,
        default_state=default_state or settings.olx_default_state,
        attribute_mappings=dict(attribute_mappings or {}),
        description_filter=list(description_filter or []),
        title_template=title_template,
        description_template=description_template,
    )
    session.add(template)
    session.flush()
    return template


def find_or_create_for_remote(
    session: Session,
    shop: Shop,
    category: OlxCategory,
    location: OlxLocation | None = None,
    listing_type: str | None = None,
    state: str | None = None,
) -> OlxCategoryTemplate:
    """Implicit template for a remote (category, location) pair, unique per shop."""
    stmt = select(OlxCategoryTemplate).where(
        OlxCategoryTemplate.shop_id == shop.id,
        OlxCategoryTemplate.olx_category_id == category.id,
    )
    if location is None:
        stmt = stmt.where(OlxCategoryTemplate.olx_location_id.is_(None))
    else:
        stmt = stmt.where(OlxCategoryTemplate.olx_location_id == location.id)
    template = session.scalars(stmt.order_by(OlxCategoryTemplate.created_at)).first()
    if template is not None:
        return template

    name = f"{category.name} - {location.name}" if location is not None else category.name
    template = OlxCategoryTemplate(
        shop=shop,
        name=name,
        olx_category=category,
        olx_location=location,
        default_listing_type=listing_type or settings.olx_default_listing_type,
        default_state=state or settings.olx_default_state,
        attribute_mappings={},
        description_filter=[],
    )
    session.add(template)
    session.flush()
    logger.info(f"Created template '{name}' for shop {shop.id}")
    return template
