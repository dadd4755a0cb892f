from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session, aliased

from olxsync.models import OlxCategory, OlxLocation


def find_category(session: Session, external_id: int | str | None) -> OlxCategory | None:
    if external_id in (None, ""):
        return None
    try:
        external_id = int(external_id)
    except (TypeError, ValueError):
        return None
    return session.scalar(select(OlxCategory).where(OlxCategory.external_id == external_id))


def find_location(session: Session, external_id: int | str | None) -> OlxLocation | None:
    if external_id in (None, ""):
        return None
    try:
        external_id = int(external_id)
    except (TypeError, ValueError):
        return None
    return session.scalar(select(OlxLocation).where(OlxLocation.external_id == external_id))


def leaf_categories(session: Session) -> list[OlxCategory]:
    """Categories with no children; the only valid listing targets."""
    child = aliased(OlxCategory)
    has_children = select(child.id).where(child.parent_id == OlxCategory.id).exists()
    stmt = select(OlxCategory).where(~has_children).order_by(OlxCategory.name)
    return list(session.scalars(stmt))


def root_categories(session: Session) -> list[OlxCategory]:
    stmt = select(OlxCategory).where(OlxCategory.parent_id.is_(None)).order_by(OlxCategory.name)
    return list(session.scalars(stmt))


def ancestors(category: OlxCategory) -> list[OlxCategory]:
    """Root first. Guards against cycles from a half-synced tree."""
    chain = []
    seen = {category.id}
    current = category.parent
    while current is not None and current.id not in seen:
        chain.append(current)
        seen.add(current.id)
        current = current.parent
    return list(reversed(chain))


def full_path(category: OlxCategory, separator: str = " > ") -> str:
    return separator.join([c.name for c in ancestors(category)] + [category.name])


def search_categories(session: Session, term: str, leaf_only: bool = True, limit: int = 20) -> list[OlxCategory]:
    stmt = select(OlxCategory).where(func.lower(OlxCategory.name).contains(term.lower()))
    if leaf_only:
        child = aliased(OlxCategory)
        stmt = stmt.where(~select(child.id).where(child.parent_id == OlxCategory.id).exists())
    return list(session.scalars(stmt.order_by(OlxCategory.name).limit(limit)))
