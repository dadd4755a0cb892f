"""
Local mirror of the OLX category tree and per-category attribute schema.

Category writes always go through the same two passes: pass 1 upserts every
node without parent links, pass 2 resolves parents through the completed
external_id -> local id map. Input order never matters.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from olxsync.exceptions import ApiError, AuthenticationError, NotFoundError, SyncError
from olxsync.models import OlxCategory, OlxCategoryAttribute, Shop
from olxsync.olx_client import OlxClient
from olxsync.olx_fields import items_of, unwrap
from olxsync.settings import settings

logger = logging.getLogger(__name__)

_CHILDREN_KEYS = ("sub_categories", "subcategories", "children")


@dataclass
class CatalogSyncResult:
    success: bool = True
    created: int = 0
    updated: int = 0
    failed: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)
    duration: float = 0.0

    def record_failure(self, message: str) -> None:
        self.failed += 1
        if len(self.errors) < settings.sync_error_cap:
            self.errors.append(message)

    def merge(self, other: "CatalogSyncResult") -> None:
        self.created += other.created
        self.updated += other.updated
        self.total += other.total
        for message in other.errors:
            if len(self.errors) < settings.sync_error_cap:
                self.errors.append(message)
        self.failed += other.failed

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _children_of(raw: Any) -> list:
    if not isinstance(raw, dict):
        return []
    for key in _CHILDREN_KEYS:
        value = raw.get(key)
        if isinstance(value, list) and value:
            return value
    return []


def _to_int(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


_OPTION_METADATA_KEYS = ("min", "max", "min_length", "max_length", "pattern", "placeholder", "help_text")


def attribute_options(raw: dict) -> dict:
    """Allowed values plus validation and display metadata, as one ``{"values": [...], ...}`` object."""
    options: dict[str, Any] = {}
    values = raw.get("values") or raw.get("options")
    if values:
        options["values"] = values
    for key in _OPTION_METADATA_KEYS:
        if raw.get(key):
            options[key] = raw[key]
    label = raw.get("display_name") or raw.get("label")
    if label:
        options["label"] = label
    return options


def _normalize_node(raw: Any, discovered_parent: int | None = None) -> dict | None:
    if not isinstance(raw, dict):
        return None
    external_id = _to_int(raw.get("id"))
    if external_id is None:
        return None
    parent = _to_int(raw.get("parent_id"))
    if parent is None:
        parent = discovered_parent
    extra = {k: v for k, v in raw.items() if k not in _CHILDREN_KEYS}
    return {
        "external_id": external_id,
        "parent_external_id": parent,
        "name": raw.get("name") or raw.get("title") or f"Category {external_id}",
        "slug": raw.get("slug"),
        "has_shipping": bool(raw.get("shipping_available") or raw.get("has_shipping")),
        "has_brand": bool(raw.get("has_brand") or raw.get("brand_available")),
        "extra": extra,
    }


def build_arena(nodes: Iterable[Any]) -> dict[int, dict]:
    """Flatten nested nodes into an external_id keyed arena, first occurrence wins."""
    arena: dict[int, dict] = {}
    queue = deque((raw, None) for raw in nodes)
    while queue:
        raw, parent = queue.popleft()
        node = _normalize_node(raw, parent)
        if node is None or node["external_id"] in arena:
            continue
        arena[node["external_id"]] = node
        queue.extend((child, node["external_id"]) for child in _children_of(raw))
    return arena


class CategorySyncService:
    def __init__(self, session: Session, shop: Shop, client: OlxClient | None = None):
        self.session = session
        self.shop = shop
        self.client = client or OlxClient(shop)

    # ------------------------------------------------------------ discovery

    def _authenticate(self) -> None:
        try:
            self.client.ensure_authenticated()
        except AuthenticationError as e:
            raise SyncError(f"Authentication failed: {e.message}", cause=e) from e

    def discover_remote_categories(self) -> dict[int, dict]:
        """
        Walk the remote tree. Some nodes carry their children inline, the rest
        need a per-ID fetch; loop until no new node turns up.
        """
        roots = items_of(self.client.get_categories(), "data", "categories")
        arena: dict[int, dict] = {}
        queue = deque((raw, None) for raw in roots)

        while queue:
            raw, parent = queue.popleft()
            node = _normalize_node(raw, parent)
            if node is None or node["external_id"] in arena:
                continue
            external_id = node["external_id"]
            arena[external_id] = node

            inline = _children_of(raw)
            if inline:
                queue.extend((child, external_id) for child in inline)
                continue

            try:
                detail = self.client.get_category(external_id)
            except AuthenticationError:
                raise
            except NotFoundError:
                continue
            except ApiError as e:
                logger.warning(f"Could not expand category {external_id}: {e.message}")
                continue

            children = items_of(detail, "data", *_CHILDREN_KEYS) or _children_of(unwrap(detail))
            for child in children:
                if isinstance(child, dict) and _to_int(child.get("id")) != external_id:
                    queue.append((child, external_id))

        logger.info(f"Discovered {len(arena)} OLX categories")
        return arena

    # ------------------------------------------------------------ writes

    def _apply_node(self, category: OlxCategory, node: dict) -> bool:
        changed = False
        for attr in ("name", "slug", "has_shipping", "has_brand", "extra"):
            if getattr(category, attr) != node[attr]:
                setattr(category, attr, node[attr])
                changed = True
        return changed

    def write_arena(self, arena: dict[int, dict], result: CatalogSyncResult | None = None) -> CatalogSyncResult:
        result = result or CatalogSyncResult()
        result.total += len(arena)
        existing = {c.external_id: c for c in self.session.scalars(select(OlxCategory))}
        created: set[int] = set()
        changed: set[int] = set()

        # pass 1: nodes only
        for external_id, node in arena.items():
            try:
                with self.session.begin_nested():
                    category = existing.get(external_id)
                    if category is None:
                        category = OlxCategory(external_id=external_id, name=node["name"])
                        self._apply_node(category, node)
                        self.session.add(category)
                        created.add(external_id)
                    elif self._apply_node(category, node):
                        changed.add(external_id)
                    self.session.flush()
                existing[external_id] = category
            except Exception as e:
                logger.error(f"Failed to save category {external_id} ({node.get('name')}): {e}")
                result.record_failure(f"Category {external_id}: {e}")

        id_map = {external_id: category.id for external_id, category in existing.items()}

        # pass 2: parent links
        for external_id, node in arena.items():
            category = existing.get(external_id)
            if category is None or external_id not in id_map:
                continue
            parent_external_id = node["parent_external_id"]
            parent_id = id_map.get(parent_external_id) if parent_external_id is not None else None
            if parent_external_id is not None and parent_id is None:
                logger.warning(f"Category {external_id} references unknown parent {parent_external_id}")
            if category.parent_id == parent_id:
                continue
            try:
                with self.session.begin_nested():
                    category.parent_id = parent_id
                    self.session.flush()
                changed.add(external_id)
            except Exception as e:
                logger.error(f"Failed to link category {external_id} to parent {parent_external_id}: {e}")
                result.record_failure(f"Category {external_id} parent: {e}")

        result.created += len(created)
        result.updated += len(changed - created)
        return result

    # ------------------------------------------------------------ public API

    def sync_all_categories(self) -> CatalogSyncResult:
        started = time.monotonic()
        self._authenticate()
        try:
            arena = self.discover_remote_categories()
        except AuthenticationError as e:
            raise SyncError(f"Authentication failed: {e.message}", cause=e) from e
        except ApiError as e:
            raise SyncError(f"Failed to fetch OLX categories: {e.message}", cause=e) from e

        result = self.write_arena(arena)
        result.duration = round(time.monotonic() - started, 2)
        logger.info(
            f"Category sync done: created={result.created} updated={result.updated} "
            f"failed={result.failed} total={result.total} in {result.duration}s"
        )
        return result

    def import_seed(self, nodes: list[dict]) -> CatalogSyncResult:
        """Bulk import from a seed file (flat or nested), same two passes."""
        started = time.monotonic()
        result = self.write_arena(build_arena(nodes))
        result.duration = round(time.monotonic() - started, 2)
        return result

    def sync_category_attributes(self, category: OlxCategory) -> CatalogSyncResult:
        result = CatalogSyncResult()
        data = self.client.get_category_attributes(category.external_id)
        items = items_of(data, "data", "attributes")
        existing = {a.external_id: a for a in category.attributes}
        result.total = len(items)

        for raw in items:
            external_id = _to_int(raw.get("id")) if isinstance(raw, dict) else None
            if external_id is None:
                result.record_failure(f"Category {category.external_id}: attribute without id")
                continue
            try:
                with self.session.begin_nested():
                    values = {
                        "name": raw.get("name") or raw.get("label") or f"Attribute {external_id}",
                        "attribute_type": raw.get("type"),
                        "input_type": raw.get("input_type") or raw.get("display_type"),
                        "required": bool(raw.get("required") or raw.get("is_required")),
                        "options": attribute_options(raw),
                    }
                    attribute = existing.get(external_id)
                    if attribute is None:
                        attribute = OlxCategoryAttribute(external_id=external_id, category=category, **values)
                        self.session.add(attribute)
                        existing[external_id] = attribute
                        result.created += 1
                    else:
                        dirty = False
                        for key, value in values.items():
                            if getattr(attribute, key) != value:
                                setattr(attribute, key, value)
                                dirty = True
                        if dirty:
                            result.updated += 1
                    self.session.flush()
            except Exception as e:
                logger.error(f"Failed to save attribute {external_id} of category {category.external_id}: {e}")
                result.record_failure(f"Attribute {external_id} (category {category.external_id}): {e}")
        return result

    def sync_all_attributes(self, leaf_only: bool = True) -> CatalogSyncResult:
        from olxsync.services.catalog.queries import leaf_categories

        started = time.monotonic()
        self._authenticate()
        if leaf_only:
            categories = leaf_categories(self.session)
        else:
            categories = list(self.session.scalars(select(OlxCategory)))

        result = CatalogSyncResult()
        for category in categories:
            try:
                result.merge(self.sync_category_attributes(category))
            except AuthenticationError as e:
                raise SyncError(f"Authentication failed: {e.message}", cause=e) from e
            except Exception as e:
                logger.error(f"Attribute sync failed for category {category.external_id}: {e}")
                result.record_failure(f"Category {category.external_id}: {e}")
        result.duration = round(time.monotonic() - started, 2)
        return result

    def cleanup_removed(self) -> int:
        """Delete local categories missing upstream. Destructive; run deliberately."""
        self._authenticate()
        try:
            remote_ids = set(self.discover_remote_categories())
        except ApiError as e:
            raise SyncError(f"Failed to fetch OLX categories: {e.message}", cause=e) from e
        if not remote_ids:
            # an empty remote tree is far more likely an upstream hiccup
            logger.warning("Remote category tree is empty; refusing to clean up")
            return 0

        removed = [c for c in self.session.scalars(select(OlxCategory)) if c.external_id not in remote_ids]
        for category in removed:
            self.session.delete(category)
        self.session.flush()
        logger.info(f"Removed {len(removed)} categories no longer on OLX")
        return len(removed)
