from __future__ import annotations

import logging
import time
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from olxsync.exceptions import ApiError, AuthenticationError, NotFoundError, SyncError
from olxsync.models import OlxLocation, Shop
from olxsync.olx_client import OlxClient
from olxsync.olx_fields import items_of
from olxsync.services.catalog.category_sync import CatalogSyncResult

logger = logging.getLogger(__name__)


def _location_values(raw: dict) -> dict[str, Any]:
    coords = raw.get("location") if isinstance(raw.get("location"), dict) else {}
    return {
        "name": raw.get("name") or f"Location {raw.get('id')}",
        "country_id": raw.get("country_id"),
        "state_id": raw.get("state_id") or raw.get("region_id"),
        "canton_id": raw.get("canton_id"),
        "region_name": raw.get("region_name"),
        "canton_name": raw.get("canton_name"),
        "latitude": coords.get("lat") or raw.get("lat") or raw.get("latitude"),
        "longitude": coords.get("lon") or raw.get("lon") or raw.get("longitude"),
        "zip_code": raw.get("zip_code") or raw.get("postal_code"),
    }


def flatten_cities(regions: list) -> list[dict]:
    """
    Flatten the region -> canton -> city tree. Items that carry no
    ``cantons`` are treated as cities already.
    """
    cities = []
    for region in regions:
        if not isinstance(region, dict):
            continue
        cantons = region.get("cantons")
        if not isinstance(cantons, list):
            cities.append(region)
            continue
        for canton in cantons:
            if not isinstance(canton, dict):
                continue
            for city in canton.get("cities") or []:
                if not isinstance(city, dict):
                    continue
                cities.append({
                    **city,
                    "region_id": city.get("region_id") or region.get("id"),
                    "region_name": region.get("name"),
                    "canton_id": city.get("canton_id") or canton.get("id"),
                    "canton_name": canton.get("name"),
                })
    return cities


class LocationSyncService:
    def __init__(self, session: Session, shop: Shop, client: OlxClient | None = None):
        self.session = session
        self.shop = shop
        self.client = client or OlxClient(shop)

    def _save_locations(self, items: list[dict], result: CatalogSyncResult) -> CatalogSyncResult:
        existing = {loc.external_id: loc for loc in self.session.scalars(select(OlxLocation))}
        result.total += len(items)
        for raw in items:
            try:
                external_id = int(raw["id"])
                with self.session.begin_nested():
                    values = _location_values(raw)
                    location = existing.get(external_id)
                    if location is None:
                        location = OlxLocation(external_id=external_id, **values)
                        self.session.add(location)
                        existing[external_id] = location
                        result.created += 1
                    else:
                        dirty = False
                        for key, value in values.items():
                            if getattr(location, key) != value:
                                setattr(location, key, value)
                                dirty = True
                        if dirty:
                            result.updated += 1
                    self.session.flush()
            except Exception as e:
                logger.error(f"Failed to save location {raw.get('id')} ({raw.get('name')}): {e}")
                result.record_failure(f"Location {raw.get('id')}: {e}")
        return result

    def _fetch(self, fetch) -> Any:
        try:
            self.client.ensure_authenticated()
            return fetch()
        except AuthenticationError as e:
            raise SyncError(f"Authentication failed: {e.message}", cause=e) from e

    def sync_locations(self) -> CatalogSyncResult:
        started = time.monotonic()
        try:
            data = self._fetch(self.client.get_locations)
        except ApiError as e:
            raise SyncError(f"Location sync failed: {e.message}", cause=e) from e
        result = self._save_locations(items_of(data, "data", "locations"), CatalogSyncResult())
        result.duration = round(time.monotonic() - started, 2)
        logger.info(f"Location sync done: created={result.created} updated={result.updated} failed={result.failed}")
        return result

    def sync_cities(self) -> CatalogSyncResult:
        """
        Sync the nested city tree. OLX may answer with nothing at all (it
        works off GPS coordinates); that is a successful sync of zero cities.
        """
        started = time.monotonic()
        try:
            data = self._fetch(self.client.get_cities)
        except NotFoundError:
            logger.warning("OLX cities endpoint not available; listings will use GPS coordinates")
            return CatalogSyncResult()
        except ApiError as e:
            raise SyncError(f"City sync failed: {e.message}", cause=e) from e

        cities = flatten_cities(items_of(data, "data", "cities", "regions"))
        if not cities:
            logger.warning("OLX returned no cities; listings will use GPS coordinates")
            return CatalogSyncResult(duration=round(time.monotonic() - started, 2))

        result = self._save_locations(cities, CatalogSyncResult())
        result.duration = round(time.monotonic() - started, 2)
        logger.info(f"City sync done: created={result.created} updated={result.updated} failed={result.failed}")
        return result

    def cleanup_removed(self) -> int:
        """Delete local locations missing from a fresh /locations fetch."""
        try:
            data = self._fetch(self.client.get_locations)
        except ApiError as e:
            raise SyncError(f"Location cleanup failed: {e.message}", cause=e) from e
        remote_ids = {int(item["id"]) for item in items_of(data, "data", "locations") if isinstance(item, dict) and item.get("id") is not None}
        if not remote_ids:
            logger.warning("Remote location list is empty; refusing to clean up")
            return 0
        removed = [loc for loc in self.session.scalars(select(OlxLocation)) if loc.external_id not in remote_ids]
        for location in removed:
            self.session.delete(location)
        self.session.flush()
        logger.info(f"Removed {len(removed)} locations no longer on OLX")
        return len(removed)
