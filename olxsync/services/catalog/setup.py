from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from olxsync.exceptions import SyncError
from olxsync.models import Shop
from olxsync.olx_client import OlxClient
from olxsync.services.catalog.category_sync import CategorySyncService
from olxsync.services.catalog.location_sync import LocationSyncService

logger = logging.getLogger(__name__)


class OlxSetupService:
    """One-shot catalog bootstrap for a shop: categories, attributes, cities."""

    def __init__(self, session: Session, shop: Shop, client: OlxClient | None = None):
        self.session = session
        self.shop = shop
        self.client = client or OlxClient(shop)

    def setup_all(self) -> dict[str, Any]:
        results: dict[str, Any] = {"success": True}
        steps = (
            ("categories", lambda: CategorySyncService(self.session, self.shop, self.client).sync_all_categories()),
            ("attributes", lambda: CategorySyncService(self.session, self.shop, self.client).sync_all_attributes()),
            ("cities", lambda: LocationSyncService(self.session, self.shop, self.client).sync_cities()),
        )
        for name, step in steps:
            logger.info(f"OLX setup for shop {self.shop.id}: syncing {name}")
            try:
                results[name] = step().to_dict()
            except SyncError as e:
                logger.error(f"OLX setup step '{name}' failed: {e.message}")
                results[name] = {"success": False, "error": e.message}
                results["success"] = False
                results["error"] = e.message
                break
        return results
