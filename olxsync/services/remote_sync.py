"""
Pull-based reconciliation of a shop's own OLX listings into local products.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from bs4 import BeautifulSoup
from sqlalchemy import select
from sqlalchemy.orm import Session

from olxsync import olx_fields
from olxsync.exceptions import AuthenticationError
from olxsync.models import CURRENCIES, ListingStatus, OlxListing, Product, ProductSource, Shop
from olxsync.olx_client import OlxClient
from olxsync.services.catalog.queries import find_category, find_location
from olxsync.services.image_service import ImageService
from olxsync.services.listing.lifecycle import map_remote_status
from olxsync.services.storage_service import StorageService
from olxsync.services.templates import find_or_create_for_remote
from olxsync.settings import settings
from olxsync.sync_logging import sync_run_log

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"


@dataclass
class RemoteSyncResult:
    success: bool = True
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def html_to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html.parser").get_text("\n")
    lines = [line.strip() for line in text.splitlines()]
    text = "\n".join(line for line in lines if line)
    return text or None


def _to_decimal(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value).replace(",", "."))
    except (InvalidOperation, ValueError):
        return None


class OlxSyncService:
    def __init__(
        self,
        session: Session,
        shop: Shop,
        client: OlxClient | None = None,
        storage: StorageService | None = None,
        image_service: ImageService | None = None,
        log_dir: str | None = None,
    ):
        self.session = session
        self.shop = shop
        self.client = client or OlxClient(shop)
        self.images = image_service or ImageService(session, storage=storage)
        self.log_dir = log_dir

    # ------------------------------------------------------------ enumeration

    def fetch_all_listings(self, limit: int | None = None) -> list[dict]:
        per_page = settings.olx_listings_per_page
        listings: list[dict] = []
        seen: set[str] = set()
        page = 1
        while True:
            response = self.client.get_user_listings(page=page, per_page=per_page)
            items = [i for i in olx_fields.items_of(response, "data", "listings") if isinstance(i, dict)]
            fresh = [i for i in items if str(i.get("id")) not in seen]
            if not fresh:
                break
            seen.update(str(i.get("id")) for i in fresh)
            listings.extend(fresh)
            logger.info(f"Fetched OLX listings page {page}: {len(fresh)} items")

            if limit and len(listings) >= limit:
                break
            last_page = olx_fields.extract_int(response, "last_page")
            if last_page is not None and page >= last_page:
                break
            page += 1
        return listings[:limit] if limit else listings

    # ------------------------------------------------------------ public API

    def sync_products(
        self,
        limit: int | None = 10,
        status_filter: Iterable[str] | None = ("active",),
        category_ids: Iterable[int] | None = None,
        skip_existing: bool = False,
    ) -> RemoteSyncResult:
        result = RemoteSyncResult()
        statuses = {s.lower() for s in status_filter or ()}
        categories = {int(c) for c in category_ids or ()}

        with sync_run_log("olx_sync", self.shop.id, self.log_dir) as run_log:
            run_log.info(
                f"Starting OLX sync for shop {self.shop.id} ({self.shop.name}): limit={limit} "
                f"status={sorted(statuses) or 'any'} categories={sorted(categories) or 'any'} skip_existing={skip_existing}"
            )
            try:
                self.client.ensure_authenticated()
                summaries = self.fetch_all_listings(limit=limit)
            except AuthenticationError as e:
                run_log.error(f"Authentication failed: {e.message}")
                logger.error(f"OLX sync for shop {self.shop.id} failed: {e.message}")
                return RemoteSyncResult(success=False, error=f"Authentication failed: {e.message}")
            except Exception as e:
                run_log.exception("Listing enumeration failed")
                logger.error(f"OLX sync for shop {self.shop.id} failed: {e}")
                return RemoteSyncResult(success=False, error=str(e))

            run_log.info(f"Found {len(summaries)} listings on OLX")
            for index, summary in enumerate(summaries, start=1):
                external_id = str(summary.get("id"))
                run_log.info(f"[{index}/{len(summaries)}] listing {external_id}: {summary.get('title')}")
                try:
                    outcome = self._sync_one(summary, statuses, categories, skip_existing, run_log)
                    self.session.commit()
                except Exception as e:
                    self.session.rollback()
                    result.failed += 1
                    run_log.error(f"  failed: {e.__class__.__name__}: {e}")
                    logger.exception(f"Error syncing OLX listing {external_id} for shop {self.shop.id}")
                    continue

                if outcome == CREATED:
                    result.created += 1
                elif outcome == UPDATED:
                    result.updated += 1
                else:
                    result.skipped += 1
                run_log.info(f"  {outcome}")

            run_log.info(
                f"Done: created={result.created} updated={result.updated} "
                f"skipped={result.skipped} failed={result.failed}"
            )
        logger.info(f"OLX sync for shop {self.shop.id}: {result.to_dict()}")
        return result

    # ------------------------------------------------------------ single listing

    def _linked_listing(self, external_id: str) -> OlxListing | None:
        return self.session.scalar(
            select(OlxListing).where(
                OlxListing.shop_id == self.shop.id,
                OlxListing.external_listing_id == external_id,
            )
        )

    def _sync_one(self, summary: dict, statuses: set[str], categories: set[int], skip_existing: bool, run_log) -> str:
        external_id = str(summary.get("id"))

        if skip_existing and self._linked_listing(external_id) is not None:
            run_log.info("  already linked locally")
            return SKIPPED

        status = str(olx_fields.extract(summary, "status") or "").lower()
        if statuses and status not in statuses:
            run_log.info(f"  status '{status}' filtered out")
            return SKIPPED

        detail = olx_fields.unwrap(self.client.get_listing(external_id))
        if categories:
            category_id = olx_fields.extract_int(detail, "category_id")
            if category_id not in categories:
                run_log.info(f"  category {category_id} filtered out")
                return SKIPPED

        return self._upsert(external_id, summary, detail, run_log)

    def _upsert(self, external_id: str, summary: dict, detail: dict, run_log) -> str:
        category = find_category(self.session, olx_fields.extract(detail, "category_id"))
        if category is None:
            run_log.warning(f"  category {olx_fields.extract(detail, 'category_id')} unknown locally; run a category sync")
            return SKIPPED
        location = find_location(self.session, olx_fields.extract_int(detail, "location_id"))
        template = find_or_create_for_remote(
            self.session,
            self.shop,
            category,
            location,
            listing_type=olx_fields.extract(detail, "listing_type"),
            state=olx_fields.extract(detail, "state"),
        )

        title = olx_fields.extract(detail, "title") or olx_fields.extract(summary, "title")
        description = html_to_text(olx_fields.extract(detail, "description") or olx_fields.extract(summary, "description"))
        price = _to_decimal(olx_fields.extract(detail, "price") or olx_fields.extract(summary, "price"))
        currency = str(detail.get("currency") or summary.get("currency") or "BAM").upper()
        if currency not in CURRENCIES:
            currency = "BAM"
        remote_status = olx_fields.extract(detail, "status") or olx_fields.extract(summary, "status")
        status = map_remote_status(remote_status)
        image_urls = olx_fields.extract_image_urls(detail) or olx_fields.extract_image_urls(summary)
        now = datetime.now(timezone.utc)

        listing = self._linked_listing(external_id)
        if listing is not None:
            product = listing.product
            outcome = UPDATED
        else:
            product = self.session.scalar(
                select(Product).where(
                    Product.shop_id == self.shop.id,
                    Product.source == ProductSource.OLX.value,
                    Product.source_id == external_id,
                )
            )
            if product is None:
                product = Product(shop=self.shop, source=ProductSource.OLX.value, source_id=external_id)
                self.session.add(product)
            listing = product.olx_listing or OlxListing(product=product, shop=self.shop)
            self.session.add(listing)
            outcome = CREATED

        product.title = title
        product.description = description
        product.olx_title = title
        product.olx_description = description
        product.price = price
        product.currency = currency
        product.sku = olx_fields.extract(detail, "sku") or product.sku
        product.published = status == ListingStatus.PUBLISHED.value
        product.olx_category_template = template
        product.image_urls = image_urls
        product.recalculate_final_price()

        listing.external_listing_id = external_id
        listing.status = status
        listing.extra = detail
        listing.synced_at = now
        if status == ListingStatus.PUBLISHED.value and listing.published_at is None:
            listing.published_at = now
        self.session.flush()

        if outcome == UPDATED:
            attached = self.images.replace_images(product, image_urls)
        else:
            attached = self.images.attach_from_urls(product, image_urls)
        run_log.info(f"  {len(image_urls)} images, {attached} attached")
        return outcome
