"""
Listing lifecycle against OLX.

Status machine::

    pending -> published | draft | failed
    draft <-> published          (publish / unpublish)
    any non-removed -> removed   (delete)
    any -> failed                (remote operation raised)

Nothing retries on its own; every transition is caller-initiated.
"""
from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from olxsync import olx_fields
from olxsync.exceptions import ArgumentError, NotFoundError
from olxsync.models import ListingStatus, OlxListing, Product, Shop
from olxsync.olx_client import OlxClient
from olxsync.services.listing.payload_builder import ListingPayloadBuilder
from olxsync.settings import settings

logger = logging.getLogger(__name__)


def map_remote_status(status: Any) -> str:
    """OLX status vocabulary -> local status. Only published/draft come back from OLX."""
    value = str(status or "").strip().lower()
    if value in settings.olx_published_statuses:
        return ListingStatus.PUBLISHED.value
    return ListingStatus.DRAFT.value


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconnectResult:
    reconnected: bool
    listing: OlxListing | None
    message: str


class ListingLifecycleManager:
    def __init__(
        self,
        session: Session,
        shop: Shop,
        client: OlxClient | None = None,
        builder: ListingPayloadBuilder | None = None,
    ):
        self.session = session
        self.shop = shop
        self.client = client or OlxClient(shop)
        self.builder = builder or ListingPayloadBuilder()

    # ------------------------------------------------------------ helpers

    @staticmethod
    def _require_external_id(listing: OlxListing) -> str:
        if not listing.external_listing_id:
            raise ArgumentError(
                "Listing must have an external_listing_id", context={"listing_id": str(listing.id)}
            )
        return listing.external_listing_id

    def _mark_failed(self, listing: OlxListing, error: Exception) -> None:
        if not self.session.is_active:
            self.session.rollback()
        listing.status = ListingStatus.FAILED.value
        listing.extra = {
            **(listing.extra or {}),
            "error": getattr(error, "message", None) or str(error),
            "error_class": error.__class__.__name__,
            "failed_at": _now().isoformat(),
            "backtrace": traceback.format_exception(type(error), error, error.__traceback__)[-5:],
        }
        self.session.commit()
        logger.error(f"OLX listing {listing.id} failed: {error.__class__.__name__}: {error}")

    def _image_urls(self, product: Product) -> list[str]:
        urls = [u for u in (product.image_urls or []) if u]
        if urls:
            return urls
        return [image.public_url for image in product.images if image.public_url]

    def _upload_images(self, external_id: str, product: Product) -> list[str]:
        urls = self._image_urls(product)
        if not urls:
            logger.info(f"No images to upload for product {product.id}")
            return []
        try:
            uploaded = self.client.upload_images(external_id, urls)
            logger.info(f"Uploaded {len(uploaded)}/{len(urls)} images to listing {external_id}")
            return uploaded
        except Exception as e:
            logger.error(f"Image upload to listing {external_id} failed: {e}")
            return []

    # ------------------------------------------------------------ operations

    def create_listing(self, product: Product) -> OlxListing:
        self.builder.validate(product)

        listing = product.olx_listing
        if listing is None:
            listing = OlxListing(product=product, shop=self.shop, extra={})
            self.session.add(listing)
        listing.status = ListingStatus.PENDING.value
        self.session.commit()

        try:
            payload = self.builder.build(product)
            logger.info(f"Creating OLX listing for product {product.id}: category={payload.get('category_id')}")
            response = olx_fields.unwrap(self.client.create_listing(payload))

            external_id = olx_fields.extract(response, "id")
            if external_id is None:
                raise ValueError(f"OLX create response carried no listing id: {response}")
            listing.external_listing_id = str(external_id)
            listing.status = map_remote_status(olx_fields.extract(response, "status"))
            listing.extra = response
            listing.synced_at = _now()
            if listing.status == ListingStatus.PUBLISHED.value:
                listing.published_at = _now()
            product.published = listing.status == ListingStatus.PUBLISHED.value
            self.session.commit()
        except Exception as e:
            self._mark_failed(listing, e)
            raise

        logger.info(f"Created OLX listing {listing.external_listing_id} for product {product.id}")
        self._upload_images(listing.external_listing_id, product)
        return listing

    def update_listing(self, listing: OlxListing) -> OlxListing:
        external_id = self._require_external_id(listing)
        product = listing.product
        try:
            payload = self.builder.build(product)
            response = olx_fields.unwrap(self.client.update_listing(external_id, payload))
            remote_status = olx_fields.extract(response, "status")
            if remote_status:
                listing.status = map_remote_status(remote_status)
            elif listing.status == ListingStatus.FAILED.value:
                listing.status = ListingStatus.DRAFT.value
            listing.extra = {**(listing.extra or {}), **response}
            listing.synced_at = _now()
            self.session.commit()
        except Exception as e:
            self._mark_failed(listing, e)
            raise

        logger.info(f"Updated OLX listing {external_id}")
        self._upload_images(external_id, product)
        return listing

    def publish_listing(self, listing: OlxListing) -> OlxListing:
        external_id = self._require_external_id(listing)
        try:
            response = self.client.publish_listing(external_id)
            listing.status = ListingStatus.PUBLISHED.value
            listing.published_at = _now()
            listing.extra = {**(listing.extra or {}), **(response if isinstance(response, dict) else {})}
            listing.product.published = True
            self.session.commit()
        except Exception as e:
            self._mark_failed(listing, e)
            raise
        logger.info(f"Published OLX listing {external_id}")
        return listing

    def unpublish_listing(self, listing: OlxListing) -> OlxListing:
        external_id = self._require_external_id(listing)
        try:
            response = self.client.unpublish_listing(external_id)
            listing.status = ListingStatus.DRAFT.value
            listing.extra = {**(listing.extra or {}), **(response if isinstance(response, dict) else {})}
            listing.product.published = False
            self.session.commit()
        except Exception as e:
            self._mark_failed(listing, e)
            raise
        logger.info(f"Unpublished OLX listing {external_id}")
        return listing

    def delete_listing(self, listing: OlxListing) -> OlxListing:
        """Remove remotely; the local row stays with status ``removed``."""
        external_id = self._require_external_id(listing)
        try:
            try:
                self.client.delete_listing(external_id)
            except NotFoundError:
                logger.warning(f"OLX listing {external_id} was already gone")
            listing.status = ListingStatus.REMOVED.value
            listing.extra = {**(listing.extra or {}), "removed_at": _now().isoformat()}
            listing.product.published = False
            self.session.commit()
        except Exception as e:
            self._mark_failed(listing, e)
            raise
        logger.info(f"Deleted OLX listing {external_id}")
        return listing

    def reconnect_listing(self, product: Product, external_id: str | None = None) -> ReconnectResult:
        """
        Re-attach a product to a remote listing it only remembers by id.

        The stray ``olx_ad_id`` is cleared either way; when the listing is gone
        the caller has to publish from scratch.
        """
        external_id = str(external_id or product.olx_ad_id or "").strip()
        if not external_id:
            raise ArgumentError("No OLX listing id to reconnect", context={"product_id": str(product.id)})

        try:
            detail = olx_fields.unwrap(self.client.get_listing(external_id))
        except NotFoundError:
            product.olx_ad_id = None
            self.session.commit()
            logger.warning(f"OLX listing {external_id} no longer exists; product {product.id} must be republished")
            return ReconnectResult(False, None, f"Listing {external_id} no longer exists on OLX; publish the product again.")

        listing = product.olx_listing
        if listing is None:
            listing = self.session.scalar(select(OlxListing).where(OlxListing.external_listing_id == external_id))
            if listing is not None and listing.product_id != product.id:
                raise ArgumentError(
                    f"OLX listing {external_id} is already linked to another product",
                    context={"product_id": str(listing.product_id)},
                )
        if listing is None:
            listing = OlxListing(product=product, shop=self.shop)
            self.session.add(listing)

        listing.external_listing_id = external_id
        listing.status = map_remote_status(olx_fields.extract(detail, "status"))
        listing.extra = detail
        listing.synced_at = _now()
        if listing.status == ListingStatus.PUBLISHED.value and listing.published_at is None:
            listing.published_at = _now()
        product.published = listing.status == ListingStatus.PUBLISHED.value
        product.olx_ad_id = None
        self.session.commit()
        logger.info(f"Reconnected product {product.id} to OLX listing {external_id}")
        return ReconnectResult(True, listing, f"Reconnected to OLX listing {external_id}.")

    # ------------------------------------------------------------ product level

    def publish_product(self, product: Product) -> OlxListing:
        """Create the remote listing, or push a full update if one exists."""
        listing = product.olx_listing
        if listing is not None and listing.external_listing_id and listing.status != ListingStatus.REMOVED.value:
            return self.update_listing(listing)
        if listing is not None and listing.status == ListingStatus.REMOVED.value:
            listing.external_listing_id = None
        return self.create_listing(product)

    def destroy_product(self, product: Product) -> None:
        listing = product.olx_listing
        if listing is not None and listing.external_listing_id and listing.status != ListingStatus.REMOVED.value:
            try:
                self.client.delete_listing(listing.external_listing_id)
            except Exception as e:
                logger.warning(f"Could not remove OLX listing {listing.external_listing_id} before deleting product: {e}")
        self.session.delete(product)
        self.session.commit()
