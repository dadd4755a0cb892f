"""
Unit tests for ListingLifecycleManager.

The OLX client is a MagicMock; the database is the in-memory test schema.
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from olxsync.exceptions import ApiError, ArgumentError, NotFoundError, ValidationError
from olxsync.models import ListingStatus, OlxListing, Product
from olxsync.services.listing.lifecycle import ListingLifecycleManager, map_remote_status


@pytest.fixture
def client():
    client = MagicMock()
    client.upload_images.side_effect = lambda listing_id, urls: list(urls)
    return client


@pytest.fixture
def manager(db_session, shop, client):
    return ListingLifecycleManager(db_session, shop, client)


@pytest.fixture
def product(make_category, make_template, make_product):
    category = make_category(1500, "Akumulatori")
    return make_product(
        sku="VA-77",
        stock=2,
        image_urls=["https://cdn.shop.test/varta.jpg"],
        olx_category_template=make_template(category),
    )


@pytest.fixture
def listed(db_session, shop, product):
    listing = OlxListing(product=product, shop=shop, external_listing_id="555", status="draft", extra={"views": 3})
    db_session.add(listing)
    db_session.commit()
    return listing


@pytest.mark.unit
@pytest.mark.parametrize("remote,expected", [
    ("active", "published"),
    ("LIVE", "published"),
    ("published", "published"),
    ("inactive", "draft"),
    ("expired", "draft"),
    (None, "draft"),
])
def test_map_remote_status(remote, expected):
    assert map_remote_status(remote) == expected


@pytest.mark.unit
class TestCreate:

    def test_pending_row_exists_before_remote_call(self, manager, client, product, db_session):
        observed = {}

        def create_listing(payload):
            observed["status"] = db_session.scalar(select(OlxListing.status))
            observed["payload"] = payload
            return {"data": {"id": 555, "status": "active"}}

        client.create_listing.side_effect = create_listing

        listing = manager.create_listing(product)

        assert observed["status"] == ListingStatus.PENDING.value
        assert observed["payload"]["category_id"] == 1500
        assert listing.external_listing_id == "555"
        assert listing.status == ListingStatus.PUBLISHED.value
        assert listing.published_at is not None
        assert product.published is True
        client.upload_images.assert_called_once_with("555", ["https://cdn.shop.test/varta.jpg"])

    def test_draft_response(self, manager, client, product):
        client.create_listing.return_value = {"id": 556, "status": "inactive"}

        listing = manager.create_listing(product)

        assert listing.status == ListingStatus.DRAFT.value
        assert listing.published_at is None
        assert product.published is False

    def test_remote_failure_marks_failed_and_reraises(self, manager, client, product, db_session):
        client.create_listing.side_effect = ValidationError("Naslov je obavezan", status_code=422)

        with pytest.raises(ValidationError):
            manager.create_listing(product)

        listing = db_session.scalar(select(OlxListing))
        assert listing.status == ListingStatus.FAILED.value
        assert listing.error_message == "Naslov je obavezan"
        assert listing.extra["error_class"] == "ValidationError"
        assert listing.extra["failed_at"]
        assert 0 < len(listing.extra["backtrace"]) <= 5
        client.upload_images.assert_not_called()

    def test_response_without_id_fails(self, manager, client, product):
        client.create_listing.return_value = {"data": {"status": "active"}}
        with pytest.raises(ValueError):
            manager.create_listing(product)
        assert product.olx_listing.status == ListingStatus.FAILED.value

    def test_invalid_product_never_calls_remote(self, manager, client, make_product):
        with pytest.raises(ArgumentError):
            manager.create_listing(make_product())
        client.create_listing.assert_not_called()

    def test_image_upload_failure_is_not_fatal(self, manager, client, product):
        client.create_listing.return_value = {"id": 557, "status": "active"}
        client.upload_images.side_effect = ApiError("HTTP 500: boom", status_code=500)

        listing = manager.create_listing(product)

        assert listing.status == ListingStatus.PUBLISHED.value


@pytest.mark.unit
class TestUpdatePublishDelete:

    def test_update_requires_external_id(self, manager, client, product, shop, db_session):
        listing = OlxListing(product=product, shop=shop, status="failed", extra={})
        db_session.add(listing)
        db_session.flush()

        with pytest.raises(ArgumentError):
            manager.update_listing(listing)
        client.update_listing.assert_not_called()

    def test_update_sends_full_payload(self, manager, client, listed):
        client.update_listing.return_value = {"data": {"id": 555, "status": "active", "price": 100}}

        manager.update_listing(listed)

        listing_id, payload = client.update_listing.call_args.args
        assert listing_id == "555"
        assert payload["title"] == "Akumulator Varta 77Ah"
        assert payload["price"] == 100
        assert listed.status == ListingStatus.PUBLISHED.value
        assert listed.extra["views"] == 3
        assert listed.extra["price"] == 100
        client.upload_images.assert_called_once()

    def test_update_failure(self, manager, client, listed):
        client.update_listing.side_effect = ApiError("HTTP 500: boom", status_code=500)
        with pytest.raises(ApiError):
            manager.update_listing(listed)
        assert listed.status == ListingStatus.FAILED.value
        assert listed.extra["views"] == 3

    def test_publish_merges_response(self, manager, client, listed, product):
        client.publish_listing.return_value = {"status": "active", "valid_until": "2026-12-01"}

        manager.publish_listing(listed)

        assert listed.status == ListingStatus.PUBLISHED.value
        assert listed.published_at is not None
        assert listed.extra == {"views": 3, "status": "active", "valid_until": "2026-12-01"}
        assert product.published is True

    def test_unpublish(self, manager, client, listed, product):
        client.unpublish_listing.return_value = {}
        product.published = True

        manager.unpublish_listing(listed)

        assert listed.status == ListingStatus.DRAFT.value
        assert product.published is False

    def test_delete_keeps_local_row(self, manager, client, listed, db_session):
        client.delete_listing.return_value = {}

        manager.delete_listing(listed)

        row = db_session.scalar(select(OlxListing))
        assert row.status == ListingStatus.REMOVED.value
        assert row.extra["removed_at"]
        assert row.external_listing_id == "555"

    def test_delete_already_gone(self, manager, client, listed):
        client.delete_listing.side_effect = NotFoundError("Not found", status_code=404)
        manager.delete_listing(listed)
        assert listed.status == ListingStatus.REMOVED.value

    def test_publish_product_updates_existing(self, manager, client, listed, product):
        client.update_listing.return_value = {"status": "active"}
        manager.publish_product(product)
        client.update_listing.assert_called_once()
        client.create_listing.assert_not_called()

    def test_publish_product_recreates_removed(self, manager, client, listed, product):
        listed.status = ListingStatus.REMOVED.value
        client.create_listing.return_value = {"id": 900, "status": "active"}

        listing = manager.publish_product(product)

        assert listing.id == listed.id
        assert listing.external_listing_id == "900"

    def test_destroy_product_ignores_remote_errors(self, manager, client, listed, product, db_session):
        client.delete_listing.side_effect = ApiError("HTTP 500: boom", status_code=500)

        manager.destroy_product(product)

        assert db_session.scalar(select(Product)) is None
        assert db_session.scalar(select(OlxListing)) is None


@pytest.mark.unit
class TestReconnect:

    def test_reconnect_existing_remote(self, manager, client, product):
        product.olx_ad_id = "777"
        client.get_listing.return_value = {"data": {"id": 777, "status": "active", "title": "Varta"}}

        outcome = manager.reconnect_listing(product)

        assert outcome.reconnected is True
        assert outcome.listing.external_listing_id == "777"
        assert outcome.listing.status == ListingStatus.PUBLISHED.value
        assert product.olx_ad_id is None
        assert product.published is True
        client.get_listing.assert_called_once_with("777")

    def test_reconnect_missing_remote(self, manager, client, product, db_session):
        product.olx_ad_id = "777"
        client.get_listing.side_effect = NotFoundError("Not found", status_code=404)

        outcome = manager.reconnect_listing(product)

        assert outcome.reconnected is False
        assert outcome.listing is None
        assert product.olx_ad_id is None
        assert db_session.scalar(select(OlxListing)) is None
        assert "publish" in outcome.message

    def test_reconnect_without_id(self, manager, product):
        with pytest.raises(ArgumentError):
            manager.reconnect_listing(product)
