"""
Unit tests for OlxSyncService (OLX listings -> local products).
"""

from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest
from sqlalchemy import func, select

from olxsync.exceptions import ApiError, AuthenticationError
from olxsync.models import ListingStatus, OlxCategoryTemplate, OlxListing, Product, ProductImage, ProductSource
from olxsync.services.image_service import ImageService
from olxsync.services.remote_sync import OlxSyncService, html_to_text


def _summary(listing_id: int, status: str = "active") -> dict:
    return {"id": listing_id, "title": f"Oglas {listing_id}", "status": status}


def _detail(listing_id: int, category_id: int = 1500, status: str = "active") -> dict:
    return {
        "data": {
            "id": listing_id,
            "title": f"Akumulator {listing_id}",
            "status": status,
            "category_id": category_id,
            "price": "120.50",
            "sku_number": f"SKU-{listing_id}",
            "additional": {"description": "<p>Opis proizvoda</p><p>Linija 2</p>"},
            "location": {"lat": 43.85, "lon": 18.41},
            "attributes": [{"id": 3002, "value": "Crna"}],
            "images": [{"url": f"https://img.olx.test/{listing_id}/photo_300x300.jpg"}],
        }
    }


def _image_transport() -> httpx.MockTransport:
    return httpx.MockTransport(
        lambda request: httpx.Response(200, content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"})
    )


@pytest.fixture
def category(make_category):
    return make_category(1500, "Akumulatori")


@pytest.fixture
def client():
    client = MagicMock()
    client.get_listing.side_effect = lambda listing_id: _detail(int(listing_id))
    return client


@pytest.fixture
def service(db_session, shop, client, storage, log_dir, category):
    images = ImageService(db_session, storage=storage, transport=_image_transport())
    return OlxSyncService(db_session, shop, client, image_service=images, log_dir=log_dir)


def _listings_page(ids, last_page=1, status="active"):
    return {"data": [_summary(i, status) for i in ids], "meta": {"current_page": 1, "last_page": last_page}}


@pytest.mark.unit
def test_html_to_text():
    assert html_to_text("<p>Opis proizvoda</p><p>Linija 2</p>") == "Opis proizvoda\nLinija 2"
    assert html_to_text("obični tekst") == "obični tekst"
    assert html_to_text(None) is None


@pytest.mark.unit
class TestSyncProducts:

    def test_one_failure_does_not_stop_the_run(self, service, client, db_session):
        client.get_user_listings.return_value = _listings_page(range(1, 11))

        def get_listing(listing_id):
            if int(listing_id) == 5:
                raise ApiError("HTTP 500: boom", status_code=500)
            return _detail(int(listing_id))

        client.get_listing.side_effect = get_listing

        result = service.sync_products(limit=10)

        assert result.success
        assert (result.created, result.updated, result.skipped, result.failed) == (9, 0, 0, 1)
        assert db_session.scalar(select(func.count(Product.id))) == 9
        assert db_session.scalar(select(func.count(OlxCategoryTemplate.id))) == 1

    def test_created_product_fields(self, service, client, db_session):
        client.get_user_listings.return_value = _listings_page([42])

        service.sync_products()

        product = db_session.scalar(select(Product))
        assert product.source == ProductSource.OLX.value
        assert product.source_id == "42"
        assert product.title == "Akumulator 42"
        assert product.description == "Opis proizvoda\nLinija 2"
        assert product.price == Decimal("120.50")
        assert product.sku == "SKU-42"
        assert product.published is True
        assert product.olx_category_template.olx_category.external_id == 1500

        listing = product.olx_listing
        assert listing.external_listing_id == "42"
        assert listing.status == ListingStatus.PUBLISHED.value
        assert listing.extra["attributes"] == [{"id": 3002, "value": "Crna"}]
        assert [image.public_url.startswith("https://cdn.example.test/") for image in product.images] == [True]

    def test_skip_existing_makes_no_detail_calls(self, service, client, db_session, shop, make_product):
        for listing_id in (1, 2, 3):
            product = make_product(source=ProductSource.OLX.value, source_id=str(listing_id))
            db_session.add(OlxListing(product=product, shop=shop, external_listing_id=str(listing_id), extra={}))
        db_session.commit()
        client.get_user_listings.return_value = _listings_page([1, 2, 3])

        result = service.sync_products(skip_existing=True)

        assert result.skipped == 3
        client.get_listing.assert_not_called()

    def test_status_filter(self, service, client):
        page = _listings_page([1, 2])
        page["data"][1]["status"] = "inactive"
        client.get_user_listings.return_value = page

        result = service.sync_products()

        assert (result.created, result.skipped) == (1, 1)
        client.get_listing.assert_called_once_with("1")

    def test_category_filter(self, service, client):
        client.get_user_listings.return_value = _listings_page([1, 2])
        client.get_listing.side_effect = lambda listing_id: _detail(int(listing_id), category_id=1500 if listing_id == "1" else 1600)

        result = service.sync_products(category_ids=[1500])

        assert (result.created, result.skipped) == (1, 1)

    def test_unknown_category_skipped(self, service, client, db_session):
        client.get_user_listings.return_value = _listings_page([1])
        client.get_listing.side_effect = lambda listing_id: _detail(int(listing_id), category_id=9999)

        result = service.sync_products()

        assert result.skipped == 1
        assert db_session.scalar(select(Product)) is None

    def test_second_run_updates_and_replaces_images(self, service, client, db_session, storage_client):
        client.get_user_listings.return_value = _listings_page([7])
        service.sync_products()

        client.get_listing.side_effect = lambda listing_id: _detail(int(listing_id), status="inactive")
        client.get_user_listings.return_value = _listings_page([7], status="inactive")
        result = service.sync_products(status_filter=None)

        assert (result.created, result.updated) == (0, 1)
        storage_client.storage.from_.return_value.remove.assert_called_once()
        assert db_session.scalar(select(func.count(ProductImage.id))) == 1
        product = db_session.scalar(select(Product))
        assert product.olx_listing.status == ListingStatus.DRAFT.value
        assert product.published is False

    def test_auth_failure(self, service, client):
        client.ensure_authenticated.side_effect = AuthenticationError("Invalid credentials", status_code=401)

        result = service.sync_products()

        assert result.success is False
        assert result.error == "Authentication failed: Invalid credentials"
        client.get_user_listings.assert_not_called()

    def test_writes_run_log(self, service, client, log_dir):
        client.get_user_listings.return_value = _listings_page([])
        service.sync_products()
        logs = list(Path(log_dir).glob("olx_sync_*.log"))
        assert len(logs) == 1
        assert "Found 0 listings on OLX" in logs[0].read_text(encoding="utf-8")


@pytest.mark.unit
class TestFetchAllListings:

    def test_follows_pages(self, service, client):
        pages = {
            1: {"data": [_summary(1), _summary(2)], "meta": {"last_page": 2}},
            2: {"data": [_summary(3)], "meta": {"last_page": 2}},
        }
        client.get_user_listings.side_effect = lambda page, per_page: pages[page]

        assert [item["id"] for item in service.fetch_all_listings()] == [1, 2, 3]

    def test_repeated_page_stops(self, service, client):
        client.get_user_listings.return_value = {"data": [_summary(1), _summary(2)]}
        assert [item["id"] for item in service.fetch_all_listings()] == [1, 2]
        assert client.get_user_listings.call_count == 2

    def test_limit(self, service, client):
        client.get_user_listings.return_value = {"data": [_summary(i) for i in range(1, 6)], "meta": {"last_page": 3}}
        assert len(service.fetch_all_listings(limit=3)) == 3
        assert client.get_user_listings.call_count == 1
