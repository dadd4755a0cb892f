"""
Unit tests for category templates, blob storage and image download.
"""

import httpx
import pytest
from sqlalchemy import select

from olxsync.exceptions import ArgumentError
from olxsync.models import OlxLocation, ProductImage
from olxsync.services.image_service import ImageService
from olxsync.services.storage_service import StorageService
from olxsync.services.templates import create_template, find_or_create_for_remote


@pytest.mark.unit
class TestTemplates:

    def test_create_on_leaf(self, db_session, shop, make_category):
        root = make_category(1, "Auto dijelovi")
        leaf = make_category(2, "Akumulatori", parent=root)

        template = create_template(
            db_session, shop, name=" Akumulatori ", category=leaf, attribute_mappings={"1848": "{brand} | fixed:Varta"}
        )

        assert template.name == "Akumulatori"
        assert template.default_listing_type == "sell"
        assert template.default_state == "used"

    def test_rejects_non_leaf(self, db_session, shop, make_category):
        root = make_category(1, "Auto dijelovi")
        make_category(2, "Akumulatori", parent=root)
        with pytest.raises(ArgumentError):
            create_template(db_session, shop, name="Root", category=root)

    def test_rejects_bad_rule(self, db_session, shop, make_category):
        leaf = make_category(2, "Akumulatori")
        with pytest.raises(ArgumentError) as excinfo:
            create_template(db_session, shop, name="Bad", category=leaf, attribute_mappings={"1848": "fixed:A |"})
        assert "1848" in excinfo.value.message

    def test_remote_template_unique_per_category_and_location(self, db_session, shop, make_category):
        category = make_category(2, "Akumulatori")
        sarajevo = OlxLocation(external_id=77, name="Sarajevo", extra={})
        db_session.add(sarajevo)
        db_session.flush()

        first = find_or_create_for_remote(db_session, shop, category)
        again = find_or_create_for_remote(db_session, shop, category)
        located = find_or_create_for_remote(db_session, shop, category, sarajevo, listing_type="buy")

        assert first.id == again.id
        assert located.id != first.id
        assert located.name == "Akumulatori - Sarajevo"
        assert located.default_listing_type == "buy"


@pytest.mark.unit
class TestStorage:

    def test_attach_and_purge(self, db_session, make_product, storage, storage_client):
        product = make_product()
        bucket = storage_client.storage.from_.return_value

        image = storage.attach(db_session, product, b"abc", "varta.jpg", position=2)
        db_session.flush()

        assert image.public_url.startswith("https://cdn.example.test/products/")
        assert image.byte_size == 3
        storage_client.storage.from_.assert_called_with("test-bucket")

        assert storage.purge(db_session, product) == 1
        bucket.remove.assert_called_once_with([image.storage_path])
        assert db_session.scalar(select(ProductImage)) is None

    def test_purge_removes_rows_when_blob_delete_fails(self, db_session, make_product, storage, storage_client):
        product = make_product()
        storage.attach(db_session, product, b"abc", "varta.jpg")
        storage_client.storage.from_.return_value.remove.side_effect = RuntimeError("bucket offline")

        assert storage.purge(db_session, product) == 1
        assert product.images == []
        assert db_session.scalar(select(ProductImage)) is None

    def test_purge_mixes_flushed_and_unflushed_images(self, db_session, make_product, storage):
        product = make_product()
        storage.attach(db_session, product, b"abc", "prva.jpg", position=0)
        db_session.flush()
        storage.attach(db_session, product, b"def", "druga.jpg", position=1)

        assert storage.purge(db_session, product) == 2
        assert product.images == []
        assert db_session.scalar(select(ProductImage)) is None

    def test_upload_failure_returns_none(self, db_session, make_product, storage, storage_client):
        storage_client.storage.from_.return_value.upload.side_effect = RuntimeError("quota")
        assert storage.attach(db_session, make_product(), b"abc", "varta.jpg") is None

    def test_disabled_without_client(self, db_session, make_product):
        storage = StorageService(client=None, bucket="test-bucket")
        storage.client = None
        assert storage.attach(db_session, make_product(), b"abc", "varta.jpg") is None


@pytest.mark.unit
def test_image_download_skips_failures(db_session, make_product, storage):
    def handler(request):
        if request.url.path.endswith("broken.jpg"):
            return httpx.Response(404)
        return httpx.Response(200, content=b"png", headers={"content-type": "image/png"})

    images = ImageService(db_session, storage=storage, transport=httpx.MockTransport(handler))
    product = make_product()

    attached = images.attach_from_urls(
        product, ["https://shop.example.ba/a/broken.jpg", "https://shop.example.ba/a/", "https://shop.example.ba/b.jpg"]
    )

    assert attached == 2
    assert [image.filename for image in product.images] == ["image_1.png", "b.jpg"]
    assert product.images[0].content_type == "image/png"
