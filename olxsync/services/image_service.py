from __future__ import annotations

import logging
import mimetypes
from urllib.parse import urlparse

import httpx
from sqlalchemy.orm import Session

from olxsync.models import Product
from olxsync.services.storage_service import StorageService, get_storage_service
from olxsync.settings import settings

logger = logging.getLogger(__name__)


def _filename_for(url: str, index: int, content_type: str) -> str:
    name = urlparse(url).path.rsplit("/", 1)[-1]
    if name and "." in name:
        return name
    extension = mimetypes.guess_extension(content_type) or ".jpg"
    return f"image_{index}{extension}"


class ImageService:
    """Serial download of remote images into the blob store; one bad image never stops the rest."""

    def __init__(
        self,
        session: Session,
        storage: StorageService | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.session = session
        self.storage = storage or get_storage_service()
        self._transport = transport
        self._timeout = httpx.Timeout(settings.olx_http_timeout, connect=10.0)

    def download(self, url: str) -> tuple[bytes, str]:
        with httpx.Client(timeout=self._timeout, transport=self._transport, follow_redirects=True) as client:
            response = client.get(url)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        return response.content, content_type

    def attach_from_urls(self, product: Product, urls: list[str]) -> int:
        attached = 0
        for index, url in enumerate(urls):
            try:
                content, content_type = self.download(url)
                image = self.storage.attach(
                    self.session,
                    product,
                    content,
                    _filename_for(url, index, content_type),
                    content_type=content_type,
                    position=index,
                )
                if image is not None:
                    attached += 1
            except Exception as e:
                logger.warning(f"Failed to download image {url} for product {product.id}: {e}")
        return attached

    def replace_images(self, product: Product, urls: list[str]) -> int:
        """Purge everything attached, then re-download. No diffing."""
        self.storage.purge(self.session, product)
        return self.attach_from_urls(product, urls)
