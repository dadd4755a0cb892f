import logging
import uuid
from functools import lru_cache
from typing import Any, Optional

from sqlalchemy import inspect
from sqlalchemy.orm import Session
from supabase import Client, create_client

from olxsync.models import Product, ProductImage
from olxsync.settings import settings

logger = logging.getLogger(__name__)


class StorageService:
    """Blob store for product images: attach bytes, purge everything attached."""

    def __init__(self, client: Optional[Any] = None, bucket: Optional[str] = None):
        self.bucket = bucket or settings.supabase_bucket
        if client is not None:
            self.client = client
            return

        if not settings.supabase_url or not settings.supabase_service_role_key:
            logger.warning("Supabase credentials not set. Storage service disabled.")
            self.client: Optional[Client] = None
        else:
            try:
                self.client = create_client(settings.supabase_url, settings.supabase_service_role_key)
            except Exception as e:
                logger.error(f"Failed to initialize Supabase client: {e}")
                self.client = None

    @staticmethod
    def _path_for(product: Product, filename: str) -> str:
        return f"products/{product.id}/{uuid.uuid4().hex[:8]}-{filename}"

    def attach(
        self,
        session: Session,
        product: Product,
        content: bytes,
        filename: str,
        content_type: str = "image/jpeg",
        position: int = 0,
    ) -> Optional[ProductImage]:
        if not self.client:
            logger.error("Supabase client is not initialized.")
            return None

        path = self._path_for(product, filename)
        try:
            bucket = self.client.storage.from_(self.bucket)
            bucket.upload(path=path, file=content, file_options={"content-type": content_type})
            public_url = bucket.get_public_url(path)
        except Exception as e:
            logger.error(f"Failed to upload {filename} for product {product.id}: {e}")
            return None

        image = ProductImage(
            product=product,
            filename=filename,
            content_type=content_type,
            storage_path=path,
            public_url=public_url,
            byte_size=len(content),
            position=position,
        )
        session.add(image)
        return image

    def purge(self, session: Session, product: Product) -> int:
        images = list(product.images)
        if not images:
            return 0
        paths = [image.storage_path for image in images]
        if self.client:
            try:
                self.client.storage.from_(self.bucket).remove(paths)
            except Exception as e:
                # rows are removed regardless
                logger.error(f"Failed to remove {len(paths)} blobs for product {product.id}: {e}")
        for image in images:
            product.images.remove(image)
            # unflushed images are already gone with the orphan cascade
            if inspect(image).persistent:
                session.delete(image)
        session.flush()
        return len(images)


@lru_cache(maxsize=1)
def get_storage_service() -> StorageService:
    return StorageService()
