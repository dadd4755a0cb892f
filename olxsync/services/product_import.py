"""
Upsert of product records emitted by the scraper (or the CSV importer).

Record shape::

    {source_id, title, sub_title?, sku, brand, price, currency,
     branch_availability?, quantity?, description?, specs?, images[],
     technical_description?, models?, reuse_existing?}
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from olxsync.exceptions import ArgumentError
from olxsync.models import CURRENCIES, ImportLog, ImportStatus, Product, ProductSource, Shop
from olxsync.services.image_service import ImageService
from olxsync.settings import settings

logger = logging.getLogger(__name__)

# fields a listing page shows without opening the product
_LIGHT_FIELDS = ("price", "currency", "branch_availability", "quantity")


@dataclass
class ImportResult:
    success: bool = True
    imported: int = 0
    failed: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def extract_source_id(record: dict) -> str | None:
    source_id = record.get("source_id") or record.get("sku")
    if source_id:
        return str(source_id).strip()
    url = record.get("source_url")
    if not url:
        return None
    match = re.search(r"/(\d+)(?:/|$)", str(url))
    return match.group(1) if match else str(url)


def _price(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value).replace(",", "."))
    except (InvalidOperation, ValueError):
        raise ArgumentError(f"Invalid price: {value!r}")


def _specs_text(specs: Any) -> str | None:
    if specs in (None, "", [], {}):
        return None
    if isinstance(specs, str):
        return specs
    return json.dumps(specs, ensure_ascii=False)


class ProductImporter:
    def __init__(self, session: Session, shop: Shop, image_service: ImageService | None = None):
        self.session = session
        self.shop = shop
        self.images = image_service or ImageService(session)

    def _find(self, source: str, source_id: str) -> Product | None:
        return self.session.scalar(
            select(Product).where(
                Product.shop_id == self.shop.id,
                Product.source == source,
                Product.source_id == source_id,
            )
        )

    def import_record(self, record: dict, source: str = ProductSource.SCRAPER.value) -> Product:
        source_id = extract_source_id(record)
        if not source_id:
            raise ArgumentError("Record has no source_id, sku or source_url")
        if not record.get("title") and not record.get("reuse_existing"):
            raise ArgumentError(f"Record {source_id} has no title")

        product = self._find(source, source_id)
        currency = str(record.get("currency") or "BAM").upper()
        if currency not in CURRENCIES:
            currency = "BAM"

        if product is not None and record.get("reuse_existing"):
            values = {
                "price": _price(record.get("price")) if record.get("price") is not None else product.price,
                "currency": currency,
                "branch_availability": record.get("branch_availability", product.branch_availability),
                "quantity": str(record["quantity"]) if record.get("quantity") is not None else product.quantity,
            }
            for key in _LIGHT_FIELDS:
                setattr(product, key, values[key])
            product.recalculate_final_price()
            return product

        if product is None:
            product = Product(shop=self.shop, source=source, source_id=source_id)
            self.session.add(product)

        product.title = record.get("title")
        product.sub_title = record.get("sub_title")
        product.sku = record.get("sku")
        product.brand = record.get("brand")
        product.price = _price(record.get("price"))
        product.currency = currency
        product.branch_availability = record.get("branch_availability")
        product.quantity = None if record.get("quantity") is None else str(record.get("quantity"))
        product.description = record.get("description")
        product.specs = _specs_text(record.get("specs"))
        product.technical_description = record.get("technical_description")
        product.models = record.get("models")
        product.recalculate_final_price()
        self.session.flush()

        images = [url for url in record.get("images") or [] if url]
        if images:
            product.image_urls = images
            self.images.replace_images(product, images)
        return product

    def import_records(
        self,
        records: Iterable[dict],
        *,
        source: str = ProductSource.SCRAPER.value,
        import_log: ImportLog | None = None,
    ) -> ImportResult:
        records = list(records)
        result = ImportResult(total=len(records))
        if import_log is not None:
            import_log.current_phase = "importing"
            import_log.total_rows = len(records)
            self.session.commit()

        for index, record in enumerate(records, start=1):
            try:
                self.import_record(record, source=source)
                if import_log is not None:
                    import_log.successful_rows += 1
                self.session.commit()
                result.imported += 1
            except Exception as e:
                self.session.rollback()
                message = f"Product {index}: {e}"
                logger.error(f"[Import] {message}")
                result.failed += 1
                if len(result.errors) < settings.sync_error_cap:
                    result.errors.append(message)
                if import_log is not None:
                    import_log.failed_rows += 1
                    import_log.add_error(message)
                    self.session.commit()

        if import_log is not None:
            import_log.status = (
                ImportStatus.COMPLETED_WITH_ERRORS.value if result.failed else ImportStatus.COMPLETED.value
            )
            import_log.current_phase = "completed"
            import_log.completed_at = datetime.now(timezone.utc)
            self.session.commit()
        logger.info(f"[Import] shop={self.shop.id} imported={result.imported} failed={result.failed}")
        return result
