from __future__ import annotations

import enum
import json
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates
from sqlalchemy.sql import func

from olxsync.settings import settings


class Base(DeclarativeBase):
    pass


class ProductSource(str, enum.Enum):
    CSV = "csv"
    SCRAPER = "scraper"
    OLX = "olx"


class ListingStatus(str, enum.Enum):
    PENDING = "pending"
    DRAFT = "draft"
    PUBLISHED = "published"
    FAILED = "failed"
    REMOVED = "removed"


class ImportStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


CURRENCIES = ("BAM", "EUR", "USD")


class Shop(Base):
    __tablename__ = "shops"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    olx_username: Mapped[str | None] = mapped_column(Text, nullable=True)
    olx_password: Mapped[str | None] = mapped_column(Text, nullable=True)
    olx_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    olx_token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    olx_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    olx_user_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    settings: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    products: Mapped[list["Product"]] = relationship(back_populates="shop", cascade="all, delete-orphan")
    templates: Mapped[list["OlxCategoryTemplate"]] = relationship(back_populates="shop", cascade="all, delete-orphan")

    @property
    def olx_configured(self) -> bool:
        return bool(self.olx_username and self.olx_password)


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("shop_id", "source", "source_id", name="uq_products_shop_source_source_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False, default=ProductSource.CSV.value)
    source_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    sub_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    sku: Mapped[str | None] = mapped_column(Text, nullable=True)
    brand: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(Text, nullable=True)  # free text
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    currency: Mapped[str] = mapped_column(Text, nullable=False, default="BAM")
    margin: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, default=Decimal("0"))
    final_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    specs: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON serialized
    technical_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    models: Mapped[str | None] = mapped_column(Text, nullable=True)
    branch_availability: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_urls: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    olx_ad_id: Mapped[str | None] = mapped_column(Text, nullable=True)  # stray remote reference
    olx_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    olx_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    olx_category_template_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("olx_category_templates.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    shop: Mapped["Shop"] = relationship(back_populates="products")
    olx_category_template: Mapped["OlxCategoryTemplate | None"] = relationship()
    olx_listing: Mapped["OlxListing | None"] = relationship(
        back_populates="product", cascade="all, delete-orphan", uselist=False
    )
    images: Mapped[list["ProductImage"]] = relationship(
        back_populates="product", cascade="all, delete-orphan", order_by="ProductImage.position"
    )

    @validates("currency")
    def _validate_currency(self, key, value):
        value = (value or "BAM").upper()
        if value not in CURRENCIES:
            raise ValueError(f"Unsupported currency: {value}")
        return value

    def recalculate_final_price(self) -> Decimal | None:
        if self.price is None:
            self.final_price = None
            return None
        price = Decimal(str(self.price))
        margin = Decimal(str(self.margin or 0))
        self.final_price = price * (Decimal("1") + margin / Decimal("100"))
        return self.final_price

    @property
    def is_marketplace_origin(self) -> bool:
        return self.source == ProductSource.OLX.value

    def spec_map(self) -> dict[str, str]:
        """Parse ``specs`` into a flat name -> value dict. Garbage yields {}."""
        if not self.specs:
            return {}
        try:
            data = json.loads(self.specs)
        except (TypeError, ValueError):
            return {}
        if isinstance(data, dict):
            return {str(k): str(v) for k, v in data.items() if v is not None}
        if isinstance(data, list):
            result = {}
            for item in data:
                if isinstance(item, dict) and item.get("name") is not None:
                    result[str(item["name"])] = str(item.get("value", ""))
            return result
        return {}

    def generate_olx_title(self) -> str:
        return (self.title or "").strip()

    def generate_olx_description(self, template=None) -> str:
        from olxsync.services.listing.description import compose_description

        return compose_description(self, template or self.olx_category_template)


@event.listens_for(Product, "before_insert")
@event.listens_for(Product, "before_update")
def _product_before_save(mapper, connection, target: Product) -> None:
    target.recalculate_final_price()


class ProductImage(Base):
    __tablename__ = "product_images"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    public_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    byte_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    product: Mapped["Product"] = relationship(back_populates="images")


class OlxCategory(Base):
    __tablename__ = "olx_categories"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    external_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("olx_categories.id", ondelete="CASCADE"), nullable=True
    )
    has_shipping: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_brand: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    extra: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    parent: Mapped["OlxCategory | None"] = relationship(remote_side=[id], back_populates="children")
    children: Mapped[list["OlxCategory"]] = relationship(back_populates="parent", cascade="all", passive_deletes=True)
    attributes: Mapped[list["OlxCategoryAttribute"]] = relationship(
        back_populates="category", cascade="all, delete-orphan"
    )

    @property
    def is_leaf(self) -> bool:
        return not self.children


class OlxCategoryAttribute(Base):
    __tablename__ = "olx_category_attributes"
    __table_args__ = (
        UniqueConstraint("olx_category_id", "external_id", name="uq_olx_category_attributes_category_external"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    olx_category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("olx_categories.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    attribute_type: Mapped[str | None] = mapped_column(Text, nullable=True)  # text, number, select
    input_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # list of values, or {"values": [...], ...}
    options: Mapped[Any] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    category: Mapped["OlxCategory"] = relationship(back_populates="attributes")

    @property
    def possible_values(self) -> list[str]:
        options = self.options
        if isinstance(options, dict):
            options = options.get("values") or []
        if not isinstance(options, list):
            return []
        values = []
        for option in options:
            if isinstance(option, dict):
                label = option.get("value") or option.get("name") or option.get("label")
                if label is not None:
                    values.append(str(label))
            elif option is not None:
                values.append(str(option))
        return values

    @property
    def is_numeric(self) -> bool:
        return (self.attribute_type or "").lower() in ("number", "numeric", "integer", "int", "float", "decimal")


class OlxLocation(Base):
    __tablename__ = "olx_locations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    external_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    country_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    state_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)  # region
    canton_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    region_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    canton_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    zip_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    extra: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def display_name(self) -> str:
        parts = [self.name, self.canton_name, self.region_name]
        return ", ".join(p for p in parts if p)


class OlxCategoryTemplate(Base):
    __tablename__ = "olx_category_templates"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    olx_category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("olx_categories.id", ondelete="CASCADE"), nullable=False
    )
    olx_location_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("olx_locations.id", ondelete="SET NULL"), nullable=True
    )
    default_listing_type: Mapped[str] = mapped_column(Text, nullable=False, default="sell")
    default_state: Mapped[str] = mapped_column(Text, nullable=False, default="used")
    # attribute name or external id -> mapping rule
    attribute_mappings: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    description_filter: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    title_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    description_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    shop: Mapped["Shop"] = relationship(back_populates="templates")
    olx_category: Mapped["OlxCategory"] = relationship()
    olx_location: Mapped["OlxLocation | None"] = relationship()

    @property
    def display_name(self) -> str:
        category = self.olx_category.name if self.olx_category else "?"
        return f"{self.name} ({category})"


class OlxListing(Base):
    __tablename__ = "olx_listings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    shop_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)
    external_listing_id: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=ListingStatus.PENDING.value)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # full raw marketplace response
    extra: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    product: Mapped["Product"] = relationship(back_populates="olx_listing")
    shop: Mapped["Shop"] = relationship()

    @property
    def olx_url(self) -> str | None:
        if not self.external_listing_id:
            return None
        return f"{settings.olx_listing_url_base}/{self.external_listing_id}"

    @property
    def error_message(self) -> str | None:
        if self.status != ListingStatus.FAILED.value:
            return None
        return (self.extra or {}).get("error")


class ImportLog(Base):
    __tablename__ = "import_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False, default=ProductSource.SCRAPER.value)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=ImportStatus.PENDING.value)
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scraped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_messages: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    current_phase: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_progress_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    shop: Mapped["Shop"] = relationship()

    def add_error(self, message: str, cap: int | None = None) -> None:
        cap = cap or settings.sync_error_cap
        errors = list(self.error_messages or [])
        if len(errors) < cap:
            errors.append(message)
        self.error_messages = errors
