"""initial schema

Revision ID: 5b2e9d0c41a7
Revises:
Create Date: 2026-10-17 00:00:00.000001

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "5b2e9d0c41a7"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "shops",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("olx_username", sa.Text(), nullable=True),
        sa.Column("olx_password", sa.Text(), nullable=True),
        sa.Column("olx_access_token", sa.Text(), nullable=True),
        sa.Column("olx_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("olx_user_id", sa.BigInteger(), nullable=True),
        sa.Column("olx_user_name", sa.Text(), nullable=True),
        sa.Column("settings", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        *_timestamps(),
    )

    op.create_table(
        "olx_categories",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("external_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=True),
        sa.Column("parent_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("olx_categories.id", ondelete="CASCADE"), nullable=True),
        sa.Column("has_shipping", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_brand", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        *_timestamps(),
    )
    op.create_index("ix_olx_categories_parent_id", "olx_categories", ["parent_id"])

    op.create_table(
        "olx_category_attributes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("olx_category_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("olx_categories.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("attribute_type", sa.Text(), nullable=True),
        sa.Column("input_type", sa.Text(), nullable=True),
        sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("options", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("olx_category_id", "external_id", name="uq_olx_category_attributes_category_external"),
    )

    op.create_table(
        "olx_locations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("external_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("country_id", sa.BigInteger(), nullable=True),
        sa.Column("state_id", sa.BigInteger(), nullable=True),
        sa.Column("canton_id", sa.BigInteger(), nullable=True),
        sa.Column("region_name", sa.Text(), nullable=True),
        sa.Column("canton_name", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("zip_code", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        *_timestamps(),
    )

    op.create_table(
        "olx_category_templates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("shop_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("olx_category_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("olx_categories.id", ondelete="CASCADE"), nullable=False),
        sa.Column("olx_location_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("olx_locations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("default_listing_type", sa.Text(), nullable=False, server_default="sell"),
        sa.Column("default_state", sa.Text(), nullable=False, server_default="used"),
        sa.Column("attribute_mappings", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("description_filter", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("title_template", sa.Text(), nullable=True),
        sa.Column("description_template", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_olx_category_templates_shop_id", "olx_category_templates", ["shop_id"])

    op.create_table(
        "products",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("shop_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source", sa.Text(), nullable=False, server_default="csv"),
        sa.Column("source_id", sa.Text(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("sub_title", sa.Text(), nullable=True),
        sa.Column("sku", sa.Text(), nullable=True),
        sa.Column("brand", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(12, 4), nullable=True),
        sa.Column("currency", sa.Text(), nullable=False, server_default="BAM"),
        sa.Column("margin", sa.Numeric(8, 4), nullable=False, server_default="0"),
        sa.Column("final_price", sa.Numeric(14, 4), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("specs", sa.Text(), nullable=True),
        sa.Column("technical_description", sa.Text(), nullable=True),
        sa.Column("models", sa.Text(), nullable=True),
        sa.Column("branch_availability", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Text(), nullable=True),
        sa.Column("image_urls", postgresql.JSONB(), nullable=True),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("olx_ad_id", sa.Text(), nullable=True),
        sa.Column("olx_title", sa.Text(), nullable=True),
        sa.Column("olx_description", sa.Text(), nullable=True),
        sa.Column(
            "olx_category_template_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("olx_category_templates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
        sa.UniqueConstraint("shop_id", "source", "source_id", name="uq_products_shop_source_source_id"),
    )

    op.create_table(
        "product_images",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("product_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("content_type", sa.Text(), nullable=True),
        sa.Column("storage_path", sa.Text(), nullable=False),
        sa.Column("public_url", sa.Text(), nullable=True),
        sa.Column("byte_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "olx_listings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("product_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("shop_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_listing_id", sa.Text(), nullable=True, unique=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        *_timestamps(),
    )
    op.create_index("ix_olx_listings_shop_id", "olx_listings", ["shop_id"])

    op.create_table(
        "import_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("shop_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source", sa.Text(), nullable=False, server_default="scraper"),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scraped_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_messages", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("current_phase", sa.Text(), nullable=True),
        sa.Column("last_progress_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("import_logs")
    op.drop_index("ix_olx_listings_shop_id", table_name="olx_listings")
    op.drop_table("olx_listings")
    op.drop_table("product_images")
    op.drop_table("products")
    op.drop_index("ix_olx_category_templates_shop_id", table_name="olx_category_templates")
    op.drop_table("olx_category_templates")
    op.drop_table("olx_locations")
    op.drop_table("olx_category_attributes")
    op.drop_index("ix_olx_categories_parent_id", table_name="olx_categories")
    op.drop_table("olx_categories")
    op.drop_table("shops")
