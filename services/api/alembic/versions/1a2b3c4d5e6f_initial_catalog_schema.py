"""initial_catalog_schema

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "1a2b3c4d5e6f"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "merchants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=True),
        sa.Column("source_type", sa.String(length=20), nullable=False),
        sa.Column("source_config_json", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_merchants_name"), "merchants", ["name"], unique=False)

    op.create_table(
        "brands",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index(op.f("ix_brands_slug"), "brands", ["slug"], unique=True)

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["parent_id"], ["categories.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_categories_parent_id"), "categories", ["parent_id"], unique=False)
    op.create_index(op.f("ix_categories_slug"), "categories", ["slug"], unique=True)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("brand_id", sa.Integer(), nullable=True),
        sa.Column("base_price_minor", sa.BigInteger(), nullable=False),
        sa.Column("rating", sa.Float(), nullable=False),
        sa.Column("review_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["brand_id"], ["brands.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_products_slug"), "products", ["slug"], unique=True)
    op.create_index(op.f("ix_products_brand_id"), "products", ["brand_id"], unique=False)
    op.create_index(op.f("ix_products_status"), "products", ["status"], unique=False)

    op.create_table(
        "product_categories",
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
        sa.PrimaryKeyConstraint("product_id", "category_id"),
    )

    op.create_table(
        "variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("internal_sku", sa.String(length=100), nullable=False),
        sa.Column("gtin", sa.String(length=50), nullable=True),
        sa.Column("mpn", sa.String(length=100), nullable=True),
        sa.Column("attributes_json", sa.Text(), nullable=True),
        sa.Column("normalized_attributes_json", sa.Text(), nullable=True),
        sa.Column("weight_grams", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("internal_sku"),
    )
    op.create_index(op.f("ix_variants_product_id"), "variants", ["product_id"], unique=False)
    op.create_index(op.f("ix_variants_mpn"), "variants", ["mpn"], unique=False)
    # A GTIN identifies at most one active variant across the whole catalog
    op.create_index(
        "uq_variants_active_gtin",
        "variants",
        ["gtin"],
        unique=True,
        postgresql_where=sa.text("gtin IS NOT NULL AND is_active"),
    )

    op.create_table(
        "merchant_offers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("merchant_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("external_product_id", sa.String(length=100), nullable=True),
        sa.Column("external_variant_id", sa.String(length=100), nullable=True),
        sa.Column("merchant_sku", sa.String(length=100), nullable=True),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("cached_price_minor", sa.BigInteger(), nullable=False),
        sa.Column("cached_settlement_price_minor", sa.BigInteger(), nullable=False),
        sa.Column("current_stock", sa.Integer(), nullable=False),
        sa.Column("offer_status", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["merchant_id"], ["merchants.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("merchant_id", "variant_id", name="uq_merchant_offers_merchant_variant"),
    )
    op.create_index(op.f("ix_merchant_offers_merchant_id"), "merchant_offers", ["merchant_id"], unique=False)
    op.create_index(op.f("ix_merchant_offers_variant_id"), "merchant_offers", ["variant_id"], unique=False)
    op.create_index(
        op.f("ix_merchant_offers_external_product_id"),
        "merchant_offers",
        ["external_product_id"],
        unique=False,
    )
    op.create_index(op.f("ix_merchant_offers_offer_status"), "merchant_offers", ["offer_status"], unique=False)

    op.create_table(
        "margin_rules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("merchant_id", sa.Integer(), nullable=False),
        sa.Column("brand_id", sa.Integer(), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("margin_percentage", sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_to", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["merchant_id"], ["merchants.id"]),
        sa.ForeignKeyConstraint(["brand_id"], ["brands.id"]),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_margin_rules_merchant_id"), "margin_rules", ["merchant_id"], unique=False)

    op.create_table(
        "staging_products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("merchant_id", sa.Integer(), nullable=False),
        sa.Column("external_product_id", sa.String(length=100), nullable=False),
        sa.Column("raw_title", sa.Text(), nullable=False),
        sa.Column("raw_body_html", sa.Text(), nullable=True),
        sa.Column("raw_vendor", sa.String(length=200), nullable=True),
        sa.Column("raw_product_type", sa.String(length=200), nullable=True),
        sa.Column("raw_tags_json", sa.Text(), nullable=True),
        sa.Column("raw_image_url", sa.Text(), nullable=True),
        sa.Column("raw_payload_json", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("suggested_master_product_id", sa.Integer(), nullable=True),
        sa.Column("match_confidence_score", sa.Integer(), nullable=False),
        sa.Column("matched_brand_id", sa.Integer(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["merchant_id"], ["merchants.id"]),
        sa.ForeignKeyConstraint(["suggested_master_product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["matched_brand_id"], ["brands.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "merchant_id",
            "external_product_id",
            name="uq_staging_products_merchant_external",
        ),
    )
    op.create_index(op.f("ix_staging_products_merchant_id"), "staging_products", ["merchant_id"], unique=False)
    op.create_index(op.f("ix_staging_products_status"), "staging_products", ["status"], unique=False)

    op.create_table(
        "staging_variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("staging_product_id", sa.Integer(), nullable=False),
        sa.Column("external_variant_id", sa.String(length=100), nullable=False),
        sa.Column("raw_sku", sa.String(length=100), nullable=True),
        sa.Column("raw_barcode", sa.String(length=50), nullable=True),
        sa.Column("raw_price_minor", sa.BigInteger(), nullable=False),
        sa.Column("raw_inventory", sa.Integer(), nullable=False),
        sa.Column("raw_weight_grams", sa.Integer(), nullable=True),
        sa.Column("raw_options_json", sa.Text(), nullable=True),
        sa.Column("matched_master_variant_id", sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["staging_product_id"], ["staging_products.id"]),
        sa.ForeignKeyConstraint(["matched_master_variant_id"], ["variants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "staging_product_id",
            "external_variant_id",
            name="uq_staging_variants_product_external",
        ),
    )
    op.create_index(
        op.f("ix_staging_variants_staging_product_id"),
        "staging_variants",
        ["staging_product_id"],
        unique=False,
    )
    op.create_index(op.f("ix_staging_variants_raw_barcode"), "staging_variants", ["raw_barcode"], unique=False)

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("merchant_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("records_processed", sa.Integer(), nullable=False),
        sa.Column("records_failed", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["merchant_id"], ["merchants.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_sync_logs_merchant_id"), "sync_logs", ["merchant_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_sync_logs_merchant_id"), table_name="sync_logs")
    op.drop_table("sync_logs")

    op.drop_index(op.f("ix_staging_variants_raw_barcode"), table_name="staging_variants")
    op.drop_index(op.f("ix_staging_variants_staging_product_id"), table_name="staging_variants")
    op.drop_table("staging_variants")

    op.drop_index(op.f("ix_staging_products_status"), table_name="staging_products")
    op.drop_index(op.f("ix_staging_products_merchant_id"), table_name="staging_products")
    op.drop_table("staging_products")

    op.drop_index(op.f("ix_margin_rules_merchant_id"), table_name="margin_rules")
    op.drop_table("margin_rules")

    op.drop_index(op.f("ix_merchant_offers_offer_status"), table_name="merchant_offers")
    op.drop_index(op.f("ix_merchant_offers_external_product_id"), table_name="merchant_offers")
    op.drop_index(op.f("ix_merchant_offers_variant_id"), table_name="merchant_offers")
    op.drop_index(op.f("ix_merchant_offers_merchant_id"), table_name="merchant_offers")
    op.drop_table("merchant_offers")

    op.drop_index("uq_variants_active_gtin", table_name="variants")
    op.drop_index(op.f("ix_variants_mpn"), table_name="variants")
    op.drop_index(op.f("ix_variants_product_id"), table_name="variants")
    op.drop_table("variants")

    op.drop_table("product_categories")

    op.drop_index(op.f("ix_products_status"), table_name="products")
    op.drop_index(op.f("ix_products_brand_id"), table_name="products")
    op.drop_index(op.f("ix_products_slug"), table_name="products")
    op.drop_table("products")

    op.drop_index(op.f("ix_categories_slug"), table_name="categories")
    op.drop_index(op.f("ix_categories_parent_id"), table_name="categories")
    op.drop_table("categories")

    op.drop_index(op.f("ix_brands_slug"), table_name="brands")
    op.drop_table("brands")

    op.drop_index(op.f("ix_merchants_name"), table_name="merchants")
    op.drop_table("merchants")
