"""Shared fixtures: a throwaway SQLite database per test plus small row builders."""

import json
from typing import Any

import pytest

from app.models import (
    Brand,
    Category,
    MasterProduct,
    MasterVariant,
    Merchant,
    ProductCategory,
    ProductStatus,
    SourceType,
)
from app.services.dedup import generate_slug, normalize_attributes, slugify
from app.settings import get_settings
from app.stores.postgres import close_db, create_tables, get_session, init_db


@pytest.fixture
async def db(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Fresh schema in a temp SQLite file; Redis stays uninitialized (cache/locks are no-ops)."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    get_settings.cache_clear()
    await init_db()
    await create_tables()
    yield
    await close_db()
    get_settings.cache_clear()


class CatalogBuilder:
    """Inserts committed rows, one session per call."""

    async def _add(self, row: Any) -> Any:
        async with get_session() as session:
            session.add(row)
            await session.flush()
        return row

    async def brand(self, name: str = "Acme") -> Brand:
        return await self._add(Brand(name=name, slug=slugify(name), is_active=True))

    async def category(self, name: str = "Electronics", parent_id: int | None = None) -> Category:
        return await self._add(Category(name=name, slug=slugify(name), parent_id=parent_id, is_active=True))

    async def merchant(
        self,
        name: str = "Merchant A",
        *,
        source_type: SourceType = SourceType.MANUAL,
        config: dict[str, Any] | None = None,
        is_active: bool = True,
    ) -> Merchant:
        config = config or {"source_type": source_type.value}
        return await self._add(
            Merchant(
                name=name,
                source_type=source_type,
                source_config_json=json.dumps(config),
                is_active=is_active,
            )
        )

    async def product(
        self,
        title: str,
        *,
        id: int | None = None,
        brand_id: int | None = None,
        category_id: int | None = None,
        status: ProductStatus = ProductStatus.ACTIVE,
    ) -> MasterProduct:
        product = MasterProduct(
            title=title,
            slug=generate_slug(title),
            brand_id=brand_id,
            status=status,
            base_price_minor=0,
        )
        if id is not None:
            product.id = id
        async with get_session() as session:
            session.add(product)
            await session.flush()
            if category_id is not None:
                session.add(ProductCategory(product_id=product.id, category_id=category_id))
        return product

    async def variant(
        self,
        product_id: int,
        *,
        internal_sku: str,
        gtin: str | None = None,
        mpn: str | None = None,
        attributes: dict[str, str] | None = None,
        is_active: bool = True,
    ) -> MasterVariant:
        attributes = attributes or {}
        return await self._add(
            MasterVariant(
                product_id=product_id,
                internal_sku=internal_sku,
                gtin=gtin,
                mpn=mpn,
                attributes_json=json.dumps(attributes) if attributes else None,
                normalized_attributes_json=json.dumps(normalize_attributes(attributes)) if attributes else None,
                is_active=is_active,
            )
        )


@pytest.fixture
def catalog(db) -> CatalogBuilder:
    return CatalogBuilder()


def _feed_variant(
    id: Any,
    *,
    price: str = "100.00",
    barcode: str | None = None,
    sku: str | None = None,
    inventory: int = 5,
    option1: str | None = None,
    option2: str | None = None,
) -> dict[str, Any]:
    return {
        "id": id,
        "price": price,
        "barcode": barcode,
        "sku": sku,
        "inventory_quantity": inventory,
        "option1": option1,
        "option2": option2,
    }


def _feed_product(
    id: Any,
    title: str,
    variants: list[dict[str, Any]],
    *,
    vendor: str | None = None,
    options: list[str] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": id,
        "title": title,
        "vendor": vendor,
        "product_type": "Shoes",
        "tags": "new, sale",
        "options": [{"name": name, "position": i + 1} for i, name in enumerate(options or [])],
        "variants": variants,
        **extra,
    }


@pytest.fixture
def feed_variant():
    """Build one Shopify-shaped feed variant dict."""
    return _feed_variant


@pytest.fixture
def feed_product():
    """Build one Shopify-shaped feed product dict."""
    return _feed_product
