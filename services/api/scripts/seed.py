#!/usr/bin/env python3
"""Seed database with initial data.

Creates:
- Brands and a small category tree
- A push-only (MANUAL) demo merchant
- Master products with variants (GTINs, MPNs, attributes)
- A merchant-wide margin rule for the demo merchant

Seed script is idempotent (looks rows up by slug / internal SKU first).

Usage:
    cd services/api
    python -m scripts.seed
"""

import asyncio
import json
import os
import sys
from decimal import Decimal

# Add parent to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    Brand,
    Category,
    MarginRule,
    MasterProduct,
    MasterVariant,
    Merchant,
    ProductCategory,
    ProductStatus,
    SourceType,
)
from app.services.dedup import normalize_attributes, slugify
from app.stores.postgres import close_db, create_tables, get_session, init_db

load_dotenv()

# ============================================================
# Taxonomy
# ============================================================

BRANDS = ["Apple", "Samsung", "Sony", "boAt"]

# slug -> (name, parent slug)
CATEGORIES = {
    "electronics": ("Electronics", None),
    "phones": ("Phones", "electronics"),
    "audio": ("Audio", "electronics"),
    "home": ("Home & Kitchen", None),
}

# ============================================================
# Master catalog
# ============================================================

PRODUCTS = [
    {
        "slug": "iphone-15-seed",
        "title": "Apple iPhone 15",
        "brand": "Apple",
        "category": "phones",
        "base_price_minor": 7990000,
        "variants": [
            {"sku": "SEED-IP15-128-BLK", "gtin": "0195949035623", "mpn": "MTP03HN/A", "attributes": {"Storage": "128GB", "Color": "Black"}},
            {"sku": "SEED-IP15-256-BLK", "gtin": "0195949036095", "mpn": "MTP63HN/A", "attributes": {"Storage": "256GB", "Color": "Black"}},
        ],
    },
    {
        "slug": "galaxy-s24-seed",
        "title": "Samsung Galaxy S24",
        "brand": "Samsung",
        "category": "phones",
        "base_price_minor": 7499900,
        "variants": [
            {"sku": "SEED-S24-256-GRY", "gtin": "8806095299956", "mpn": "SM-S921BZADINS", "attributes": {"Storage": "256GB", "Color": "Onyx Black"}},
        ],
    },
    {
        "slug": "sony-wh-1000xm5-seed",
        "title": "Sony WH-1000XM5 Wireless Noise Cancelling Headphones",
        "brand": "Sony",
        "category": "audio",
        "base_price_minor": 2999000,
        "variants": [
            {"sku": "SEED-XM5-BLK", "gtin": "4548736132610", "mpn": "WH1000XM5/B", "attributes": {"Color": "Black"}},
            {"sku": "SEED-XM5-SLV", "gtin": "4548736132627", "mpn": "WH1000XM5/S", "attributes": {"Color": "Silver"}},
        ],
    },
]

DEMO_MERCHANT = {"name": "Demo Electronics Store", "email": "catalog@demo-store.example"}
DEMO_MARGIN = Decimal("5.00")


async def seed_database() -> None:
    """Seed database with initial data."""
    await init_db()
    if os.getenv("SEED_CREATE_TABLES", "").lower() in ("1", "true", "yes"):
        await create_tables()

    try:
        async with get_session() as session:
            print("Seeding database...")

            print("\nCreating brands...")
            brand_map = await seed_brands(session)

            print("\nCreating categories...")
            category_map = await seed_categories(session)

            print("\nCreating master products...")
            await seed_products(session, brand_map, category_map)

            print("\nCreating demo merchant...")
            await seed_merchant(session)

        print("\nDatabase seeded successfully!")
    finally:
        await close_db()


async def seed_brands(session: AsyncSession) -> dict[str, int]:
    """Seed brands and return mapping of name -> id."""
    brand_map: dict[str, int] = {}
    for name in BRANDS:
        slug = slugify(name)
        existing = (await session.execute(select(Brand).where(Brand.slug == slug))).scalar_one_or_none()
        if existing:
            print(f"  skip {name} (exists)")
            brand_map[name] = existing.id
            continue
        brand = Brand(name=name, slug=slug, is_active=True)
        session.add(brand)
        await session.flush()
        brand_map[name] = brand.id
        print(f"  + {name}")
    return brand_map


async def seed_categories(session: AsyncSession) -> dict[str, int]:
    """Seed categories (parents first) and return mapping of slug -> id."""
    category_map: dict[str, int] = {}
    for slug, (name, parent_slug) in CATEGORIES.items():
        existing = (await session.execute(select(Category).where(Category.slug == slug))).scalar_one_or_none()
        if existing:
            print(f"  skip {slug} (exists)")
            category_map[slug] = existing.id
            continue
        category = Category(
            name=name,
            slug=slug,
            parent_id=category_map.get(parent_slug) if parent_slug else None,
            is_active=True,
        )
        session.add(category)
        await session.flush()
        category_map[slug] = category.id
        print(f"  + {slug}")
    return category_map


async def seed_products(
    session: AsyncSession,
    brand_map: dict[str, int],
    category_map: dict[str, int],
) -> None:
    for p in PRODUCTS:
        existing = (
            await session.execute(select(MasterProduct).where(MasterProduct.slug == p["slug"]))
        ).scalar_one_or_none()
        if existing:
            print(f"  skip {p['slug']} (exists)")
            continue

        product = MasterProduct(
            title=p["title"],
            slug=p["slug"],
            brand_id=brand_map.get(p["brand"]),
            base_price_minor=p["base_price_minor"],
            status=ProductStatus.ACTIVE,
        )
        session.add(product)
        await session.flush()
        session.add(ProductCategory(product_id=product.id, category_id=category_map[p["category"]]))

        for v in p["variants"]:
            session.add(
                MasterVariant(
                    product_id=product.id,
                    internal_sku=v["sku"],
                    gtin=v["gtin"],
                    mpn=v["mpn"],
                    attributes_json=json.dumps(v["attributes"]),
                    normalized_attributes_json=json.dumps(normalize_attributes(v["attributes"])),
                    is_active=True,
                )
            )
        await session.flush()
        print(f"  + {p['slug']} ({len(p['variants'])} variants)")


async def seed_merchant(session: AsyncSession) -> None:
    existing = (
        await session.execute(select(Merchant).where(Merchant.name == DEMO_MERCHANT["name"]))
    ).scalar_one_or_none()
    if existing:
        print(f"  skip {DEMO_MERCHANT['name']} (exists)")
        return

    merchant = Merchant(
        name=DEMO_MERCHANT["name"],
        email=DEMO_MERCHANT["email"],
        source_type=SourceType.MANUAL,
        source_config_json=json.dumps({"source_type": SourceType.MANUAL.value}),
        is_active=True,
    )
    session.add(merchant)
    await session.flush()
    session.add(MarginRule(merchant_id=merchant.id, margin_percentage=DEMO_MARGIN, is_active=True))
    await session.flush()
    print(f"  + {merchant.name} (id={merchant.id}, margin={DEMO_MARGIN}%)")


if __name__ == "__main__":
    asyncio.run(seed_database())
