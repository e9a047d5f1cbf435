"""Brand and category resolution used by matching and merges."""

from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Brand, Category, ProductCategory
from app.services.dedup import slugify


async def resolve_brand_id(session: AsyncSession, vendor: str | None) -> int | None:
    """Map a feed vendor string to a brand id (exact name or slug match, case-insensitive)."""
    name = (vendor or "").strip().lower()
    if not name:
        return None
    res = await session.execute(
        select(Brand.id)
        .where(
            Brand.is_active.is_(True),
            or_(func.lower(Brand.name) == name, Brand.slug == slugify(name)),
        )
        .order_by(Brand.id.asc())
        .limit(1)
    )
    return res.scalar_one_or_none()


async def default_category_id(session: AsyncSession) -> int | None:
    """Placeholder category for new products: the first top-level category."""
    res = await session.execute(
        select(Category.id)
        .where(Category.parent_id.is_(None), Category.is_active.is_(True))
        .order_by(Category.id.asc())
        .limit(1)
    )
    return res.scalar_one_or_none()


async def primary_category_id(session: AsyncSession, product_id: int) -> int | None:
    """Lowest linked category id of a master product (used to scope margin rules)."""
    res = await session.execute(
        select(ProductCategory.category_id)
        .where(ProductCategory.product_id == product_id)
        .order_by(ProductCategory.category_id.asc())
        .limit(1)
    )
    return res.scalar_one_or_none()
