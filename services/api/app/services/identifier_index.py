"""Identifier index over the master catalog.

Read-only lookups keyed by:
- GTIN (unique across all active variants, system-wide)
- (MPN, brand) where the brand is the owning master product's brand

A GTIN hit may belong to a different master product than the one a caller is
targeting; callers surface that as a warning instead of overriding it.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import MasterProduct, MasterVariant
from app.services.dedup import normalize_identifier


async def lookup_by_gtin(session: AsyncSession, gtin: str | None) -> MasterVariant | None:
    """Return the active master variant carrying this GTIN, if any."""
    gtin = normalize_identifier(gtin)
    if gtin is None:
        return None
    res = await session.execute(
        select(MasterVariant)
        .where(MasterVariant.gtin == gtin, MasterVariant.is_active.is_(True))
        .order_by(MasterVariant.id.asc())
        .limit(1)
    )
    return res.scalars().first()


async def lookup_first_gtin(session: AsyncSession, gtins: Iterable[str | None]) -> MasterVariant | None:
    """Return the hit for the first GTIN (in input order) that exists in the catalog."""
    for gtin in gtins:
        hit = await lookup_by_gtin(session, gtin)
        if hit is not None:
            return hit
    return None


async def lookup_by_mpn_and_brand(
    session: AsyncSession,
    mpn: str | None,
    brand_id: int | None,
) -> MasterVariant | None:
    """Return the active master variant with this MPN under a product of this brand."""
    mpn = normalize_identifier(mpn)
    if mpn is None or brand_id is None:
        return None
    res = await session.execute(
        select(MasterVariant)
        .join(MasterProduct, MasterProduct.id == MasterVariant.product_id)
        .where(
            MasterVariant.mpn == mpn,
            MasterVariant.is_active.is_(True),
            MasterProduct.brand_id == brand_id,
        )
        .order_by(MasterVariant.id.asc())
        .limit(1)
    )
    return res.scalars().first()


async def list_active_variants(session: AsyncSession, product_id: int) -> list[MasterVariant]:
    """Active variants of one master product, oldest first."""
    res = await session.execute(
        select(MasterVariant)
        .where(MasterVariant.product_id == product_id, MasterVariant.is_active.is_(True))
        .order_by(MasterVariant.id.asc())
    )
    return list(res.scalars().all())
