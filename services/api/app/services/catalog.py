"""Catalog read models and maintenance for admin and merchant dashboards."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import json
import logging

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError
from app.models import (
    Brand,
    MasterProduct,
    MasterVariant,
    Merchant,
    MerchantOffer,
    StagingProduct,
    StagingStatus,
    StagingVariant,
)
from app.services.dedup import normalize_attributes

logger = logging.getLogger("uvicorn.error")

MAX_SEARCH_RESULTS = 50

# Merchant dashboard tabs -> staging statuses
MERCHANT_TABS: dict[str, list[StagingStatus]] = {
    "all": list(StagingStatus),
    "live": [StagingStatus.APPROVED],
    "review": [StagingStatus.PENDING_SYNC, StagingStatus.NEEDS_REVIEW],
    "issues": [StagingStatus.REJECTED],
}


@dataclass
class ProductSearchHit:
    id: int
    title: str
    slug: str
    brand_name: str | None
    image_url: str | None
    status: str
    variant_count: int
    merchant_count: int


@dataclass
class AdminStats:
    pending_reviews: int
    total_master_products: int
    rejected_this_week: int


@dataclass
class MerchantDashboard:
    merchant_id: int
    live: int
    under_review: int
    issues: int
    total: int


@dataclass
class MerchantStagingRow:
    staging_product_id: int
    external_product_id: str
    raw_title: str
    status: str
    rejection_reason: str | None
    variant_count: int
    updated_at: datetime | None


async def search_master_products(
    session: AsyncSession,
    query: str,
    *,
    limit: int = 20,
) -> list[ProductSearchHit]:
    """Find master products by title, brand name, GTIN or internal SKU."""
    q = (query or "").strip()
    if len(q) < 2:
        return []
    limit = min(max(limit, 1), MAX_SEARCH_RESULTS)
    pattern = f"%{q.lower()}%"

    identifier_hits = (
        select(MasterVariant.product_id)
        .where(or_(MasterVariant.gtin == q, func.lower(MasterVariant.internal_sku).like(pattern)))
    )
    res = await session.execute(
        select(MasterProduct, Brand.name)
        .outerjoin(Brand, Brand.id == MasterProduct.brand_id)
        .where(
            or_(
                func.lower(MasterProduct.title).like(pattern),
                func.lower(Brand.name).like(pattern),
                MasterProduct.id.in_(identifier_hits),
            )
        )
        .order_by(MasterProduct.title.asc(), MasterProduct.id.asc())
        .limit(limit)
    )
    rows = res.all()
    ids = [p.id for p, _ in rows]
    if not ids:
        return []

    variant_counts = dict(
        (
            await session.execute(
                select(MasterVariant.product_id, func.count(MasterVariant.id))
                .where(MasterVariant.product_id.in_(ids), MasterVariant.is_active.is_(True))
                .group_by(MasterVariant.product_id)
            )
        ).all()
    )
    merchant_counts = dict(
        (
            await session.execute(
                select(MasterVariant.product_id, func.count(func.distinct(MerchantOffer.merchant_id)))
                .join(MerchantOffer, MerchantOffer.variant_id == MasterVariant.id)
                .where(MasterVariant.product_id.in_(ids), MerchantOffer.is_active.is_(True))
                .group_by(MasterVariant.product_id)
            )
        ).all()
    )

    return [
        ProductSearchHit(
            id=p.id,
            title=p.title,
            slug=p.slug,
            brand_name=brand_name,
            image_url=p.image_url,
            status=p.status.value,
            variant_count=variant_counts.get(p.id, 0),
            merchant_count=merchant_counts.get(p.id, 0),
        )
        for p, brand_name in rows
    ]


async def get_admin_stats(session: AsyncSession) -> AdminStats:
    pending = await session.scalar(
        select(func.count(StagingProduct.id)).where(
            StagingProduct.status.in_([StagingStatus.PENDING_SYNC, StagingStatus.NEEDS_REVIEW])
        )
    )
    products = await session.scalar(select(func.count(MasterProduct.id)))
    week_ago = datetime.now(timezone.utc) - timedelta(days=7)
    rejected = await session.scalar(
        select(func.count(StagingProduct.id)).where(
            StagingProduct.status == StagingStatus.REJECTED,
            StagingProduct.reviewed_at >= week_ago,
        )
    )
    return AdminStats(
        pending_reviews=int(pending or 0),
        total_master_products=int(products or 0),
        rejected_this_week=int(rejected or 0),
    )


async def _require_merchant(session: AsyncSession, merchant_id: int) -> None:
    if await session.get(Merchant, merchant_id) is None:
        raise NotFoundError("Merchant not found", entity="merchant", entity_id=merchant_id)


async def get_merchant_dashboard(session: AsyncSession, merchant_id: int) -> MerchantDashboard:
    await _require_merchant(session, merchant_id)
    res = await session.execute(
        select(StagingProduct.status, func.count(StagingProduct.id))
        .where(StagingProduct.merchant_id == merchant_id)
        .group_by(StagingProduct.status)
    )
    counts = {status: n for status, n in res.all()}
    return MerchantDashboard(
        merchant_id=merchant_id,
        live=counts.get(StagingStatus.APPROVED, 0),
        under_review=counts.get(StagingStatus.PENDING_SYNC, 0) + counts.get(StagingStatus.NEEDS_REVIEW, 0),
        issues=counts.get(StagingStatus.REJECTED, 0),
        total=sum(counts.values()),
    )


async def list_merchant_staging(
    session: AsyncSession,
    merchant_id: int,
    *,
    tab: str = "all",
    query: str | None = None,
    limit: int = 100,
) -> list[MerchantStagingRow]:
    """Merchant's own staging rows, newest first."""
    await _require_merchant(session, merchant_id)
    statuses = MERCHANT_TABS.get(tab, MERCHANT_TABS["all"])
    stmt = (
        select(StagingProduct, func.count(StagingVariant.id))
        .outerjoin(StagingVariant, StagingVariant.staging_product_id == StagingProduct.id)
        .where(StagingProduct.merchant_id == merchant_id, StagingProduct.status.in_(statuses))
        .group_by(StagingProduct.id)
        .order_by(StagingProduct.updated_at.desc(), StagingProduct.id.desc())
        .limit(min(max(limit, 1), 500))
    )
    if query and query.strip():
        stmt = stmt.where(func.lower(StagingProduct.raw_title).like(f"%{query.strip().lower()}%"))
    res = await session.execute(stmt)
    return [
        MerchantStagingRow(
            staging_product_id=sp.id,
            external_product_id=sp.external_product_id,
            raw_title=sp.raw_title,
            status=sp.status.value,
            rejection_reason=sp.rejection_reason,
            variant_count=n,
            updated_at=sp.updated_at,
        )
        for sp, n in res.all()
    ]


async def list_merchant_issues(session: AsyncSession, merchant_id: int) -> list[MerchantStagingRow]:
    """Rejected rows with the reason the merchant has to fix."""
    return await list_merchant_staging(session, merchant_id, tab="issues")


async def backfill_variant_attributes(session: AsyncSession, product_id: int) -> int:
    """Fill empty attribute maps of a product's variants from matched staging variants.

    Returns:
        Number of variants updated.
    """
    if await session.get(MasterProduct, product_id) is None:
        raise NotFoundError("Master product not found", entity="master_product", entity_id=product_id)

    res = await session.execute(
        select(MasterVariant)
        .where(MasterVariant.product_id == product_id)
        .order_by(MasterVariant.id.asc())
    )
    updated = 0
    for variant in res.scalars().all():
        if variant.attributes:
            continue
        source = await session.execute(
            select(StagingVariant)
            .where(StagingVariant.matched_master_variant_id == variant.id)
            .order_by(StagingVariant.id.desc())
            .limit(1)
        )
        sv = source.scalars().first()
        if sv is None or not sv.raw_options:
            continue
        options = sv.raw_options
        variant.attributes_json = json.dumps(options)
        variant.normalized_attributes_json = json.dumps(normalize_attributes(options))
        updated += 1

    await session.flush()
    logger.info(f"[backfill] product_id={product_id} variants_updated={updated}")
    return updated
