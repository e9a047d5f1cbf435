"""Staging reconciliation pipeline.

Flow:
- ingest: upsert merchant feed products into staging_products/staging_variants
  (REJECTED rows are reset to PENDING_SYNC; every other status is kept)
- auto_match_pending: suggest a master product for each PENDING_SYNC row and
  move it to NEEDS_REVIEW
- decide: approve_new / approve_match (transactional merge into the master
  catalog + LIVE offers) or reject
- resync: re-fetch one product, re-ingest it and re-match it

State machine:
  PENDING_SYNC -> NEEDS_REVIEW -> APPROVED | REJECTED
  REJECTED -> PENDING_SYNC
Anything else raises InvalidTransitionError.

Notes:
- Auto-match only touches PENDING_SYNC rows and merges only NEEDS_REVIEW rows,
  so a row is never matched and merged at the same time.
- A merge runs inside a SAVEPOINT and takes a row lock on the target master
  product. Any write failure rolls back every variant, offer and the status flip.
- Ingest is per-product resilient: an invalid or failing product is counted
  and skipped, the rest of the batch continues.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.models import (
    Brand,
    Category,
    MasterProduct,
    MasterVariant,
    Merchant,
    MerchantOffer,
    OfferStatus,
    ProductCategory,
    ProductStatus,
    StagingProduct,
    StagingStatus,
    StagingVariant,
)
from app.schemas.feed import FeedProduct
from app.schemas.review import DecisionAction, ReviewDecisionRequest
from app.services.dedup import (
    compute_internal_sku,
    generate_slug,
    normalize_attributes,
    normalize_identifier,
)
from app.services.identifier_index import list_active_variants, lookup_by_gtin
from app.services.pricing import compute_settlement_price
from app.services.product_matcher import (
    ProductSuggestion,
    VariantMatchReport,
    match_staging_variants,
    suggest_master_product,
)
from app.services.taxonomy import default_category_id, primary_category_id, resolve_brand_id
from app.services.title_similarity import invalidate_title_candidates
from app.services.variant_matcher import VariantMatcher
from app.settings import get_settings

logger = logging.getLogger("uvicorn.error")

ProductFetcher = Callable[[str], Awaitable[dict[str, Any]]]

MAX_ERROR_SAMPLES = 20

ERROR_INVALID_FEED_PRODUCT = "INVALID_FEED_PRODUCT"
ERROR_PERSISTENCE = "PERSISTENCE"

_ALLOWED_TRANSITIONS: dict[StagingStatus, frozenset[StagingStatus]] = {
    StagingStatus.PENDING_SYNC: frozenset({StagingStatus.NEEDS_REVIEW}),
    StagingStatus.NEEDS_REVIEW: frozenset({StagingStatus.APPROVED, StagingStatus.REJECTED}),
    StagingStatus.REJECTED: frozenset({StagingStatus.PENDING_SYNC}),
    StagingStatus.APPROVED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def transition(staging: StagingProduct, target: StagingStatus) -> None:
    """Move a staging product to `target` or raise InvalidTransitionError."""
    current = staging.status
    if target not in _ALLOWED_TRANSITIONS.get(current, frozenset()):
        allowed_from = sorted(s.value for s, targets in _ALLOWED_TRANSITIONS.items() if target in targets)
        raise InvalidTransitionError(
            f"Cannot move staging product from {current.value} to {target.value}",
            entity="staging_product",
            entity_id=staging.id,
            field="status",
            expected=allowed_from,
            actual=current.value,
        )
    staging.status = target


# ============================================================
# Result types
# ============================================================


@dataclass
class IngestStats:
    merchant_id: int
    processed: int = 0
    failed: int = 0
    created: int = 0
    updated: int = 0
    resubmitted: int = 0
    offers_refreshed: int = 0
    staging_product_ids: list[int] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class AutoMatchStats:
    scanned: int = 0
    suggested: int = 0
    unsuggested: int = 0
    barcode_matches: int = 0
    title_matches: int = 0


@dataclass
class ReviewQueueItem:
    staging_product_id: int
    merchant_id: int
    merchant_name: str
    external_product_id: str
    raw_title: str
    raw_vendor: str | None
    status: str
    suggested_master_product_id: int | None
    suggested_product_title: str | None
    match_confidence_score: int
    variant_count: int
    created_at: datetime | None


@dataclass
class ReviewQueuePage:
    items: list[ReviewQueueItem]
    total: int
    page: int
    page_size: int


@dataclass
class StagingDetail:
    staging: StagingProduct
    merchant_name: str
    variants: list[StagingVariant]
    suggested_product: MasterProduct | None


@dataclass
class DecisionResult:
    staging_product_id: int
    action: str
    status: str
    master_product_id: int | None = None
    created_product: bool = False
    created_variant_ids: list[int] = field(default_factory=list)
    reused_variant_ids: list[int] = field(default_factory=list)
    offer_ids: list[int] = field(default_factory=list)
    strategies: dict[int, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ResyncResult:
    staging_product_id: int
    status: str
    suggested_master_product_id: int | None
    match_confidence_score: int
    refetched: bool


# ============================================================
# Lookups
# ============================================================


async def _get_merchant(session: AsyncSession, merchant_id: int) -> Merchant:
    merchant = await session.get(Merchant, merchant_id)
    if merchant is None:
        raise NotFoundError("Merchant not found", entity="merchant", entity_id=merchant_id)
    return merchant


async def _get_staging(
    session: AsyncSession,
    staging_product_id: int,
    *,
    for_update: bool = False,
) -> StagingProduct:
    stmt = select(StagingProduct).where(StagingProduct.id == staging_product_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await session.execute(stmt)
    staging = res.scalar_one_or_none()
    if staging is None:
        raise NotFoundError(
            "Staging product not found",
            entity="staging_product",
            entity_id=staging_product_id,
        )
    return staging


async def _load_staging_variants(session: AsyncSession, staging_product_id: int) -> list[StagingVariant]:
    res = await session.execute(
        select(StagingVariant)
        .where(StagingVariant.staging_product_id == staging_product_id)
        .order_by(StagingVariant.id.asc())
    )
    return list(res.scalars().all())


def _require_status(staging: StagingProduct, expected: StagingStatus) -> None:
    if staging.status != expected:
        raise InvalidTransitionError(
            f"Staging product is {staging.status.value}, expected {expected.value}",
            entity="staging_product",
            entity_id=staging.id,
            field="status",
            expected=expected.value,
            actual=staging.status.value,
        )


# ============================================================
# Ingest
# ============================================================


def _record_error(stats: IngestStats, *, index: int, external_id: Any, code: str, message: str) -> None:
    if len(stats.errors) < MAX_ERROR_SAMPLES:
        stats.errors.append(
            {
                "index": index,
                "external_product_id": None if external_id is None else str(external_id),
                "code": code,
                "message": message,
            }
        )


async def ingest(
    session: AsyncSession,
    merchant_id: int,
    raw_feed: Iterable[Mapping[str, Any]],
) -> IngestStats:
    """Upsert a merchant's raw feed into staging.

    Returns:
        IngestStats with processed/failed counts and error samples.
    """
    merchant = await _get_merchant(session, merchant_id)
    merchant_id = merchant.id
    stats = IngestStats(merchant_id=merchant_id)

    for index, raw in enumerate(raw_feed):
        external_id = raw.get("id") if isinstance(raw, Mapping) else None
        try:
            product = FeedProduct.model_validate(raw)
        except PydanticValidationError as e:
            stats.failed += 1
            _record_error(
                stats,
                index=index,
                external_id=external_id,
                code=ERROR_INVALID_FEED_PRODUCT,
                message="; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()[:5]
                ),
            )
            logger.warning(
                f"[ingest] quarantined merchant_id={merchant_id} index={index} "
                f"external_id={external_id} errors={e.error_count()}"
            )
            continue

        try:
            async with session.begin_nested():
                staging_id, outcome, refreshed = await _upsert_staging_product(
                    session, merchant_id, product, dict(raw)
                )
        except SQLAlchemyError as e:
            stats.failed += 1
            _record_error(
                stats,
                index=index,
                external_id=product.id,
                code=ERROR_PERSISTENCE,
                message=e.__class__.__name__,
            )
            logger.exception(f"[ingest] write failed merchant_id={merchant_id} external_id={product.id}")
            continue

        stats.processed += 1
        stats.staging_product_ids.append(staging_id)
        stats.offers_refreshed += refreshed
        if outcome == "created":
            stats.created += 1
        elif outcome == "resubmitted":
            stats.resubmitted += 1
        else:
            stats.updated += 1

    logger.info(
        f"[ingest] merchant_id={merchant_id} processed={stats.processed} failed={stats.failed} "
        f"created={stats.created} updated={stats.updated} resubmitted={stats.resubmitted}"
    )
    return stats


async def _upsert_staging_product(
    session: AsyncSession,
    merchant_id: int,
    feed: FeedProduct,
    raw: dict[str, Any],
) -> tuple[int, str, int]:
    res = await session.execute(
        select(StagingProduct).where(
            StagingProduct.merchant_id == merchant_id,
            StagingProduct.external_product_id == feed.id,
        )
    )
    staging = res.scalar_one_or_none()

    outcome = "updated"
    if staging is None:
        staging = StagingProduct(
            merchant_id=merchant_id,
            external_product_id=feed.id,
            status=StagingStatus.PENDING_SYNC,
            match_confidence_score=0,
        )
        session.add(staging)
        outcome = "created"
    elif staging.status == StagingStatus.REJECTED:
        # Resubmission: back into the matching queue
        transition(staging, StagingStatus.PENDING_SYNC)
        staging.rejection_reason = None
        outcome = "resubmitted"

    staging.raw_title = feed.title
    staging.raw_body_html = feed.body_html
    staging.raw_vendor = feed.vendor
    staging.raw_product_type = feed.product_type
    staging.raw_tags_json = json.dumps(feed.tags)
    staging.raw_image_url = feed.image_url
    staging.raw_payload_json = json.dumps(raw, default=str)
    await session.flush()

    variants = await _sync_staging_variants(session, staging, feed)

    refreshed = 0
    if staging.status == StagingStatus.APPROVED:
        refreshed = await _refresh_approved_offers(session, staging, variants)
    return staging.id, outcome, refreshed


async def _sync_staging_variants(
    session: AsyncSession,
    staging: StagingProduct,
    feed: FeedProduct,
) -> list[StagingVariant]:
    existing = {sv.external_variant_id: sv for sv in await _load_staging_variants(session, staging.id)}
    seen: set[str] = set()
    out: list[StagingVariant] = []

    for fv in feed.variants:
        if fv.id in seen:
            continue
        seen.add(fv.id)

        sv = existing.get(fv.id)
        if sv is None:
            sv = StagingVariant(staging_product_id=staging.id, external_variant_id=fv.id)
            session.add(sv)
        sv.raw_sku = normalize_identifier(fv.sku)
        sv.raw_barcode = normalize_identifier(fv.barcode)
        sv.raw_price_minor = fv.price_minor
        sv.raw_inventory = fv.inventory_quantity
        sv.raw_weight_grams = fv.grams
        sv.raw_options_json = json.dumps(feed.option_map(fv))
        out.append(sv)

    for ext_id, sv in existing.items():
        if ext_id not in seen:
            await session.delete(sv)

    await session.flush()
    return out


async def _pricing_scope(
    session: AsyncSession,
    product_id: int,
    cache: dict[int, tuple[int | None, int | None]],
) -> tuple[int | None, int | None]:
    """(brand_id, category_id) of a master product for margin lookup."""
    if product_id not in cache:
        product = await session.get(MasterProduct, product_id)
        brand_id = product.brand_id if product is not None else None
        cache[product_id] = (brand_id, await primary_category_id(session, product_id))
    return cache[product_id]


async def _refresh_approved_offers(
    session: AsyncSession,
    staging: StagingProduct,
    variants: Sequence[StagingVariant],
) -> int:
    """Carry new feed price/stock onto LIVE offers of an already approved product."""
    res = await session.execute(
        select(MerchantOffer).where(
            MerchantOffer.merchant_id == staging.merchant_id,
            MerchantOffer.external_product_id == staging.external_product_id,
            MerchantOffer.offer_status == OfferStatus.LIVE,
        )
    )
    by_external = {sv.external_variant_id: sv for sv in variants}
    scope_cache: dict[int, tuple[int | None, int | None]] = {}
    refreshed = 0
    for offer in res.scalars().all():
        sv = by_external.get(offer.external_variant_id or "")
        if sv is None:
            continue
        variant = await session.get(MasterVariant, offer.variant_id)
        brand_id, category_id = (None, None)
        if variant is not None:
            brand_id, category_id = await _pricing_scope(session, variant.product_id, scope_cache)
        offer.cached_price_minor = sv.raw_price_minor
        offer.cached_settlement_price_minor = await compute_settlement_price(
            session, sv.raw_price_minor, staging.merchant_id, brand_id, category_id
        )
        offer.current_stock = sv.raw_inventory
        offer.merchant_sku = sv.raw_sku
        offer.last_synced_at = _utcnow()
        sv.matched_master_variant_id = offer.variant_id
        refreshed += 1
    if refreshed:
        await session.flush()
    return refreshed


# ============================================================
# Auto-match
# ============================================================


async def _apply_suggestion(session: AsyncSession, staging: StagingProduct) -> ProductSuggestion:
    variants = await _load_staging_variants(session, staging.id)
    suggestion = await suggest_master_product(session, staging, variants)
    staging.suggested_master_product_id = suggestion.master_product_id
    staging.match_confidence_score = suggestion.confidence
    staging.matched_brand_id = await resolve_brand_id(session, staging.raw_vendor)
    return suggestion


async def auto_match_pending(
    session: AsyncSession,
    *,
    merchant_id: int | None = None,
    staging_product_ids: Sequence[int] | None = None,
    limit: int = 500,
) -> AutoMatchStats:
    """Suggest master products for PENDING_SYNC rows and move them to NEEDS_REVIEW."""
    stmt = (
        select(StagingProduct)
        .where(StagingProduct.status == StagingStatus.PENDING_SYNC)
        .order_by(StagingProduct.id.asc())
        .limit(limit)
    )
    if merchant_id is not None:
        stmt = stmt.where(StagingProduct.merchant_id == merchant_id)
    if staging_product_ids is not None:
        if not staging_product_ids:
            return AutoMatchStats()
        stmt = stmt.where(StagingProduct.id.in_(list(staging_product_ids)))

    res = await session.execute(stmt)
    stats = AutoMatchStats()
    for staging in res.scalars().all():
        stats.scanned += 1
        suggestion = await _apply_suggestion(session, staging)
        transition(staging, StagingStatus.NEEDS_REVIEW)
        if suggestion.master_product_id is None:
            stats.unsuggested += 1
        else:
            stats.suggested += 1
            if suggestion.confidence == 100:
                stats.barcode_matches += 1
            else:
                stats.title_matches += 1
    await session.flush()

    logger.info(
        f"[auto_match] merchant_id={merchant_id} scanned={stats.scanned} suggested={stats.suggested} "
        f"barcode={stats.barcode_matches} title={stats.title_matches} unsuggested={stats.unsuggested}"
    )
    return stats


async def rematch(session: AsyncSession, staging_product_id: int) -> StagingProduct:
    """Recompute the suggestion of a NEEDS_REVIEW row without changing its status."""
    staging = await _get_staging(session, staging_product_id)
    _require_status(staging, StagingStatus.NEEDS_REVIEW)
    await _apply_suggestion(session, staging)
    await session.flush()
    return staging


# ============================================================
# Review read models
# ============================================================


async def list_review_queue(
    session: AsyncSession,
    *,
    statuses: Sequence[StagingStatus] | None = None,
    merchant_id: int | None = None,
    page: int = 1,
    page_size: int = 20,
) -> ReviewQueuePage:
    """Staging rows awaiting review, highest confidence first."""
    statuses = list(statuses) if statuses else [StagingStatus.NEEDS_REVIEW]
    page = max(page, 1)
    page_size = min(max(page_size, 1), 100)

    filters = [StagingProduct.status.in_(statuses)]
    if merchant_id is not None:
        filters.append(StagingProduct.merchant_id == merchant_id)

    total = await session.scalar(select(func.count(StagingProduct.id)).where(*filters)) or 0

    res = await session.execute(
        select(StagingProduct, Merchant.name, MasterProduct.title)
        .join(Merchant, Merchant.id == StagingProduct.merchant_id)
        .outerjoin(MasterProduct, MasterProduct.id == StagingProduct.suggested_master_product_id)
        .where(*filters)
        .order_by(StagingProduct.match_confidence_score.desc(), StagingProduct.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    rows = res.all()

    counts: dict[int, int] = {}
    ids = [staging.id for staging, _, _ in rows]
    if ids:
        count_res = await session.execute(
            select(StagingVariant.staging_product_id, func.count(StagingVariant.id))
            .where(StagingVariant.staging_product_id.in_(ids))
            .group_by(StagingVariant.staging_product_id)
        )
        counts = {sid: n for sid, n in count_res.all()}

    items = [
        ReviewQueueItem(
            staging_product_id=staging.id,
            merchant_id=staging.merchant_id,
            merchant_name=merchant_name,
            external_product_id=staging.external_product_id,
            raw_title=staging.raw_title,
            raw_vendor=staging.raw_vendor,
            status=staging.status.value,
            suggested_master_product_id=staging.suggested_master_product_id,
            suggested_product_title=suggested_title,
            match_confidence_score=staging.match_confidence_score,
            variant_count=counts.get(staging.id, 0),
            created_at=staging.created_at,
        )
        for staging, merchant_name, suggested_title in rows
    ]
    return ReviewQueuePage(items=items, total=int(total), page=page, page_size=page_size)


async def get_staging_detail(session: AsyncSession, staging_product_id: int) -> StagingDetail:
    staging = await _get_staging(session, staging_product_id)
    merchant = await _get_merchant(session, staging.merchant_id)
    suggested = None
    if staging.suggested_master_product_id is not None:
        suggested = await session.get(MasterProduct, staging.suggested_master_product_id)
    return StagingDetail(
        staging=staging,
        merchant_name=merchant.name,
        variants=await _load_staging_variants(session, staging.id),
        suggested_product=suggested,
    )


async def get_variant_matches(
    session: AsyncSession,
    staging_product_id: int,
    target_product_id: int | None = None,
) -> VariantMatchReport:
    """Per-variant match preview against the chosen (or suggested) target product."""
    staging = await _get_staging(session, staging_product_id)
    target_id = target_product_id if target_product_id is not None else staging.suggested_master_product_id
    if target_id is not None and await session.get(MasterProduct, target_id) is None:
        raise NotFoundError("Master product not found", entity="master_product", entity_id=target_id)
    variants = await _load_staging_variants(session, staging.id)
    return await match_staging_variants(session, staging, variants, target_product_id=target_id)


# ============================================================
# Admin decisions
# ============================================================


async def decide(
    session: AsyncSession,
    staging_product_id: int,
    request: ReviewDecisionRequest,
) -> DecisionResult:
    """Apply an admin decision to a staging product."""
    if request.action == DecisionAction.REJECT:
        return await _reject(session, staging_product_id, request)

    staging = await _get_staging(session, staging_product_id, for_update=True)
    _require_status(staging, StagingStatus.NEEDS_REVIEW)

    try:
        async with session.begin_nested():
            if request.action == DecisionAction.APPROVE_NEW:
                result = await _approve_new(session, staging, request)
            else:
                result = await _approve_match(session, staging, request)
    except IntegrityError as e:
        logger.warning(f"[merge] conflict staging_product_id={staging_product_id}: {e.orig}")
        raise ConflictError(
            "Merge conflicts with existing catalog data",
            entity="staging_product",
            entity_id=staging_product_id,
            extra={"reason": str(e.orig)},
        ) from e
    except SQLAlchemyError as e:
        logger.exception(f"[merge] failed staging_product_id={staging_product_id}")
        raise PersistenceError(
            "Merge failed and was rolled back",
            entity="staging_product",
            entity_id=staging_product_id,
            extra={"reason": e.__class__.__name__},
        ) from e

    if result.created_product:
        await invalidate_title_candidates()

    logger.info(
        f"[merge] action={result.action} staging_product_id={staging_product_id} "
        f"master_product_id={result.master_product_id} created_variants={len(result.created_variant_ids)} "
        f"reused_variants={len(result.reused_variant_ids)} offers={len(result.offer_ids)} "
        f"warnings={len(result.warnings)}"
    )
    return result


async def _lock_master_product(session: AsyncSession, product_id: int) -> MasterProduct:
    """SELECT ... FOR UPDATE on the merge target; serializes merges into one product."""
    res = await session.execute(
        select(MasterProduct)
        .where(MasterProduct.id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    product = res.scalar_one_or_none()
    if product is None:
        raise NotFoundError(
            "Master product not found",
            entity="master_product",
            entity_id=product_id,
            field="target_product_id",
        )
    if product.status == ProductStatus.ARCHIVED:
        raise ValidationError(
            "Cannot merge into an archived product",
            entity="master_product",
            entity_id=product_id,
            field="status",
            expected=[ProductStatus.ACTIVE.value, ProductStatus.DRAFT.value],
            actual=product.status.value,
        )
    return product


async def _resolve_explicit_mappings(
    session: AsyncSession,
    mappings: Mapping[int, int | None],
    variants: Sequence[StagingVariant],
    target_product_id: int,
) -> dict[int, MasterVariant | None]:
    if not mappings:
        return {}
    staging_variant_ids = {sv.id for sv in variants}
    out: dict[int, MasterVariant | None] = {}
    for sv_id, mv_id in mappings.items():
        if sv_id not in staging_variant_ids:
            raise ValidationError(
                "Variant mapping refers to a variant outside this staging product",
                entity="staging_variant",
                entity_id=sv_id,
                field="variant_mappings",
            )
        if mv_id is None:
            out[sv_id] = None
            continue
        mv = await session.get(MasterVariant, mv_id)
        if mv is None:
            raise NotFoundError(
                "Master variant not found",
                entity="master_variant",
                entity_id=mv_id,
                field="variant_mappings",
            )
        if not mv.is_active or mv.product_id != target_product_id:
            raise ValidationError(
                "Mapped master variant must be an active variant of the target product",
                entity="master_variant",
                entity_id=mv_id,
                field="variant_mappings",
                expected=f"active variant of product {target_product_id}",
                actual=f"product {mv.product_id}" + ("" if mv.is_active else " (inactive)"),
            )
        out[sv_id] = mv
    return out


async def _unique_internal_sku(session: AsyncSession, base: str) -> str:
    sku = base
    n = 1
    while await session.scalar(select(MasterVariant.id).where(MasterVariant.internal_sku == sku)) is not None:
        n += 1
        sku = f"{base}-{n}"
    return sku


async def _create_master_variant(
    session: AsyncSession,
    product_id: int,
    staging_variant: StagingVariant,
) -> MasterVariant:
    gtin = normalize_identifier(staging_variant.raw_barcode)
    if gtin is not None:
        holder = await lookup_by_gtin(session, gtin)
        if holder is not None:
            raise ConflictError(
                "GTIN already belongs to an active master variant; approve as a match instead",
                entity="master_variant",
                entity_id=holder.id,
                field="gtin",
                actual=gtin,
                extra={"product_id": holder.product_id, "staging_variant_id": staging_variant.id},
            )

    options = staging_variant.raw_options
    variant = MasterVariant(
        product_id=product_id,
        internal_sku=await _unique_internal_sku(
            session, compute_internal_sku(product_id, staging_variant.id)
        ),
        gtin=gtin,
        mpn=normalize_identifier(staging_variant.raw_sku),
        attributes_json=json.dumps(options),
        normalized_attributes_json=json.dumps(normalize_attributes(options)),
        weight_grams=staging_variant.raw_weight_grams,
        is_active=True,
    )
    session.add(variant)
    await session.flush()
    return variant


async def _upsert_offer(
    session: AsyncSession,
    staging: StagingProduct,
    staging_variant: StagingVariant,
    variant: MasterVariant,
    *,
    brand_id: int | None,
    category_id: int | None,
) -> MerchantOffer:
    """Create or refresh the (merchant, variant) offer and make it LIVE."""
    listed = staging_variant.raw_price_minor
    settlement = await compute_settlement_price(session, listed, staging.merchant_id, brand_id, category_id)

    res = await session.execute(
        select(MerchantOffer).where(
            MerchantOffer.merchant_id == staging.merchant_id,
            MerchantOffer.variant_id == variant.id,
        )
    )
    offer = res.scalar_one_or_none()
    if offer is None:
        offer = MerchantOffer(
            merchant_id=staging.merchant_id,
            variant_id=variant.id,
            currency_code=get_settings().default_currency_code,
        )
        session.add(offer)

    offer.external_product_id = staging.external_product_id
    offer.external_variant_id = staging_variant.external_variant_id
    offer.merchant_sku = staging_variant.raw_sku
    offer.cached_price_minor = listed
    offer.cached_settlement_price_minor = settlement
    offer.current_stock = staging_variant.raw_inventory
    offer.offer_status = OfferStatus.LIVE
    offer.is_active = True
    offer.last_synced_at = _utcnow()
    await session.flush()
    return offer


def _finish_approval(
    staging: StagingProduct,
    request: ReviewDecisionRequest,
    master_product_id: int,
) -> None:
    transition(staging, StagingStatus.APPROVED)
    # After approval the suggestion points at the product the row was merged into
    staging.suggested_master_product_id = master_product_id
    staging.rejection_reason = None
    staging.reviewed_at = _utcnow()
    if request.admin_notes:
        staging.admin_notes = request.admin_notes


async def _approve_new(
    session: AsyncSession,
    staging: StagingProduct,
    request: ReviewDecisionRequest,
) -> DecisionResult:
    variants = await _load_staging_variants(session, staging.id)
    if not variants:
        raise ValidationError(
            "Staging product has no variants",
            entity="staging_product",
            entity_id=staging.id,
            field="variants",
        )

    brand_id = request.brand_id
    if brand_id is not None:
        if await session.get(Brand, brand_id) is None:
            raise NotFoundError("Brand not found", entity="brand", entity_id=brand_id, field="brand_id")
    else:
        brand_id = staging.matched_brand_id
        if brand_id is None:
            brand_id = await resolve_brand_id(session, staging.raw_vendor)

    category_id = request.category_id
    if category_id is not None:
        if await session.get(Category, category_id) is None:
            raise NotFoundError("Category not found", entity="category", entity_id=category_id, field="category_id")
    else:
        category_id = await default_category_id(session)

    title = (request.title or staging.raw_title).strip()
    handle = staging.raw_payload.get("handle")
    product = MasterProduct(
        title=title,
        slug=generate_slug(handle if isinstance(handle, str) and handle.strip() else title),
        description=request.description if request.description is not None else staging.raw_body_html,
        image_url=staging.raw_image_url,
        brand_id=brand_id,
        base_price_minor=variants[0].raw_price_minor,
        status=ProductStatus.ACTIVE,
    )
    session.add(product)
    await session.flush()
    if category_id is not None:
        session.add(ProductCategory(product_id=product.id, category_id=category_id))

    result = DecisionResult(
        staging_product_id=staging.id,
        action=DecisionAction.APPROVE_NEW.value,
        status=StagingStatus.APPROVED.value,
        master_product_id=product.id,
        created_product=True,
    )
    # Normalized attribute map -> variant created in this merge
    created: dict[str, MasterVariant] = {}
    for sv in variants:
        key = json.dumps(normalize_attributes(sv.raw_options), sort_keys=True)
        variant = created.get(key)
        if variant is None:
            variant = await _create_master_variant(session, product.id, sv)
            created[key] = variant
            result.created_variant_ids.append(variant.id)
        else:
            result.reused_variant_ids.append(variant.id)
        offer = await _upsert_offer(session, staging, sv, variant, brand_id=brand_id, category_id=category_id)
        sv.matched_master_variant_id = variant.id
        if offer.id not in result.offer_ids:
            result.offer_ids.append(offer.id)

    _finish_approval(staging, request, product.id)
    await session.flush()
    return result


async def _approve_match(
    session: AsyncSession,
    staging: StagingProduct,
    request: ReviewDecisionRequest,
) -> DecisionResult:
    target_id = request.target_product_id or staging.suggested_master_product_id
    if target_id is None:
        raise ValidationError(
            "A target product is required to approve as match",
            entity="staging_product",
            entity_id=staging.id,
            field="target_product_id",
        )

    await _lock_master_product(session, target_id)

    variants = await _load_staging_variants(session, staging.id)
    if not variants:
        raise ValidationError(
            "Staging product has no variants",
            entity="staging_product",
            entity_id=staging.id,
            field="variants",
        )
    explicit = await _resolve_explicit_mappings(session, request.variant_mappings, variants, target_id)

    brand_id = staging.matched_brand_id
    if brand_id is None:
        brand_id = await resolve_brand_id(session, staging.raw_vendor)

    # Loaded after the lock: sees variants committed by a merge that held it before us
    matcher = VariantMatcher(
        session,
        target_product_id=target_id,
        target_variants=await list_active_variants(session, target_id),
        brand_id=brand_id,
    )

    result = DecisionResult(
        staging_product_id=staging.id,
        action=DecisionAction.APPROVE_MATCH.value,
        status=StagingStatus.APPROVED.value,
        master_product_id=target_id,
    )
    scope_cache: dict[int, tuple[int | None, int | None]] = {}
    for sv in variants:
        match = await matcher.match(sv, explicit=explicit)
        if match.warning:
            result.warnings.append(match.warning)

        variant = match.matched_variant
        if variant is None:
            variant = await _create_master_variant(session, target_id, sv)
            # Later staging variants with the same attributes reuse this one
            matcher.target_variants.append(variant)
            result.created_variant_ids.append(variant.id)
        else:
            result.reused_variant_ids.append(variant.id)

        offer_brand_id, offer_category_id = await _pricing_scope(session, variant.product_id, scope_cache)
        offer = await _upsert_offer(
            session,
            staging,
            sv,
            variant,
            brand_id=offer_brand_id,
            category_id=offer_category_id,
        )
        sv.matched_master_variant_id = variant.id
        if offer.id not in result.offer_ids:
            result.offer_ids.append(offer.id)
        result.strategies[sv.id] = match.strategy.value

    _finish_approval(staging, request, target_id)
    await session.flush()
    return result


async def _reject(
    session: AsyncSession,
    staging_product_id: int,
    request: ReviewDecisionRequest,
) -> DecisionResult:
    staging = await _get_staging(session, staging_product_id, for_update=True)

    reason = (request.rejection_reason or "").strip()
    if not reason:
        raise ValidationError(
            "A rejection reason is required",
            entity="staging_product",
            entity_id=staging_product_id,
            field="rejection_reason",
            expected="non-empty text",
            actual=request.rejection_reason,
        )

    transition(staging, StagingStatus.REJECTED)
    staging.rejection_reason = reason
    staging.reviewed_at = _utcnow()
    if request.admin_notes:
        staging.admin_notes = request.admin_notes

    res = await session.execute(
        select(MerchantOffer).where(
            MerchantOffer.merchant_id == staging.merchant_id,
            MerchantOffer.external_product_id == staging.external_product_id,
        )
    )
    offers = list(res.scalars().all())
    for offer in offers:
        offer.offer_status = OfferStatus.REJECTED
    await session.flush()

    logger.info(
        f"[merge] action=reject staging_product_id={staging_product_id} offers_rejected={len(offers)}"
    )
    return DecisionResult(
        staging_product_id=staging.id,
        action=DecisionAction.REJECT.value,
        status=StagingStatus.REJECTED.value,
        offer_ids=[o.id for o in offers],
    )


# ============================================================
# Resync
# ============================================================


async def resync(
    session: AsyncSession,
    staging_product_id: int,
    *,
    fetch_product: ProductFetcher | None = None,
    merchant_id: int | None = None,
) -> ResyncResult:
    """Re-ingest and re-match one staging product.

    Args:
        fetch_product: Fetches the current raw payload by external product id.
            Without it the stored payload is re-processed (push-only merchants).
        merchant_id: When given, the staging product must belong to this merchant.

    Raises:
        UpstreamFetchError: The feed source could not be reached.
    """
    staging = await _get_staging(session, staging_product_id)
    if merchant_id is not None and staging.merchant_id != merchant_id:
        raise NotFoundError(
            "Staging product not found for this merchant",
            entity="staging_product",
            entity_id=staging_product_id,
            extra={"merchant_id": merchant_id},
        )

    if fetch_product is not None:
        raw = await fetch_product(staging.external_product_id)
    else:
        raw = staging.raw_payload
    if not raw:
        raise ValidationError(
            "No payload available to resync from",
            entity="staging_product",
            entity_id=staging_product_id,
            field="raw_payload",
        )
    if str(raw.get("id")) != staging.external_product_id:
        raise ValidationError(
            "Fetched product id does not match the staging product",
            entity="staging_product",
            entity_id=staging_product_id,
            field="external_product_id",
            expected=staging.external_product_id,
            actual=str(raw.get("id")),
        )

    stats = await ingest(session, staging.merchant_id, [raw])
    if stats.failed:
        error = stats.errors[0] if stats.errors else {}
        error_cls = PersistenceError if error.get("code") == ERROR_PERSISTENCE else ValidationError
        raise error_cls(
            "Resync could not re-ingest the product",
            entity="staging_product",
            entity_id=staging_product_id,
            extra={"errors": stats.errors},
        )

    if staging.status == StagingStatus.PENDING_SYNC:
        await _apply_suggestion(session, staging)
        transition(staging, StagingStatus.NEEDS_REVIEW)
    elif staging.status == StagingStatus.NEEDS_REVIEW:
        await _apply_suggestion(session, staging)
    staging.rejection_reason = None
    await session.flush()

    logger.info(
        f"[resync] staging_product_id={staging_product_id} status={staging.status.value} "
        f"suggested={staging.suggested_master_product_id} confidence={staging.match_confidence_score}"
    )
    return ResyncResult(
        staging_product_id=staging.id,
        status=staging.status.value,
        suggested_master_product_id=staging.suggested_master_product_id,
        match_confidence_score=staging.match_confidence_score,
        refetched=fetch_product is not None,
    )
