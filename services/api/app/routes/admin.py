"""Admin endpoints for catalog review and management.

These endpoints back the admin review UI. In production, put them behind
authentication (API key or admin session).
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from app.models import StagingStatus
from app.schemas.merchant import MerchantResponse, RegisterMerchantRequest
from app.schemas.review import ReviewDecisionRequest
from app.services.catalog import backfill_variant_attributes, get_admin_stats, search_master_products
from app.services.merchants import register_merchant
from app.services.pricing import create_margin_rule, list_margin_rules, update_margin_rule
from app.services.staging_pipeline import (
    auto_match_pending,
    decide,
    get_staging_detail,
    get_variant_matches,
    list_review_queue,
    rematch,
)
from app.stores.postgres import get_session

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


# ============================================================
# Review queue
# ============================================================


class ReviewQueueItemResponse(BaseModel):
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


class ReviewQueueResponse(BaseModel):
    items: list[ReviewQueueItemResponse]
    total: int
    page: int
    page_size: int


@router.get("/review-queue", response_model=ReviewQueueResponse)
async def review_queue(
    status: list[StagingStatus] | None = Query(default=None),
    merchant_id: int | None = Query(default=None, alias="merchantId"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
) -> ReviewQueueResponse:
    async with get_session() as session:
        result = await list_review_queue(
            session,
            statuses=status,
            merchant_id=merchant_id,
            page=page,
            page_size=page_size,
        )
    return ReviewQueueResponse(
        items=[ReviewQueueItemResponse(**vars(item)) for item in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


class StagingVariantResponse(BaseModel):
    id: int
    external_variant_id: str
    raw_sku: str | None
    raw_barcode: str | None
    raw_price_minor: int
    raw_inventory: int
    raw_options: dict[str, str]
    matched_master_variant_id: int | None


class StagingDetailResponse(BaseModel):
    id: int
    merchant_id: int
    merchant_name: str
    external_product_id: str
    raw_title: str
    raw_vendor: str | None
    raw_product_type: str | None
    raw_tags: list[str]
    raw_image_url: str | None
    status: str
    suggested_master_product_id: int | None
    suggested_product_title: str | None
    match_confidence_score: int
    admin_notes: str | None
    rejection_reason: str | None
    variants: list[StagingVariantResponse]


@router.get("/review/{staging_product_id}", response_model=StagingDetailResponse)
async def staging_detail(staging_product_id: int) -> StagingDetailResponse:
    async with get_session() as session:
        detail = await get_staging_detail(session, staging_product_id)
        sp = detail.staging
        return StagingDetailResponse(
            id=sp.id,
            merchant_id=sp.merchant_id,
            merchant_name=detail.merchant_name,
            external_product_id=sp.external_product_id,
            raw_title=sp.raw_title,
            raw_vendor=sp.raw_vendor,
            raw_product_type=sp.raw_product_type,
            raw_tags=sp.raw_tags,
            raw_image_url=sp.raw_image_url,
            status=sp.status.value,
            suggested_master_product_id=sp.suggested_master_product_id,
            suggested_product_title=detail.suggested_product.title if detail.suggested_product else None,
            match_confidence_score=sp.match_confidence_score,
            admin_notes=sp.admin_notes,
            rejection_reason=sp.rejection_reason,
            variants=[
                StagingVariantResponse(
                    id=sv.id,
                    external_variant_id=sv.external_variant_id,
                    raw_sku=sv.raw_sku,
                    raw_barcode=sv.raw_barcode,
                    raw_price_minor=sv.raw_price_minor,
                    raw_inventory=sv.raw_inventory,
                    raw_options=sv.raw_options,
                    matched_master_variant_id=sv.matched_master_variant_id,
                )
                for sv in detail.variants
            ],
        )


class MasterVariantResponse(BaseModel):
    id: int
    product_id: int
    internal_sku: str
    gtin: str | None
    mpn: str | None
    attributes: dict[str, str]


class VariantMatchResponse(BaseModel):
    staging_variant_id: int
    strategy: str
    confidence: int
    matched_variant: MasterVariantResponse | None
    warning: str | None


class VariantMatchSummaryResponse(BaseModel):
    total: int
    matched: int
    unmatched: int
    warnings: int
    by_strategy: dict[str, int]


class VariantMatchesResponse(BaseModel):
    staging_product_id: int
    target_product_id: int | None
    brand_id: int | None
    matches: list[VariantMatchResponse]
    summary: VariantMatchSummaryResponse
    master_variants: list[MasterVariantResponse]


def _variant_response(mv: Any) -> MasterVariantResponse:
    return MasterVariantResponse(
        id=mv.id,
        product_id=mv.product_id,
        internal_sku=mv.internal_sku,
        gtin=mv.gtin,
        mpn=mv.mpn,
        attributes=mv.attributes,
    )


@router.get("/review/{staging_product_id}/variants", response_model=VariantMatchesResponse)
async def staging_variant_matches(
    staging_product_id: int,
    target_product_id: int | None = Query(default=None, alias="targetProductId"),
) -> VariantMatchesResponse:
    async with get_session() as session:
        report = await get_variant_matches(session, staging_product_id, target_product_id)
        summary = report.summary
        return VariantMatchesResponse(
            staging_product_id=report.staging_product_id,
            target_product_id=report.target_product_id,
            brand_id=report.brand_id,
            matches=[
                VariantMatchResponse(
                    staging_variant_id=r.staging_variant_id,
                    strategy=r.strategy.value,
                    confidence=r.confidence,
                    matched_variant=_variant_response(r.matched_variant) if r.matched_variant else None,
                    warning=r.warning,
                )
                for r in report.results
            ],
            summary=VariantMatchSummaryResponse(**vars(summary)),
            master_variants=[_variant_response(mv) for mv in report.target_variants],
        )


class DecisionResponse(BaseModel):
    staging_product_id: int
    action: str
    status: str
    master_product_id: int | None
    created_variant_ids: list[int]
    reused_variant_ids: list[int]
    offer_ids: list[int]
    strategies: dict[int, str]
    warnings: list[str]


@router.post("/review/{staging_product_id}/decision", response_model=DecisionResponse)
async def submit_decision(staging_product_id: int, request: ReviewDecisionRequest) -> DecisionResponse:
    logger.info(f"[review] decision staging_product_id={staging_product_id} action={request.action.value}")
    async with get_session() as session:
        result = await decide(session, staging_product_id, request)
    return DecisionResponse(
        staging_product_id=result.staging_product_id,
        action=result.action,
        status=result.status,
        master_product_id=result.master_product_id,
        created_variant_ids=result.created_variant_ids,
        reused_variant_ids=result.reused_variant_ids,
        offer_ids=result.offer_ids,
        strategies=result.strategies,
        warnings=result.warnings,
    )


@router.post("/review/{staging_product_id}/rematch")
async def rematch_staging_product(staging_product_id: int) -> dict[str, Any]:
    async with get_session() as session:
        staging = await rematch(session, staging_product_id)
        return {
            "staging_product_id": staging.id,
            "status": staging.status.value,
            "suggested_master_product_id": staging.suggested_master_product_id,
            "match_confidence_score": staging.match_confidence_score,
        }


class AutoMatchRequest(BaseModel):
    merchant_id: int | None = None
    limit: int = Field(default=500, ge=1, le=5000)


class AutoMatchResponse(BaseModel):
    scanned: int
    suggested: int
    unsuggested: int
    barcode_matches: int
    title_matches: int


@router.post("/auto-match", response_model=AutoMatchResponse)
async def run_auto_match(request: AutoMatchRequest) -> AutoMatchResponse:
    async with get_session() as session:
        stats = await auto_match_pending(session, merchant_id=request.merchant_id, limit=request.limit)
    return AutoMatchResponse(**vars(stats))


# ============================================================
# Catalog
# ============================================================


@router.get("/stats")
async def admin_stats() -> dict[str, int]:
    async with get_session() as session:
        stats = await get_admin_stats(session)
    return vars(stats)


@router.get("/products/search")
async def product_search(
    q: str = Query(default=""),
    limit: int = Query(default=20, ge=1, le=50),
) -> dict[str, Any]:
    async with get_session() as session:
        hits = await search_master_products(session, q, limit=limit)
    return {"products": [vars(h) for h in hits]}


@router.post("/products/{product_id}/backfill-attributes")
async def product_backfill_attributes(product_id: int) -> dict[str, int]:
    async with get_session() as session:
        updated = await backfill_variant_attributes(session, product_id)
    return {"product_id": product_id, "updated": updated}


# ============================================================
# Margin rules
# ============================================================


class MarginRuleRequest(BaseModel):
    merchant_id: int
    brand_id: int | None = None
    category_id: int | None = None
    margin_percentage: Decimal
    valid_from: datetime | None = None
    valid_to: datetime | None = None


class MarginRuleUpdateRequest(BaseModel):
    margin_percentage: Decimal | None = None
    valid_to: datetime | None = None
    is_active: bool | None = None


class MarginRuleResponse(BaseModel):
    id: int
    merchant_id: int
    brand_id: int | None
    category_id: int | None
    margin_percentage: Decimal
    valid_from: datetime
    valid_to: datetime | None
    is_active: bool


def _rule_response(rule: Any) -> MarginRuleResponse:
    return MarginRuleResponse(
        id=rule.id,
        merchant_id=rule.merchant_id,
        brand_id=rule.brand_id,
        category_id=rule.category_id,
        margin_percentage=rule.margin_percentage,
        valid_from=rule.valid_from,
        valid_to=rule.valid_to,
        is_active=rule.is_active,
    )


@router.get("/margins", response_model=list[MarginRuleResponse])
async def margin_rules(
    merchant_id: int | None = Query(default=None, alias="merchantId"),
    active_only: bool = Query(default=False, alias="activeOnly"),
) -> list[MarginRuleResponse]:
    async with get_session() as session:
        rules = await list_margin_rules(session, merchant_id=merchant_id, active_only=active_only)
    return [_rule_response(r) for r in rules]


@router.post("/margins", response_model=MarginRuleResponse, status_code=201)
async def add_margin_rule(request: MarginRuleRequest) -> MarginRuleResponse:
    async with get_session() as session:
        rule = await create_margin_rule(
            session,
            merchant_id=request.merchant_id,
            brand_id=request.brand_id,
            category_id=request.category_id,
            margin_percentage=request.margin_percentage,
            valid_from=request.valid_from,
            valid_to=request.valid_to,
        )
    return _rule_response(rule)


@router.patch("/margins/{rule_id}", response_model=MarginRuleResponse)
async def edit_margin_rule(rule_id: int, request: MarginRuleUpdateRequest) -> MarginRuleResponse:
    changes: dict[str, Any] = request.model_dump(exclude_unset=True)
    async with get_session() as session:
        rule = await update_margin_rule(session, rule_id, **changes)
    return _rule_response(rule)


# ============================================================
# Merchants
# ============================================================


@router.post("/merchants", response_model=MerchantResponse, status_code=201)
async def add_merchant(request: RegisterMerchantRequest) -> MerchantResponse:
    async with get_session() as session:
        merchant = await register_merchant(session, request)
    return MerchantResponse(
        id=merchant.id,
        name=merchant.name,
        email=merchant.email,
        source_type=merchant.source_type.value,
        is_active=merchant.is_active,
    )
