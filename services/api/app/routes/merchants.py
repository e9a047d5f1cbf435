"""Merchant-facing endpoints: feed intake, resync and dashboards."""

from datetime import datetime
import logging
from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from app.errors import UpstreamFetchError
from app.services.catalog import get_merchant_dashboard, list_merchant_issues, list_merchant_staging
from app.services.merchants import build_product_fetcher, get_merchant, is_sync_running, sync_merchant_feed
from app.services.staging_pipeline import auto_match_pending, ingest, resync
from app.stores.postgres import get_session

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


class FeedPushRequest(BaseModel):
    """Raw feed pushed by a merchant (Shopify product JSON shape)."""

    products: list[dict[str, Any]] = Field(
        validation_alias=AliasChoices("products", "rawFeed", "raw_feed"),
    )


class FeedPushResponse(BaseModel):
    processed: int
    failed: int
    created: int
    updated: int
    resubmitted: int
    auto_matched: int
    errors: list[dict[str, Any]]


@router.post("/{merchant_id}/feed", response_model=FeedPushResponse)
async def push_feed(merchant_id: int, request: FeedPushRequest) -> FeedPushResponse:
    async with get_session() as session:
        stats = await ingest(session, merchant_id, request.products)
        match_stats = await auto_match_pending(
            session,
            merchant_id=merchant_id,
            staging_product_ids=stats.staging_product_ids,
            limit=max(len(stats.staging_product_ids), 1),
        )
    return FeedPushResponse(
        processed=stats.processed,
        failed=stats.failed,
        created=stats.created,
        updated=stats.updated,
        resubmitted=stats.resubmitted,
        auto_matched=match_stats.scanned,
        errors=stats.errors,
    )


@router.post("/{merchant_id}/sync")
async def sync_feed(merchant_id: int) -> JSONResponse:
    async with get_session() as session:
        result = await sync_merchant_feed(session, merchant_id)
    body = {
        "sync_log_id": result.sync_log_id,
        "status": result.status,
        "pages_fetched": result.pages_fetched,
        "records_processed": result.records_processed,
        "records_failed": result.records_failed,
        "auto_matched": result.auto_matched,
        "error": result.error,
        "errors": result.errors,
    }
    # The sync log is committed either way; a fully failed fetch still reports upstream failure
    status_code = UpstreamFetchError.status_code if result.status == "FAILED" else 200
    return JSONResponse(status_code=status_code, content=body)


@router.post("/{merchant_id}/products/{staging_product_id}/resync")
async def resync_product(merchant_id: int, staging_product_id: int) -> dict[str, Any]:
    async with get_session() as session:
        merchant = await get_merchant(session, merchant_id)
        result = await resync(
            session,
            staging_product_id,
            fetch_product=build_product_fetcher(merchant),
            merchant_id=merchant_id,
        )
    return vars(result)


class MerchantStagingRowResponse(BaseModel):
    staging_product_id: int
    external_product_id: str
    raw_title: str
    status: str
    rejection_reason: str | None
    variant_count: int
    updated_at: datetime | None


@router.get("/{merchant_id}/staging", response_model=list[MerchantStagingRowResponse])
async def merchant_staging(
    merchant_id: int,
    tab: str = Query(default="all", pattern="^(all|live|review|issues)$"),
    q: str | None = Query(default=None),
) -> list[MerchantStagingRowResponse]:
    async with get_session() as session:
        rows = await list_merchant_staging(session, merchant_id, tab=tab, query=q)
    return [MerchantStagingRowResponse(**vars(r)) for r in rows]


@router.get("/{merchant_id}/issues", response_model=list[MerchantStagingRowResponse])
async def merchant_issues(merchant_id: int) -> list[MerchantStagingRowResponse]:
    async with get_session() as session:
        rows = await list_merchant_issues(session, merchant_id)
    return [MerchantStagingRowResponse(**vars(r)) for r in rows]


@router.get("/{merchant_id}/dashboard")
async def merchant_dashboard(merchant_id: int) -> dict[str, Any]:
    async with get_session() as session:
        dashboard = await get_merchant_dashboard(session, merchant_id)
    return {**vars(dashboard), "sync_running": await is_sync_running(merchant_id)}
