"""Merchant registration and feed sync.

Flow (sync_merchant_feed):
1) Validate the merchant's source config (must be SHOPIFY).
2) Take the per-merchant sync lock in Redis (skipped when Redis is unavailable).
3) Open a sync_logs row (IN_PROGRESS).
4) Fetch product pages and ingest each page as it arrives.
   A failed page fetch keeps what was already ingested (PARTIAL_SUCCESS),
   or FAILED when nothing was fetched.
5) Run the auto-match pass for this merchant and close the log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ConflictError, NotFoundError, UpstreamFetchError, ValidationError
from app.models import Merchant, SourceType, SyncLog, SyncStatus
from app.schemas.merchant import (
    ManualSourceConfig,
    RegisterMerchantRequest,
    ShopifySourceConfig,
    parse_source_config,
)
from app.services.shopify_client import ShopifyClient
from app.services.staging_pipeline import ProductFetcher, auto_match_pending, ingest
from app.settings import get_settings
from app.stores.redis import acquire_lock, is_locked, release_lock

logger = logging.getLogger("uvicorn.error")

# Rows suggested per auto-match query after a sync; batches repeat until the
# merchant has no PENDING_SYNC rows left.
AUTO_MATCH_BATCH = 500


@dataclass
class SyncResult:
    merchant_id: int
    sync_log_id: int
    status: str
    pages_fetched: int = 0
    records_processed: int = 0
    records_failed: int = 0
    auto_matched: int = 0
    error: str | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)


def _sync_lock_key(merchant_id: int) -> str:
    return f"sync:merchant:{merchant_id}"


async def get_merchant(session: AsyncSession, merchant_id: int) -> Merchant:
    merchant = await session.get(Merchant, merchant_id)
    if merchant is None:
        raise NotFoundError("Merchant not found", entity="merchant", entity_id=merchant_id)
    return merchant


def merchant_source_config(merchant: Merchant) -> ShopifySourceConfig | ManualSourceConfig:
    """Parse the stored source config; a broken config is a ValidationError."""
    raw = dict(merchant.source_config)
    raw.setdefault("source_type", merchant.source_type.value)
    try:
        return parse_source_config(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            "Merchant source configuration is invalid",
            entity="merchant",
            entity_id=merchant.id,
            field="source_config",
            extra={"errors": [err["msg"] for err in e.errors()]},
        ) from e


async def register_merchant(session: AsyncSession, request: RegisterMerchantRequest) -> Merchant:
    """Create a merchant with a validated, tagged source config."""
    config = request.source_config
    merchant = Merchant(
        name=request.name.strip(),
        email=request.email,
        source_type=SourceType(config.source_type),
        source_config_json=json.dumps(config.model_dump()),
        is_active=True,
    )
    session.add(merchant)
    await session.flush()
    logger.info(f"[merchants] registered merchant_id={merchant.id} source_type={config.source_type}")
    return merchant


def build_product_fetcher(merchant: Merchant, *, client: ShopifyClient | None = None) -> ProductFetcher | None:
    """Single-product fetcher for resync (None for push-only merchants)."""
    config = merchant_source_config(merchant)
    if not isinstance(config, ShopifySourceConfig):
        return None
    shopify = client or ShopifyClient.from_config(config)
    return shopify.fetch_product


async def _acquire_sync_lock(merchant_id: int) -> bool | None:
    """True/False from Redis, or None when Redis is unavailable (sync proceeds unlocked)."""
    ttl = get_settings().sync_lock_ttl_seconds
    try:
        return await acquire_lock(_sync_lock_key(merchant_id), ttl=ttl)
    except RuntimeError:
        return None
    except RedisError as e:
        logger.warning(f"[sync] lock unavailable merchant_id={merchant_id}: {e}")
        return None


async def _release_sync_lock(merchant_id: int) -> None:
    try:
        await release_lock(_sync_lock_key(merchant_id))
    except (RuntimeError, RedisError) as e:
        logger.warning(f"[sync] lock release failed merchant_id={merchant_id}: {e}")


async def is_sync_running(merchant_id: int) -> bool:
    try:
        return await is_locked(_sync_lock_key(merchant_id))
    except (RuntimeError, RedisError):
        return False


async def sync_merchant_feed(
    session: AsyncSession,
    merchant_id: int,
    *,
    client: ShopifyClient | None = None,
) -> SyncResult:
    """Pull a SHOPIFY merchant's full feed into staging and auto-match it."""
    merchant = await get_merchant(session, merchant_id)
    if not merchant.is_active:
        raise ValidationError(
            "Merchant is inactive",
            entity="merchant",
            entity_id=merchant_id,
            field="is_active",
            expected=True,
            actual=False,
        )
    config = merchant_source_config(merchant)
    if not isinstance(config, ShopifySourceConfig):
        raise ValidationError(
            "Merchant has no remote feed source; push the feed instead",
            entity="merchant",
            entity_id=merchant_id,
            field="source_type",
            expected=SourceType.SHOPIFY.value,
            actual=config.source_type,
        )

    locked = await _acquire_sync_lock(merchant_id)
    if locked is False:
        raise ConflictError(
            "A feed sync is already running for this merchant",
            entity="merchant",
            entity_id=merchant_id,
        )

    try:
        log = SyncLog(merchant_id=merchant_id, status=SyncStatus.IN_PROGRESS)
        session.add(log)
        await session.flush()

        result = SyncResult(merchant_id=merchant_id, sync_log_id=log.id, status=SyncStatus.IN_PROGRESS.value)
        shopify = client or ShopifyClient.from_config(config)
        try:
            async for page in shopify.iter_product_pages():
                result.pages_fetched += 1
                stats = await ingest(session, merchant_id, page)
                result.records_processed += stats.processed
                result.records_failed += stats.failed
                result.errors.extend(stats.errors[: max(0, 20 - len(result.errors))])
        except UpstreamFetchError as e:
            result.error = e.message
            logger.warning(
                f"[sync] fetch failed merchant_id={merchant_id} pages_fetched={result.pages_fetched}: {e.message}"
            )

        while True:
            match_stats = await auto_match_pending(session, merchant_id=merchant_id, limit=AUTO_MATCH_BATCH)
            result.auto_matched += match_stats.scanned
            if match_stats.scanned < AUTO_MATCH_BATCH:
                break

        if result.error and result.pages_fetched == 0:
            status = SyncStatus.FAILED
        elif result.error or result.records_failed:
            status = SyncStatus.PARTIAL_SUCCESS
        else:
            status = SyncStatus.SUCCESS
        result.status = status.value

        log.status = status
        log.records_processed = result.records_processed
        log.records_failed = result.records_failed
        log.notes = result.error
        log.finished_at = datetime.now(timezone.utc)
        await session.flush()
    finally:
        if locked:
            await _release_sync_lock(merchant_id)

    logger.info(
        f"[sync] merchant_id={merchant_id} status={result.status} pages={result.pages_fetched} "
        f"processed={result.records_processed} failed={result.records_failed} "
        f"auto_matched={result.auto_matched}"
    )
    return result
