"""Tests for merchant registration and Shopify feed sync."""

import httpx
import pytest
from sqlalchemy import select

from app.errors import ConflictError, ValidationError
from app.models import SourceType, StagingProduct, StagingStatus, SyncLog, SyncStatus
from app.schemas.merchant import RegisterMerchantRequest
from app.services import merchants
from app.services.merchants import (
    build_product_fetcher,
    is_sync_running,
    register_merchant,
    sync_merchant_feed,
)
from app.services.shopify_client import ShopifyClient
from app.stores.postgres import get_session

SHOPIFY_CONFIG = {"source_type": "SHOPIFY", "store_url": "acme.myshopify.com", "access_token": "shpat_test"}


def _shopify(pages: list[httpx.Response | list[dict]]) -> ShopifyClient:
    """Client whose N-th request returns pages[N] (a product list or a raw response)."""
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        n = calls["n"]
        calls["n"] += 1
        page = pages[n]
        if isinstance(page, httpx.Response):
            return page
        headers = {}
        if n + 1 < len(pages):
            headers["Link"] = f'<https://acme.myshopify.com/admin/api/2024-01/products.json?page_info=p{n + 1}>; rel="next"'
        return httpx.Response(200, json={"products": page}, headers=headers)

    return ShopifyClient("acme.myshopify.com", "shpat_test", transport=httpx.MockTransport(handler))


async def _shopify_merchant(catalog, **kwargs):
    return await catalog.merchant(source_type=SourceType.SHOPIFY, config=dict(SHOPIFY_CONFIG), **kwargs)


async def _sync(merchant_id, client):
    async with get_session() as session:
        return await sync_merchant_feed(session, merchant_id, client=client)


async def _sync_logs(merchant_id):
    async with get_session() as session:
        res = await session.execute(select(SyncLog).where(SyncLog.merchant_id == merchant_id))
        return list(res.scalars().all())


@pytest.mark.asyncio
async def test_register_merchant_normalizes_store_url(db):
    request = RegisterMerchantRequest.model_validate(
        {
            "name": "  Acme Store ",
            "source_config": {
                "source_type": "SHOPIFY",
                "store_url": "https://ACME.myshopify.com/admin",
                "access_token": "shpat_x",
            },
        }
    )
    async with get_session() as session:
        merchant = await register_merchant(session, request)

    assert merchant.id is not None
    assert merchant.name == "Acme Store"
    assert merchant.source_type == SourceType.SHOPIFY
    assert merchant.source_config == {
        "source_type": "SHOPIFY",
        "store_url": "acme.myshopify.com",
        "access_token": "shpat_x",
    }


@pytest.mark.asyncio
async def test_sync_success_ingests_all_pages_and_auto_matches(catalog, feed_product, feed_variant):
    merchant = await _shopify_merchant(catalog)
    master = await catalog.product("Acme Trail Runner")
    client = _shopify(
        [
            [feed_product(1, "Acme Trail Runner Shoes", [feed_variant(11)])],
            [feed_product(2, "Garden Hose", [feed_variant(21)])],
        ]
    )

    result = await _sync(merchant.id, client)

    assert result.status == "SUCCESS"
    assert result.pages_fetched == 2
    assert result.records_processed == 2
    assert result.records_failed == 0
    assert result.auto_matched == 2
    assert result.error is None

    async with get_session() as session:
        rows = (await session.execute(select(StagingProduct).order_by(StagingProduct.id))).scalars().all()
    assert [r.status for r in rows] == [StagingStatus.NEEDS_REVIEW, StagingStatus.NEEDS_REVIEW]
    assert rows[0].suggested_master_product_id == master.id

    (log,) = await _sync_logs(merchant.id)
    assert log.status == SyncStatus.SUCCESS
    assert log.records_processed == 2
    assert log.finished_at is not None


@pytest.mark.asyncio
async def test_sync_auto_matches_every_pending_row_across_batches(catalog, feed_product, feed_variant, monkeypatch):
    monkeypatch.setattr(merchants, "AUTO_MATCH_BATCH", 2)
    merchant = await _shopify_merchant(catalog)
    titles = ["Trail Runner", "Garden Hose", "Desk Lamp", "Coffee Grinder", "Yoga Mat"]
    client = _shopify([[feed_product(n, title, [feed_variant(n * 10)]) for n, title in enumerate(titles, start=1)]])

    result = await _sync(merchant.id, client)

    assert result.status == "SUCCESS"
    assert result.records_processed == 5
    assert result.auto_matched == 5
    async with get_session() as session:
        res = await session.execute(select(StagingProduct).where(StagingProduct.merchant_id == merchant.id))
        statuses = [r.status for r in res.scalars().all()]
    assert statuses == [StagingStatus.NEEDS_REVIEW] * 5


@pytest.mark.asyncio
async def test_sync_partial_when_later_page_fails(catalog, feed_product, feed_variant):
    merchant = await _shopify_merchant(catalog)
    client = _shopify(
        [
            [feed_product(1, "Runner", [feed_variant(11)])],
            httpx.Response(500, text="upstream down"),
        ]
    )

    result = await _sync(merchant.id, client)

    assert result.status == "PARTIAL_SUCCESS"
    assert result.pages_fetched == 1
    assert result.records_processed == 1
    assert result.error == "Feed source returned HTTP 500"

    (log,) = await _sync_logs(merchant.id)
    assert log.status == SyncStatus.PARTIAL_SUCCESS
    assert log.notes == "Feed source returned HTTP 500"


@pytest.mark.asyncio
async def test_sync_partial_when_records_are_quarantined(catalog, feed_product, feed_variant):
    merchant = await _shopify_merchant(catalog)
    client = _shopify([[feed_product(1, "Runner", [feed_variant(11)]), feed_product(2, "", [feed_variant(21)])]])

    result = await _sync(merchant.id, client)
    assert result.status == "PARTIAL_SUCCESS"
    assert (result.records_processed, result.records_failed) == (1, 1)
    assert result.errors[0]["external_product_id"] == "2"


@pytest.mark.asyncio
async def test_sync_failed_when_first_page_fails(catalog):
    merchant = await _shopify_merchant(catalog)
    client = _shopify([httpx.Response(401, json={"errors": "Invalid API key"})])

    result = await _sync(merchant.id, client)
    assert result.status == "FAILED"
    assert result.pages_fetched == 0
    assert result.records_processed == 0

    (log,) = await _sync_logs(merchant.id)
    assert log.status == SyncStatus.FAILED


@pytest.mark.asyncio
async def test_sync_rejects_manual_and_inactive_merchants(catalog):
    manual = await catalog.merchant("Push Only")
    inactive = await _shopify_merchant(catalog, is_active=False)
    broken = await catalog.merchant(
        "Broken",
        source_type=SourceType.SHOPIFY,
        config={"source_type": "SHOPIFY", "store_url": "acme.myshopify.com"},
    )

    with pytest.raises(ValidationError) as exc:
        await _sync(manual.id, _shopify([]))
    assert exc.value.field == "source_type"

    with pytest.raises(ValidationError) as exc:
        await _sync(inactive.id, _shopify([]))
    assert exc.value.field == "is_active"

    with pytest.raises(ValidationError) as exc:
        await _sync(broken.id, _shopify([]))
    assert exc.value.field == "source_config"


@pytest.mark.asyncio
async def test_sync_conflicts_while_another_sync_holds_the_lock(catalog, monkeypatch):
    merchant = await _shopify_merchant(catalog)

    async def held(merchant_id):
        return False

    monkeypatch.setattr(merchants, "_acquire_sync_lock", held)

    with pytest.raises(ConflictError):
        await _sync(merchant.id, _shopify([]))
    assert await _sync_logs(merchant.id) == []


@pytest.mark.asyncio
async def test_sync_lock_is_released_after_run(catalog, monkeypatch):
    merchant = await _shopify_merchant(catalog)
    released: list[int] = []

    async def acquired(merchant_id):
        return True

    async def release(merchant_id):
        released.append(merchant_id)

    monkeypatch.setattr(merchants, "_acquire_sync_lock", acquired)
    monkeypatch.setattr(merchants, "_release_sync_lock", release)

    result = await _sync(merchant.id, _shopify([[]]))
    assert result.status == "SUCCESS"
    assert released == [merchant.id]


@pytest.mark.asyncio
async def test_is_sync_running_without_redis():
    assert await is_sync_running(1) is False


@pytest.mark.asyncio
async def test_build_product_fetcher(catalog):
    manual = await catalog.merchant("Push Only")
    shopify = await _shopify_merchant(catalog)

    assert build_product_fetcher(manual) is None

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"product": {"id": 7, "title": "Runner"}})

    client = ShopifyClient("acme.myshopify.com", "t", transport=httpx.MockTransport(handler))
    fetch = build_product_fetcher(shopify, client=client)
    assert (await fetch("7"))["title"] == "Runner"
