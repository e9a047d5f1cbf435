"""End-to-end tests for the admin and merchant routers."""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from app.main import create_app
from app.services.shopify_client import ShopifyClient


@pytest.fixture
async def client(db):
    """Client bound to the per-test database (lifespan is not run)."""
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as ac:
        yield ac


async def _register(client: AsyncClient, name: str = "Acme Store", **source) -> int:
    response = await client.post(
        "/v1/admin/merchants",
        json={"name": name, "source_config": source or {"source_type": "MANUAL"}},
    )
    assert response.status_code == 201
    return response.json()["id"]


@pytest.mark.asyncio
async def test_push_review_and_approve_new(client: AsyncClient, feed_product, feed_variant):
    merchant_id = await _register(client)

    margin = await client.post("/v1/admin/margins", json={"merchant_id": merchant_id, "margin_percentage": "5"})
    assert margin.status_code == 201
    duplicate = await client.post("/v1/admin/margins", json={"merchant_id": merchant_id, "margin_percentage": "6"})
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "CONFLICT"

    pushed = await client.post(
        f"/v1/merchants/{merchant_id}/feed",
        json={
            "products": [
                feed_product(1, "Acme Trail Runner", [feed_variant(11, option1="9")], options=["Size"]),
                {"id": 2, "title": "No variants", "variants": []},
            ]
        },
    )
    assert pushed.status_code == 200
    body = pushed.json()
    assert (body["processed"], body["failed"], body["auto_matched"]) == (1, 1, 1)

    queue = (await client.get("/v1/admin/review-queue")).json()
    assert queue["total"] == 1
    item = queue["items"][0]
    assert item["merchant_name"] == "Acme Store"
    assert item["status"] == "NEEDS_REVIEW"
    staging_id = item["staging_product_id"]

    detail = (await client.get(f"/v1/admin/review/{staging_id}")).json()
    assert detail["raw_tags"] == ["new", "sale"]
    assert detail["variants"][0]["raw_options"] == {"Size": "9"}

    rejected = await client.post(f"/v1/admin/review/{staging_id}/decision", json={"action": "reject"})
    assert rejected.status_code == 422
    assert rejected.json()["error"]["detail"]["field"] == "rejection_reason"

    approved = await client.post(f"/v1/admin/review/{staging_id}/decision", json={"action": "approve_new"})
    assert approved.status_code == 200
    decision = approved.json()
    assert decision["status"] == "APPROVED"
    assert len(decision["created_variant_ids"]) == 1
    assert len(decision["offer_ids"]) == 1

    again = await client.post(f"/v1/admin/review/{staging_id}/decision", json={"action": "approve_new"})
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "INVALID_TRANSITION"

    dashboard = (await client.get(f"/v1/merchants/{merchant_id}/dashboard")).json()
    assert dashboard["live"] == 1
    assert dashboard["sync_running"] is False

    search = (await client.get("/v1/admin/products/search", params={"q": "trail"})).json()
    assert [p["title"] for p in search["products"]] == ["Acme Trail Runner"]
    assert search["products"][0]["merchant_count"] == 1

    stats = (await client.get("/v1/admin/stats")).json()
    assert stats == {"pending_reviews": 0, "total_master_products": 1, "rejected_this_week": 0}


@pytest.mark.asyncio
async def test_variant_preview_and_approve_match(client: AsyncClient, catalog, feed_product, feed_variant):
    product = await catalog.product("Acme Trail Runner")
    variant = await catalog.variant(product.id, internal_sku="A-9", gtin="0001")
    merchant_id = await _register(client)

    await client.post(
        f"/v1/merchants/{merchant_id}/feed",
        json={"rawFeed": [feed_product(1, "Trail Runner", [feed_variant(11, barcode="0001")])]},
    )
    staging_id = (await client.get("/v1/admin/review-queue")).json()["items"][0]["staging_product_id"]

    preview = (await client.get(f"/v1/admin/review/{staging_id}/variants")).json()
    assert preview["target_product_id"] == product.id
    assert preview["matches"][0]["strategy"] == "gtin_exact"
    assert preview["matches"][0]["matched_variant"]["id"] == variant.id
    assert preview["summary"]["matched"] == 1

    response = await client.post(
        f"/v1/admin/review/{staging_id}/decision",
        json={"action": "approve_match", "targetProductId": product.id},
    )
    assert response.status_code == 200
    assert response.json()["reused_variant_ids"] == [variant.id]


@pytest.mark.asyncio
async def test_missing_rows_are_404(client: AsyncClient):
    for method, path in [
        ("GET", "/v1/admin/review/404"),
        ("POST", "/v1/admin/review/404/rematch"),
        ("GET", "/v1/merchants/404/dashboard"),
        ("POST", "/v1/merchants/404/sync"),
    ]:
        response = await client.request(method, path)
        assert response.status_code == 404, path
        assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_merchant_tabs_issues_and_resync(client: AsyncClient, feed_product, feed_variant):
    merchant_id = await _register(client)
    await client.post(
        f"/v1/merchants/{merchant_id}/feed",
        json={"products": [feed_product(1, "Beta Sandals", [feed_variant(11)])]},
    )
    review_tab = await client.get(f"/v1/merchants/{merchant_id}/staging", params={"tab": "review"})
    staging_id = review_tab.json()[0]["staging_product_id"]
    await client.post(
        f"/v1/admin/review/{staging_id}/decision",
        json={"action": "reject", "rejectionReason": "Add a size chart"},
    )

    issues = (await client.get(f"/v1/merchants/{merchant_id}/issues")).json()
    assert [i["rejection_reason"] for i in issues] == ["Add a size chart"]
    bad_tab = await client.get(f"/v1/merchants/{merchant_id}/staging", params={"tab": "bogus"})
    assert bad_tab.status_code == 422

    resynced = await client.post(f"/v1/merchants/{merchant_id}/products/{staging_id}/resync")
    assert resynced.status_code == 200
    assert resynced.json()["status"] == "NEEDS_REVIEW"
    assert resynced.json()["refetched"] is False
    assert (await client.get(f"/v1/merchants/{merchant_id}/issues")).json() == []


@pytest.mark.asyncio
async def test_sync_reports_upstream_failure(client: AsyncClient, monkeypatch):
    merchant_id = await _register(
        client,
        source_type="SHOPIFY",
        store_url="acme.myshopify.com",
        access_token="shpat_test",
    )

    def failing(cls, config, **kwargs):
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="maintenance"))
        return cls(config.store_url, config.access_token, transport=transport)

    monkeypatch.setattr(ShopifyClient, "from_config", classmethod(failing))

    response = await client.post(f"/v1/merchants/{merchant_id}/sync")
    assert response.status_code == 502
    body = response.json()
    assert body["status"] == "FAILED"
    assert body["error"] == "Feed source returned HTTP 503"

    manual_id = await _register(client, "Push Only")
    manual = await client.post(f"/v1/merchants/{manual_id}/sync")
    assert manual.status_code == 422
