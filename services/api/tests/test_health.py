"""Tests for health endpoint and error rendering."""

import pytest
from fastapi import APIRouter
from httpx import ASGITransport, AsyncClient

from app.errors import ConflictError
from app.main import app, create_app


@pytest.fixture
async def client():
    """Create test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test health endpoint returns ok."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


@pytest.mark.asyncio
async def test_catalog_error_renders_structured_body():
    router = APIRouter()

    @router.get("/_test/conflict")
    async def _conflict() -> None:
        raise ConflictError(
            "An active margin rule already exists for this scope",
            entity="margin_rule",
            entity_id=7,
            extra={"merchant_id": 1},
        )

    test_app = create_app()
    test_app.include_router(router)
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as ac:
        response = await ac.get("/_test/conflict")
    assert response.status_code == 409
    assert response.json() == {
        "error": {
            "code": "CONFLICT",
            "message": "An active margin rule already exists for this scope",
            "detail": {"entity": "margin_rule", "entity_id": 7, "merchant_id": 1},
        }
    }
