"""API routes."""

from fastapi import APIRouter

from app.routes import admin, merchants

api_router = APIRouter()

# Admin endpoints (review queue, decisions, catalog, margins)
api_router.include_router(admin.router, prefix="/v1/admin", tags=["admin"])

# Merchant endpoints (feed intake, resync, dashboards)
api_router.include_router(merchants.router, prefix="/v1/merchants", tags=["merchants"])
