"""Pydantic schemas for API request/response validation."""

from app.schemas.common import ErrorDetail, ErrorResponse
from app.schemas.feed import FeedOption, FeedProduct, FeedVariant
from app.schemas.merchant import (
    ManualSourceConfig,
    RegisterMerchantRequest,
    ShopifySourceConfig,
    parse_source_config,
)
from app.schemas.review import DecisionAction, ReviewDecisionRequest

__all__ = [
    "DecisionAction",
    "ErrorDetail",
    "ErrorResponse",
    "FeedOption",
    "FeedProduct",
    "FeedVariant",
    "ManualSourceConfig",
    "RegisterMerchantRequest",
    "ReviewDecisionRequest",
    "ShopifySourceConfig",
    "parse_source_config",
]
