"""Common schemas used across the API."""

from typing import Any

from pydantic import BaseModel

from app.errors import CatalogError


class ErrorDetail(BaseModel):
    """Machine code, readable message and the entity/field context of a failure."""

    code: str
    message: str
    detail: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Standard error response format.

    Format: { "error": { "code": str, "message": str, "detail": object } }
    """

    error: ErrorDetail

    @classmethod
    def from_error(cls, exc: CatalogError) -> "ErrorResponse":
        return cls(error=ErrorDetail(code=exc.code, message=exc.message, detail=exc.detail or None))
