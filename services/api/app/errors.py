"""Typed failures raised by catalog services.

Every error carries a machine code, an HTTP status for the API layer and a
structured detail dict (entity, entity_id, field, expected, actual) so an
admin UI can render an actionable message.
"""

from typing import Any


class CatalogError(Exception):
    """Base class for service-level failures."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        entity_id: Any = None,
        field: str | None = None,
        expected: Any = None,
        actual: Any = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id
        self.field = field
        self.expected = expected
        self.actual = actual
        self.extra = extra or {}

    @property
    def detail(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for key in ("entity", "entity_id", "field", "expected", "actual"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        out.update(self.extra)
        return out


class NotFoundError(CatalogError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidTransitionError(CatalogError):
    code = "INVALID_TRANSITION"
    status_code = 409


class ValidationError(CatalogError):
    code = "VALIDATION_ERROR"
    status_code = 422


class ConflictError(CatalogError):
    code = "CONFLICT"
    status_code = 409


class UpstreamFetchError(CatalogError):
    code = "UPSTREAM_FETCH_FAILED"
    status_code = 502


class PersistenceError(CatalogError):
    code = "PERSISTENCE_ERROR"
    status_code = 500
