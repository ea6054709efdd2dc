from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class PermissionEngineError(Exception):
    code: str
    message: str
    status_code: int

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(PermissionEngineError):
    """Malformed or missing input. Caller's fault, never retried."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(code="validation_error", message=message, status_code=400)


class NotFoundError(PermissionEngineError):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(code="not_found", message=message, status_code=404)


class ConflictError(PermissionEngineError):
    def __init__(self, message: str = "Resource conflict"):
        super().__init__(code="conflict", message=message, status_code=409)


class ProviderError(PermissionEngineError):
    """A data provider query failed or timed out.

    Resolution aborts on this; an empty result is only ever substituted for
    a legitimate "no rows" answer.
    """

    def __init__(self, message: str, *, provider: str | None = None):
        super().__init__(code="provider_error", message=message, status_code=503)
        self.provider = provider

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.provider:
            payload["provider"] = self.provider
        return payload


class CacheError(PermissionEngineError):
    """Cache store failure. Always absorbed by the cache service."""

    def __init__(self, message: str, *, operation: str | None = None):
        super().__init__(code="cache_error", message=message, status_code=503)
        self.operation = operation


def require_id(value: Any, name: str) -> int:
    if value is None or isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be a positive integer")
    if value <= 0:
        raise ValidationError(f"{name} must be a positive integer")
    return value


def optional_id(value: Any, name: str) -> int | None:
    if value is None:
        return None
    return require_id(value, name)


def require_slug(value: Any, name: str = "feature_slug") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip().lower()
