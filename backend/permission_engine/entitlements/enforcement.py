from __future__ import annotations

from typing import Any

from permission_engine.core.errors import PermissionEngineError
from permission_engine.entitlements.types import LimitInfo, PermissionMap


class FeatureNotEnabled(PermissionEngineError):
    def __init__(self, message: str, *, feature_slug: str | None = None):
        super().__init__(code="feature_not_enabled", message=message, status_code=403)
        self.feature_slug = feature_slug

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.feature_slug:
            payload["feature_slug"] = self.feature_slug
        return payload


class UsageLimitExceeded(PermissionEngineError):
    def __init__(
        self,
        message: str,
        *,
        feature_slug: str | None = None,
        limit: int | None = None,
        current_usage: int | None = None,
    ):
        super().__init__(code="usage_limit_exceeded", message=message, status_code=429)
        self.feature_slug = feature_slug
        self.limit = limit
        self.current_usage = current_usage

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.feature_slug:
            payload["feature_slug"] = self.feature_slug
        if self.limit is not None:
            payload["limit"] = self.limit
        if self.current_usage is not None:
            payload["current_usage"] = self.current_usage
        return payload


def require_feature(
    permissions: PermissionMap,
    feature_slug: str,
    *,
    message: str | None = None,
) -> None:
    if permissions.features.get(feature_slug) is True:
        return
    message = message or f"Feature '{feature_slug}' is not enabled"
    raise FeatureNotEnabled(message, feature_slug=feature_slug)


def assert_limit(
    permissions: PermissionMap,
    feature_slug: str,
    amount: int = 1,
    *,
    mode: str = "hard",
    message: str | None = None,
) -> bool:
    """Return True when consuming ``amount`` more would pass the limit.

    In hard mode that case raises UsageLimitExceeded instead. Features
    without a limit never trip.
    """
    limit = permissions.limits.get(feature_slug)
    if limit is None:
        return False
    if limit.used + amount <= limit.max:
        return False
    if mode == "soft":
        return True
    message = message or f"Usage limit exceeded for '{feature_slug}' ({limit.used}/{limit.max})"
    raise UsageLimitExceeded(
        message,
        feature_slug=feature_slug,
        limit=limit.max,
        current_usage=limit.used,
    )


def enforce(
    engine,
    user_id: int,
    org_id: int,
    feature_slug: str,
    plan_id: int | None = None,
    *,
    amount: int = 1,
) -> PermissionMap:
    """Resolve and raise unless the feature is on and ``amount`` fits."""
    permissions = engine.resolve(user_id, org_id, plan_id)
    slug = feature_slug.strip().lower()
    require_feature(permissions, slug)
    assert_limit(permissions, slug, amount)
    return permissions


def usage_percentage(limit: LimitInfo) -> int:
    if limit.max <= 0:
        return 0
    return round(limit.used / limit.max * 100)


def is_approaching_limit(limit: LimitInfo, threshold: float = 0.8) -> bool:
    if limit.max <= 0:
        return False
    return limit.used / limit.max >= threshold


def format_usage(used: int, limit: LimitInfo | None) -> str:
    if limit is None:
        return f"{used} (unlimited)"
    return f"{used}/{limit.max}"
