import pytest

from permission_engine.core.time import utcnow
from permission_engine.entitlements.enforcement import (
    FeatureNotEnabled,
    UsageLimitExceeded,
    assert_limit,
    enforce,
    format_usage,
    is_approaching_limit,
    require_feature,
    usage_percentage,
)
from permission_engine.entitlements.types import LimitInfo, PermissionMap


def _permissions(features=None, limits=None) -> PermissionMap:
    return PermissionMap(
        user_id=1,
        org_id=10,
        features=features or {},
        limits=limits or {},
        resolved_at=utcnow(),
    )


class StubEngine:
    def __init__(self, permissions: PermissionMap):
        self.permissions = permissions

    def resolve(self, user_id, org_id, plan_id=None):
        return self.permissions


def test_require_feature_raises_403_payload():
    with pytest.raises(FeatureNotEnabled) as excinfo:
        require_feature(_permissions({"export": False}), "export")
    assert excinfo.value.status_code == 403
    assert excinfo.value.to_payload() == {
        "code": "feature_not_enabled",
        "message": "Feature 'export' is not enabled",
        "feature_slug": "export",
    }
    require_feature(_permissions({"export": True}), "export")


def test_assert_limit_hard_and_soft_modes():
    limits = {"export": LimitInfo(max=10, used=9, remaining=1, exceeded=False)}
    permissions = _permissions({"export": True}, limits)
    assert assert_limit(permissions, "export") is False
    assert assert_limit(permissions, "export", 2, mode="soft") is True
    with pytest.raises(UsageLimitExceeded) as excinfo:
        assert_limit(permissions, "export", 2)
    assert excinfo.value.status_code == 429
    payload = excinfo.value.to_payload()
    assert payload["code"] == "usage_limit_exceeded"
    assert payload["limit"] == 10
    assert payload["current_usage"] == 9


def test_unlimited_feature_never_trips():
    assert assert_limit(_permissions({"export": True}), "export", 10_000) is False


def test_enforce_combines_feature_and_limit_checks():
    ok = _permissions(
        {"export": True},
        {"export": LimitInfo(max=5, used=1, remaining=4, exceeded=False)},
    )
    assert enforce(StubEngine(ok), 1, 10, "Export") is ok

    exhausted = _permissions(
        {"export": True},
        {"export": LimitInfo(max=5, used=5, remaining=0, exceeded=True)},
    )
    with pytest.raises(UsageLimitExceeded):
        enforce(StubEngine(exhausted), 1, 10, "export")
    with pytest.raises(FeatureNotEnabled):
        enforce(StubEngine(_permissions()), 1, 10, "export")


def test_usage_helpers():
    limit = LimitInfo(max=200, used=170, remaining=30, exceeded=False)
    assert usage_percentage(limit) == 85
    assert is_approaching_limit(limit) is True
    assert is_approaching_limit(limit, threshold=0.9) is False
    assert usage_percentage(LimitInfo(max=0, used=3, remaining=0, exceeded=True)) == 0
    assert format_usage(170, limit) == "170/200"
    assert format_usage(12, None) == "12 (unlimited)"
