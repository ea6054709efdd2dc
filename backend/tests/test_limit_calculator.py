from permission_engine.entitlements.limits import build_limit, calculate_limits
from permission_engine.entitlements.types import (
    LimitInfo,
    OverrideRecord,
    PlanLimitRecord,
    UsageRecord,
)
from permission_engine.models.enums import OverrideTypeEnum


def _increase(slug: str, value: str | None) -> OverrideRecord:
    return OverrideRecord(
        feature_slug=slug,
        override_type=OverrideTypeEnum.LIMIT_INCREASE,
        value=value,
    )


def test_plan_limit_with_usage():
    limits = calculate_limits(
        [PlanLimitRecord(feature_slug="export", max_limit=100)],
        usage=[UsageRecord(feature_slug="export", current_usage=40)],
    )
    assert limits == {"export": LimitInfo(max=100, used=40, remaining=60, exceeded=False)}


def test_missing_usage_counts_as_zero():
    limits = calculate_limits([PlanLimitRecord(feature_slug="export", max_limit=5)])
    assert limits["export"].used == 0
    assert limits["export"].remaining == 5


def test_org_override_replaces_plan_limit():
    limits = calculate_limits(
        [PlanLimitRecord(feature_slug="export", max_limit=100)],
        org_overrides=[_increase("export", "250")],
    )
    assert limits["export"].max == 250


def test_user_override_wins_over_org_override():
    limits = calculate_limits(
        [PlanLimitRecord(feature_slug="export", max_limit=100)],
        org_overrides=[_increase("export", "250")],
        user_overrides=[_increase("export", "500")],
    )
    assert limits["export"].max == 500


def test_limit_increase_without_plan_limit_creates_a_limit():
    limits = calculate_limits([], user_overrides=[_increase("api-calls", "10")])
    assert limits == {"api-calls": LimitInfo(max=10, used=0, remaining=10, exceeded=False)}


def test_malformed_override_value_falls_back_to_next_source():
    limits = calculate_limits(
        [PlanLimitRecord(feature_slug="export", max_limit=100)],
        org_overrides=[_increase("export", "300")],
        user_overrides=[_increase("export", "lots")],
    )
    assert limits["export"].max == 300


def test_zero_limit_override_zeroes_the_quota():
    limits = calculate_limits(
        [PlanLimitRecord(feature_slug="export", max_limit=100)],
        user_overrides=[_increase("export", "0")],
        usage=[UsageRecord(feature_slug="export", current_usage=1)],
    )
    assert limits["export"] == LimitInfo(max=0, used=1, remaining=0, exceeded=True)


def test_negative_override_value_is_skipped():
    limits = calculate_limits(
        [PlanLimitRecord(feature_slug="export", max_limit=100)],
        user_overrides=[_increase("export", "-5")],
    )
    assert limits["export"].max == 100


def test_exceeded_when_usage_reaches_max():
    assert build_limit(10, 10) == LimitInfo(max=10, used=10, remaining=0, exceeded=True)
    assert build_limit(10, 9).exceeded is False


def test_remaining_never_negative():
    limit = build_limit(10, 25)
    assert limit.remaining == 0
    assert limit.exceeded is True


def test_zero_limit_is_always_exceeded():
    limits = calculate_limits([PlanLimitRecord(feature_slug="export", max_limit=0)])
    assert limits["export"].exceeded is True


def test_unlimited_features_are_absent():
    limits = calculate_limits(
        [PlanLimitRecord(feature_slug="export", max_limit=100)],
        usage=[UsageRecord(feature_slug="reports", current_usage=7)],
    )
    assert "reports" not in limits
