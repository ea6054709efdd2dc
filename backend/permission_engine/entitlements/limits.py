from __future__ import annotations

import logging
from typing import Iterable

from permission_engine.entitlements.types import (
    LimitInfo,
    OverrideRecord,
    PlanLimitRecord,
    UsageRecord,
)
from permission_engine.models.enums import OverrideTypeEnum


logger = logging.getLogger(__name__)


def _limit_override_values(overrides: Iterable[OverrideRecord]) -> dict[str, int]:
    values: dict[str, int] = {}
    for override in overrides:
        if override.override_type != OverrideTypeEnum.LIMIT_INCREASE:
            continue
        try:
            value = int(str(override.value).strip())
        except ValueError:
            value = -1
        if value < 0:
            logger.warning(
                "limits.override_value_invalid",
                extra={
                    "override_id": override.id,
                    "feature_slug": override.feature_slug,
                    "value": override.value,
                },
            )
            continue
        # Keep the most generous value if a slug appears twice.
        current = values.get(override.feature_slug)
        values[override.feature_slug] = value if current is None else max(current, value)
    return values


def build_limit(max_limit: int, used: int) -> LimitInfo:
    return LimitInfo(
        max=max_limit,
        used=used,
        remaining=max(0, max_limit - used),
        exceeded=used >= max_limit,
    )


def calculate_limits(
    plan_limits: Iterable[PlanLimitRecord],
    org_overrides: Iterable[OverrideRecord] = (),
    user_overrides: Iterable[OverrideRecord] = (),
    usage: Iterable[UsageRecord] = (),
) -> dict[str, LimitInfo]:
    """User override value, else org override value, else plan limit.

    Slugs with none of the three are unlimited and left out.
    """
    plan = {record.feature_slug: record.max_limit for record in plan_limits}
    org = _limit_override_values(org_overrides)
    user = _limit_override_values(user_overrides)
    used_by_slug = {record.feature_slug: record.current_usage for record in usage}

    limits: dict[str, LimitInfo] = {}
    for slug in sorted(set(plan) | set(org) | set(user)):
        if slug in user:
            max_limit = user[slug]
        elif slug in org:
            max_limit = org[slug]
        else:
            max_limit = plan[slug]
        limits[slug] = build_limit(max_limit, used_by_slug.get(slug, 0))
    return limits
