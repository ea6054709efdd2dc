from __future__ import annotations

from typing import Iterable

from permission_engine.entitlements.types import OverrideRecord, PlanFeatureRecord
from permission_engine.models.enums import OverrideTypeEnum


def _apply_overrides(features: dict[str, bool], overrides: Iterable[OverrideRecord]) -> None:
    for override in overrides:
        if override.override_type == OverrideTypeEnum.FEATURE_ENABLE:
            features[override.feature_slug] = True
        elif override.override_type == OverrideTypeEnum.FEATURE_DISABLE:
            features[override.feature_slug] = False
        # limit_increase only affects limits.


def merge_features(
    plan_features: Iterable[PlanFeatureRecord],
    role_permissions: Iterable[str],
    org_overrides: Iterable[OverrideRecord] = (),
    user_overrides: Iterable[OverrideRecord] = (),
) -> dict[str, bool]:
    """Overrides > roles > plan > default(false). Each layer overwrites the
    previous one outright; a slug absent from the result is disabled."""
    features = {record.feature_slug: bool(record.enabled) for record in plan_features}
    for slug in role_permissions:
        features[slug] = True
    _apply_overrides(features, org_overrides)
    _apply_overrides(features, user_overrides)
    return features
