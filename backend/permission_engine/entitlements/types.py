from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from permission_engine.models.enums import OverrideTypeEnum


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class OverrideRecord(_Record):
    id: int | None = None
    feature_slug: str
    override_type: OverrideTypeEnum
    value: str | None = None
    expires_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


class PlanFeatureRecord(_Record):
    feature_slug: str
    enabled: bool


class PlanLimitRecord(_Record):
    feature_slug: str
    max_limit: int


class UsageRecord(_Record):
    feature_slug: str
    current_usage: int = 0


class FeatureRecord(_Record):
    id: int
    slug: str
    name: str
    description: str | None = None


class LimitInfo(BaseModel):
    max: int
    used: int
    remaining: int
    exceeded: bool


class PermissionMap(BaseModel):
    user_id: int
    org_id: int
    plan_id: int | None = None
    features: dict[str, bool] = Field(default_factory=dict)
    limits: dict[str, LimitInfo] = Field(default_factory=dict)
    resolved_at: datetime
    cached: bool = False


class CheckResult(BaseModel):
    allowed: bool
    reason: str
    code: str | None = None
    limit: LimitInfo | None = None


@dataclass(frozen=True)
class PermissionContext:
    """Everything the merge and limit steps need for one (user, org) pair.

    Built once per resolution and never mutated afterwards.
    """

    user_id: int
    org_id: int
    plan_id: int | None
    role_permissions: frozenset[str] = frozenset()
    plan_features: tuple[PlanFeatureRecord, ...] = ()
    plan_limits: tuple[PlanLimitRecord, ...] = ()
    org_overrides: tuple[OverrideRecord, ...] = ()
    user_overrides: tuple[OverrideRecord, ...] = ()
    usage: tuple[UsageRecord, ...] = ()
    built_at: datetime | None = field(default=None, compare=False)

    def earliest_override_expiry(self) -> datetime | None:
        expiries = [
            record.expires_at
            for record in (*self.org_overrides, *self.user_overrides)
            if record.expires_at is not None
        ]
        return min(expiries) if expiries else None
