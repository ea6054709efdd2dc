"""
Permission query API.

``PermissionEngine.resolve`` returns the merged feature map and limit
status for a user inside an organization. Results are cached per
(user, org) under ``resolved:{user_id}:{org_id}`` and rebuilt wholesale
on a miss. Mutations keep the cache coherent through the invalidator, and
the written TTL never outlives the earliest active override.
"""

from __future__ import annotations

import logging
import math
import time
from datetime import datetime
from typing import Callable, Iterable

from pydantic import ValidationError as PydanticValidationError

from permission_engine.core.cache import CacheService, get_cache_service
from permission_engine.core.cache_keys import CacheTTL, resolved_permissions_key
from permission_engine.core.errors import (
    PermissionEngineError,
    optional_id,
    require_id,
    require_slug,
)
from permission_engine.core.metrics import record_resolution
from permission_engine.core.time import utcnow
from permission_engine.entitlements.context import ContextBuilder
from permission_engine.entitlements.invalidation import Invalidator
from permission_engine.entitlements.limits import calculate_limits
from permission_engine.entitlements.merge import merge_features
from permission_engine.entitlements.providers import DataProviders, SqlDataProviders
from permission_engine.entitlements.types import (
    CheckResult,
    LimitInfo,
    PermissionContext,
    PermissionMap,
)


logger = logging.getLogger(__name__)


def evaluate(permissions: PermissionMap, feature_slug: str) -> CheckResult:
    enabled = permissions.features.get(feature_slug) is True
    limit = permissions.limits.get(feature_slug)
    if not enabled:
        return CheckResult(
            allowed=False,
            reason=f'Feature "{feature_slug}" is not enabled',
            code="feature_not_enabled",
            limit=limit,
        )
    if limit is not None and limit.exceeded:
        return CheckResult(
            allowed=False,
            reason=f'Usage limit exceeded for "{feature_slug}" ({limit.used}/{limit.max})',
            code="usage_limit_exceeded",
            limit=limit,
        )
    return CheckResult(
        allowed=True,
        reason=f'Feature "{feature_slug}" is enabled',
        limit=limit,
    )


class PermissionEngine:
    def __init__(
        self,
        providers: DataProviders,
        cache: CacheService | None = None,
        *,
        invalidator: Invalidator | None = None,
        clock: Callable[[], datetime] = utcnow,
        context_builder: ContextBuilder | None = None,
    ) -> None:
        self._providers = providers
        self._cache = cache
        self._invalidator = invalidator or Invalidator(cache)
        self._clock = clock
        self._builder = context_builder or ContextBuilder(providers, clock=clock)

    @property
    def cache(self) -> CacheService:
        return self._cache or get_cache_service()

    @property
    def invalidator(self) -> Invalidator:
        return self._invalidator

    def _from_cache(self, user_id: int, org_id: int, plan_id: int | None) -> PermissionMap | None:
        payload = self.cache.get(resolved_permissions_key(user_id, org_id), cache_name="resolved")
        if payload is None:
            return None
        try:
            cached = PermissionMap.model_validate(payload)
        except PydanticValidationError:
            logger.warning(
                "cache.payload_invalid",
                extra={"user_id": user_id, "org_id": org_id},
            )
            return None
        # The key is per (user, org); a map built for another plan is a miss.
        if (cached.user_id, cached.org_id, cached.plan_id) != (user_id, org_id, plan_id):
            return None
        return cached.model_copy(update={"cached": True})

    def _ttl_for(self, context: PermissionContext, now: datetime) -> int:
        ttl = CacheTTL.permissions()
        expiry = context.earliest_override_expiry()
        if expiry is not None:
            seconds = math.ceil((expiry - now).total_seconds())
            ttl = max(1, min(ttl, seconds))
        return ttl

    def _compute(self, user_id: int, org_id: int, plan_id: int | None) -> PermissionMap:
        context = self._builder.build(user_id, org_id, plan_id)
        now = self._clock()
        permissions = PermissionMap(
            user_id=user_id,
            org_id=org_id,
            plan_id=plan_id,
            features=merge_features(
                context.plan_features,
                context.role_permissions,
                context.org_overrides,
                context.user_overrides,
            ),
            limits=calculate_limits(
                context.plan_limits,
                context.org_overrides,
                context.user_overrides,
                context.usage,
            ),
            resolved_at=now,
            cached=False,
        )
        self.cache.set(
            resolved_permissions_key(user_id, org_id),
            permissions,
            ttl=self._ttl_for(context, now),
            cache_name="resolved",
        )
        return permissions

    def resolve(self, user_id: int, org_id: int, plan_id: int | None = None) -> PermissionMap:
        require_id(user_id, "user_id")
        require_id(org_id, "org_id")
        optional_id(plan_id, "plan_id")
        started = time.perf_counter()

        cached = self._from_cache(user_id, org_id, plan_id)
        if cached is not None:
            record_resolution(
                source="cache",
                outcome="ok",
                duration_ms=(time.perf_counter() - started) * 1000,
            )
            return cached

        try:
            permissions = self._compute(user_id, org_id, plan_id)
        except PermissionEngineError as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            record_resolution(source="computed", outcome=exc.code, duration_ms=duration_ms)
            logger.warning(
                "permissions.resolve_failed",
                extra={
                    "user_id": user_id,
                    "org_id": org_id,
                    "plan_id": plan_id,
                    "error_code": exc.code,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            raise
        duration_ms = (time.perf_counter() - started) * 1000
        record_resolution(source="computed", outcome="ok", duration_ms=duration_ms)
        logger.info(
            "permissions.resolved",
            extra={
                "user_id": user_id,
                "org_id": org_id,
                "plan_id": plan_id,
                "features": len(permissions.features),
                "limits": len(permissions.limits),
                "duration_ms": round(duration_ms, 2),
            },
        )
        return permissions

    def resolve_assigned(self, user_id: int, org_id: int) -> PermissionMap:
        """Resolve against the user's active plan in the organization."""
        require_id(user_id, "user_id")
        require_id(org_id, "org_id")
        plan_id = self._providers.get_user_plan_id(user_id, org_id)
        return self.resolve(user_id, org_id, plan_id)

    def check(
        self,
        user_id: int,
        org_id: int,
        feature_slug: str,
        plan_id: int | None = None,
    ) -> CheckResult:
        slug = require_slug(feature_slug)
        return evaluate(self.resolve(user_id, org_id, plan_id), slug)

    def check_many(
        self,
        user_id: int,
        org_id: int,
        feature_slugs: Iterable[str],
        plan_id: int | None = None,
    ) -> dict[str, CheckResult]:
        slugs = [require_slug(slug) for slug in feature_slugs]
        permissions = self.resolve(user_id, org_id, plan_id)
        return {slug: evaluate(permissions, slug) for slug in slugs}

    def is_feature_allowed(
        self,
        user_id: int,
        org_id: int,
        feature_slug: str,
        plan_id: int | None = None,
    ) -> bool:
        slug = require_slug(feature_slug)
        return self.resolve(user_id, org_id, plan_id).features.get(slug) is True

    def get_limit(
        self,
        user_id: int,
        org_id: int,
        feature_slug: str,
        plan_id: int | None = None,
    ) -> LimitInfo | None:
        slug = require_slug(feature_slug)
        return self.resolve(user_id, org_id, plan_id).limits.get(slug)

    def is_within_limits(
        self,
        user_id: int,
        org_id: int,
        feature_slug: str,
        plan_id: int | None = None,
    ) -> bool:
        limit = self.get_limit(user_id, org_id, feature_slug, plan_id)
        return limit is None or not limit.exceeded

    def get_remaining_usage(
        self,
        user_id: int,
        org_id: int,
        feature_slug: str,
        plan_id: int | None = None,
    ) -> int | None:
        limit = self.get_limit(user_id, org_id, feature_slug, plan_id)
        return None if limit is None else limit.remaining

    def invalidate(self, user_id: int, org_id: int) -> None:
        require_id(user_id, "user_id")
        require_id(org_id, "org_id")
        self._invalidator.invalidate_pair(user_id, org_id, reason="manual")

    def invalidate_all(self, user_id: int) -> None:
        require_id(user_id, "user_id")
        self._invalidator.invalidate_user_all(user_id, reason="manual")


def build_default_engine(cache: CacheService | None = None) -> PermissionEngine:
    return PermissionEngine(SqlDataProviders(cache=cache), cache)
