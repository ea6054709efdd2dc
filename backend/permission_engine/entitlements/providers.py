"""
Data providers for permission resolution.

``DataProviders`` is the read contract the context builder depends on.
``SqlDataProviders`` implements it over SQLAlchemy with a read-through
cache per source. Every call opens its own session so calls can run on
worker threads concurrently. A database failure surfaces as
``ProviderError``; only a genuine "no rows" answer is returned as empty.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol, TypeVar

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from permission_engine.core.cache import CacheService, get_cache_service
from permission_engine.core.cache_keys import (
    CacheTTL,
    exists_key,
    feature_key,
    feature_slug_key,
    org_overrides_key,
    plan_features_key,
    plan_limits_key,
    role_permissions_key,
    user_overrides_key,
    user_plan_key,
    user_roles_key,
    user_usage_key,
)
from permission_engine.core.errors import ProviderError
from permission_engine.crud import features as features_crud
from permission_engine.crud import organization_overrides as org_overrides_crud
from permission_engine.crud import organizations as organizations_crud
from permission_engine.crud import overrides as overrides_crud
from permission_engine.crud import plan_features as plan_features_crud
from permission_engine.crud import plan_limits as plan_limits_crud
from permission_engine.crud import plans as plans_crud
from permission_engine.crud import role_permissions as role_permissions_crud
from permission_engine.crud import usage as usage_crud
from permission_engine.crud import user_plans as user_plans_crud
from permission_engine.crud import user_roles as user_roles_crud
from permission_engine.crud import users as users_crud
from permission_engine.entitlements.types import (
    FeatureRecord,
    OverrideRecord,
    PlanFeatureRecord,
    PlanLimitRecord,
    UsageRecord,
)
from permission_engine.models.enums import OverrideTypeEnum


logger = logging.getLogger(__name__)

T = TypeVar("T")


class DataProviders(Protocol):
    def get_user_role_permissions(self, user_id: int, org_id: int) -> list[str]:
        ...

    def get_active_overrides(self, user_id: int) -> list[OverrideRecord]:
        ...

    def get_active_organization_overrides(self, org_id: int) -> list[OverrideRecord]:
        ...

    def get_plan_features(self, plan_id: int) -> list[PlanFeatureRecord]:
        ...

    def get_plan_limits(self, plan_id: int) -> list[PlanLimitRecord]:
        ...

    def get_user_usage(self, user_id: int) -> list[UsageRecord]:
        ...

    def user_exists(self, user_id: int) -> bool:
        ...

    def organization_exists(self, org_id: int) -> bool:
        ...

    def plan_exists(self, plan_id: int) -> bool:
        ...

    def get_user_plan_id(self, user_id: int, org_id: int) -> int | None:
        ...


def _override_record(row) -> OverrideRecord:
    return OverrideRecord(
        id=row.id,
        feature_slug=row.feature_slug,
        override_type=OverrideTypeEnum(row.override_type),
        value=row.value,
        expires_at=row.expires_at,
    )


def _feature_record(row) -> FeatureRecord | None:
    if row is None:
        return None
    return FeatureRecord(id=row.id, slug=row.slug, name=row.name, description=row.description)


class SqlDataProviders:
    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session] | None = None,
        cache: CacheService | None = None,
    ) -> None:
        if session_factory is None:
            from permission_engine.core.db import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory
        self._cache = cache

    @property
    def cache(self) -> CacheService:
        return self._cache or get_cache_service()

    def _query(self, provider: str, loader: Callable[[Session], T]) -> T:
        try:
            with self._session_factory() as db:
                return loader(db)
        except SQLAlchemyError as exc:
            logger.error(
                "provider.query_failed",
                extra={"provider": provider, "error": str(exc)},
            )
            raise ProviderError(f"{provider} query failed", provider=provider) from exc

    def _read_through(
        self,
        provider: str,
        key: str,
        ttl: int,
        loader: Callable[[Session], T],
        parse: Callable[[Any], T],
        *,
        store_when: Callable[[T], bool] | None = None,
    ) -> T:
        cached = self.cache.get(key, cache_name=provider)
        if cached is not None:
            try:
                return parse(cached)
            except (PydanticValidationError, TypeError, ValueError, KeyError):
                logger.warning("cache.payload_invalid", extra={"cache_key": key})
        value = self._query(provider, loader)
        if store_when is None or store_when(value):
            self.cache.set(key, value, ttl=ttl, cache_name=provider)
        return value

    def _user_role_ids(self, user_id: int, org_id: int) -> list[int]:
        return self._read_through(
            "user_roles",
            user_roles_key(user_id, org_id),
            CacheTTL.user_roles(),
            lambda db: user_roles_crud.get_user_role_ids(db, user_id, org_id),
            lambda payload: [int(role_id) for role_id in payload],
        )

    def _role_permission_slugs(self, role_id: int) -> list[str]:
        return self._read_through(
            "role_permissions",
            role_permissions_key(role_id),
            CacheTTL.plan_role_data(),
            lambda db: role_permissions_crud.list_role_permission_slugs(db, role_id),
            lambda payload: [str(slug) for slug in payload],
        )

    def get_user_role_permissions(self, user_id: int, org_id: int) -> list[str]:
        slugs: set[str] = set()
        for role_id in self._user_role_ids(user_id, org_id):
            slugs.update(self._role_permission_slugs(role_id))
        return sorted(slugs)

    def get_active_overrides(self, user_id: int) -> list[OverrideRecord]:
        return self._read_through(
            "user_overrides",
            user_overrides_key(user_id),
            CacheTTL.usage(),
            lambda db: [
                _override_record(row)
                for row in overrides_crud.get_active_overrides(db, user_id)
            ],
            lambda payload: [OverrideRecord.model_validate(item) for item in payload],
        )

    def get_active_organization_overrides(self, org_id: int) -> list[OverrideRecord]:
        return self._read_through(
            "organization_overrides",
            org_overrides_key(org_id),
            CacheTTL.usage(),
            lambda db: [
                _override_record(row)
                for row in org_overrides_crud.get_active_organization_overrides(db, org_id)
            ],
            lambda payload: [OverrideRecord.model_validate(item) for item in payload],
        )

    def get_plan_features(self, plan_id: int) -> list[PlanFeatureRecord]:
        return self._read_through(
            "plan_features",
            plan_features_key(plan_id),
            CacheTTL.plan_role_data(),
            lambda db: [
                PlanFeatureRecord(feature_slug=slug, enabled=enabled)
                for slug, enabled in plan_features_crud.list_plan_features(db, plan_id)
            ],
            lambda payload: [PlanFeatureRecord.model_validate(item) for item in payload],
        )

    def get_plan_limits(self, plan_id: int) -> list[PlanLimitRecord]:
        return self._read_through(
            "plan_limits",
            plan_limits_key(plan_id),
            CacheTTL.plan_role_data(),
            lambda db: [
                PlanLimitRecord(feature_slug=row.feature_slug, max_limit=row.max_limit)
                for row in plan_limits_crud.list_plan_limits(db, plan_id)
            ],
            lambda payload: [PlanLimitRecord.model_validate(item) for item in payload],
        )

    def get_user_usage(self, user_id: int) -> list[UsageRecord]:
        return self._read_through(
            "usage",
            user_usage_key(user_id),
            CacheTTL.usage(),
            lambda db: [
                UsageRecord(feature_slug=row.feature_slug, current_usage=row.current_usage)
                for row in usage_crud.get_user_usage(db, user_id)
            ],
            lambda payload: [UsageRecord.model_validate(item) for item in payload],
        )

    def _exists(self, kind: str, entity_id: int, check: Callable[[Session], bool]) -> bool:
        # Only positive answers are cached; a missing row stays a live query.
        return self._read_through(
            f"{kind}_exists",
            exists_key(kind, entity_id),
            CacheTTL.plan_role_data(),
            check,
            bool,
            store_when=bool,
        )

    def user_exists(self, user_id: int) -> bool:
        return self._exists("user", user_id, lambda db: users_crud.user_exists(db, user_id))

    def organization_exists(self, org_id: int) -> bool:
        return self._exists(
            "organization",
            org_id,
            lambda db: organizations_crud.organization_exists(db, org_id),
        )

    def plan_exists(self, plan_id: int) -> bool:
        return self._exists("plan", plan_id, lambda db: plans_crud.plan_exists(db, plan_id))

    def get_user_plan_id(self, user_id: int, org_id: int) -> int | None:
        def load(db: Session) -> dict[str, int | None]:
            user_plan = user_plans_crud.get_user_plan(db, user_id, org_id)
            return {"plan_id": user_plan.plan_id if user_plan else None}

        entry = self._read_through(
            "user_plan",
            user_plan_key(user_id, org_id),
            CacheTTL.user_roles(),
            load,
            lambda payload: {"plan_id": payload["plan_id"]},
        )
        return entry["plan_id"]

    def get_feature_by_id(self, feature_id: int) -> FeatureRecord | None:
        return self._read_through(
            "feature",
            feature_key(feature_id),
            CacheTTL.features(),
            lambda db: _feature_record(features_crud.get_feature_by_id(db, feature_id)),
            FeatureRecord.model_validate,
            store_when=lambda record: record is not None,
        )

    def get_feature_by_slug(self, slug: str) -> FeatureRecord | None:
        normalized = slug.strip().lower()
        return self._read_through(
            "feature",
            feature_slug_key(normalized),
            CacheTTL.features(),
            lambda db: _feature_record(features_crud.get_feature_by_slug(db, normalized)),
            FeatureRecord.model_validate,
            store_when=lambda record: record is not None,
        )
