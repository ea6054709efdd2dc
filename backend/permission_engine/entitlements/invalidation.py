"""
Resolved-permission cache invalidation.

Every mutation of a permission source ends with a call into this module:
the owning crud function evicts its provider cache entries, then asks the
invalidator to drop the resolved map of every (user, org) pair the change
can affect. Role and plan fan-out targets come from an explicit query;
organization-wide and user-wide drops clear by key pattern. Invalidation
runs after the write has committed and is best-effort: failures are
logged and counted, never raised to the caller.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from permission_engine.core.cache import CacheService, get_cache_service
from permission_engine.core.cache_keys import (
    resolved_org_pattern,
    resolved_permissions_key,
    resolved_permissions_pattern,
)
from permission_engine.core.errors import CacheError
from permission_engine.core.metrics import record_invalidation, record_invalidation_failure


logger = logging.getLogger(__name__)


class Invalidator:
    def __init__(self, cache: CacheService | None = None) -> None:
        self._cache = cache

    @property
    def cache(self) -> CacheService:
        return self._cache or get_cache_service()

    def _failed(self, reason: str, exc: Exception, **fields) -> None:
        record_invalidation_failure(reason)
        logger.warning(
            "cache.invalidation_failed",
            extra={"reason": reason, "error": str(exc), **fields},
        )

    def evict(self, keys: str | Iterable[str], *, reason: str) -> int:
        """Drop provider cache entries owned by the mutated source."""
        key_list = [keys] if isinstance(keys, str) else list(keys)
        try:
            return self.cache.delete_strict(key_list)
        except CacheError as exc:
            self._failed(reason, exc, cache_keys=key_list)
            return 0

    def invalidate_pair(self, user_id: int, org_id: int, *, reason: str = "manual") -> bool:
        key = resolved_permissions_key(user_id, org_id)
        try:
            self.cache.delete_strict(key)
        except CacheError as exc:
            self._failed(reason, exc, user_id=user_id, org_id=org_id)
            return False
        record_invalidation(reason)
        logger.debug(
            "permissions.invalidated",
            extra={"reason": reason, "user_id": user_id, "org_id": org_id},
        )
        return True

    def invalidate_user_all(self, user_id: int, *, reason: str = "manual") -> bool:
        pattern = resolved_permissions_pattern(user_id)
        try:
            removed = self.cache.clear_pattern_strict(pattern)
        except CacheError as exc:
            self._failed(reason, exc, user_id=user_id)
            return False
        record_invalidation(reason, removed)
        logger.debug(
            "permissions.invalidated_all",
            extra={"reason": reason, "user_id": user_id, "removed": removed},
        )
        return True

    def invalidate_pairs(self, pairs: Iterable[tuple[int, int]], *, reason: str) -> int:
        invalidated = 0
        for user_id, org_id in sorted(set(pairs)):
            if self.invalidate_pair(user_id, org_id, reason=reason):
                invalidated += 1
        return invalidated

    def invalidate_users(self, user_ids: Iterable[int], org_id: int, *, reason: str) -> int:
        return self.invalidate_pairs(((user_id, org_id) for user_id in user_ids), reason=reason)

    def invalidate_role_holders(
        self,
        db: Session,
        role_id: int,
        org_id: int,
        *,
        reason: str = "role_permission",
    ) -> int:
        from permission_engine.crud.user_roles import list_user_ids_for_role

        try:
            user_ids = list_user_ids_for_role(db, role_id, org_id)
        except SQLAlchemyError as exc:
            self._failed(reason, exc, role_id=role_id, org_id=org_id)
            return 0
        return self.invalidate_users(user_ids, org_id, reason=reason)

    def invalidate_plan_users(
        self,
        db: Session,
        plan_id: int,
        org_id: int | None = None,
        *,
        reason: str = "plan",
    ) -> int:
        from permission_engine.crud.user_plans import list_assignments_for_plan

        try:
            pairs = list_assignments_for_plan(db, plan_id, org_id=org_id)
        except SQLAlchemyError as exc:
            self._failed(reason, exc, plan_id=plan_id, org_id=org_id)
            return 0
        return self.invalidate_pairs(pairs, reason=reason)

    def invalidate_organization(self, org_id: int, *, reason: str = "organization_override") -> int:
        """Drop every resolved map cached for the organization, whoever
        the user is. Returns the number of entries removed."""
        pattern = resolved_org_pattern(org_id)
        try:
            removed = self.cache.clear_pattern_strict(pattern)
        except CacheError as exc:
            self._failed(reason, exc, org_id=org_id)
            return 0
        record_invalidation(reason, removed)
        logger.debug(
            "permissions.invalidated_organization",
            extra={"reason": reason, "org_id": org_id, "removed": removed},
        )
        return removed


_DEFAULT_INVALIDATOR = Invalidator()


def get_invalidator(invalidator: Invalidator | None = None) -> Invalidator:
    return invalidator or _DEFAULT_INVALIDATOR
