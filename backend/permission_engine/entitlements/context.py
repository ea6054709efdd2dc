from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Any, Callable

from permission_engine.core.config import settings
from permission_engine.core.errors import (
    NotFoundError,
    PermissionEngineError,
    ProviderError,
    optional_id,
    require_id,
)
from permission_engine.core.time import utcnow
from permission_engine.entitlements.providers import DataProviders
from permission_engine.entitlements.types import OverrideRecord, PermissionContext


logger = logging.getLogger(__name__)


def _active(records: list[OverrideRecord], now: datetime) -> tuple[OverrideRecord, ...]:
    return tuple(record for record in records if record.is_active(now))


class ContextBuilder:
    """Loads every permission source for one (user, org[, plan]) in parallel.

    Each provider call runs on the pool and is bounded by the provider
    timeout. A timeout or failure aborts the build with ProviderError.
    """

    def __init__(
        self,
        providers: DataProviders,
        *,
        timeout: float | None = None,
        max_workers: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._providers = providers
        self._timeout = settings.PROVIDER_TIMEOUT_SECONDS if timeout is None else timeout
        self._max_workers = max_workers or settings.CONTEXT_MAX_WORKERS
        self._clock = clock

    def _calls(self, user_id: int, org_id: int, plan_id: int | None) -> dict[str, Callable[[], Any]]:
        p = self._providers
        calls: dict[str, Callable[[], Any]] = {
            "user_exists": lambda: p.user_exists(user_id),
            "organization_exists": lambda: p.organization_exists(org_id),
            "role_permissions": lambda: p.get_user_role_permissions(user_id, org_id),
            "user_overrides": lambda: p.get_active_overrides(user_id),
            "org_overrides": lambda: p.get_active_organization_overrides(org_id),
            "usage": lambda: p.get_user_usage(user_id),
        }
        if plan_id is not None:
            calls["plan_exists"] = lambda: p.plan_exists(plan_id)
            calls["plan_features"] = lambda: p.get_plan_features(plan_id)
            calls["plan_limits"] = lambda: p.get_plan_limits(plan_id)
        return calls

    def _gather(self, calls: dict[str, Callable[[], Any]]) -> dict[str, Any]:
        executor = ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(calls)),
            thread_name_prefix="permission-context",
        )
        try:
            futures: dict[Future, str] = {
                executor.submit(call): name for name, call in calls.items()
            }
            done, pending = wait(futures, timeout=self._timeout, return_when=FIRST_EXCEPTION)
            for future in done:
                exc = future.exception()
                if exc is None:
                    continue
                name = futures[future]
                if isinstance(exc, PermissionEngineError):
                    raise exc
                raise ProviderError(f"{name} provider failed: {exc}", provider=name) from exc
            if pending:
                names = sorted(futures[future] for future in pending)
                logger.error(
                    "context.provider_timeout",
                    extra={"providers": names, "timeout_seconds": self._timeout},
                )
                raise ProviderError(
                    f"Provider timed out after {self._timeout}s: {', '.join(names)}",
                    provider=names[0],
                )
            return {name: future.result() for future, name in futures.items()}
        finally:
            # Never block the caller on a stuck provider thread.
            executor.shutdown(wait=False, cancel_futures=True)

    def build(self, user_id: int, org_id: int, plan_id: int | None = None) -> PermissionContext:
        require_id(user_id, "user_id")
        require_id(org_id, "org_id")
        optional_id(plan_id, "plan_id")
        started = time.perf_counter()
        results = self._gather(self._calls(user_id, org_id, plan_id))
        if not results["user_exists"]:
            raise NotFoundError(f"User not found: {user_id}")
        if not results["organization_exists"]:
            raise NotFoundError(f"Organization not found: {org_id}")
        if plan_id is not None and not results["plan_exists"]:
            raise NotFoundError(f"Plan not found: {plan_id}")

        now = self._clock()
        context = PermissionContext(
            user_id=user_id,
            org_id=org_id,
            plan_id=plan_id,
            role_permissions=frozenset(results["role_permissions"]),
            plan_features=tuple(results.get("plan_features", ())),
            plan_limits=tuple(results.get("plan_limits", ())),
            org_overrides=_active(results["org_overrides"], now),
            user_overrides=_active(results["user_overrides"], now),
            usage=tuple(results["usage"]),
            built_at=now,
        )
        logger.debug(
            "context.built",
            extra={
                "user_id": user_id,
                "org_id": org_id,
                "plan_id": plan_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return context


def build_context(
    providers: DataProviders,
    user_id: int,
    org_id: int,
    plan_id: int | None = None,
) -> PermissionContext:
    return ContextBuilder(providers).build(user_id, org_id, plan_id)
