"""
Cache key builders and TTL classes.

Every key lives under ``settings.CACHE_NAMESPACE`` so a shared Redis can
be scanned or flushed per deployment. Resolved permission maps use
``resolved:{user_id}:{org_id}``; provider read-through caches each get a
distinct prefix and TTL class.
"""

from permission_engine.core.config import settings


def _ns(suffix: str) -> str:
    return f"{settings.CACHE_NAMESPACE}:{suffix}"


def resolved_permissions_key(user_id: int, org_id: int) -> str:
    return _ns(f"resolved:{user_id}:{org_id}")


def resolved_permissions_pattern(user_id: int) -> str:
    return _ns(f"resolved:{user_id}:*")


def resolved_org_pattern(org_id: int) -> str:
    return _ns(f"resolved:*:{org_id}")


def user_roles_key(user_id: int, org_id: int) -> str:
    return _ns(f"user-roles:{user_id}:{org_id}")


def role_permissions_key(role_id: int) -> str:
    return _ns(f"role-permissions:{role_id}")


def plan_features_key(plan_id: int) -> str:
    return _ns(f"plan-features:{plan_id}")


def plan_limits_key(plan_id: int) -> str:
    return _ns(f"plan-limits:{plan_id}")


def user_overrides_key(user_id: int) -> str:
    return _ns(f"overrides:user:{user_id}")


def org_overrides_key(org_id: int) -> str:
    return _ns(f"overrides:org:{org_id}")


def user_usage_key(user_id: int) -> str:
    return _ns(f"usage:{user_id}")


def user_plan_key(user_id: int, org_id: int) -> str:
    return _ns(f"user-plan:{user_id}:{org_id}")


def feature_key(feature_id: int) -> str:
    return _ns(f"feature:{feature_id}")


def feature_slug_key(slug: str) -> str:
    return _ns(f"feature:slug:{slug}")


def exists_key(kind: str, entity_id: int) -> str:
    return _ns(f"exists:{kind}:{entity_id}")


class CacheTTL:
    """TTL classes in seconds, read from settings at call time."""

    @staticmethod
    def permissions() -> int:
        return settings.PERMISSION_CACHE_TTL_SECONDS

    @staticmethod
    def usage() -> int:
        return settings.USAGE_CACHE_TTL_SECONDS

    @staticmethod
    def user_roles() -> int:
        return settings.USER_ROLES_CACHE_TTL_SECONDS

    @staticmethod
    def plan_role_data() -> int:
        return settings.PLAN_ROLE_CACHE_TTL_SECONDS

    @staticmethod
    def features() -> int:
        return settings.FEATURE_CACHE_TTL_SECONDS
