import os
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("CACHE_BACKEND", "memory")

import permission_engine.models  # noqa: F401
from permission_engine.core.cache import CacheService, InMemoryCache
from permission_engine.core.cache_keys import resolved_permissions_key
from permission_engine.core.db import Base
from permission_engine.core.errors import CacheError, NotFoundError, ValidationError
from permission_engine.crud.organization_overrides import create_organization_override
from permission_engine.crud.overrides import create_override
from permission_engine.crud.plan_features import add_plan_feature
from permission_engine.crud.plan_limits import set_plan_limit
from permission_engine.crud.role_permissions import grant_permission
from permission_engine.crud.usage import record_usage
from permission_engine.crud.user_plans import assign_plan
from permission_engine.crud.user_roles import assign_role
from permission_engine.entitlements.providers import SqlDataProviders
from permission_engine.entitlements.resolver import PermissionEngine, build_default_engine
from permission_engine.entitlements.types import LimitInfo
from tests.factories import make_feature, make_org, make_plan, make_role, make_user


def _setup_db(db_url: str):
    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False},
        future=True,
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    return SessionLocal


def _engine(SessionLocal):
    cache = CacheService(backend=InMemoryCache())
    return PermissionEngine(SqlDataProviders(SessionLocal, cache), cache)


def test_org_disable_and_user_limit_increase_are_orthogonal():
    SessionLocal = _setup_db(f"sqlite:///./resolution_scenario_{uuid4().hex}.db")
    engine = _engine(SessionLocal)
    inv = engine.invalidator
    with SessionLocal() as db:
        org = make_org(db)
        user = make_user(db, org=org)
        export = make_feature(db, slug="export")
        make_feature(db, slug="reports")
        plan = make_plan(db)
        add_plan_feature(db, plan.id, export.id, True, invalidator=inv)
        set_plan_limit(db, plan.id, "export", 100, invalidator=inv)
        role = make_role(db, org=org)
        grant_permission(db, role.id, "reports", invalidator=inv)
        assign_role(db, user.id, role.id, invalidator=inv)
        create_organization_override(db, org.id, "export", "feature_disable", invalidator=inv)
        create_override(db, user.id, "export", "limit_increase", value="500", invalidator=inv)
        record_usage(db, user.id, "export", 50, invalidator=inv)
        user_id, org_id, plan_id = user.id, org.id, plan.id

    permissions = engine.resolve(user_id, org_id, plan_id)

    assert permissions.features == {"export": False, "reports": True}
    assert permissions.limits == {
        "export": LimitInfo(max=500, used=50, remaining=450, exceeded=False)
    }
    assert permissions.cached is False
    assert permissions.user_id == user_id
    assert permissions.org_id == org_id


def test_no_plan_uses_roles_only():
    SessionLocal = _setup_db(f"sqlite:///./resolution_no_plan_{uuid4().hex}.db")
    engine = _engine(SessionLocal)
    with SessionLocal() as db:
        org = make_org(db)
        user = make_user(db, org=org)
        make_feature(db, slug="beta")
        role = make_role(db, org=org)
        grant_permission(db, role.id, "beta", invalidator=engine.invalidator)
        assign_role(db, user.id, role.id, invalidator=engine.invalidator)
        user_id, org_id = user.id, org.id

    permissions = engine.resolve(user_id, org_id)

    assert permissions.features == {"beta": True}
    assert permissions.limits == {}


def test_resolve_is_idempotent_and_second_call_is_cached():
    SessionLocal = _setup_db(f"sqlite:///./resolution_idempotent_{uuid4().hex}.db")
    engine = _engine(SessionLocal)
    with SessionLocal() as db:
        org = make_org(db)
        user = make_user(db, org=org)
        export = make_feature(db, slug="export")
        plan = make_plan(db)
        add_plan_feature(db, plan.id, export.id, True, invalidator=engine.invalidator)
        set_plan_limit(db, plan.id, "export", 10, invalidator=engine.invalidator)
        user_id, org_id, plan_id = user.id, org.id, plan.id

    first = engine.resolve(user_id, org_id, plan_id)
    second = engine.resolve(user_id, org_id, plan_id)

    assert first.cached is False
    assert second.cached is True
    assert first.features == second.features
    assert first.limits == second.limits
    assert engine.cache.get(resolved_permissions_key(user_id, org_id)) is not None


def test_cached_map_for_other_plan_is_not_reused():
    SessionLocal = _setup_db(f"sqlite:///./resolution_plan_switch_{uuid4().hex}.db")
    engine = _engine(SessionLocal)
    with SessionLocal() as db:
        org = make_org(db)
        user = make_user(db, org=org)
        export = make_feature(db, slug="export")
        basic = make_plan(db)
        pro = make_plan(db)
        add_plan_feature(db, pro.id, export.id, True, invalidator=engine.invalidator)
        user_id, org_id, basic_id, pro_id = user.id, org.id, basic.id, pro.id

    assert engine.resolve(user_id, org_id, basic_id).features == {}
    switched = engine.resolve(user_id, org_id, pro_id)
    assert switched.cached is False
    assert switched.features == {"export": True}


def test_resolve_assigned_uses_active_user_plan():
    SessionLocal = _setup_db(f"sqlite:///./resolution_assigned_{uuid4().hex}.db")
    engine = _engine(SessionLocal)
    with SessionLocal() as db:
        org = make_org(db)
        user = make_user(db, org=org)
        export = make_feature(db, slug="export")
        plan = make_plan(db)
        add_plan_feature(db, plan.id, export.id, True, invalidator=engine.invalidator)
        assign_plan(db, user.id, plan.id, org.id, invalidator=engine.invalidator)
        user_id, org_id, plan_id = user.id, org.id, plan.id

    permissions = engine.resolve_assigned(user_id, org_id)
    assert permissions.plan_id == plan_id
    assert permissions.features == {"export": True}


def test_check_and_check_many():
    SessionLocal = _setup_db(f"sqlite:///./resolution_check_{uuid4().hex}.db")
    engine = _engine(SessionLocal)
    inv = engine.invalidator
    with SessionLocal() as db:
        org = make_org(db)
        user = make_user(db, org=org)
        export = make_feature(db, slug="export")
        reports = make_feature(db, slug="reports")
        plan = make_plan(db)
        add_plan_feature(db, plan.id, export.id, True, invalidator=inv)
        add_plan_feature(db, plan.id, reports.id, True, invalidator=inv)
        set_plan_limit(db, plan.id, "export", 2, invalidator=inv)
        record_usage(db, user.id, "export", 2, invalidator=inv)
        user_id, org_id, plan_id = user.id, org.id, plan.id

    result = engine.check(user_id, org_id, "reports", plan_id)
    assert result.allowed is True
    assert result.code is None

    exceeded = engine.check(user_id, org_id, "export", plan_id)
    assert exceeded.allowed is False
    assert exceeded.code == "usage_limit_exceeded"
    assert exceeded.limit == LimitInfo(max=2, used=2, remaining=0, exceeded=True)

    results = engine.check_many(user_id, org_id, ["Export", "reports", "sso"], plan_id)
    assert set(results) == {"export", "reports", "sso"}
    assert results["sso"].allowed is False
    assert results["sso"].code == "feature_not_enabled"

    assert engine.is_feature_allowed(user_id, org_id, "export", plan_id) is True
    assert engine.is_within_limits(user_id, org_id, "export", plan_id) is False
    assert engine.is_within_limits(user_id, org_id, "reports", plan_id) is True
    assert engine.get_remaining_usage(user_id, org_id, "export", plan_id) == 0
    assert engine.get_remaining_usage(user_id, org_id, "reports", plan_id) is None
    assert engine.get_limit(user_id, org_id, "export", plan_id).max == 2


def test_missing_entities_raise_not_found_and_cache_nothing():
    SessionLocal = _setup_db(f"sqlite:///./resolution_missing_{uuid4().hex}.db")
    engine = _engine(SessionLocal)
    with SessionLocal() as db:
        org = make_org(db)
        user = make_user(db, org=org)
        user_id, org_id = user.id, org.id

    with pytest.raises(NotFoundError):
        engine.resolve(user_id + 1000, org_id)
    with pytest.raises(NotFoundError):
        engine.resolve(user_id, org_id + 1000)
    with pytest.raises(NotFoundError):
        engine.resolve(user_id, org_id, 4242)
    assert engine.cache.get(resolved_permissions_key(user_id, org_id + 1000)) is None
    assert engine.cache.get(resolved_permissions_key(user_id, org_id)) is None


@pytest.mark.parametrize(
    "user_id, org_id, plan_id",
    [(0, 1, None), (1, -1, None), (True, 1, None), ("1", 1, None), (1, 1, 0), (None, 1, None)],
)
def test_invalid_identifiers_raise_validation_error(user_id, org_id, plan_id):
    SessionLocal = _setup_db(f"sqlite:///./resolution_invalid_{uuid4().hex}.db")
    engine = _engine(SessionLocal)
    with pytest.raises(ValidationError):
        engine.resolve(user_id, org_id, plan_id)


def test_check_requires_a_slug():
    SessionLocal = _setup_db(f"sqlite:///./resolution_slug_{uuid4().hex}.db")
    engine = _engine(SessionLocal)
    with pytest.raises(ValidationError):
        engine.check(1, 1, "  ")


class _DownBackend:
    backend_name = "down"

    def _fail(self, *args, **kwargs):
        raise CacheError("store unavailable", operation="any")

    get = set = delete = clear_pattern = clear = _fail


def test_resolution_keeps_working_when_cache_is_down():
    SessionLocal = _setup_db(f"sqlite:///./resolution_cache_down_{uuid4().hex}.db")
    cache = CacheService(backend=_DownBackend())
    engine = PermissionEngine(SqlDataProviders(SessionLocal, cache), cache)
    with SessionLocal() as db:
        org = make_org(db)
        user = make_user(db, org=org)
        make_feature(db, slug="beta")
        role = make_role(db, org=org)
        grant_permission(db, role.id, "beta", invalidator=engine.invalidator)
        assign_role(db, user.id, role.id, invalidator=engine.invalidator)
        user_id, org_id = user.id, org.id

    first = engine.resolve(user_id, org_id)
    second = engine.resolve(user_id, org_id)
    assert first.features == second.features == {"beta": True}
    assert second.cached is False


def test_default_engine_shares_cache_with_providers_and_invalidator():
    cache = CacheService(backend=InMemoryCache())
    engine = build_default_engine(cache)
    assert engine.cache is cache
    assert engine.invalidator.cache is cache
