import os
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import permission_engine.models  # noqa: F401
from permission_engine.core.cache import CacheService, InMemoryCache
from permission_engine.core.cache_keys import resolved_permissions_key, user_usage_key
from permission_engine.core.db import Base
from permission_engine.core.errors import ValidationError
from permission_engine.crud.usage import (
    delete_usage,
    get_feature_usage_stats,
    get_usage_count,
    get_user_usage_map,
    record_usage,
    reset_usage,
)
from permission_engine.crud.users import create_user, get_user_by_external_id
from permission_engine.entitlements.invalidation import Invalidator
from tests.factories import make_org, make_user


def _setup_db(db_url: str):
    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False},
        future=True,
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    return SessionLocal


def test_record_usage_accumulates_per_feature():
    SessionLocal = _setup_db(f"sqlite:///./usage_record_{uuid4().hex}.db")
    inv = Invalidator(CacheService(backend=InMemoryCache()))
    with SessionLocal() as db:
        user = make_user(db)
        record_usage(db, user.id, "export", invalidator=inv)
        record_usage(db, user.id, "Export", 4, invalidator=inv)
        record_usage(db, user.id, "api-calls", 2, invalidator=inv)

        assert get_usage_count(db, user.id, "export") == 5
        assert get_user_usage_map(db, user.id) == {"api-calls": 2, "export": 5}


@pytest.mark.parametrize("amount", [0, -3, True, "2"])
def test_record_usage_rejects_non_positive_amounts(amount):
    SessionLocal = _setup_db(f"sqlite:///./usage_invalid_{uuid4().hex}.db")
    inv = Invalidator(CacheService(backend=InMemoryCache()))
    with SessionLocal() as db:
        user = make_user(db)
        with pytest.raises(ValidationError):
            record_usage(db, user.id, "export", amount, invalidator=inv)


def test_reset_and_delete_usage_evict_cached_entries():
    SessionLocal = _setup_db(f"sqlite:///./usage_reset_{uuid4().hex}.db")
    cache = CacheService(backend=InMemoryCache())
    inv = Invalidator(cache)
    with SessionLocal() as db:
        org = make_org(db)
        user = make_user(db, org=org)
        record_usage(db, user.id, "export", 7, invalidator=inv)

        cache.set(user_usage_key(user.id), [{"feature_slug": "export", "current_usage": 7}])
        cache.set(resolved_permissions_key(user.id, org.id), {"stale": True})
        assert reset_usage(db, user.id, "export", invalidator=inv) is True
        assert get_usage_count(db, user.id, "export") == 0
        assert cache.get(user_usage_key(user.id)) is None
        assert cache.get(resolved_permissions_key(user.id, org.id)) is None

        assert reset_usage(db, user.id, "missing", invalidator=inv) is False
        assert delete_usage(db, user.id, "export", invalidator=inv) is True
        assert delete_usage(db, user.id, "export", invalidator=inv) is False
        assert get_user_usage_map(db, user.id) == {}


def test_feature_usage_stats_aggregate_across_users():
    SessionLocal = _setup_db(f"sqlite:///./usage_stats_{uuid4().hex}.db")
    inv = Invalidator(CacheService(backend=InMemoryCache()))
    with SessionLocal() as db:
        for amount in (2, 4, 9):
            user = make_user(db)
            record_usage(db, user.id, "export", amount, invalidator=inv)

        assert get_feature_usage_stats(db, "export") == {
            "total_users": 3,
            "total_usage": 15,
            "avg_usage": 5,
        }
        assert get_feature_usage_stats(db, "unused") == {
            "total_users": 0,
            "total_usage": 0,
            "avg_usage": 0,
        }


def test_user_lookup_by_external_id():
    SessionLocal = _setup_db(f"sqlite:///./usage_users_{uuid4().hex}.db")
    with SessionLocal() as db:
        home = make_org(db)
        user = create_user(db, email="Ada@Example.com", organization_id=home.id, external_id="ext_42")

        found = get_user_by_external_id(db, "ext_42")
        assert found is not None and found.id == user.id
        assert found.email == "ada@example.com"
        assert get_user_by_external_id(db, "unknown") is None
