import os
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import permission_engine.models  # noqa: F401
from permission_engine.core.cache import CacheService, InMemoryCache
from permission_engine.core.cache_keys import feature_key, feature_slug_key
from permission_engine.core.db import Base
from permission_engine.core.errors import ConflictError, NotFoundError, ValidationError
from permission_engine.core.time import utcnow
from permission_engine.crud.features import (
    delete_feature,
    get_feature_by_id,
    get_feature_by_slug,
    update_feature,
)
from permission_engine.crud.organization_overrides import (
    create_organization_override,
    list_organization_overrides,
)
from permission_engine.crud.overrides import (
    create_override,
    get_active_overrides,
    list_overrides,
    update_override,
)
from permission_engine.crud.role_permissions import grant_permission
from permission_engine.entitlements.invalidation import Invalidator
from permission_engine.entitlements.providers import SqlDataProviders
from permission_engine.models.enums import OverrideTypeEnum
from permission_engine.models.features import Feature
from permission_engine.models.overrides import Override
from tests.factories import make_feature, make_org, make_role, make_user


def _setup_db(db_url: str):
    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False},
        future=True,
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    return SessionLocal


def _invalidator():
    return Invalidator(CacheService(backend=InMemoryCache()))


def test_second_override_for_same_feature_updates_the_row():
    SessionLocal = _setup_db(f"sqlite:///./overrides_upsert_{uuid4().hex}.db")
    inv = _invalidator()
    with SessionLocal() as db:
        user = make_user(db)
        make_feature(db, slug="export")
        first = create_override(db, user.id, "export", "limit_increase", value=200, invalidator=inv)
        second = create_override(db, user.id, "EXPORT", "feature_disable", invalidator=inv)

        assert first.id == second.id
        assert db.query(Override).count() == 1
        assert second.override_type == OverrideTypeEnum.FEATURE_DISABLE
        assert second.value is None


def test_limit_increase_value_is_stored_as_string():
    SessionLocal = _setup_db(f"sqlite:///./overrides_value_{uuid4().hex}.db")
    inv = _invalidator()
    with SessionLocal() as db:
        user = make_user(db)
        make_feature(db, slug="export")
        override = create_override(db, user.id, "export", "limit_increase", value=" 250 ", invalidator=inv)
        assert override.value == "250"
        updated = update_override(db, override.id, value=300, invalidator=inv)
        assert updated.value == "300"
        zeroed = update_override(db, override.id, value=0, invalidator=inv)
        assert zeroed.value == "0"


@pytest.mark.parametrize(
    "override_type, value",
    [
        ("feature_enable", "5"),
        ("feature_disable", 1),
        ("limit_increase", None),
        ("limit_increase", "abc"),
        ("limit_increase", -3),
        ("limit_increase", True),
        ("grant_everything", None),
    ],
)
def test_invalid_override_payloads_are_rejected(override_type, value):
    SessionLocal = _setup_db(f"sqlite:///./overrides_invalid_{uuid4().hex}.db")
    inv = _invalidator()
    with SessionLocal() as db:
        user = make_user(db)
        make_feature(db, slug="export")
        with pytest.raises(ValidationError):
            create_override(db, user.id, "export", override_type, value=value, invalidator=inv)
        assert db.query(Override).count() == 0


def test_override_for_unknown_feature_or_user():
    SessionLocal = _setup_db(f"sqlite:///./overrides_unknown_{uuid4().hex}.db")
    inv = _invalidator()
    with SessionLocal() as db:
        user = make_user(db)
        org = make_org(db)
        with pytest.raises(NotFoundError):
            create_override(db, user.id, "missing", "feature_enable", invalidator=inv)
        make_feature(db, slug="export")
        with pytest.raises(NotFoundError):
            create_override(db, user.id + 99, "export", "feature_enable", invalidator=inv)
        with pytest.raises(NotFoundError):
            create_organization_override(db, org.id + 99, "export", "feature_enable", invalidator=inv)


def test_expired_overrides_are_not_active():
    SessionLocal = _setup_db(f"sqlite:///./overrides_active_{uuid4().hex}.db")
    inv = _invalidator()
    with SessionLocal() as db:
        user = make_user(db)
        org = make_org(db)
        make_feature(db, slug="export")
        make_feature(db, slug="sso")
        create_override(
            db,
            user.id,
            "export",
            "feature_enable",
            expires_at=utcnow() - timedelta(minutes=5),
            invalidator=inv,
        )
        create_override(
            db,
            user.id,
            "sso",
            "feature_enable",
            expires_at=utcnow() + timedelta(days=1),
            invalidator=inv,
        )
        create_organization_override(
            db,
            org.id,
            "sso",
            "feature_disable",
            expires_at=utcnow() - timedelta(seconds=1),
            invalidator=inv,
        )

        assert [o.feature_slug for o in get_active_overrides(db, user.id)] == ["sso"]
        assert len(list_overrides(db, user.id, include_expired=True)) == 2
        assert list_organization_overrides(db, org.id) == []


def test_feature_lookups_and_immutable_slug():
    SessionLocal = _setup_db(f"sqlite:///./features_lookup_{uuid4().hex}.db")
    inv = _invalidator()
    with SessionLocal() as db:
        feature = make_feature(db, slug="Data-Export", name="Export")
        assert feature.slug == "data-export"
        assert get_feature_by_slug(db, "DATA-EXPORT").id == feature.id
        assert get_feature_by_id(db, feature.id).slug == "data-export"
        updated = update_feature(db, feature.id, name="Bulk export", invalidator=inv)
        assert updated.name == "Bulk export"
        assert updated.slug == "data-export"
        with pytest.raises(ConflictError):
            make_feature(db, slug="data-export")
        with pytest.raises(ValidationError):
            make_feature(db, slug="bad slug!")


def test_referenced_feature_cannot_be_deleted():
    SessionLocal = _setup_db(f"sqlite:///./features_delete_{uuid4().hex}.db")
    inv = _invalidator()
    with SessionLocal() as db:
        org = make_org(db)
        used = make_feature(db, slug="reports")
        unused = make_feature(db, slug="legacy")
        role = make_role(db, org=org)
        grant_permission(db, role.id, "reports", invalidator=inv)

        with pytest.raises(ConflictError):
            delete_feature(db, used.id, invalidator=inv)
        delete_feature(db, unused.id, invalidator=inv)
        assert get_feature_by_slug(db, "legacy") is None
        with pytest.raises(NotFoundError):
            delete_feature(db, unused.id, invalidator=inv)


def test_feature_lookups_are_cached_until_the_feature_changes():
    SessionLocal = _setup_db(f"sqlite:///./overrides_feature_cache_{uuid4().hex}.db")
    cache = CacheService(backend=InMemoryCache())
    inv = Invalidator(cache)
    providers = SqlDataProviders(SessionLocal, cache)
    with SessionLocal() as db:
        feature_id = make_feature(db, slug="export", name="Export").id

    record = providers.get_feature_by_slug(" Export ")
    assert record.id == feature_id
    assert record.name == "Export"
    assert providers.get_feature_by_id(feature_id) == record
    assert cache.get(feature_key(feature_id)) is not None
    assert cache.get(feature_slug_key("export")) is not None

    with SessionLocal() as db:
        db.query(Feature).filter(Feature.id == feature_id).update({Feature.name: "Renamed"})
        db.commit()
    assert providers.get_feature_by_id(feature_id).name == "Export"

    with SessionLocal() as db:
        update_feature(db, feature_id, name="Bulk export", invalidator=inv)
    assert cache.get(feature_key(feature_id)) is None
    assert cache.get(feature_slug_key("export")) is None
    assert providers.get_feature_by_id(feature_id).name == "Bulk export"
    assert providers.get_feature_by_slug("export").name == "Bulk export"

    assert providers.get_feature_by_slug("missing") is None
    assert cache.get(feature_slug_key("missing")) is None
