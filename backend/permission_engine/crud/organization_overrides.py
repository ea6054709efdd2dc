from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from permission_engine.core.cache_keys import org_overrides_key
from permission_engine.core.config import settings
from permission_engine.core.errors import NotFoundError, require_id
from permission_engine.core.time import utcnow
from permission_engine.crud.overrides import (
    _UNSET,
    active_filter,
    apply_override_update,
    upsert_override_row,
)
from permission_engine.models.overrides import OrganizationOverride


def _changed(org_id: int, invalidator) -> None:
    from permission_engine.entitlements.invalidation import get_invalidator

    inv = get_invalidator(invalidator)
    inv.evict(org_overrides_key(org_id), reason="organization_override")
    if settings.ORG_OVERRIDE_FANOUT:
        inv.invalidate_organization(org_id, reason="organization_override")


def create_organization_override(
    db: Session,
    organization_id: int,
    feature_slug: str,
    override_type: Any,
    value: Any = None,
    expires_at: datetime | None = None,
    created_by: int | None = None,
    reason: str | None = None,
    *,
    invalidator=None,
) -> OrganizationOverride:
    require_id(organization_id, "organization_id")
    from permission_engine.crud.organizations import organization_exists

    if not organization_exists(db, organization_id):
        raise NotFoundError(f"Organization not found: {organization_id}")
    override = upsert_override_row(
        db,
        OrganizationOverride,
        "organization_id",
        organization_id,
        feature_slug,
        override_type,
        value=value,
        expires_at=expires_at,
        created_by=created_by,
        reason=reason,
    )
    _changed(organization_id, invalidator)
    return override


def get_organization_override(db: Session, override_id: int) -> OrganizationOverride | None:
    return db.query(OrganizationOverride).filter(OrganizationOverride.id == override_id).first()


def require_organization_override(db: Session, override_id: int) -> OrganizationOverride:
    require_id(override_id, "override_id")
    override = get_organization_override(db, override_id)
    if override is None:
        raise NotFoundError(f"Organization override not found: {override_id}")
    return override


def get_active_organization_overrides(
    db: Session,
    org_id: int,
    now: datetime | None = None,
) -> list[OrganizationOverride]:
    return (
        db.query(OrganizationOverride)
        .filter(
            OrganizationOverride.organization_id == org_id,
            active_filter(OrganizationOverride, now or utcnow()),
        )
        .order_by(OrganizationOverride.feature_slug)
        .all()
    )


def list_organization_overrides(
    db: Session,
    org_id: int,
    include_expired: bool = False,
) -> list[OrganizationOverride]:
    query = db.query(OrganizationOverride).filter(OrganizationOverride.organization_id == org_id)
    if not include_expired:
        query = query.filter(active_filter(OrganizationOverride, utcnow()))
    return query.order_by(OrganizationOverride.feature_slug).all()


def update_organization_override(
    db: Session,
    override_id: int,
    *,
    value: Any = _UNSET,
    expires_at: Any = _UNSET,
    reason: Any = _UNSET,
    invalidator=None,
) -> OrganizationOverride:
    override = require_organization_override(db, override_id)
    apply_override_update(db, override, value=value, expires_at=expires_at, reason=reason)
    _changed(override.organization_id, invalidator)
    return override


def delete_organization_override(db: Session, override_id: int, *, invalidator=None) -> None:
    override = require_organization_override(db, override_id)
    org_id = override.organization_id
    db.delete(override)
    db.commit()
    _changed(org_id, invalidator)


def expire_organization_override(
    db: Session,
    override_id: int,
    *,
    invalidator=None,
) -> OrganizationOverride:
    override = require_organization_override(db, override_id)
    override.expires_at = utcnow()
    db.commit()
    db.refresh(override)
    _changed(override.organization_id, invalidator)
    return override


def cleanup_expired_organization_overrides(
    db: Session,
    now: datetime | None = None,
    *,
    invalidator=None,
) -> int:
    cutoff = now or utcnow()
    expired = (
        db.query(OrganizationOverride)
        .filter(OrganizationOverride.expires_at <= cutoff)
        .all()
    )
    if not expired:
        return 0
    org_ids = sorted({override.organization_id for override in expired})
    for override in expired:
        db.delete(override)
    db.commit()
    for org_id in org_ids:
        _changed(org_id, invalidator)
    return len(expired)
