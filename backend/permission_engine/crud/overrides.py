"""
User-scoped overrides plus the validation and row helpers shared with
organization overrides.

At most one override exists per (owner, feature_slug): creating another
one updates the existing row in place. An override is active while
``expires_at`` is null or in the future.
"""

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from permission_engine.core.cache_keys import user_overrides_key
from permission_engine.core.errors import NotFoundError, ValidationError, optional_id, require_id
from permission_engine.core.time import normalize_ts, utcnow
from permission_engine.crud.features import require_feature_slug
from permission_engine.models.enums import FEATURE_TOGGLE_TYPES, OverrideTypeEnum
from permission_engine.models.overrides import Override

_UNSET: Any = object()


def parse_override_type(value: Any) -> OverrideTypeEnum:
    try:
        return OverrideTypeEnum(value)
    except ValueError:
        allowed = ", ".join(member.value for member in OverrideTypeEnum)
        raise ValidationError(f"override_type must be one of: {allowed}") from None


def validate_override_value(override_type: OverrideTypeEnum, value: Any) -> str | None:
    if override_type in FEATURE_TOGGLE_TYPES:
        if value is not None:
            raise ValidationError("value must be null for feature toggle overrides")
        return None
    if value is None or isinstance(value, bool):
        raise ValidationError("limit_increase overrides need a non-negative integer value")
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid limit_increase value: {value!r}") from None
    if number < 0:
        raise ValidationError("limit_increase value must not be negative")
    return str(number)


def upsert_override_row(
    db: Session,
    model,
    owner_field: str,
    owner_id: int,
    feature_slug: str,
    override_type: Any,
    value: Any = None,
    expires_at: datetime | None = None,
    created_by: int | None = None,
    reason: str | None = None,
):
    optional_id(created_by, "created_by")
    slug = require_feature_slug(db, feature_slug)
    kind = parse_override_type(override_type)
    stored_value = validate_override_value(kind, value)
    owner_column = getattr(model, owner_field)
    row = (
        db.query(model)
        .filter(owner_column == owner_id, model.feature_slug == slug)
        .first()
    )
    if row is None:
        row = model(**{owner_field: owner_id}, feature_slug=slug)
        db.add(row)
    row.override_type = kind
    row.value = stored_value
    row.expires_at = normalize_ts(expires_at)
    row.created_by = created_by
    row.reason = reason
    db.commit()
    db.refresh(row)
    return row


def apply_override_update(
    db: Session,
    row,
    *,
    value: Any = _UNSET,
    expires_at: Any = _UNSET,
    reason: Any = _UNSET,
):
    if value is not _UNSET:
        row.value = validate_override_value(OverrideTypeEnum(row.override_type), value)
    if expires_at is not _UNSET:
        row.expires_at = normalize_ts(expires_at)
    if reason is not _UNSET:
        row.reason = reason
    db.commit()
    db.refresh(row)
    return row


def active_filter(model, now: datetime):
    return (model.expires_at.is_(None)) | (model.expires_at > now)


def _changed(user_id: int, invalidator) -> None:
    from permission_engine.entitlements.invalidation import get_invalidator

    inv = get_invalidator(invalidator)
    inv.evict(user_overrides_key(user_id), reason="user_override")
    # User overrides feed the resolved map of every org the user is seen in.
    inv.invalidate_user_all(user_id, reason="user_override")


def create_override(
    db: Session,
    user_id: int,
    feature_slug: str,
    override_type: Any,
    value: Any = None,
    expires_at: datetime | None = None,
    created_by: int | None = None,
    reason: str | None = None,
    *,
    invalidator=None,
) -> Override:
    require_id(user_id, "user_id")
    from permission_engine.crud.users import user_exists

    if not user_exists(db, user_id):
        raise NotFoundError(f"User not found: {user_id}")
    override = upsert_override_row(
        db,
        Override,
        "user_id",
        user_id,
        feature_slug,
        override_type,
        value=value,
        expires_at=expires_at,
        created_by=created_by,
        reason=reason,
    )
    _changed(user_id, invalidator)
    return override


def get_override(db: Session, override_id: int) -> Override | None:
    return db.query(Override).filter(Override.id == override_id).first()


def require_override(db: Session, override_id: int) -> Override:
    require_id(override_id, "override_id")
    override = get_override(db, override_id)
    if override is None:
        raise NotFoundError(f"Override not found: {override_id}")
    return override


def get_active_overrides(db: Session, user_id: int, now: datetime | None = None) -> list[Override]:
    return (
        db.query(Override)
        .filter(Override.user_id == user_id, active_filter(Override, now or utcnow()))
        .order_by(Override.feature_slug)
        .all()
    )


def list_overrides(db: Session, user_id: int, include_expired: bool = False) -> list[Override]:
    query = db.query(Override).filter(Override.user_id == user_id)
    if not include_expired:
        query = query.filter(active_filter(Override, utcnow()))
    return query.order_by(Override.feature_slug).all()


def update_override(
    db: Session,
    override_id: int,
    *,
    value: Any = _UNSET,
    expires_at: Any = _UNSET,
    reason: Any = _UNSET,
    invalidator=None,
) -> Override:
    override = require_override(db, override_id)
    apply_override_update(db, override, value=value, expires_at=expires_at, reason=reason)
    _changed(override.user_id, invalidator)
    return override


def delete_override(
    db: Session,
    override_id: int,
    *,
    invalidator=None,
) -> None:
    override = require_override(db, override_id)
    user_id = override.user_id
    db.delete(override)
    db.commit()
    _changed(user_id, invalidator)


def expire_override(
    db: Session,
    override_id: int,
    *,
    invalidator=None,
) -> Override:
    override = require_override(db, override_id)
    override.expires_at = utcnow()
    db.commit()
    db.refresh(override)
    _changed(override.user_id, invalidator)
    return override


def cleanup_expired_overrides(
    db: Session,
    now: datetime | None = None,
    *,
    invalidator=None,
) -> int:
    cutoff = now or utcnow()
    expired = db.query(Override).filter(Override.expires_at <= cutoff).all()
    if not expired:
        return 0
    user_ids = sorted({override.user_id for override in expired})
    for override in expired:
        db.delete(override)
    db.commit()
    for user_id in user_ids:
        _changed(user_id, invalidator)
    return len(expired)
