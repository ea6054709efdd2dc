from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from permission_engine.core.cache_keys import user_usage_key
from permission_engine.core.errors import ValidationError, require_id
from permission_engine.core.time import utcnow
from permission_engine.core.utils.slug import normalize_slug
from permission_engine.models.usage import Usage


def _changed(user_id: int, invalidator) -> None:
    from permission_engine.entitlements.invalidation import get_invalidator

    inv = get_invalidator(invalidator)
    inv.evict(user_usage_key(user_id), reason="usage")
    # Counters are per user, so every org map of the user carries them.
    inv.invalidate_user_all(user_id, reason="usage")


def get_usage(db: Session, user_id: int, feature_slug: str) -> Usage | None:
    return (
        db.query(Usage)
        .filter(Usage.user_id == user_id, Usage.feature_slug == feature_slug.strip().lower())
        .first()
    )


def get_usage_count(db: Session, user_id: int, feature_slug: str) -> int:
    usage = get_usage(db, user_id, feature_slug)
    return usage.current_usage if usage else 0


def get_user_usage(db: Session, user_id: int) -> list[Usage]:
    return (
        db.query(Usage)
        .filter(Usage.user_id == user_id)
        .order_by(Usage.feature_slug)
        .all()
    )


def get_user_usage_map(db: Session, user_id: int) -> dict[str, int]:
    return {usage.feature_slug: usage.current_usage for usage in get_user_usage(db, user_id)}


def record_usage(
    db: Session,
    user_id: int,
    feature_slug: str,
    amount: int = 1,
    *,
    invalidator=None,
) -> Usage:
    require_id(user_id, "user_id")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("amount must be a positive integer")
    slug = normalize_slug(feature_slug)
    updated = (
        db.query(Usage)
        .filter(Usage.user_id == user_id, Usage.feature_slug == slug)
        .update(
            {Usage.current_usage: Usage.current_usage + amount, Usage.updated_at: utcnow()},
            synchronize_session=False,
        )
    )
    if not updated:
        db.add(Usage(user_id=user_id, feature_slug=slug, current_usage=amount, period_start=utcnow()))
    db.commit()
    usage = get_usage(db, user_id, slug)
    db.refresh(usage)
    _changed(user_id, invalidator)
    return usage


def reset_usage(
    db: Session,
    user_id: int,
    feature_slug: str,
    *,
    invalidator=None,
) -> bool:
    require_id(user_id, "user_id")
    usage = get_usage(db, user_id, normalize_slug(feature_slug))
    if usage is None:
        return False
    usage.current_usage = 0
    usage.period_start = utcnow()
    db.commit()
    _changed(user_id, invalidator)
    return True


def reset_all_usage_for_user(
    db: Session,
    user_id: int,
    *,
    invalidator=None,
) -> int:
    require_id(user_id, "user_id")
    now = utcnow()
    count = (
        db.query(Usage)
        .filter(Usage.user_id == user_id)
        .update(
            {Usage.current_usage: 0, Usage.period_start: now, Usage.updated_at: now},
            synchronize_session=False,
        )
    )
    db.commit()
    _changed(user_id, invalidator)
    return count


def reset_all_monthly_usage(
    db: Session,
    now: datetime | None = None,
    *,
    invalidator=None,
) -> int:
    """Start a new billing period for every counter. Returns rows reset."""
    period_start = now or utcnow()
    user_ids = sorted({user_id for (user_id,) in db.query(Usage.user_id).distinct().all()})
    count = db.query(Usage).update(
        {Usage.current_usage: 0, Usage.period_start: period_start, Usage.updated_at: period_start},
        synchronize_session=False,
    )
    db.commit()
    for user_id in user_ids:
        _changed(user_id, invalidator)
    return count


def delete_usage(
    db: Session,
    user_id: int,
    feature_slug: str,
    *,
    invalidator=None,
) -> bool:
    require_id(user_id, "user_id")
    deleted = (
        db.query(Usage)
        .filter(Usage.user_id == user_id, Usage.feature_slug == feature_slug.strip().lower())
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        _changed(user_id, invalidator)
    return bool(deleted)


def get_feature_usage_stats(db: Session, feature_slug: str) -> dict[str, int]:
    total_users, total_usage, avg_usage = (
        db.query(
            func.count(Usage.id),
            func.coalesce(func.sum(Usage.current_usage), 0),
            func.coalesce(func.avg(Usage.current_usage), 0),
        )
        .filter(Usage.feature_slug == feature_slug.strip().lower())
        .one()
    )
    return {
        "total_users": int(total_users),
        "total_usage": int(total_usage),
        "avg_usage": round(float(avg_usage)),
    }
