from sqlalchemy.orm import Session

from permission_engine.core.cache_keys import plan_limits_key
from permission_engine.core.errors import ValidationError, optional_id, require_id
from permission_engine.crud.features import require_feature_slug
from permission_engine.crud.plans import require_plan
from permission_engine.models.plans import PlanLimit


def _changed(db: Session, plan_id: int, org_id: int | None, invalidator) -> None:
    from permission_engine.entitlements.invalidation import get_invalidator

    inv = get_invalidator(invalidator)
    inv.evict(plan_limits_key(plan_id), reason="plan_limit")
    inv.invalidate_plan_users(db, plan_id, org_id, reason="plan_limit")


def get_plan_limit(db: Session, plan_id: int, feature_slug: str) -> PlanLimit | None:
    return (
        db.query(PlanLimit)
        .filter(PlanLimit.plan_id == plan_id, PlanLimit.feature_slug == feature_slug.lower())
        .first()
    )


def list_plan_limits(db: Session, plan_id: int) -> list[PlanLimit]:
    return (
        db.query(PlanLimit)
        .filter(PlanLimit.plan_id == plan_id)
        .order_by(PlanLimit.feature_slug)
        .all()
    )


def set_plan_limit(
    db: Session,
    plan_id: int,
    feature_slug: str,
    max_limit: int,
    *,
    org_id: int | None = None,
    invalidator=None,
) -> PlanLimit:
    require_id(plan_id, "plan_id")
    optional_id(org_id, "org_id")
    if isinstance(max_limit, bool) or not isinstance(max_limit, int) or max_limit < 0:
        raise ValidationError("max_limit must be a non-negative integer")
    require_plan(db, plan_id)
    slug = require_feature_slug(db, feature_slug)
    plan_limit = get_plan_limit(db, plan_id, slug)
    if plan_limit:
        plan_limit.max_limit = max_limit
    else:
        plan_limit = PlanLimit(plan_id=plan_id, feature_slug=slug, max_limit=max_limit)
        db.add(plan_limit)
    db.commit()
    db.refresh(plan_limit)
    _changed(db, plan_id, org_id, invalidator)
    return plan_limit


def remove_plan_limit(
    db: Session,
    plan_id: int,
    feature_slug: str,
    *,
    org_id: int | None = None,
    invalidator=None,
) -> bool:
    require_id(plan_id, "plan_id")
    plan_limit = get_plan_limit(db, plan_id, feature_slug)
    if plan_limit is None:
        return False
    db.delete(plan_limit)
    db.commit()
    _changed(db, plan_id, org_id, invalidator)
    return True
