from sqlalchemy.orm import Session

from permission_engine.core.cache_keys import plan_features_key
from permission_engine.core.errors import NotFoundError, optional_id, require_id
from permission_engine.crud.features import get_feature_by_id
from permission_engine.crud.plans import require_plan
from permission_engine.models.features import Feature
from permission_engine.models.plans import PlanFeature


def _changed(db: Session, plan_id: int, org_id: int | None, invalidator) -> None:
    from permission_engine.entitlements.invalidation import get_invalidator

    inv = get_invalidator(invalidator)
    inv.evict(plan_features_key(plan_id), reason="plan_feature")
    inv.invalidate_plan_users(db, plan_id, org_id, reason="plan_feature")


def get_plan_feature(db: Session, plan_id: int, feature_id: int) -> PlanFeature | None:
    return (
        db.query(PlanFeature)
        .filter(PlanFeature.plan_id == plan_id, PlanFeature.feature_id == feature_id)
        .first()
    )


def list_plan_features(db: Session, plan_id: int) -> list[tuple[str, bool]]:
    rows = (
        db.query(Feature.slug, PlanFeature.enabled)
        .join(Feature, Feature.id == PlanFeature.feature_id)
        .filter(PlanFeature.plan_id == plan_id)
        .order_by(Feature.slug)
        .all()
    )
    return [(slug, bool(enabled)) for slug, enabled in rows]


def add_plan_feature(
    db: Session,
    plan_id: int,
    feature_id: int,
    enabled: bool = True,
    *,
    org_id: int | None = None,
    invalidator=None,
) -> PlanFeature:
    require_id(plan_id, "plan_id")
    require_id(feature_id, "feature_id")
    optional_id(org_id, "org_id")
    require_plan(db, plan_id)
    if get_feature_by_id(db, feature_id) is None:
        raise NotFoundError(f"Feature not found: {feature_id}")
    plan_feature = get_plan_feature(db, plan_id, feature_id)
    if plan_feature:
        plan_feature.enabled = bool(enabled)
    else:
        plan_feature = PlanFeature(plan_id=plan_id, feature_id=feature_id, enabled=bool(enabled))
        db.add(plan_feature)
    db.commit()
    db.refresh(plan_feature)
    _changed(db, plan_id, org_id, invalidator)
    return plan_feature


def toggle_plan_feature(
    db: Session,
    plan_id: int,
    feature_id: int,
    enabled: bool,
    *,
    org_id: int | None = None,
    invalidator=None,
) -> PlanFeature:
    require_id(plan_id, "plan_id")
    require_id(feature_id, "feature_id")
    plan_feature = get_plan_feature(db, plan_id, feature_id)
    if plan_feature is None:
        raise NotFoundError(f"Feature {feature_id} is not part of plan {plan_id}")
    plan_feature.enabled = bool(enabled)
    db.commit()
    db.refresh(plan_feature)
    _changed(db, plan_id, org_id, invalidator)
    return plan_feature


def remove_plan_feature(
    db: Session,
    plan_id: int,
    feature_id: int,
    *,
    org_id: int | None = None,
    invalidator=None,
) -> bool:
    require_id(plan_id, "plan_id")
    require_id(feature_id, "feature_id")
    plan_feature = get_plan_feature(db, plan_id, feature_id)
    if plan_feature is None:
        return False
    db.delete(plan_feature)
    db.commit()
    _changed(db, plan_id, org_id, invalidator)
    return True
