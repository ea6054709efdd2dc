from sqlalchemy.orm import Session

from permission_engine.core.cache_keys import user_plan_key
from permission_engine.core.errors import NotFoundError, optional_id, require_id
from permission_engine.core.time import utcnow
from permission_engine.crud.plans import require_plan
from permission_engine.models.user_plans import UserPlan


def _changed(user_id: int, org_id: int, invalidator) -> None:
    from permission_engine.entitlements.invalidation import get_invalidator

    inv = get_invalidator(invalidator)
    inv.evict(user_plan_key(user_id, org_id), reason="user_plan")
    inv.invalidate_pair(user_id, org_id, reason="user_plan")


def get_user_plan(db: Session, user_id: int, org_id: int) -> UserPlan | None:
    return (
        db.query(UserPlan)
        .filter(
            UserPlan.user_id == user_id,
            UserPlan.organization_id == org_id,
            UserPlan.is_active.is_(True),
        )
        .first()
    )


def assign_plan(
    db: Session,
    user_id: int,
    plan_id: int,
    organization_id: int,
    assigned_by: int | None = None,
    *,
    invalidator=None,
) -> UserPlan:
    require_id(user_id, "user_id")
    require_id(plan_id, "plan_id")
    require_id(organization_id, "organization_id")
    optional_id(assigned_by, "assigned_by")
    require_plan(db, plan_id)
    from permission_engine.crud.organizations import organization_exists
    from permission_engine.crud.users import user_exists

    if not user_exists(db, user_id):
        raise NotFoundError(f"User not found: {user_id}")
    if not organization_exists(db, organization_id):
        raise NotFoundError(f"Organization not found: {organization_id}")
    user_plan = (
        db.query(UserPlan)
        .filter(UserPlan.user_id == user_id, UserPlan.organization_id == organization_id)
        .first()
    )
    if user_plan:
        user_plan.plan_id = plan_id
        user_plan.is_active = True
        user_plan.assigned_by = assigned_by
        user_plan.assigned_at = utcnow()
    else:
        user_plan = UserPlan(
            user_id=user_id,
            plan_id=plan_id,
            organization_id=organization_id,
            assigned_by=assigned_by,
        )
        db.add(user_plan)
    db.commit()
    db.refresh(user_plan)
    _changed(user_id, organization_id, invalidator)
    return user_plan


def remove_plan(
    db: Session,
    user_id: int,
    organization_id: int,
    *,
    invalidator=None,
) -> bool:
    require_id(user_id, "user_id")
    require_id(organization_id, "organization_id")
    user_plan = get_user_plan(db, user_id, organization_id)
    if user_plan is None:
        return False
    user_plan.is_active = False
    db.commit()
    _changed(user_id, organization_id, invalidator)
    return True


def list_assignments_for_plan(
    db: Session,
    plan_id: int,
    org_id: int | None = None,
) -> list[tuple[int, int]]:
    query = db.query(UserPlan.user_id, UserPlan.organization_id).filter(
        UserPlan.plan_id == plan_id,
        UserPlan.is_active.is_(True),
    )
    if org_id is not None:
        query = query.filter(UserPlan.organization_id == org_id)
    return sorted((user_id, organization_id) for user_id, organization_id in query.all())
