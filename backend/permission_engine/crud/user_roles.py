from sqlalchemy.orm import Session

from permission_engine.core.cache_keys import user_roles_key
from permission_engine.core.errors import NotFoundError, ValidationError, require_id
from permission_engine.crud.roles import require_role
from permission_engine.models.roles import UserRole


def _changed(user_id: int, org_id: int, invalidator) -> None:
    from permission_engine.entitlements.invalidation import get_invalidator

    inv = get_invalidator(invalidator)
    inv.evict(user_roles_key(user_id, org_id), reason="user_role")
    inv.invalidate_pair(user_id, org_id, reason="user_role")


def assign_role(
    db: Session,
    user_id: int,
    role_id: int,
    organization_id: int | None = None,
    *,
    invalidator=None,
) -> UserRole:
    require_id(user_id, "user_id")
    require_id(role_id, "role_id")
    role = require_role(db, role_id)
    if organization_id is not None and organization_id != role.organization_id:
        raise ValidationError("Role does not belong to the given organization")
    from permission_engine.crud.users import user_exists

    if not user_exists(db, user_id):
        raise NotFoundError(f"User not found: {user_id}")
    org_id = role.organization_id
    user_role = (
        db.query(UserRole)
        .filter(
            UserRole.user_id == user_id,
            UserRole.role_id == role_id,
            UserRole.organization_id == org_id,
        )
        .first()
    )
    if user_role is None:
        user_role = UserRole(user_id=user_id, role_id=role_id, organization_id=org_id)
        db.add(user_role)
        db.commit()
        db.refresh(user_role)
    _changed(user_id, org_id, invalidator)
    return user_role


def remove_role(
    db: Session,
    user_id: int,
    role_id: int,
    *,
    invalidator=None,
) -> bool:
    require_id(user_id, "user_id")
    require_id(role_id, "role_id")
    role = require_role(db, role_id)
    deleted = (
        db.query(UserRole)
        .filter(UserRole.user_id == user_id, UserRole.role_id == role_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        _changed(user_id, role.organization_id, invalidator)
    return bool(deleted)


def get_user_role_ids(db: Session, user_id: int, org_id: int) -> list[int]:
    rows = (
        db.query(UserRole.role_id)
        .filter(UserRole.user_id == user_id, UserRole.organization_id == org_id)
        .order_by(UserRole.role_id)
        .all()
    )
    return [role_id for (role_id,) in rows]


def list_user_ids_for_role(db: Session, role_id: int, org_id: int) -> list[int]:
    rows = (
        db.query(UserRole.user_id)
        .filter(UserRole.role_id == role_id, UserRole.organization_id == org_id)
        .distinct()
        .all()
    )
    return sorted(user_id for (user_id,) in rows)
