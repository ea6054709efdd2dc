from sqlalchemy.orm import Session

from permission_engine.core.cache_keys import role_permissions_key
from permission_engine.core.errors import require_id
from permission_engine.core.utils.slug import normalize_slug
from permission_engine.crud.features import require_feature_slug
from permission_engine.crud.roles import require_role
from permission_engine.models.roles import RolePermission


def _changed(db: Session, role_id: int, org_id: int, invalidator) -> None:
    from permission_engine.entitlements.invalidation import get_invalidator

    inv = get_invalidator(invalidator)
    inv.evict(role_permissions_key(role_id), reason="role_permission")
    inv.invalidate_role_holders(db, role_id, org_id, reason="role_permission")


def list_role_permission_slugs(db: Session, role_id: int) -> list[str]:
    rows = (
        db.query(RolePermission.feature_slug)
        .filter(RolePermission.role_id == role_id, RolePermission.granted.is_(True))
        .order_by(RolePermission.feature_slug)
        .all()
    )
    return [slug for (slug,) in rows]


def grant_permission(
    db: Session,
    role_id: int,
    feature_slug: str,
    *,
    invalidator=None,
) -> RolePermission:
    require_id(role_id, "role_id")
    role = require_role(db, role_id)
    slug = require_feature_slug(db, feature_slug)
    permission = (
        db.query(RolePermission)
        .filter(RolePermission.role_id == role_id, RolePermission.feature_slug == slug)
        .first()
    )
    if permission is None:
        permission = RolePermission(role_id=role_id, feature_slug=slug, granted=True)
        db.add(permission)
    else:
        permission.granted = True
    db.commit()
    db.refresh(permission)
    _changed(db, role_id, role.organization_id, invalidator)
    return permission


def revoke_permission(
    db: Session,
    role_id: int,
    feature_slug: str,
    *,
    invalidator=None,
) -> bool:
    require_id(role_id, "role_id")
    role = require_role(db, role_id)
    slug = normalize_slug(feature_slug)
    deleted = (
        db.query(RolePermission)
        .filter(RolePermission.role_id == role_id, RolePermission.feature_slug == slug)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        _changed(db, role_id, role.organization_id, invalidator)
    return bool(deleted)
