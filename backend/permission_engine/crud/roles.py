from sqlalchemy.orm import Session

from permission_engine.core.cache_keys import role_permissions_key, user_roles_key
from permission_engine.core.errors import ConflictError, NotFoundError, ValidationError, require_id
from permission_engine.core.utils.slug import normalize_slug, slugify
from permission_engine.models.roles import Role, UserRole


def create_role(
    db: Session,
    organization_id: int,
    name: str,
    slug: str | None = None,
    description: str | None = None,
    is_system_role: bool = False,
) -> Role:
    require_id(organization_id, "organization_id")
    if not name or not name.strip():
        raise ValidationError("Role name is required")
    from permission_engine.crud.organizations import organization_exists

    if not organization_exists(db, organization_id):
        raise NotFoundError(f"Organization not found: {organization_id}")
    role_slug = normalize_slug(slug or slugify(name))
    existing = (
        db.query(Role)
        .filter(Role.organization_id == organization_id, Role.slug == role_slug)
        .first()
    )
    if existing is not None:
        raise ConflictError(f"Role already exists in organization: {role_slug}")
    role = Role(
        organization_id=organization_id,
        name=name.strip(),
        slug=role_slug,
        description=description,
        is_system_role=is_system_role,
    )
    db.add(role)
    db.commit()
    db.refresh(role)
    return role


def get_role(db: Session, role_id: int) -> Role | None:
    return db.query(Role).filter(Role.id == role_id).first()


def require_role(db: Session, role_id: int) -> Role:
    role = get_role(db, role_id)
    if role is None:
        raise NotFoundError(f"Role not found: {role_id}")
    return role


def list_roles(db: Session, organization_id: int) -> list[Role]:
    return (
        db.query(Role)
        .filter(Role.organization_id == organization_id)
        .order_by(Role.slug)
        .all()
    )


def delete_role(db: Session, role_id: int, *, invalidator=None) -> None:
    require_id(role_id, "role_id")
    role = require_role(db, role_id)
    if role.is_system_role:
        raise ConflictError(f"System role cannot be deleted: {role.slug}")
    org_id = role.organization_id
    holder_ids = [
        user_id
        for (user_id,) in db.query(UserRole.user_id).filter(UserRole.role_id == role_id).all()
    ]
    db.query(UserRole).filter(UserRole.role_id == role_id).delete(synchronize_session=False)
    db.delete(role)
    db.commit()

    from permission_engine.entitlements.invalidation import get_invalidator

    inv = get_invalidator(invalidator)
    inv.evict(
        [role_permissions_key(role_id)]
        + [user_roles_key(user_id, org_id) for user_id in holder_ids],
        reason="role",
    )
    inv.invalidate_users(holder_ids, org_id, reason="role")
