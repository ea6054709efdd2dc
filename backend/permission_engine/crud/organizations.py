from sqlalchemy.orm import Session

from permission_engine.core.errors import ConflictError, ValidationError
from permission_engine.core.utils.slug import normalize_slug, slugify
from permission_engine.models.organizations import Organization


def create_organization(
    db: Session,
    name: str,
    slug: str | None = None,
    external_id: str | None = None,
) -> Organization:
    if not name or not name.strip():
        raise ValidationError("Organization name is required")
    org_slug = normalize_slug(slug or slugify(name))
    if get_organization_by_slug(db, org_slug) is not None:
        raise ConflictError(f"Organization slug already exists: {org_slug}")
    org = Organization(name=name.strip(), slug=org_slug, external_id=external_id)
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


def get_organization(db: Session, org_id: int) -> Organization | None:
    return db.query(Organization).filter(Organization.id == org_id).first()


def get_organization_by_slug(db: Session, slug: str) -> Organization | None:
    return db.query(Organization).filter(Organization.slug == slug.lower()).first()


def list_organizations(db: Session) -> list[Organization]:
    return db.query(Organization).order_by(Organization.id).all()


def organization_exists(db: Session, org_id: int) -> bool:
    return db.query(Organization.id).filter(Organization.id == org_id).first() is not None

