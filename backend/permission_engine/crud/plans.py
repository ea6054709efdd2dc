from sqlalchemy.orm import Session

from permission_engine.core.errors import ConflictError, NotFoundError, ValidationError, optional_id
from permission_engine.core.utils.slug import normalize_slug, slugify
from permission_engine.models.plans import Plan


def create_plan(
    db: Session,
    name: str,
    slug: str | None = None,
    organization_id: int | None = None,
    description: str | None = None,
) -> Plan:
    if not name or not name.strip():
        raise ValidationError("Plan name is required")
    optional_id(organization_id, "organization_id")
    plan_slug = normalize_slug(slug or slugify(name))
    if get_plan_by_slug(db, plan_slug) is not None:
        raise ConflictError(f"Plan slug already exists: {plan_slug}")
    plan = Plan(
        name=name.strip(),
        slug=plan_slug,
        organization_id=organization_id,
        description=description,
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


def get_plan_by_id(db: Session, plan_id: int) -> Plan | None:
    return db.query(Plan).filter(Plan.id == plan_id).first()


def get_plan_by_slug(db: Session, slug: str) -> Plan | None:
    return db.query(Plan).filter(Plan.slug == slug.strip().lower()).first()


def require_plan(db: Session, plan_id: int) -> Plan:
    plan = get_plan_by_id(db, plan_id)
    if plan is None:
        raise NotFoundError(f"Plan not found: {plan_id}")
    return plan


def plan_exists(db: Session, plan_id: int) -> bool:
    return db.query(Plan.id).filter(Plan.id == plan_id).first() is not None

