from sqlalchemy.orm import Session

from permission_engine.core.cache_keys import feature_key, feature_slug_key
from permission_engine.core.errors import ConflictError, NotFoundError, ValidationError, require_id
from permission_engine.core.utils.slug import normalize_slug
from permission_engine.models.features import Feature
from permission_engine.models.overrides import OrganizationOverride, Override
from permission_engine.models.plans import PlanFeature, PlanLimit
from permission_engine.models.roles import RolePermission


def create_feature(
    db: Session,
    slug: str,
    name: str,
    description: str | None = None,
) -> Feature:
    feature_slug = normalize_slug(slug)
    if not name or not name.strip():
        raise ValidationError("Feature name is required")
    if get_feature_by_slug(db, feature_slug) is not None:
        raise ConflictError(f"Feature slug already exists: {feature_slug}")
    feature = Feature(slug=feature_slug, name=name.strip(), description=description)
    db.add(feature)
    db.commit()
    db.refresh(feature)
    return feature


def get_feature_by_id(db: Session, feature_id: int) -> Feature | None:
    return db.query(Feature).filter(Feature.id == feature_id).first()


def get_feature_by_slug(db: Session, slug: str) -> Feature | None:
    return db.query(Feature).filter(Feature.slug == slug.strip().lower()).first()


def require_feature_slug(db: Session, slug: str) -> str:
    feature_slug = normalize_slug(slug)
    if get_feature_by_slug(db, feature_slug) is None:
        raise NotFoundError(f"Feature not found: {feature_slug}")
    return feature_slug


def list_features(db: Session) -> list[Feature]:
    return db.query(Feature).order_by(Feature.slug).all()


def update_feature(
    db: Session,
    feature_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    invalidator=None,
) -> Feature:
    require_id(feature_id, "feature_id")
    feature = get_feature_by_id(db, feature_id)
    if feature is None:
        raise NotFoundError(f"Feature not found: {feature_id}")
    if name is not None:
        if not name.strip():
            raise ValidationError("Feature name cannot be empty")
        feature.name = name.strip()
    if description is not None:
        feature.description = description
    db.commit()
    db.refresh(feature)

    from permission_engine.entitlements.invalidation import get_invalidator

    # Slug is immutable, so resolved maps are unaffected.
    get_invalidator(invalidator).evict(
        [feature_key(feature.id), feature_slug_key(feature.slug)],
        reason="feature",
    )
    return feature


def _is_referenced(db: Session, feature: Feature) -> bool:
    checks = (
        db.query(PlanFeature.id).filter(PlanFeature.feature_id == feature.id),
        db.query(PlanLimit.id).filter(PlanLimit.feature_slug == feature.slug),
        db.query(RolePermission.id).filter(RolePermission.feature_slug == feature.slug),
        db.query(Override.id).filter(Override.feature_slug == feature.slug),
        db.query(OrganizationOverride.id).filter(
            OrganizationOverride.feature_slug == feature.slug
        ),
    )
    return any(query.first() is not None for query in checks)


def delete_feature(db: Session, feature_id: int, *, invalidator=None) -> None:
    require_id(feature_id, "feature_id")
    feature = get_feature_by_id(db, feature_id)
    if feature is None:
        raise NotFoundError(f"Feature not found: {feature_id}")
    if _is_referenced(db, feature):
        raise ConflictError(f"Feature is still referenced: {feature.slug}")
    keys = [feature_key(feature.id), feature_slug_key(feature.slug)]
    db.delete(feature)
    db.commit()

    from permission_engine.entitlements.invalidation import get_invalidator

    get_invalidator(invalidator).evict(keys, reason="feature")
