from sqlalchemy.orm import Session

from permission_engine.core.errors import ConflictError, NotFoundError, ValidationError, optional_id
from permission_engine.models.users import User


def create_user(
    db: Session,
    email: str,
    organization_id: int | None = None,
    external_id: str | None = None,
) -> User:
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    optional_id(organization_id, "organization_id")
    normalized = email.strip().lower()
    if get_user_by_email(db, normalized) is not None:
        raise ConflictError(f"User already exists: {normalized}")
    if organization_id is not None:
        from permission_engine.crud.organizations import organization_exists

        if not organization_exists(db, organization_id):
            raise NotFoundError(f"Organization not found: {organization_id}")
    user = User(email=normalized, organization_id=organization_id, external_id=external_id)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def get_user(db: Session, user_id: int) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def get_user_by_external_id(db: Session, external_id: str) -> User | None:
    return db.query(User).filter(User.external_id == external_id).first()


def user_exists(db: Session, user_id: int) -> bool:
    return db.query(User.id).filter(User.id == user_id).first() is not None

