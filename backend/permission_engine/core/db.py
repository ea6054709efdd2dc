"""
Database engine configuration and session management.

Every data provider opens its own short-lived session from a session
factory, so concurrent context fetches never share a Session.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from permission_engine.core.config import settings


class Base(DeclarativeBase):
    pass


def _connect_args(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def create_session_factory(database_url: str, *, echo: bool = False) -> sessionmaker[Session]:
    bind = create_engine(
        database_url,
        connect_args=_connect_args(database_url),
        echo=echo,
        future=True,
    )
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, future=True)


SessionLocal = create_session_factory(settings.DATABASE_URL, echo=settings.DB_ECHO)
engine = SessionLocal.kw["bind"]


def init_db(session_factory: sessionmaker[Session] | None = None) -> None:
    import permission_engine.models  # noqa: F401

    factory = session_factory or SessionLocal
    Base.metadata.create_all(bind=factory.kw["bind"])
