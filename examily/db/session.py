"""Engine, session factory and the request-scoped ``get_db`` dependency.

The engine is built on first use so importing the models (tests, Alembic)
never opens a connection.
"""

from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from examily.config import settings

_engine: Engine | None = None
_factory: sessionmaker | None = None


class Base(DeclarativeBase):
    """Declarative base for every Examily table."""


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        url = settings.DATABASE_URL
        # SQLite is used for local demos; sessions cross threads (autosave)
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(
            url,
            echo=settings.DATABASE_ECHO,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    return _engine


def get_session_factory() -> sessionmaker:
    """Shared factory; records outlive their session, so nothing expires on commit."""
    global _factory
    if _factory is None:
        _factory = sessionmaker(
            bind=get_engine(), autoflush=False, expire_on_commit=False
        )
    return _factory


def get_db() -> Iterator[Session]:
    """Yield a session for one request and close it afterwards."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
