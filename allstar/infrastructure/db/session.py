"""
Engine and sessions for the billing database.

Request handlers get a session from get_db(); background jobs open one with
session_scope(). Both share one lazily built engine (postgresql+psycopg).
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from allstar.config import get_settings


class Base(DeclarativeBase):
    pass


_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.get_sqlalchemy_url(),
            pool_pre_ping=True,
            echo=settings.DEBUG,
        )
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), autoflush=False)
    return _session_factory


def get_db() -> Iterator[Session]:
    """Per-request session for FastAPI routes (Depends(get_db))."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work outside a request.

    Use cases commit their own work; anything left uncommitted when the block
    raises is rolled back. The session is always closed.
    """
    db = get_session_factory()()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def check_db_connection() -> None:
    """Round-trip to the database; raises sqlalchemy.exc.OperationalError when it is down."""
    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))
