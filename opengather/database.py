"""Engine and session factory for OpenGather."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from .config import settings

DATABASE_URL = f"sqlite:///{settings.database_path}"


def build_engine(url: str = DATABASE_URL, **kwargs) -> Engine:
    """Create an engine with the SQLite pragmas the schema relies on.

    RSVP rows cascade away with their invitation through ``ON DELETE CASCADE``,
    which SQLite only honours with ``foreign_keys`` switched on per connection.
    """
    connect_args = kwargs.pop("connect_args", {})
    connect_args.setdefault("check_same_thread", False)
    built = create_engine(url, connect_args=connect_args, future=True, **kwargs)

    if built.dialect.name == "sqlite":

        @event.listens_for(built, "connect")
        def _sqlite_pragmas(dbapi_connection, _record):  # pragma: no cover - driver hook
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return built


def build_session_factory(bound: Engine) -> scoped_session:
    return scoped_session(
        sessionmaker(
            bind=bound,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )


engine = build_engine()
SessionLocal = build_session_factory(engine)


@contextmanager
def get_session() -> Iterator[Session]:
    """Context manager yielding a session that commits on success."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Iterator[Session]:
    """FastAPI dependency: one session per request, committed on success."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
