"""Shared pytest fixtures for OpenGather."""

from __future__ import annotations

import sys
import threading
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from opengather import crud, database, storage
from opengather.mailer import OutgoingEmail, SendResult
from opengather.models import Base
from opengather.utils import utcnow


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = database.build_engine(
        "sqlite+pysqlite:///:memory:", poolclass=StaticPool
    )
    session_factory = database.build_session_factory(engine)
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield
    database.SessionLocal.remove()


class FakeMailer:
    """Records every message; addresses in ``fail_for`` report failure."""

    def __init__(self, fail_for: set[str] | None = None, raise_for: set[str] | None = None):
        self.fail_for = set(fail_for or ())
        self.raise_for = set(raise_for or ())
        self.sent: list[OutgoingEmail] = []
        self._lock = threading.Lock()

    def send(self, message: OutgoingEmail) -> SendResult:
        if message.to in self.raise_for:
            raise RuntimeError("connection reset")
        with self._lock:
            self.sent.append(message)
        if message.to in self.fail_for:
            return SendResult(email=message.to, success=False, error="rejected")
        return SendResult(email=message.to, success=True, id=f"msg-{len(self.sent)}")

    @property
    def recipients(self) -> list[str]:
        return sorted(message.to for message in self.sent)


@pytest.fixture()
def mailer():
    return FakeMailer()


@pytest.fixture()
def db():
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_member(db):
    counter = {"n": 0}

    def _make(email: str | None = None, **kwargs):
        counter["n"] += 1
        member = crud.create_member(
            db, email=email or f"member{counter['n']}@example.com", **kwargs
        )
        db.commit()
        return member

    return _make


@pytest.fixture()
def make_venue(db):
    def _make(business_name: str = "Rosa's Kitchen", **kwargs):
        kwargs.setdefault("address", "12 Market Street, Springfield")
        kwargs.setdefault("status", "approved")
        venue = crud.create_venue(db, business_name=business_name, **kwargs)
        db.commit()
        return venue

    return _make


@pytest.fixture()
def make_event(db, make_venue):
    """Create a pending event a week out with the deadline two days before."""

    def _make(*, venue=None, creator=None, group_name=None, **kwargs):
        venue = venue or make_venue()
        proposed = kwargs.pop(
            "proposed_date",
            (utcnow() + timedelta(days=7)).replace(
                hour=18, minute=0, second=0, microsecond=0
            ),
        )
        deadline = kwargs.pop("rsvp_deadline", proposed - timedelta(days=2))
        event = crud.create_event_proposal(
            db,
            creator=creator,
            venue=venue,
            group_name=group_name or f"Dinner at {venue.business_name}",
            proposed_date=proposed,
            rsvp_deadline=deadline,
            **kwargs,
        )
        db.commit()
        return event

    return _make


@pytest.fixture()
def approved_event(db, make_event):
    """Return a factory for events already approved and active."""

    def _make(**kwargs):
        event = make_event(**kwargs)
        crud.transition_event(
            db,
            event.id,
            expected={"approval_status": "pending"},
            values={"approval_status": "approved", "status": "active"},
        )
        db.commit()
        return crud.reload_event(db, event.id)

    return _make
