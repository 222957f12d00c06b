"""Request sessions.

Full accounts and email-only "simple" members share one session type that is
resolved once per request from the bearer token, so call sites ask
``session.is_member`` / ``session.is_admin`` instead of combining the two
membership systems themselves.
"""

from __future__ import annotations

import enum
import hmac
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session as DbSession

from .config import settings
from .crud import get_member_by_token
from .database import get_db
from .models import Member, Meta


class SessionKind(str, enum.Enum):
    FULL = "full"
    SIMPLE = "simple"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Session:
    kind: SessionKind
    member: Member | None = None
    is_root: bool = False

    @property
    def is_member(self) -> bool:
        return self.kind in (SessionKind.FULL, SessionKind.SIMPLE)

    @property
    def is_admin(self) -> bool:
        if self.is_root:
            return True
        return (
            self.kind is SessionKind.FULL
            and self.member is not None
            and bool(self.member.is_admin)
        )

    @property
    def member_id(self) -> str | None:
        return self.member.id if self.member else None

    def describe(self) -> dict:
        return {
            "kind": self.kind.value,
            "is_member": self.is_member,
            "is_admin": self.is_admin,
            "member": (
                {
                    "id": self.member.id,
                    "email": self.member.email,
                    "display_name": self.member.display_name,
                }
                if self.member
                else None
            ),
        }


ANONYMOUS = Session(kind=SessionKind.ANONYMOUS)


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def _root_token(db: DbSession) -> str | None:
    meta = db.get(Meta, settings.root_token_key)
    return meta.value if meta else None


def resolve_session(db: DbSession, token: str | None) -> Session:
    """Map a bearer token to a session variant."""
    if not token:
        return ANONYMOUS
    root = _root_token(db)
    if root and hmac.compare_digest(token, root):
        return Session(kind=SessionKind.FULL, is_root=True)
    member = get_member_by_token(db, token)
    if member is None or not member.is_active:
        return ANONYMOUS
    kind = SessionKind.SIMPLE if member.kind == "simple" else SessionKind.FULL
    return Session(kind=kind, member=member)


def current_session(request: Request, db: DbSession = Depends(get_db)) -> Session:
    cached = getattr(request.state, "session", None)
    if cached is not None:
        return cached
    resolved = resolve_session(db, bearer_token(request))
    request.state.session = resolved
    return resolved


def require_member(session: Session = Depends(current_session)) -> Session:
    if not session.is_member:
        raise HTTPException(status_code=401, detail="Sign in to continue")
    return session


def require_admin(session: Session = Depends(current_session)) -> Session:
    if not session.is_member:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    if not session.is_admin:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return session
