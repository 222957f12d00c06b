"""FastAPI application for OpenGather."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import admin, crud, invitations, lifecycle
from .config import settings
from .database import get_db
from .errors import OpenGatherError
from .mailer import Mailer, get_mailer
from .models import EventProposal, Message, RSVPResponse
from .realtime import router as realtime_router
from .sessions import Session as RequestSession
from .sessions import current_session, require_admin, require_member
from .storage import init_db
from .utils import event_type_from_name, to_naive_utc
from .web import register_web_routes, templates

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("opengather")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="OpenGather", version=APP_VERSION, lifespan=lifespan)
templates.env.globals["app_version"] = APP_VERSION

register_web_routes(app)
app.include_router(realtime_router)

ADMIN_EVENTS_PER_PAGE = settings.admin_events_per_page


def _parse_datetime(name: str, raw: str | None) -> datetime | None:
    """Parse an ISO8601 datetime field or raise a 400."""
    if raw is None:
        return None
    try:
        return to_naive_utc(datetime.fromisoformat(raw))
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid {name}; use ISO8601 format"
        ) from exc


def _wants_json(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    return request.url.path.startswith("/api/") or (
        "application/json" in accept and "text/html" not in accept
    )


def _render_error(request: Request, status_code: int, message: str | None):
    context = {
        "request": request,
        "status_code": status_code,
        "error_message": message or "Something went wrong.",
    }
    return templates.TemplateResponse(
        request, "error.html", context, status_code=status_code
    )


@app.exception_handler(OpenGatherError)
async def domain_error_handler(request: Request, exc: OpenGatherError):
    if _wants_json(request):
        return JSONResponse({"detail": exc.message}, status_code=exc.status_code)
    return _render_error(request, exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as friendly pages unless JSON was requested."""
    if _wants_json(request):
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)
    detail = exc.detail if isinstance(exc.detail, str) else "Something went wrong."
    return _render_error(request, exc.status_code, detail)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    lower = raw.lower()
    if "database is locked" in lower:
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    if _wants_json(request):
        return JSONResponse({"detail": detail}, status_code=status)
    return _render_error(request, status, detail)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if _wants_json(request):
        return JSONResponse({"detail": exc.errors()}, status_code=422)
    return _render_error(
        request,
        422,
        "Some of the fields were invalid. Please double-check and try again.",
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    if _wants_json(request):
        return JSONResponse({"detail": "Internal server error"}, status_code=500)
    return _render_error(
        request,
        500,
        "We hit a snag while processing that request. Please try again.",
    )


# -------- Payloads --------


class EventProposalPayload(BaseModel):
    venue_id: str
    proposed_date: str = Field(..., description="ISO datetime string")
    rsvp_deadline: str = Field(..., description="ISO datetime string")
    event_type: str = "Dinner"
    group_name: str | None = None
    custom_message: str | None = None
    invite_type: str = "all"
    selected_member_ids: list[str] | None = None


class EventUpdatePayload(BaseModel):
    group_name: str | None = None
    proposed_date: str | None = Field(None, description="ISO datetime string")
    rsvp_deadline: str | None = Field(None, description="ISO datetime string")
    custom_message: str | None = None
    notify: bool = False


class RSVPPayload(BaseModel):
    email: str
    response: str
    guest_count: int | None = Field(
        None, description="Number of people including yourself; defaults to 1"
    )
    message: str | None = None


class ResendPayload(BaseModel):
    email: str


class VenuePayload(BaseModel):
    business_name: str
    address: str
    description: str | None = None
    google_maps_link: str | None = None
    facebook_link: str | None = None
    website: str | None = None
    image_urls: list[str] = Field(default_factory=list, max_length=3)


class VenueUpdatePayload(BaseModel):
    business_name: str | None = None
    address: str | None = None
    description: str | None = None
    google_maps_link: str | None = None
    facebook_link: str | None = None
    website: str | None = None
    image_urls: list[str] | None = Field(None, max_length=3)


class MemberCreatePayload(BaseModel):
    email: str
    display_name: str | None = None
    kind: str = "full"
    is_admin: bool = False


class MessagePayload(BaseModel):
    content: str


# -------- Serializers --------


def _serialize_event(event: EventProposal, *, include_token: bool = False) -> dict:
    venue = event.venue
    data = {
        "id": event.id,
        "group_name": event.group_name,
        "event_type": event_type_from_name(event.group_name),
        "proposed_date": event.proposed_date.isoformat(),
        "rsvp_deadline": event.rsvp_deadline.isoformat(),
        "custom_message": event.custom_message,
        "approval_status": event.approval_status,
        "status": event.status,
        "invite_type": event.invite_type,
        "selected_member_ids": event.selected_member_ids or [],
        "created_at": event.created_at.isoformat() if event.created_at else None,
        "venue": (
            {
                "id": venue.id,
                "business_name": venue.business_name,
                "address": venue.address,
            }
            if venue
            else None
        ),
        "creator": (
            {
                "id": event.creator.id,
                "email": event.creator.email,
                "name": event.creator.name,
            }
            if event.creator
            else None
        ),
    }
    if include_token:
        data["invite_token"] = event.invite_token
        data["rsvp_url"] = settings.rsvp_url(event.invite_token)
    return data


def _serialize_rsvp(rsvp: RSVPResponse) -> dict:
    return {
        "id": rsvp.id,
        "invitee_email": rsvp.invitee_email,
        "response": rsvp.response,
        "guest_count": rsvp.guest_count,
        "response_message": rsvp.response_message,
        "response_date": rsvp.response_date.isoformat(),
    }


def _serialize_message(message: Message) -> dict:
    return {
        "id": message.id,
        "content": message.content,
        "author": message.author.name if message.author else None,
        "created_at": message.created_at.isoformat(),
    }


# -------- JSON API (v1) --------


@app.get("/api/v1/session")
def api_session(session: RequestSession = Depends(current_session)):
    return {"session": session.describe()}


@app.post("/api/v1/events", status_code=201)
def api_propose_event(
    payload: EventProposalPayload,
    session: RequestSession = Depends(require_member),
    db: Session = Depends(get_db),
):
    event = lifecycle.propose(
        db,
        session=session,
        venue_id=payload.venue_id,
        proposed_date=_parse_datetime("proposed_date", payload.proposed_date),
        rsvp_deadline=_parse_datetime("rsvp_deadline", payload.rsvp_deadline),
        custom_message=payload.custom_message,
        event_type=payload.event_type,
        group_name=payload.group_name,
        invite_type=payload.invite_type,
        selected_member_ids=payload.selected_member_ids,
    )
    return {"event": _serialize_event(event)}


@app.get("/api/v1/invitations")
def api_resolve_invitation(token: str = Query(""), db: Session = Depends(get_db)):
    view = invitations.resolve_invitation(db, token)
    return {"invitation": view.as_dict()}


@app.post("/api/v1/invitations/rsvp", status_code=201)
def api_submit_rsvp(
    payload: RSVPPayload, token: str = Query(""), db: Session = Depends(get_db)
):
    rsvp = invitations.submit_rsvp(
        db,
        token,
        email=payload.email,
        response=payload.response,
        guest_count=payload.guest_count,
        message=payload.message,
    )
    return {"rsvp": _serialize_rsvp(rsvp)}


# Admin: event review


@app.get("/api/v1/admin/events")
def api_admin_list_events(
    status: list[str] | None = Query(None),
    limit: int = Query(ADMIN_EVENTS_PER_PAGE, ge=1, le=500),
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    statuses = status or admin.REVIEW_QUEUE_STATUSES
    events = admin.list_events_for_review(db, statuses, limit=limit)
    return {"events": [_serialize_event(event, include_token=True) for event in events]}


@app.get("/api/v1/admin/dashboard")
def api_admin_dashboard(
    _: RequestSession = Depends(require_admin), db: Session = Depends(get_db)
):
    return {"counts": admin.dashboard_counts(db)}


@app.get("/api/v1/admin/events/{event_id}")
def api_admin_get_event(
    event_id: str,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    event = admin.get_event_row(db, event_id)
    return {
        "event": _serialize_event(event, include_token=True),
        "summary": invitations.rsvp_summary(db, event_id),
    }


@app.patch("/api/v1/admin/events/{event_id}")
def api_admin_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    data = payload.model_dump(exclude_unset=True)
    outcome = lifecycle.update_event(
        db,
        event_id,
        mailer=mailer,
        group_name=data.get("group_name"),
        proposed_date=_parse_datetime("proposed_date", data.get("proposed_date")),
        rsvp_deadline=_parse_datetime("rsvp_deadline", data.get("rsvp_deadline")),
        custom_message=data.get("custom_message"),
        update_message="custom_message" in data,
        notify=payload.notify,
    )
    return {
        "event": _serialize_event(outcome.event, include_token=True),
        "dispatch": outcome.report.as_dict() if outcome.report else None,
    }


@app.post("/api/v1/admin/events/{event_id}/approve")
def api_admin_approve_event(
    event_id: str,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    outcome = lifecycle.approve(db, event_id, mailer=mailer)
    return {
        "event": _serialize_event(outcome.event, include_token=True),
        "dispatch": outcome.report.as_dict(),
        "warning": outcome.warning,
    }


@app.post("/api/v1/admin/events/{event_id}/reject")
def api_admin_reject_event(
    event_id: str,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    outcome = lifecycle.reject(db, event_id, mailer=mailer)
    return {
        "event": _serialize_event(outcome.event, include_token=True),
        "notified": outcome.notified,
        "warning": (
            None
            if outcome.notified
            else "Event rejected, but the organizer could not be emailed."
        ),
    }


@app.post("/api/v1/admin/events/{event_id}/cancel")
def api_admin_cancel_event(
    event_id: str,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    event = lifecycle.cancel(db, event_id)
    return {"event": _serialize_event(event, include_token=True)}


@app.delete("/api/v1/admin/events/{event_id}", status_code=204)
def api_admin_delete_event(
    event_id: str,
    confirm: bool = Query(False),
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if not confirm:
        raise HTTPException(
            status_code=400, detail="Pass confirm=true to permanently delete this event"
        )
    lifecycle.delete(db, event_id)
    return Response(status_code=204)


@app.post("/api/v1/admin/events/{event_id}/resend")
def api_admin_resend_invitation(
    event_id: str,
    payload: ResendPayload,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    result = invitations.resend_invitation(db, event_id, payload.email, mailer=mailer)
    return {"sent": True, "email": result.email, "id": result.id}


@app.get("/api/v1/admin/events/{event_id}/rsvps")
def api_admin_list_rsvps(
    event_id: str,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    summary = invitations.rsvp_summary(db, event_id)
    responses = crud.list_responses(db, event_id)
    return {
        "rsvps": [_serialize_rsvp(rsvp) for rsvp in responses],
        "summary": summary,
    }


# Venues


@app.get("/api/v1/venues")
def api_list_venues(db: Session = Depends(get_db)):
    venues = admin.list_venues(db, status="approved")
    return {"venues": [admin.serialize_venue(venue) for venue in venues]}


@app.post("/api/v1/venues", status_code=201)
def api_submit_venue(
    payload: VenuePayload,
    session: RequestSession = Depends(require_member),
    db: Session = Depends(get_db),
):
    venue = admin.submit_venue(db, session=session, **payload.model_dump())
    return {"venue": admin.serialize_venue(venue)}


@app.get("/api/v1/admin/venues")
def api_admin_list_venues(
    status: str | None = Query(None),
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    venues = admin.list_venues(db, status=status)
    return {"venues": [admin.serialize_venue(venue) for venue in venues]}


@app.post("/api/v1/admin/venues/{venue_id}/approve")
def api_admin_approve_venue(
    venue_id: str,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return {"venue": admin.serialize_venue(admin.approve_venue(db, venue_id))}


@app.post("/api/v1/admin/venues/{venue_id}/reject")
def api_admin_reject_venue(
    venue_id: str,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return {"venue": admin.serialize_venue(admin.reject_venue(db, venue_id))}


@app.patch("/api/v1/admin/venues/{venue_id}")
def api_admin_update_venue(
    venue_id: str,
    payload: VenueUpdatePayload,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    return {"venue": admin.serialize_venue(admin.update_venue(db, venue_id, **changes))}


@app.delete("/api/v1/admin/venues/{venue_id}", status_code=204)
def api_admin_delete_venue(
    venue_id: str,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    admin.delete_venue(db, venue_id)
    return Response(status_code=204)


# Members


@app.get("/api/v1/admin/members")
def api_admin_list_members(
    active_only: bool = Query(False),
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    members = admin.list_members(db, active_only=active_only)
    return {"members": [admin.serialize_member(member) for member in members]}


@app.post("/api/v1/admin/members", status_code=201)
def api_admin_create_member(
    payload: MemberCreatePayload,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    outcome = admin.create_member(
        db,
        email=payload.email,
        display_name=payload.display_name,
        kind=payload.kind,
        is_admin=payload.is_admin,
        mailer=mailer,
    )
    return {
        "member": admin.serialize_member(outcome.member, include_token=True),
        "welcome_sent": outcome.welcomed,
    }


@app.post("/api/v1/admin/members/{member_id}/deactivate")
def api_admin_deactivate_member(
    member_id: str,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    member = admin.deactivate_member(db, member_id)
    return {"member": admin.serialize_member(member)}


@app.delete("/api/v1/admin/members/{member_id}")
def api_admin_purge_member(
    member_id: str,
    confirm: bool = Query(False),
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if not confirm:
        raise HTTPException(
            status_code=400, detail="Pass confirm=true to permanently delete this member"
        )
    return {"purged": admin.purge_member(db, member_id)}


# Message board


@app.get("/api/v1/messages")
def api_list_messages(
    limit: int = Query(50, ge=1, le=200),
    _: RequestSession = Depends(require_member),
    db: Session = Depends(get_db),
):
    messages = admin.list_messages(db, limit=limit)
    return {"messages": [_serialize_message(message) for message in messages]}


@app.post("/api/v1/messages", status_code=201)
def api_post_message(
    payload: MessagePayload,
    session: RequestSession = Depends(require_member),
    db: Session = Depends(get_db),
):
    message = admin.post_message(db, session=session, content=payload.content)
    return {"message": _serialize_message(message)}


@app.delete("/api/v1/admin/messages/{message_id}", status_code=204)
def api_admin_delete_message(
    message_id: str,
    _: RequestSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    admin.delete_message(db, message_id)
    return Response(status_code=204)
