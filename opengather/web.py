"""HTML routes for the public RSVP page."""

from __future__ import annotations

from pathlib import Path

from fastapi import Depends, Form, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .errors import (
    DuplicateResponse,
    InvitationClosed,
    InvitationNotFound,
    ValidationFailed,
)
from .invitations import MAX_PARTY_SIZE, resolve_invitation, submit_rsvp
from .utils import format_event_date, format_event_time, humanize_time, render_markdown

templates = Jinja2Templates(directory=Path(__file__).parent / "templates")
templates.env.filters["event_date"] = format_event_date
templates.env.filters["event_time"] = format_event_time
templates.env.filters["relative_time"] = humanize_time
templates.env.filters["markdown"] = render_markdown
templates.env.globals["community_name"] = settings.community_name


def _unavailable(request: Request, exc: InvitationNotFound):
    closed = isinstance(exc, InvitationClosed)
    return templates.TemplateResponse(
        request,
        "rsvp_unavailable.html",
        {"request": request, "closed": closed, "message": exc.message},
        status_code=exc.status_code,
    )


def _form_response(
    request: Request,
    view,
    token: str,
    *,
    error: str | None = None,
    values: dict | None = None,
    status_code: int = 200,
):
    return templates.TemplateResponse(
        request,
        "rsvp.html",
        {
            "request": request,
            "invitation": view,
            "event": view.event,
            "venue": view.venue,
            "token": token,
            "error": error,
            "values": values or {"response": "yes", "guest_count": 1},
            "max_party_size": MAX_PARTY_SIZE,
        },
        status_code=status_code,
    )


def rsvp_page(
    request: Request,
    token: str = Query(""),
    db: Session = Depends(get_db),
):
    """Render the RSVP form for an open invitation."""
    try:
        view = resolve_invitation(db, token)
    except InvitationNotFound as exc:
        return _unavailable(request, exc)
    return _form_response(request, view, token)


def rsvp_submit(
    request: Request,
    token: str = Query(""),
    email: str = Form(""),
    response: str = Form("yes"),
    guest_count: int | None = Form(None),
    message: str | None = Form(None),
    db: Session = Depends(get_db),
):
    """Record a response submitted from the RSVP form."""
    values = {
        "email": email,
        "response": response,
        "guest_count": guest_count or 1,
        "message": message or "",
    }
    try:
        rsvp = submit_rsvp(
            db,
            token,
            email=email,
            response=response,
            guest_count=guest_count,
            message=message,
        )
    except InvitationNotFound as exc:
        return _unavailable(request, exc)
    except (ValidationFailed, DuplicateResponse) as exc:
        view = resolve_invitation(db, token)
        return _form_response(
            request,
            view,
            token,
            error=exc.message,
            values=values,
            status_code=exc.status_code,
        )
    view = resolve_invitation(db, token)
    return templates.TemplateResponse(
        request,
        "rsvp_thanks.html",
        {"request": request, "event": view.event, "venue": view.venue, "rsvp": rsvp},
    )


def register_web_routes(app):
    """Register web routes on the FastAPI app."""
    app.get("/event-rsvp", response_class=HTMLResponse)(rsvp_page)
    app.post("/event-rsvp", response_class=HTMLResponse)(rsvp_submit)
