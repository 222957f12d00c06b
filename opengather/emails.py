"""Rendering for invitation, rejection and welcome emails."""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config import settings
from .mailer import EmailTemplate
from .models import EventProposal, Member
from .utils import (
    event_type_from_name,
    format_event_date,
    format_event_time,
    render_markdown,
)

_env = Environment(
    loader=FileSystemLoader(Path(__file__).parent / "templates" / "email"),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)
_env.filters["event_date"] = format_event_date
_env.filters["event_time"] = format_event_time
_env.filters["markdown"] = render_markdown


def organizer_name(event: EventProposal) -> str:
    return event.creator.name if event.creator else "the organizers"


def _event_context(event: EventProposal) -> dict:
    return {
        "event": event,
        "venue": event.venue,
        "event_type": event_type_from_name(event.group_name),
        "organizer": organizer_name(event),
        "rsvp_url": settings.rsvp_url(event.invite_token),
        "community_name": settings.community_name,
    }


def render_invitation(event: EventProposal, *, is_update: bool = False) -> EmailTemplate:
    """Render the invitation sent on approval, on resend and on update notices."""
    context = _event_context(event)
    prefix = "Updated invitation" if is_update else "You're Invited"
    subject = f"{prefix}: {context['event_type']} at {event.venue.business_name}"
    template = _env.get_template("invitation.html")
    html = template.render(**context, is_update=is_update)
    return EmailTemplate(subject=subject, html=html)


def render_rejection(event: EventProposal) -> EmailTemplate:
    context = _event_context(event)
    subject = (
        f"Event Rejection - {context['event_type']} at {event.venue.business_name}"
    )
    html = _env.get_template("rejection.html").render(**context)
    return EmailTemplate(subject=subject, html=html)


def render_welcome(member: Member) -> EmailTemplate:
    """Welcome sent to members created by an administrator."""
    html = _env.get_template("welcome.html").render(
        member=member,
        community_name=settings.community_name,
        base_url=settings.public_base_url.rstrip("/"),
    )
    return EmailTemplate(subject=f"Welcome to {settings.community_name}", html=html)
