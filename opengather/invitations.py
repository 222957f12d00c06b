"""Invitation resolution and RSVP submission.

The invite token is the only credential the public RSVP flow checks. A token
only resolves while its event is approved, not cancelled and before the RSVP
deadline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DbSession

from . import crud
from .emails import organizer_name, render_invitation
from .errors import (
    DuplicateResponse,
    EventNotFound,
    InvalidTransition,
    InvitationClosed,
    InvitationNotFound,
    MailDeliveryError,
    ValidationFailed,
)
from .mailer import Mailer, SendResult, send_one
from .models import RSVP_RESPONSES, EventProposal, RSVPResponse
from .utils import (
    event_type_from_name,
    is_valid_email,
    normalize_email,
    to_naive_utc,
    utcnow,
)

logger = logging.getLogger("uvicorn.error")

MIN_PARTY_SIZE = 1
MAX_PARTY_SIZE = 10


@dataclass(frozen=True)
class InvitationView:
    """What the public RSVP page shows for a resolved token."""

    event: EventProposal

    @property
    def venue(self):
        return self.event.venue

    @property
    def event_type(self) -> str:
        return event_type_from_name(self.event.group_name)

    @property
    def organizer(self) -> str:
        return organizer_name(self.event)

    def as_dict(self) -> dict:
        venue = self.venue
        return {
            "group_name": self.event.group_name,
            "event_type": self.event_type,
            "proposed_date": self.event.proposed_date.isoformat(),
            "rsvp_deadline": self.event.rsvp_deadline.isoformat(),
            "custom_message": self.event.custom_message,
            "organizer": self.organizer,
            "venue": {
                "business_name": venue.business_name,
                "address": venue.address,
                "google_maps_link": venue.google_maps_link,
                "website": venue.website,
                "image_urls": venue.image_urls,
            },
        }


def _now(now: datetime | None) -> datetime:
    return to_naive_utc(now) if now is not None else utcnow()


def resolve_invitation(
    db: DbSession, token: str | None, *, now: datetime | None = None
) -> InvitationView:
    """Resolve a token to an open invitation.

    Raises ``InvitationNotFound`` for unknown, unapproved or cancelled events
    and ``InvitationClosed`` once the deadline has passed.
    """
    event = crud.get_event_by_token(db, (token or "").strip())
    if event is None or event.approval_status != "approved":
        raise InvitationNotFound()
    if event.status == "cancelled":
        raise InvitationNotFound("This event has been cancelled")
    if not event.accepts_rsvps(_now(now)):
        raise InvitationClosed()
    return InvitationView(event=event)


def _party_size(response: str, guest_count: int | None) -> int | None:
    if response == "no":
        return None
    if guest_count is None:
        return MIN_PARTY_SIZE
    if not MIN_PARTY_SIZE <= guest_count <= MAX_PARTY_SIZE:
        raise ValidationFailed(
            f"Number of people must be between {MIN_PARTY_SIZE} and {MAX_PARTY_SIZE}"
        )
    return guest_count


def submit_rsvp(
    db: DbSession,
    token: str | None,
    *,
    email: str,
    response: str,
    guest_count: int | None = None,
    message: str | None = None,
    now: datetime | None = None,
) -> RSVPResponse:
    """Record one response for an open invitation."""
    view = resolve_invitation(db, token, now=now)
    if not is_valid_email(email):
        raise ValidationFailed("Please enter a valid email address")
    response = (response or "").strip().lower()
    if response not in RSVP_RESPONSES:
        raise ValidationFailed("Response must be 'yes' or 'no'")
    party = _party_size(response, guest_count)
    if crud.find_response(db, view.event, email) is not None:
        raise DuplicateResponse(normalize_email(email))
    try:
        rsvp = crud.create_rsvp_response(
            db,
            event=view.event,
            email=email,
            response=response,
            guest_count=party,
            message=message,
        )
    except IntegrityError as exc:
        # Lost a race on the unique (invitation, email) key.
        db.rollback()
        raise DuplicateResponse(normalize_email(email)) from exc
    logger.info(
        "RSVP %s recorded for event %s (party of %s)",
        response,
        view.event.id,
        party or 0,
    )
    return rsvp


def resend_invitation(
    db: DbSession, event_id: str, email: str, *, mailer: Mailer
) -> SendResult:
    """Send the invitation for an approved event to a single address."""
    if not is_valid_email(email):
        raise ValidationFailed("Please enter a valid email address")
    event = crud.get_event(db, event_id)
    if event is None:
        raise EventNotFound(event_id)
    if event.approval_status != "approved":
        raise InvalidTransition("Can only resend invitations for approved events")
    address = normalize_email(email)
    result = send_one(mailer, render_invitation(event).addressed_to(address))
    if not result.success:
        raise MailDeliveryError(f"Failed to send invitation: {result.error}")
    logger.info("Invitation for event %s resent to %s", event.id, address)
    return result


def rsvp_summary(db: DbSession, event_id: str) -> dict[str, int]:
    """Return yes/no counts and the headcount of yes responses."""
    if crud.get_event(db, event_id) is None:
        raise EventNotFound(event_id)
    return crud.response_totals(db, event_id)
