"""Event proposal lifecycle: propose, approve, reject, cancel, delete, edit.

State machine (``approval_status`` / ``status``)::

    propose -> pending/inactive
    pending --approve--> approved/active --cancel--> approved/cancelled
    pending --reject---> rejected/rejected
    any state --delete--> removed (RSVPs cascade)

Every transition is a conditional UPDATE that names the state it expects,
so a second reviewer acting on the same event sees ``InvalidTransition``
instead of repeating the side effects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from sqlalchemy.orm import Session as DbSession

from . import crud
from .emails import render_invitation, render_rejection
from .errors import EventNotFound, InvalidTransition, ValidationFailed, VenueNotFound
from .mailer import DispatchReport, Mailer, dispatch_batch, send_one
from .models import EventProposal
from .sessions import Session

logger = logging.getLogger("uvicorn.error")

EVENT_TYPES = ("Coffee", "Lunch", "Dinner")


@dataclass
class ApprovalOutcome:
    event: EventProposal
    report: DispatchReport

    @property
    def warning(self) -> str | None:
        if not self.report.partial_failure:
            return None
        return (
            f"Event approved, but {self.report.failed} of {self.report.total} "
            "invitations could not be sent."
        )


@dataclass
class RejectionOutcome:
    event: EventProposal
    notified: bool
    error: str | None = None


@dataclass
class UpdateOutcome:
    event: EventProposal
    report: DispatchReport | None = field(default=None)


def _require_event(db: DbSession, event_id: str) -> EventProposal:
    event = crud.get_event(db, event_id)
    if event is None:
        raise EventNotFound(event_id)
    return event


def _reloaded(db: DbSession, event_id: str) -> EventProposal:
    event = crud.reload_event(db, event_id)
    if event is None:
        raise EventNotFound(event_id)
    return event


def invitation_recipients(db: DbSession, event: EventProposal) -> list[str]:
    if event.invite_type == "select":
        return crud.notification_recipients(db, event.selected_member_ids or [])
    return crud.notification_recipients(db)


def propose(
    db: DbSession,
    *,
    session: Session,
    venue_id: str,
    proposed_date: datetime | None,
    rsvp_deadline: datetime | None,
    custom_message: str | None = None,
    event_type: str = "Dinner",
    group_name: str | None = None,
    invite_type: str = "all",
    selected_member_ids: Sequence[str] | None = None,
) -> EventProposal:
    """Create a pending proposal. No email goes out until an admin approves."""
    if not session.is_member:
        raise ValidationFailed("Sign in to propose an event")
    if proposed_date is None or rsvp_deadline is None:
        raise ValidationFailed("Event date and RSVP deadline are required")
    if event_type not in EVENT_TYPES:
        raise ValidationFailed("Event type must be Coffee, Lunch or Dinner")
    venue = crud.get_venue(db, venue_id)
    if venue is None:
        raise VenueNotFound(venue_id)
    name = (group_name or "").strip() or f"{event_type} at {venue.business_name}"
    if rsvp_deadline > proposed_date:
        # Accepted as submitted; see DESIGN.md on deadline ordering.
        logger.warning(
            "Proposal %r has an RSVP deadline (%s) after the event (%s)",
            name,
            rsvp_deadline.isoformat(),
            proposed_date.isoformat(),
        )
    event = crud.create_event_proposal(
        db,
        creator=session.member,
        venue=venue,
        group_name=name,
        proposed_date=proposed_date,
        rsvp_deadline=rsvp_deadline,
        custom_message=custom_message,
        invite_type=invite_type,
        selected_member_ids=selected_member_ids,
    )
    logger.info("Event %s proposed: %s", event.id, event.group_name)
    return event


def approve(db: DbSession, event_id: str, *, mailer: Mailer) -> ApprovalOutcome:
    """Approve a pending event and fan the invitation out to members.

    The approval is committed first and is never reverted by mail failures;
    the dispatch report says how many sends failed.
    """
    _require_event(db, event_id)
    moved = crud.transition_event(
        db,
        event_id,
        expected={"approval_status": "pending"},
        values={"approval_status": "approved", "status": "active"},
    )
    if not moved:
        raise InvalidTransition("Only pending events can be approved")
    # Make the approval durable before any email goes out.
    db.commit()
    event = _reloaded(db, event_id)
    logger.info("Event %s approved", event.id)

    recipients = invitation_recipients(db, event)
    report = dispatch_batch(mailer, render_invitation(event), recipients)
    if report.partial_failure:
        logger.warning(
            "Event %s approved with %d of %d invitations failed",
            event.id,
            report.failed,
            report.total,
        )
    return ApprovalOutcome(event=event, report=report)


def reject(db: DbSession, event_id: str, *, mailer: Mailer) -> RejectionOutcome:
    """Reject a pending event and notify its creator only."""
    _require_event(db, event_id)
    moved = crud.transition_event(
        db,
        event_id,
        expected={"approval_status": "pending"},
        values={"approval_status": "rejected", "status": "rejected"},
    )
    if not moved:
        raise InvalidTransition("Only pending events can be rejected")
    db.commit()
    event = _reloaded(db, event_id)
    logger.info("Event %s rejected", event.id)

    creator = event.creator
    if creator is None or not creator.email:
        logger.error("Could not find creator email for rejected event %s", event.id)
        return RejectionOutcome(
            event=event, notified=False, error="Could not find creator email"
        )
    result = send_one(mailer, render_rejection(event).addressed_to(creator.email))
    if not result.success:
        logger.error(
            "Failed to send rejection email for event %s: %s", event.id, result.error
        )
    return RejectionOutcome(event=event, notified=result.success, error=result.error)


def cancel(db: DbSession, event_id: str) -> EventProposal:
    """Cancel an active event. Invitees are not notified."""
    _require_event(db, event_id)
    moved = crud.transition_event(
        db,
        event_id,
        expected={"status": "active"},
        values={"status": "cancelled"},
    )
    if not moved:
        raise InvalidTransition("Only active events can be cancelled")
    event = _reloaded(db, event_id)
    logger.info("Event %s cancelled", event.id)
    return event


def delete(db: DbSession, event_id: str) -> None:
    """Permanently remove an event and its RSVP responses."""
    event = _require_event(db, event_id)
    db.delete(event)
    db.flush()
    logger.info("Event %s deleted", event_id)


def update_event(
    db: DbSession,
    event_id: str,
    *,
    mailer: Mailer,
    group_name: str | None = None,
    proposed_date: datetime | None = None,
    rsvp_deadline: datetime | None = None,
    custom_message: str | None = None,
    update_message: bool = False,
    notify: bool = False,
) -> UpdateOutcome:
    """Edit an event's details, optionally re-sending the invitation."""
    event = _require_event(db, event_id)
    if event.status in ("cancelled", "rejected"):
        raise InvalidTransition("Cancelled or rejected events cannot be edited")
    if notify and (event.approval_status != "approved" or event.status != "active"):
        raise InvalidTransition("Only approved, active events can notify members")
    event = crud.update_event_details(
        db,
        event,
        group_name=group_name,
        proposed_date=proposed_date,
        rsvp_deadline=rsvp_deadline,
        custom_message=custom_message,
        update_message=update_message,
    )
    logger.info("Event %s updated", event.id)
    if not notify:
        return UpdateOutcome(event=event)
    db.commit()
    recipients = invitation_recipients(db, event)
    report = dispatch_batch(mailer, render_invitation(event, is_update=True), recipients)
    return UpdateOutcome(event=event, report=report)
