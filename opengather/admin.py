"""Admin review surface: event queue, dashboard, venues, members, messages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session as DbSession

from . import crud
from .emails import render_welcome
from .errors import (
    EventNotFound,
    InvalidTransition,
    MemberNotFound,
    MessageNotFound,
    ValidationFailed,
    VenueNotFound,
)
from .mailer import Mailer, send_one
from .models import EventProposal, Member, Message, RSVPResponse, Venue
from .realtime import publish_after_commit
from .sessions import Session

logger = logging.getLogger("uvicorn.error")

REVIEW_QUEUE_STATUSES = ("pending", "approved")


# Events


def list_events_for_review(
    db: DbSession,
    statuses: Sequence[str] = REVIEW_QUEUE_STATUSES,
    *,
    limit: int | None = None,
) -> Sequence[EventProposal]:
    """Events with their venue and creator, newest first, in one query."""
    return crud.list_events(db, approval_statuses=statuses, limit=limit)


def get_event_row(db: DbSession, event_id: str) -> EventProposal:
    """Reload a single row after a mutation instead of the whole list."""
    event = crud.reload_event(db, event_id)
    if event is None:
        raise EventNotFound(event_id)
    return event


def dashboard_counts(db: DbSession) -> dict[str, Any]:
    members = {"active": 0, "inactive": 0}
    rows = db.execute(
        select(Member.is_active, func.count()).group_by(Member.is_active)
    ).all()
    for is_active, count in rows:
        members["active" if is_active else "inactive"] = count
    return {
        "events": {
            **crud.count_events_by_approval(db),
            "cancelled": crud.count_cancelled_events(db),
        },
        "venues": crud.count_venues_by_status(db),
        "members": members,
    }


# Venues


def serialize_venue(venue: Venue) -> dict[str, Any]:
    return {
        "id": venue.id,
        "business_name": venue.business_name,
        "address": venue.address,
        "description": venue.description,
        "google_maps_link": venue.google_maps_link,
        "facebook_link": venue.facebook_link,
        "website": venue.website,
        "image_urls": venue.image_urls,
        "status": venue.status,
        "submitted_by": venue.submitted_by,
        "created_at": venue.created_at.isoformat() if venue.created_at else None,
    }


def _require_venue(db: DbSession, venue_id: str) -> Venue:
    venue = crud.get_venue(db, venue_id)
    if venue is None:
        raise VenueNotFound(venue_id)
    return venue


def submit_venue(db: DbSession, *, session: Session, **fields: Any) -> Venue:
    """Record a member's venue suggestion; admins are alerted on commit."""
    if not session.is_member:
        raise ValidationFailed("Sign in to suggest a venue")
    # Admin submissions skip the review queue.
    status = "approved" if session.is_admin else "pending"
    venue = crud.create_venue(
        db, submitted_by=session.member, status=status, **fields
    )
    logger.info("Venue %s submitted: %s", venue.id, venue.business_name)
    if status == "pending":
        publish_after_commit(db, "venue_submitted", serialize_venue(venue))
    return venue


def approve_venue(db: DbSession, venue_id: str) -> Venue:
    venue = _require_venue(db, venue_id)
    crud.set_venue_status(db, venue, "approved")
    logger.info("Venue %s approved", venue.id)
    return venue


def reject_venue(db: DbSession, venue_id: str) -> Venue:
    venue = _require_venue(db, venue_id)
    crud.set_venue_status(db, venue, "rejected")
    logger.info("Venue %s rejected", venue.id)
    return venue


def update_venue(db: DbSession, venue_id: str, **changes: Any) -> Venue:
    venue = _require_venue(db, venue_id)
    return crud.update_venue(db, venue, **changes)


def delete_venue(db: DbSession, venue_id: str) -> None:
    venue = _require_venue(db, venue_id)
    if crud.venue_has_events(db, venue_id):
        raise InvalidTransition("Venue has events and cannot be deleted")
    db.delete(venue)
    db.flush()
    logger.info("Venue %s deleted", venue_id)


def list_venues(db: DbSession, status: str | None = None) -> Sequence[Venue]:
    return crud.list_venues(db, status=status)


# Members


def serialize_member(member: Member, *, include_token: bool = False) -> dict[str, Any]:
    data = {
        "id": member.id,
        "kind": member.kind,
        "email": member.email,
        "display_name": member.display_name,
        "is_admin": member.is_admin,
        "is_active": member.is_active,
        "receive_notifications": member.receive_notifications,
    }
    if include_token:
        data["access_token"] = member.access_token
    return data


@dataclass
class MemberOutcome:
    member: Member
    welcomed: bool = False
    error: str | None = None


def create_member(
    db: DbSession,
    *,
    email: str,
    display_name: str | None = None,
    kind: str = "full",
    is_admin: bool = False,
    mailer: Mailer | None = None,
) -> MemberOutcome:
    """Create a member and, given a mailer, send the welcome email.

    The member is committed first; a failed welcome is logged and reported
    but never undoes the account.
    """
    member = crud.create_member(
        db, email=email, display_name=display_name, kind=kind, is_admin=is_admin
    )
    logger.info("Member %s created (%s)", member.id, member.kind)
    if mailer is None:
        return MemberOutcome(member=member)
    db.commit()
    result = send_one(mailer, render_welcome(member).addressed_to(member.email))
    if not result.success:
        logger.warning(
            "Failed to send welcome email to member %s: %s", member.id, result.error
        )
    return MemberOutcome(member=member, welcomed=result.success, error=result.error)


def deactivate_member(db: DbSession, member_id: str) -> Member:
    member = crud.get_member(db, member_id)
    if member is None:
        raise MemberNotFound(member_id)
    member.is_active = False
    db.add(member)
    db.flush()
    logger.info("Member %s deactivated", member.id)
    return member


def purge_member(db: DbSession, member_id: str) -> dict[str, int]:
    """Hard-delete a member and everything they own.

    Removes their RSVPs, the events they created (with those events' RSVPs),
    their messages and the venues they submitted. A submitted venue that
    still hosts someone else's event is kept and loses its submitter.
    """
    member = crud.get_member(db, member_id)
    if member is None:
        raise MemberNotFound(member_id)
    own_events = select(EventProposal.id).where(EventProposal.creator_id == member.id)
    rsvp_count = db.scalar(
        select(func.count())
        .select_from(RSVPResponse)
        .where(
            (RSVPResponse.invitee_email == member.email)
            | RSVPResponse.invitation_id.in_(own_events)
        )
    )
    for rsvp in db.scalars(
        select(RSVPResponse).where(RSVPResponse.invitee_email == member.email)
    ):
        db.delete(rsvp)
    # Responses to the member's own events go with them (ON DELETE CASCADE).
    events = db.scalars(
        select(EventProposal).where(EventProposal.creator_id == member.id)
    ).all()
    for event in events:
        db.delete(event)
    db.flush()

    venue_in_use = (
        select(EventProposal.id).where(EventProposal.venue_id == Venue.id).exists()
    )
    venues = db.scalars(
        select(Venue).where(Venue.submitted_by == member.id, ~venue_in_use)
    ).all()
    for venue in venues:
        db.delete(venue)
    messages = db.scalars(select(Message).where(Message.author_id == member.id)).all()
    for message in messages:
        db.delete(message)
    db.delete(member)
    db.flush()
    db.expire_all()

    counts = {
        "rsvps": rsvp_count or 0,
        "events": len(events),
        "venues": len(venues),
        "messages": len(messages),
    }
    logger.info("Member %s purged: %s", member_id, counts)
    return counts


def list_members(db: DbSession, *, active_only: bool = False) -> Sequence[Member]:
    return crud.list_members(db, active_only=active_only)


# Message board


def post_message(db: DbSession, *, session: Session, content: str) -> Message:
    if session.member is None:
        raise ValidationFailed("Only members can post messages")
    return crud.create_message(db, author=session.member, content=content)


def list_messages(db: DbSession, *, limit: int | None = None) -> Sequence[Message]:
    return crud.list_messages(db, limit=limit)


def delete_message(db: DbSession, message_id: str) -> None:
    message = db.get(Message, message_id)
    if message is None:
        raise MessageNotFound(message_id)
    db.delete(message)
    db.flush()
    logger.info("Message %s deleted", message_id)
