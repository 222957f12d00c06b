"""CRUD helpers for members, venues, event proposals, RSVPs and messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload

from .errors import ValidationFailed
from .models import (
    INVITE_TYPES,
    MEMBER_KINDS,
    REVIEW_STATUSES,
    EventProposal,
    Member,
    Message,
    RSVPResponse,
    Venue,
)
from .utils import is_valid_email, normalize_email, to_naive_utc, utcnow

MAX_VENUE_IMAGES = 3
VENUE_FIELDS = (
    "business_name",
    "address",
    "description",
    "google_maps_link",
    "facebook_link",
    "website",
)


def _now() -> datetime:
    return utcnow()


def _clean(value: str | None) -> str | None:
    cleaned = (value or "").strip()
    return cleaned or None


# Members


def get_member(session: Session, member_id: str) -> Member | None:
    return session.get(Member, member_id)


def get_member_by_email(session: Session, email: str) -> Member | None:
    stmt = select(Member).where(Member.email == normalize_email(email))
    return session.scalars(stmt).first()


def get_member_by_token(session: Session, token: str | None) -> Member | None:
    if not token:
        return None
    stmt = select(Member).where(Member.access_token == token)
    return session.scalars(stmt).first()


def create_member(
    session: Session,
    *,
    email: str,
    display_name: str | None = None,
    kind: str = "full",
    is_admin: bool = False,
    receive_notifications: bool = True,
) -> Member:
    """Create a member; simple (email-only) members can never be admins."""
    if kind not in MEMBER_KINDS:
        raise ValidationFailed("Member kind must be 'full' or 'simple'")
    if not is_valid_email(email):
        raise ValidationFailed("Please enter a valid email address")
    if kind == "simple" and is_admin:
        raise ValidationFailed("Simple members cannot be administrators")
    if get_member_by_email(session, email):
        raise ValidationFailed("A member with that email already exists")
    member = Member(
        kind=kind,
        email=normalize_email(email),
        display_name=_clean(display_name),
        is_admin=is_admin,
        receive_notifications=receive_notifications,
        created_at=_now(),
    )
    session.add(member)
    session.flush()
    return member


def list_members(session: Session, *, active_only: bool = False) -> Sequence[Member]:
    stmt = select(Member).order_by(Member.created_at.asc())
    if active_only:
        stmt = stmt.where(Member.is_active.is_(True))
    return session.scalars(stmt).all()


def notification_recipients(
    session: Session, member_ids: Sequence[str] | None = None
) -> list[str]:
    """Return the distinct invitation addresses for active, opted-in members.

    ``member_ids`` narrows the list for invitations sent to selected members.
    """
    stmt = (
        select(Member.email)
        .where(
            Member.is_active.is_(True),
            Member.receive_notifications.is_(True),
            Member.email.is_not(None),
            Member.email != "",
        )
        .order_by(Member.email.asc())
    )
    if member_ids is not None:
        if not member_ids:
            return []
        stmt = stmt.where(Member.id.in_(list(member_ids)))
    seen: dict[str, None] = {}
    for email in session.scalars(stmt):
        seen.setdefault(email.strip(), None)
    return list(seen)


# Venues


def get_venue(session: Session, venue_id: str) -> Venue | None:
    return session.get(Venue, venue_id)


def _apply_venue_images(venue: Venue, image_urls: Sequence[str] | None) -> None:
    urls = [url for url in (_clean(raw) for raw in image_urls or []) if url]
    if len(urls) > MAX_VENUE_IMAGES:
        raise ValidationFailed(f"A venue can have at most {MAX_VENUE_IMAGES} images")
    padded = urls + [None] * (MAX_VENUE_IMAGES - len(urls))
    venue.image_1_url, venue.image_2_url, venue.image_3_url = padded


def create_venue(
    session: Session,
    *,
    business_name: str,
    address: str,
    submitted_by: Member | None = None,
    description: str | None = None,
    google_maps_link: str | None = None,
    facebook_link: str | None = None,
    website: str | None = None,
    image_urls: Sequence[str] | None = None,
    status: str = "pending",
) -> Venue:
    if not _clean(business_name) or not _clean(address):
        raise ValidationFailed("Business name and address are required")
    if status not in REVIEW_STATUSES:
        raise ValidationFailed("Invalid venue status")
    venue = Venue(
        business_name=business_name.strip(),
        address=address.strip(),
        description=_clean(description),
        google_maps_link=_clean(google_maps_link),
        facebook_link=_clean(facebook_link),
        website=_clean(website),
        status=status,
        submitter=submitted_by,
        created_at=_now(),
    )
    _apply_venue_images(venue, image_urls)
    session.add(venue)
    session.flush()
    return venue


def update_venue(session: Session, venue: Venue, **changes: Any) -> Venue:
    """Apply a partial update; keys outside the venue's editable fields are ignored."""
    for field in VENUE_FIELDS:
        if field in changes:
            value = _clean(changes[field])
            if field in {"business_name", "address"} and not value:
                raise ValidationFailed("Business name and address are required")
            setattr(venue, field, value)
    if "image_urls" in changes:
        _apply_venue_images(venue, changes["image_urls"])
    venue.updated_at = _now()
    session.add(venue)
    session.flush()
    return venue


def set_venue_status(session: Session, venue: Venue, status: str) -> Venue:
    if status not in REVIEW_STATUSES:
        raise ValidationFailed("Invalid venue status")
    venue.status = status
    venue.updated_at = _now()
    session.add(venue)
    session.flush()
    return venue


def list_venues(session: Session, *, status: str | None = None) -> Sequence[Venue]:
    stmt = select(Venue).order_by(Venue.business_name.asc())
    if status is not None:
        stmt = stmt.where(Venue.status == status)
    return session.scalars(stmt).all()


def venue_has_events(session: Session, venue_id: str) -> bool:
    stmt = select(func.count()).select_from(EventProposal).where(
        EventProposal.venue_id == venue_id
    )
    return bool(session.scalar(stmt))


# Event proposals


def _event_query():
    return select(EventProposal).options(
        joinedload(EventProposal.venue), joinedload(EventProposal.creator)
    )


def get_event(session: Session, event_id: str) -> EventProposal | None:
    """Load one event with its venue and creator in a single round trip."""
    stmt = _event_query().where(EventProposal.id == event_id)
    return session.scalars(stmt).first()


def reload_event(session: Session, event_id: str) -> EventProposal | None:
    """Re-read one event, overwriting any stale copy in the identity map."""
    stmt = (
        _event_query()
        .where(EventProposal.id == event_id)
        .execution_options(populate_existing=True)
    )
    return session.scalars(stmt).first()


def get_event_by_token(session: Session, token: str | None) -> EventProposal | None:
    if not token:
        return None
    stmt = _event_query().where(EventProposal.invite_token == token)
    return session.scalars(stmt).first()


def list_events(
    session: Session,
    *,
    approval_statuses: Sequence[str] | None = None,
    limit: int | None = None,
) -> Sequence[EventProposal]:
    stmt = _event_query().order_by(EventProposal.created_at.desc())
    if approval_statuses:
        stmt = stmt.where(EventProposal.approval_status.in_(list(approval_statuses)))
    if limit and limit > 0:
        stmt = stmt.limit(limit)
    return session.scalars(stmt).unique().all()


def create_event_proposal(
    session: Session,
    *,
    creator: Member | None,
    venue: Venue,
    group_name: str,
    proposed_date: datetime,
    rsvp_deadline: datetime,
    custom_message: str | None = None,
    invite_type: str = "all",
    selected_member_ids: Sequence[str] | None = None,
) -> EventProposal:
    if invite_type not in INVITE_TYPES:
        raise ValidationFailed("Invite type must be 'all' or 'select'")
    if invite_type == "select" and not selected_member_ids:
        raise ValidationFailed("Select at least one member to invite")
    event = EventProposal(
        creator=creator,
        venue=venue,
        group_name=group_name.strip(),
        proposed_date=to_naive_utc(proposed_date),
        rsvp_deadline=to_naive_utc(rsvp_deadline),
        custom_message=_clean(custom_message),
        approval_status="pending",
        status="inactive",
        invite_type=invite_type,
        selected_member_ids=(
            list(selected_member_ids) if invite_type == "select" else None
        ),
        created_at=_now(),
    )
    session.add(event)
    session.flush()
    return event


def transition_event(
    session: Session,
    event_id: str,
    *,
    expected: dict[str, str],
    values: dict[str, str],
) -> bool:
    """Conditionally update an event's status columns.

    The ``WHERE`` clause carries the expected current state, so of two
    concurrent callers only one sees a row updated. Returns ``False`` when no
    row matched.
    """
    conditions = [EventProposal.id == event_id]
    conditions.extend(
        getattr(EventProposal, column) == value for column, value in expected.items()
    )
    stmt = (
        update(EventProposal)
        .where(*conditions)
        .values(**values, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount != 1:
        return False
    # Refresh any copy already in the identity map.
    session.get(EventProposal, event_id, populate_existing=True)
    return True


def update_event_details(
    session: Session,
    event: EventProposal,
    *,
    group_name: str | None = None,
    proposed_date: datetime | None = None,
    rsvp_deadline: datetime | None = None,
    custom_message: str | None = None,
    update_message: bool = False,
) -> EventProposal:
    if group_name is not None:
        if not group_name.strip():
            raise ValidationFailed("Event name cannot be empty")
        event.group_name = group_name.strip()
    if proposed_date is not None:
        event.proposed_date = to_naive_utc(proposed_date)
    if rsvp_deadline is not None:
        event.rsvp_deadline = to_naive_utc(rsvp_deadline)
    if update_message:
        event.custom_message = _clean(custom_message)
    event.updated_at = _now()
    session.add(event)
    session.flush()
    return event


def count_events_by_approval(session: Session) -> dict[str, int]:
    rows = session.execute(
        select(EventProposal.approval_status, func.count()).group_by(
            EventProposal.approval_status
        )
    ).all()
    counts = {status: 0 for status in REVIEW_STATUSES}
    for status, count in rows:
        counts[status] = count
    return counts


def count_cancelled_events(session: Session) -> int:
    stmt = select(func.count()).select_from(EventProposal).where(
        EventProposal.status == "cancelled"
    )
    return session.scalar(stmt) or 0


def count_venues_by_status(session: Session) -> dict[str, int]:
    rows = session.execute(
        select(Venue.status, func.count()).group_by(Venue.status)
    ).all()
    counts = {status: 0 for status in REVIEW_STATUSES}
    for status, count in rows:
        counts[status] = count
    return counts


# RSVP responses


def find_response(
    session: Session, event: EventProposal, email: str
) -> RSVPResponse | None:
    stmt = select(RSVPResponse).where(
        RSVPResponse.invitation_id == event.id,
        RSVPResponse.invitee_email == normalize_email(email),
    )
    return session.scalars(stmt).first()


def create_rsvp_response(
    session: Session,
    *,
    event: EventProposal,
    email: str,
    response: str,
    guest_count: int | None,
    message: str | None = None,
) -> RSVPResponse:
    rsvp = RSVPResponse(
        invitation_id=event.id,
        invitee_email=normalize_email(email),
        response=response,
        guest_count=guest_count if response == "yes" else None,
        response_message=_clean(message),
        response_date=_now(),
    )
    session.add(rsvp)
    session.flush()
    return rsvp


def list_responses(session: Session, event_id: str) -> Sequence[RSVPResponse]:
    stmt = (
        select(RSVPResponse)
        .where(RSVPResponse.invitation_id == event_id)
        .order_by(RSVPResponse.response_date.asc())
    )
    return session.scalars(stmt).all()


def response_totals(session: Session, event_id: str) -> dict[str, int]:
    rows = session.execute(
        select(
            RSVPResponse.response,
            func.count(),
            func.coalesce(func.sum(RSVPResponse.guest_count), 0),
        )
        .where(RSVPResponse.invitation_id == event_id)
        .group_by(RSVPResponse.response)
    ).all()
    totals = {"yes": 0, "no": 0, "headcount": 0}
    for response, count, party in rows:
        totals[response] = count
        if response == "yes":
            totals["headcount"] = int(party)
    return totals


# Message board


def create_message(session: Session, *, author: Member, content: str) -> Message:
    cleaned = _clean(content)
    if not cleaned:
        raise ValidationFailed("Message cannot be empty")
    message = Message(author=author, content=cleaned, created_at=_now())
    session.add(message)
    session.flush()
    return message


def list_messages(session: Session, *, limit: int | None = None) -> Sequence[Message]:
    stmt = (
        select(Message)
        .options(joinedload(Message.author))
        .order_by(Message.created_at.desc())
    )
    if limit and limit > 0:
        stmt = stmt.limit(limit)
    return session.scalars(stmt).all()
