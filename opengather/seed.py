"""Development helpers for populating fake members, venues and events."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import (
    create_event_proposal,
    create_member,
    create_rsvp_response,
    create_venue,
    get_member_by_email,
    transition_event,
)
from .database import get_session
from .models import EventProposal, Member, Venue
from .storage import init_db
from .utils import utcnow

_venue_suffixes = ["Bistro", "Kitchen", "Cafe", "Tavern", "Grill", "Diner", "House"]
_event_types = ["Coffee", "Lunch", "Dinner", "Dinner"]
_event_hours = {"Coffee": 9, "Lunch": 12, "Dinner": 18}
_approval_mix = ["pending", "approved", "approved", "rejected"]


def seed_fake_data(
    *,
    venue_count: int = 6,
    member_count: int = 12,
    event_count: int = 4,
    max_rsvps_per_event: int = 5,
) -> dict[str, int]:
    """Populate the SQLite database with synthetic members, venues and events."""
    if venue_count < 1 and event_count > 0:
        raise ValueError("venue_count must be >= 1 when events are requested")
    if member_count < 0:
        raise ValueError("member_count must be >= 0")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if max_rsvps_per_event < 0:
        raise ValueError("max_rsvps_per_event must be >= 0")

    init_db()
    fake = Faker()
    stats = {"members": 0, "venues": 0, "events": 0, "rsvps": 0}

    with get_session() as session:
        members = []
        for _ in range(member_count):
            member = _create_member(session, fake)
            if member is not None:
                members.append(member)
                stats["members"] += 1

        venues = [_create_venue(session, fake) for _ in range(venue_count)]
        stats["venues"] = len(venues)

        approved = [venue for venue in venues if venue.status == "approved"]
        for _ in range(event_count):
            venue = random.choice(approved or venues)
            creator = random.choice(members) if members else None
            event = _create_event(session, fake, venue=venue, creator=creator)
            stats["events"] += 1
            if event.approval_status == "approved":
                stats["rsvps"] += _create_rsvps(
                    session, fake, event, max_rsvps_per_event
                )

    return stats


def _create_member(session: Session, fake: Faker) -> Member | None:
    email = fake.unique.email()
    if get_member_by_email(session, email):
        return None
    kind = "simple" if random.random() < 0.3 else "full"
    return create_member(session, email=email, display_name=fake.name(), kind=kind)


def _create_venue(session: Session, fake: Faker) -> Venue:
    name = f"{fake.last_name()}'s {random.choice(_venue_suffixes)}"
    status = "approved" if random.random() < 0.8 else "pending"
    return create_venue(
        session,
        business_name=name,
        address=fake.address().replace("\n", ", "),
        description=fake.sentence(nb_words=12),
        website=fake.url(),
        status=status,
    )


def _random_event_time(event_type: str) -> datetime:
    day = utcnow().date() + timedelta(days=random.randint(3, 30))
    return datetime(day.year, day.month, day.day, _event_hours[event_type])


def _create_event(
    session: Session, fake: Faker, *, venue: Venue, creator: Member | None
) -> EventProposal:
    event_type = random.choice(_event_types)
    proposed_date = _random_event_time(event_type)
    event = create_event_proposal(
        session,
        creator=creator,
        venue=venue,
        group_name=f"{event_type} at {venue.business_name}",
        proposed_date=proposed_date,
        rsvp_deadline=proposed_date - timedelta(days=2),
        custom_message=fake.paragraph() if random.random() < 0.5 else None,
    )
    outcome = random.choice(_approval_mix)
    if outcome == "approved":
        transition_event(
            session,
            event.id,
            expected={"approval_status": "pending"},
            values={"approval_status": "approved", "status": "active"},
        )
    elif outcome == "rejected":
        transition_event(
            session,
            event.id,
            expected={"approval_status": "pending"},
            values={"approval_status": "rejected", "status": "rejected"},
        )
    return event


def _create_rsvps(
    session: Session, fake: Faker, event: EventProposal, max_rsvps: int
) -> int:
    if max_rsvps <= 0:
        return 0
    total = random.randint(0, max_rsvps)
    for _ in range(total):
        response = "yes" if random.random() < 0.7 else "no"
        create_rsvp_response(
            session,
            event=event,
            email=fake.unique.email(),
            response=response,
            guest_count=random.randint(1, 4),
            message=fake.sentence() if random.random() < 0.3 else None,
        )
    return total
