from __future__ import annotations

from datetime import datetime

import pytest

from opengather import crud, lifecycle
from opengather.errors import (
    EventNotFound,
    InvalidTransition,
    ValidationFailed,
    VenueNotFound,
)
from opengather.models import EventProposal, RSVPResponse
from opengather.sessions import ANONYMOUS, Session, SessionKind

from conftest import FakeMailer


def _member_session(member) -> Session:
    kind = SessionKind.SIMPLE if member.kind == "simple" else SessionKind.FULL
    return Session(kind=kind, member=member)


def _status(db, event_id):
    event = crud.reload_event(db, event_id)
    return event.approval_status, event.status


def test_propose_creates_pending_inactive_event(db, make_member, make_venue, mailer):
    creator = make_member(display_name="Dana")
    venue = make_venue("Blue Door Bistro")

    event = lifecycle.propose(
        db,
        session=_member_session(creator),
        venue_id=venue.id,
        proposed_date=datetime(2025, 6, 1, 18, 0),
        rsvp_deadline=datetime(2025, 5, 25, 0, 0),
        custom_message="Bring a friend",
    )
    db.commit()

    assert event.approval_status == "pending"
    assert event.status == "inactive"
    assert event.group_name == "Dinner at Blue Door Bistro"
    assert event.creator_id == creator.id
    assert len(event.invite_token) >= 32
    assert mailer.sent == []


def test_propose_uses_event_type_in_default_name(db, make_member, make_venue):
    creator = make_member()
    venue = make_venue("Corner Cafe")
    event = lifecycle.propose(
        db,
        session=_member_session(creator),
        venue_id=venue.id,
        proposed_date=datetime(2025, 6, 1, 9, 0),
        rsvp_deadline=datetime(2025, 5, 30, 0, 0),
        event_type="Coffee",
    )
    assert event.group_name == "Coffee at Corner Cafe"


def test_simple_member_can_propose(db, make_member, make_venue):
    creator = make_member(kind="simple")
    venue = make_venue()
    event = lifecycle.propose(
        db,
        session=_member_session(creator),
        venue_id=venue.id,
        proposed_date=datetime(2025, 6, 1, 18, 0),
        rsvp_deadline=datetime(2025, 5, 25, 0, 0),
    )
    assert event.approval_status == "pending"


def test_propose_requires_member_and_dates(db, make_venue):
    venue = make_venue()
    with pytest.raises(ValidationFailed):
        lifecycle.propose(
            db,
            session=ANONYMOUS,
            venue_id=venue.id,
            proposed_date=datetime(2025, 6, 1, 18, 0),
            rsvp_deadline=datetime(2025, 5, 25),
        )
    member_session = Session(kind=SessionKind.FULL, is_root=True)
    with pytest.raises(ValidationFailed):
        lifecycle.propose(
            db,
            session=member_session,
            venue_id=venue.id,
            proposed_date=None,
            rsvp_deadline=datetime(2025, 5, 25),
        )
    with pytest.raises(VenueNotFound):
        lifecycle.propose(
            db,
            session=member_session,
            venue_id="missing",
            proposed_date=datetime(2025, 6, 1, 18, 0),
            rsvp_deadline=datetime(2025, 5, 25),
        )


def test_propose_accepts_deadline_after_event_with_warning(
    db, make_member, make_venue, caplog
):
    creator = make_member()
    venue = make_venue()
    with caplog.at_level("WARNING", logger="uvicorn.error"):
        event = lifecycle.propose(
            db,
            session=_member_session(creator),
            venue_id=venue.id,
            proposed_date=datetime(2025, 6, 1, 18, 0),
            rsvp_deadline=datetime(2025, 6, 2, 0, 0),
        )
    assert event.approval_status == "pending"
    assert "after the event" in caplog.text


def test_approve_sends_invitation_to_every_member(db, make_member, make_event, mailer):
    creator = make_member("dana@example.com", display_name="Dana")
    make_member("ali@example.com")
    make_member("sam@example.com")
    event = make_event(
        creator=creator,
        proposed_date=datetime(2025, 6, 1, 18, 0),
        rsvp_deadline=datetime(2025, 5, 25, 0, 0),
    )

    outcome = lifecycle.approve(db, event.id, mailer=mailer)

    assert _status(db, event.id) == ("approved", "active")
    assert mailer.recipients == [
        "ali@example.com",
        "dana@example.com",
        "sam@example.com",
    ]
    assert outcome.report.as_dict() == {"successful": 3, "failed": 0, "total": 3}
    assert outcome.warning is None
    message = mailer.sent[0]
    assert "Rosa's Kitchen" in message.subject
    assert f"/event-rsvp?token={event.invite_token}" in message.html
    assert "Sunday, June 1, 2025" in message.html
    assert "6:00 PM" in message.html


def test_approve_skips_inactive_and_opted_out_members(
    db, make_member, make_event, mailer
):
    make_member("on@example.com")
    make_member("quiet@example.com", receive_notifications=False)
    gone = make_member("gone@example.com")
    gone.is_active = False
    db.commit()
    event = make_event()

    lifecycle.approve(db, event.id, mailer=mailer)

    assert mailer.recipients == ["on@example.com"]


def test_approve_select_invite_only_reaches_selected(
    db, make_member, make_event, mailer
):
    picked = make_member("picked@example.com")
    make_member("other@example.com")
    event = make_event(invite_type="select", selected_member_ids=[picked.id])

    lifecycle.approve(db, event.id, mailer=mailer)

    assert mailer.recipients == ["picked@example.com"]


def test_partial_send_failure_keeps_approval(db, make_member, make_event):
    for name in ("a", "b", "c", "d"):
        make_member(f"{name}@example.com")
    event = make_event()
    mailer = FakeMailer(fail_for={"b@example.com"}, raise_for={"d@example.com"})

    outcome = lifecycle.approve(db, event.id, mailer=mailer)

    assert _status(db, event.id) == ("approved", "active")
    assert outcome.report.successful == 2
    assert outcome.report.failed == 2
    assert outcome.warning == (
        "Event approved, but 2 of 4 invitations could not be sent."
    )
    assert sorted(result.email for result in outcome.report.failures) == [
        "b@example.com",
        "d@example.com",
    ]


def test_second_approve_is_rejected_without_sending(db, make_member, make_event):
    make_member("a@example.com")
    event = make_event()
    first = FakeMailer()
    second = FakeMailer()

    lifecycle.approve(db, event.id, mailer=first)
    with pytest.raises(InvalidTransition):
        lifecycle.approve(db, event.id, mailer=second)

    assert len(first.sent) == 1
    assert second.sent == []


def test_reject_notifies_creator_only(db, make_member, make_venue, make_event, mailer):
    creator = make_member("creator@example.com", display_name="Dana")
    make_member("member@example.com")
    venue = make_venue("Harbor Grill")
    event = make_event(creator=creator, venue=venue, group_name="Lunch at Harbor Grill")

    outcome = lifecycle.reject(db, event.id, mailer=mailer)

    assert _status(db, event.id) == ("rejected", "rejected")
    assert outcome.notified is True
    assert mailer.recipients == ["creator@example.com"]
    assert mailer.sent[0].subject == "Event Rejection - Lunch at Harbor Grill"
    assert "Hi Dana" in mailer.sent[0].html


def test_reject_survives_mail_failure(db, make_member, make_event):
    creator = make_member("creator@example.com")
    event = make_event(creator=creator)
    mailer = FakeMailer(fail_for={"creator@example.com"})

    outcome = lifecycle.reject(db, event.id, mailer=mailer)

    assert outcome.notified is False
    assert _status(db, event.id) == ("rejected", "rejected")


def test_reject_without_creator_is_not_notified(db, make_event, mailer):
    event = make_event(creator=None)
    outcome = lifecycle.reject(db, event.id, mailer=mailer)
    assert outcome.notified is False
    assert mailer.sent == []


@pytest.mark.parametrize("operation", ["approve", "reject"])
def test_review_from_terminal_state_fails_without_mutation(
    db, make_event, mailer, operation
):
    event = make_event()
    lifecycle.reject(db, event.id, mailer=mailer)
    sent_before = len(mailer.sent)

    with pytest.raises(InvalidTransition):
        getattr(lifecycle, operation)(db, event.id, mailer=mailer)

    assert _status(db, event.id) == ("rejected", "rejected")
    assert len(mailer.sent) == sent_before


def test_cancel_only_from_active(db, make_event, approved_event, mailer):
    pending = make_event()
    with pytest.raises(InvalidTransition):
        lifecycle.cancel(db, pending.id)
    assert _status(db, pending.id) == ("pending", "inactive")

    active = approved_event()
    cancelled = lifecycle.cancel(db, active.id)
    assert (cancelled.approval_status, cancelled.status) == ("approved", "cancelled")

    with pytest.raises(InvalidTransition):
        lifecycle.cancel(db, active.id)
    with pytest.raises(InvalidTransition):
        lifecycle.approve(db, active.id, mailer=mailer)
    assert mailer.sent == []


def test_delete_removes_event_and_responses(db, approved_event):
    event = approved_event()
    crud.create_rsvp_response(
        db, event=event, email="a@example.com", response="yes", guest_count=2
    )
    db.commit()

    lifecycle.delete(db, event.id)
    db.commit()

    assert crud.get_event(db, event.id) is None
    assert db.query(RSVPResponse).count() == 0
    with pytest.raises(EventNotFound):
        lifecycle.delete(db, event.id)


def test_unknown_event_raises_not_found(db, mailer):
    with pytest.raises(EventNotFound):
        lifecycle.approve(db, "missing", mailer=mailer)
    with pytest.raises(EventNotFound):
        lifecycle.cancel(db, "missing")


def test_update_event_with_notification(db, make_member, approved_event, mailer):
    make_member("a@example.com")
    event = approved_event()

    outcome = lifecycle.update_event(
        db,
        event.id,
        mailer=mailer,
        custom_message="Moved to the patio",
        update_message=True,
        notify=True,
    )

    assert outcome.event.custom_message == "Moved to the patio"
    assert outcome.report.successful == 1
    assert mailer.sent[0].subject.startswith("Updated invitation:")
    assert "Moved to the patio" in mailer.sent[0].html


def test_update_event_without_notify_sends_nothing(db, make_event, mailer):
    event = make_event()
    outcome = lifecycle.update_event(
        db, event.id, mailer=mailer, group_name="Dinner on the patio"
    )
    assert outcome.event.group_name == "Dinner on the patio"
    assert outcome.report is None
    assert mailer.sent == []


def test_update_event_notify_requires_active(db, make_event, mailer):
    event = make_event()
    with pytest.raises(InvalidTransition):
        lifecycle.update_event(
            db, event.id, mailer=mailer, group_name="Changed", notify=True
        )
    db.commit()
    db.expire_all()

    assert db.get(EventProposal, event.id).group_name == "Dinner at Rosa's Kitchen"
    assert mailer.sent == []


def test_cancelled_event_cannot_be_edited(db, approved_event, mailer):
    event = approved_event()
    lifecycle.cancel(db, event.id)
    with pytest.raises(InvalidTransition):
        lifecycle.update_event(db, event.id, mailer=mailer, group_name="Again")
