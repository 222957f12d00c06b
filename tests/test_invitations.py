from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from opengather import crud, invitations, lifecycle
from opengather.errors import (
    DuplicateResponse,
    EventNotFound,
    InvalidTransition,
    InvitationClosed,
    InvitationNotFound,
    MailDeliveryError,
    ValidationFailed,
)
from opengather.utils import utcnow

from conftest import FakeMailer

BEFORE_DEADLINE = datetime(2025, 5, 20, 12, 0)
AFTER_DEADLINE = datetime(2025, 5, 26, 0, 0)


@pytest.fixture()
def june_event(approved_event, make_venue):
    venue = make_venue(
        "Blue Door Bistro",
        address="1 Harbor Way",
        google_maps_link="https://maps.example.com/blue-door",
    )
    return approved_event(
        venue=venue,
        proposed_date=datetime(2025, 6, 1, 18, 0),
        rsvp_deadline=datetime(2025, 5, 25, 0, 0),
    )


def test_resolve_returns_event_with_venue(db, june_event):
    view = invitations.resolve_invitation(
        db, june_event.invite_token, now=BEFORE_DEADLINE
    )
    assert view.event.id == june_event.id
    assert view.venue.business_name == "Blue Door Bistro"
    data = view.as_dict()
    assert data["venue"]["address"] == "1 Harbor Way"
    assert data["event_type"] == "Dinner"
    assert "invite_token" not in data


@pytest.mark.parametrize("outcome", ["pending", "rejected"])
def test_resolve_hides_unapproved_events(db, make_event, mailer, outcome):
    event = make_event()
    if outcome == "rejected":
        lifecycle.reject(db, event.id, mailer=mailer)
    with pytest.raises(InvitationNotFound):
        invitations.resolve_invitation(db, event.invite_token)


def test_resolve_unknown_token(db):
    with pytest.raises(InvitationNotFound):
        invitations.resolve_invitation(db, "abc123")
    with pytest.raises(InvitationNotFound):
        invitations.resolve_invitation(db, "")


def test_resolve_after_deadline_is_closed(db, june_event):
    with pytest.raises(InvitationClosed) as excinfo:
        invitations.resolve_invitation(db, june_event.invite_token, now=AFTER_DEADLINE)
    assert isinstance(excinfo.value, InvitationNotFound)
    assert excinfo.value.status_code == 410


def test_deadline_is_exclusive(db, june_event):
    with pytest.raises(InvitationClosed):
        invitations.resolve_invitation(
            db, june_event.invite_token, now=june_event.rsvp_deadline
        )


def test_cancelled_event_no_longer_resolves(db, june_event):
    lifecycle.cancel(db, june_event.id)
    with pytest.raises(InvitationNotFound):
        invitations.resolve_invitation(
            db, june_event.invite_token, now=BEFORE_DEADLINE
        )


def test_submit_yes_records_party_size(db, june_event):
    rsvp = invitations.submit_rsvp(
        db,
        june_event.invite_token,
        email="A@X.com",
        response="yes",
        guest_count=3,
        now=BEFORE_DEADLINE,
    )
    db.commit()

    assert rsvp.invitee_email == "a@x.com"
    assert rsvp.guest_count == 3
    assert [r.id for r in crud.list_responses(db, june_event.id)] == [rsvp.id]


def test_submit_yes_defaults_to_one_person(db, june_event):
    rsvp = invitations.submit_rsvp(
        db,
        june_event.invite_token,
        email="solo@example.com",
        response="yes",
        now=BEFORE_DEADLINE,
    )
    assert rsvp.guest_count == 1


def test_submit_no_ignores_guest_count(db, june_event):
    rsvp = invitations.submit_rsvp(
        db,
        june_event.invite_token,
        email="busy@example.com",
        response="no",
        guest_count=42,
        message="Next time!",
        now=BEFORE_DEADLINE,
    )
    assert rsvp.guest_count is None
    assert rsvp.response_message == "Next time!"


@pytest.mark.parametrize("guest_count", [0, 11, -1])
def test_submit_yes_rejects_out_of_range_party(db, june_event, guest_count):
    with pytest.raises(ValidationFailed):
        invitations.submit_rsvp(
            db,
            june_event.invite_token,
            email="a@example.com",
            response="yes",
            guest_count=guest_count,
            now=BEFORE_DEADLINE,
        )
    assert crud.list_responses(db, june_event.id) == []


@pytest.mark.parametrize("email", ["", "plainaddress", "a@b", "a b@example.com"])
def test_submit_rejects_malformed_email(db, june_event, email):
    with pytest.raises(ValidationFailed):
        invitations.submit_rsvp(
            db,
            june_event.invite_token,
            email=email,
            response="yes",
            now=BEFORE_DEADLINE,
        )


def test_submit_rejects_unknown_response(db, june_event):
    with pytest.raises(ValidationFailed):
        invitations.submit_rsvp(
            db,
            june_event.invite_token,
            email="a@example.com",
            response="maybe",
            now=BEFORE_DEADLINE,
        )


def test_submit_after_deadline_is_closed(db, june_event):
    with pytest.raises(InvitationClosed):
        invitations.submit_rsvp(
            db,
            june_event.invite_token,
            email="late@example.com",
            response="yes",
            now=AFTER_DEADLINE,
        )


def test_duplicate_response_is_rejected(db, june_event):
    invitations.submit_rsvp(
        db,
        june_event.invite_token,
        email="a@example.com",
        response="yes",
        now=BEFORE_DEADLINE,
    )
    db.commit()
    with pytest.raises(DuplicateResponse):
        invitations.submit_rsvp(
            db,
            june_event.invite_token,
            email=" A@example.com ",
            response="no",
            now=BEFORE_DEADLINE,
        )
    assert len(crud.list_responses(db, june_event.id)) == 1


def test_rsvp_summary_counts_headcount(db, june_event):
    for email, response, party in [
        ("a@example.com", "yes", 3),
        ("b@example.com", "yes", None),
        ("c@example.com", "no", 5),
    ]:
        invitations.submit_rsvp(
            db,
            june_event.invite_token,
            email=email,
            response=response,
            guest_count=party,
            now=BEFORE_DEADLINE,
        )
    db.commit()

    assert invitations.rsvp_summary(db, june_event.id) == {
        "yes": 2,
        "no": 1,
        "headcount": 4,
    }
    with pytest.raises(EventNotFound):
        invitations.rsvp_summary(db, "missing")


def test_resend_sends_exactly_one_invitation(db, make_member, june_event, mailer):
    make_member("member@example.com")
    result = invitations.resend_invitation(
        db, june_event.id, "Guest@Example.com", mailer=mailer
    )

    assert result.success is True
    assert mailer.recipients == ["guest@example.com"]
    assert june_event.invite_token in mailer.sent[0].html
    assert "Blue Door Bistro" in mailer.sent[0].subject


def test_resend_requires_approved_event(db, make_event, mailer):
    event = make_event()
    with pytest.raises(InvalidTransition) as excinfo:
        invitations.resend_invitation(db, event.id, "a@example.com", mailer=mailer)
    assert "Can only resend invitations for approved events" in str(excinfo.value)
    assert mailer.sent == []


def test_resend_validates_email_and_event(db, june_event, mailer):
    with pytest.raises(ValidationFailed):
        invitations.resend_invitation(db, june_event.id, "nope", mailer=mailer)
    with pytest.raises(EventNotFound):
        invitations.resend_invitation(db, "missing", "a@example.com", mailer=mailer)


def test_resend_failure_raises_delivery_error(db, june_event):
    mailer = FakeMailer(fail_for={"a@example.com"})
    with pytest.raises(MailDeliveryError):
        invitations.resend_invitation(db, june_event.id, "a@example.com", mailer=mailer)


def test_open_invitation_uses_current_time_by_default(db, approved_event):
    soon = utcnow() + timedelta(days=3)
    event = approved_event(proposed_date=soon, rsvp_deadline=soon - timedelta(days=1))
    view = invitations.resolve_invitation(db, event.invite_token)
    assert view.event.id == event.id
