"""Domain exceptions raised by the lifecycle, invitation and admin layers."""

from __future__ import annotations


class OpenGatherError(Exception):
    """Base class; ``status_code`` is the HTTP status the API maps it to."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(OpenGatherError, ValueError):
    """Raised before any write when caller input is unusable."""


class EventNotFound(OpenGatherError):
    status_code = 404

    def __init__(self, event_id: str):
        super().__init__("Event not found")
        self.event_id = event_id


class VenueNotFound(OpenGatherError):
    status_code = 404

    def __init__(self, venue_id: str):
        super().__init__("Venue not found")
        self.venue_id = venue_id


class MemberNotFound(OpenGatherError):
    status_code = 404

    def __init__(self, member_id: str):
        super().__init__("Member not found")
        self.member_id = member_id


class MessageNotFound(OpenGatherError):
    status_code = 404

    def __init__(self, message_id: str):
        super().__init__("Message not found")
        self.message_id = message_id


class InvalidTransition(OpenGatherError):
    """The requested state change is not legal from the current state."""

    status_code = 409


class InvitationNotFound(OpenGatherError):
    """No RSVP-able invitation matches the token."""

    status_code = 404

    def __init__(self, message: str = "Invitation not found or not yet approved"):
        super().__init__(message)


class InvitationClosed(InvitationNotFound):
    """The invitation exists but its RSVP deadline has passed."""

    status_code = 410

    def __init__(self, message: str = "The RSVP deadline for this event has passed"):
        super().__init__(message)


class DuplicateResponse(OpenGatherError):
    status_code = 409

    def __init__(self, email: str):
        super().__init__("You have already responded to this invitation")
        self.email = email


class MailDeliveryError(OpenGatherError):
    status_code = 502
