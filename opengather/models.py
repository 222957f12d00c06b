"""SQLAlchemy models for OpenGather."""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

MEMBER_KINDS = ("full", "simple")
REVIEW_STATUSES = ("pending", "approved", "rejected")
EVENT_STATUSES = ("inactive", "active", "cancelled", "rejected")
INVITE_TYPES = ("all", "select")
RSVP_RESPONSES = ("yes", "no")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


def generate_invite_token() -> str:
    # The invite token is the only credential the public RSVP form checks, so
    # it must come from a CSPRNG and never from event fields.
    return secrets.token_urlsafe(32)


def generate_access_token() -> str:
    return secrets.token_urlsafe(32)


class Meta(Base):
    __tablename__ = "meta"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class Member(Base):
    """A community member: a full account or an email-only "simple" one."""

    __tablename__ = "members"

    id = Column(String(36), primary_key=True, default=_uuid)
    kind = Column(String(16), nullable=False, default="full")
    email = Column(String(255), nullable=False, unique=True)
    display_name = Column(String(120), nullable=True)
    access_token = Column(
        String(128), nullable=False, unique=True, default=generate_access_token
    )
    is_admin = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    receive_notifications = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    @property
    def name(self) -> str:
        return self.display_name or self.email.split("@", 1)[0]


class Venue(Base):
    __tablename__ = "venues"

    id = Column(String(36), primary_key=True, default=_uuid)
    business_name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    google_maps_link = Column(String(500), nullable=True)
    facebook_link = Column(String(500), nullable=True)
    website = Column(String(500), nullable=True)
    image_1_url = Column(String(500), nullable=True)
    image_2_url = Column(String(500), nullable=True)
    image_3_url = Column(String(500), nullable=True)
    status = Column(String(16), nullable=False, default="pending")
    submitted_by = Column(
        String(36), ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    submitter = relationship("Member")

    @property
    def image_urls(self) -> list[str]:
        return [
            url
            for url in (self.image_1_url, self.image_2_url, self.image_3_url)
            if url
        ]


class EventProposal(Base):
    """A proposed community event ("group invitation")."""

    __tablename__ = "group_invitations"

    id = Column(String(36), primary_key=True, default=_uuid)
    invite_token = Column(
        String(128), nullable=False, unique=True, default=generate_invite_token
    )
    group_name = Column(String(255), nullable=False)
    venue_id = Column(
        String(36), ForeignKey("venues.id", ondelete="RESTRICT"), nullable=False
    )
    creator_id = Column(
        String(36), ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    proposed_date = Column(DateTime, nullable=False)
    rsvp_deadline = Column(DateTime, nullable=False)
    custom_message = Column(Text, nullable=True)
    approval_status = Column(
        String(16), nullable=False, default="pending", index=True
    )
    status = Column(String(16), nullable=False, default="inactive")
    invite_type = Column(String(16), nullable=False, default="all")
    selected_member_ids = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    venue = relationship("Venue")
    creator = relationship("Member")
    responses = relationship(
        "RSVPResponse",
        back_populates="invitation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RSVPResponse.response_date",
    )

    def accepts_rsvps(self, now: datetime) -> bool:
        return (
            self.approval_status == "approved"
            and self.status != "cancelled"
            and now < self.rsvp_deadline
        )


class RSVPResponse(Base):
    __tablename__ = "invitation_rsvps"
    __table_args__ = (
        UniqueConstraint(
            "invitation_id",
            "invitee_email",
            name="invitation_rsvps_invitation_id_invitee_email_key",
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    invitation_id = Column(
        String(36),
        ForeignKey("group_invitations.id", ondelete="CASCADE"),
        nullable=False,
    )
    invitee_email = Column(String(255), nullable=False)
    response = Column(String(8), nullable=False)
    guest_count = Column(Integer, nullable=True)
    response_message = Column(Text, nullable=True)
    response_date = Column(DateTime, default=_now, nullable=False)

    invitation = relationship("EventProposal", back_populates="responses")


class Message(Base):
    """A message board post."""

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    author_id = Column(
        String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    author = relationship("Member")
