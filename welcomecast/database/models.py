"""
welcomecast.database.models — SQLAlchemy 2.0 Data Models
=========================================================

Tables:
- creators                 — One tenant per (Whop operator, Whop company) pair
- customers                — Community members known to a creator
- audio_messages           — One row per welcome generation attempt
- admin_rate_limit_events  — Sliding-window log for admin mutation throttling

Rows reference each other by generated string ids (``uuid4().hex``).
Audio bytes are embedded on the row as a base64 data URL; there is no
external object storage.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from welcomecast.constants import DEFAULT_MESSAGE_TEMPLATE, FREE_TIER_CREDITS


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Welcomecast ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PlanType(enum.StrEnum):
    """Billing tiers a creator can be on."""
    FREE = "free"
    TIER200 = "tier200"
    UNLIMITED = "unlimited"


class MessageStatus(enum.StrEnum):
    """Lifecycle of a single welcome generation attempt."""
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    SENT = "sent"
    FAILED = "failed"


# Forward-only lifecycle.  ``sent`` and ``failed`` are terminal; retries
# create a new row.
STATUS_TRANSITIONS: dict[MessageStatus, frozenset[MessageStatus]] = {
    MessageStatus.PENDING: frozenset({MessageStatus.GENERATING, MessageStatus.FAILED}),
    MessageStatus.GENERATING: frozenset({MessageStatus.COMPLETED, MessageStatus.FAILED}),
    MessageStatus.COMPLETED: frozenset({MessageStatus.SENT, MessageStatus.FAILED}),
    MessageStatus.SENT: frozenset(),
    MessageStatus.FAILED: frozenset(),
}


# ---------------------------------------------------------------------------
# Creators — one row per (operator, community)
# ---------------------------------------------------------------------------
class Creator(Base):
    """A Whop operator's configuration and quota for one community.

    The same operator administering two companies owns two independent
    rows, each with its own voice model and credit balance.
    """
    __tablename__ = "creators"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    whop_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    whop_company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # Experience the tenant was created from; lets the resolver notice a
    # company id that no longer matches the experience.
    whop_experience_id: Mapped[str | None] = mapped_column(String(64), default=None)
    message_template: Mapped[str] = mapped_column(
        Text, nullable=False, default=DEFAULT_MESSAGE_TEMPLATE
    )
    voice_sample: Mapped[str | None] = mapped_column(Text, default=None)  # data URL
    voice_model_id: Mapped[str | None] = mapped_column(String(64), default=None)
    is_setup_complete: Mapped[bool] = mapped_column(Boolean, default=False)
    is_automation_active: Mapped[bool] = mapped_column(Boolean, default=True)
    credits: Mapped[int] = mapped_column(Integer, default=FREE_TIER_CREDITS)
    plan_type: Mapped[str] = mapped_column(String(20), default=PlanType.FREE.value)
    whop_plan_id: Mapped[str | None] = mapped_column(String(64), default=None)
    last_purchase_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    customers: Mapped[list[Customer]] = relationship(back_populates="creator")

    __table_args__ = (
        UniqueConstraint("whop_user_id", "whop_company_id", name="uq_creators_user_company"),
        Index("ix_creators_company", "whop_company_id"),
    )
    # Server-side timestamps are read back on insert; rows leave the session detached.
    __mapper_args__ = {"eager_defaults": True}

    @property
    def is_unlimited(self) -> bool:
        return self.plan_type == PlanType.UNLIMITED

    def __repr__(self) -> str:
        return (
            f"<Creator id={self.id} user={self.whop_user_id!r} "
            f"company={self.whop_company_id!r} plan={self.plan_type}>"
        )


# ---------------------------------------------------------------------------
# Customers — community members of one creator
# ---------------------------------------------------------------------------
class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    creator_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("creators.id"), nullable=False
    )
    whop_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    whop_member_id: Mapped[str] = mapped_column(String(64), nullable=False)
    whop_company_id: Mapped[str | None] = mapped_column(String(64), default=None)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), default=None)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    plan_name: Mapped[str | None] = mapped_column(String(200), default=None)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    first_message_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    creator: Mapped[Creator] = relationship(back_populates="customers")
    audio_messages: Mapped[list[AudioMessage]] = relationship(
        back_populates="customer", order_by="AudioMessage.created_at"
    )

    __table_args__ = (
        UniqueConstraint("creator_id", "whop_user_id", name="uq_customers_creator_user"),
    )
    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self) -> str:
        return f"<Customer id={self.id} user={self.whop_user_id!r} name={self.name!r}>"


# ---------------------------------------------------------------------------
# AudioMessages — one row per generation attempt
# ---------------------------------------------------------------------------
class AudioMessage(Base):
    __tablename__ = "audio_messages"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    customer_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("customers.id"), nullable=False
    )
    creator_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("creators.id"), nullable=False
    )
    personalized_script: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MessageStatus.PENDING.value
    )
    audio_data: Mapped[str | None] = mapped_column(Text, default=None)  # data URL
    whop_chat_id: Mapped[str | None] = mapped_column(String(64), default=None)
    whop_message_id: Mapped[str | None] = mapped_column(String(64), default=None)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    play_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    played_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    customer: Mapped[Customer] = relationship(back_populates="audio_messages")

    __table_args__ = (
        Index("ix_audio_messages_customer_created", "customer_id", "created_at"),
        Index("ix_audio_messages_creator", "creator_id"),
    )

    def advance_status(self, new_status: MessageStatus) -> None:
        """Move to *new_status*, rejecting backwards or terminal moves."""
        current = MessageStatus(self.status)
        if new_status not in STATUS_TRANSITIONS[current]:
            raise ValueError(
                f"Illegal status transition {current.value} → {new_status.value} "
                f"for audio message {self.id}"
            )
        self.status = new_status.value

    def __repr__(self) -> str:
        return f"<AudioMessage id={self.id} customer={self.customer_id} status={self.status}>"


# ---------------------------------------------------------------------------
# AdminRateLimitEvent — durable sliding-window state
# ---------------------------------------------------------------------------
class AdminRateLimitEvent(Base):
    __tablename__ = "admin_rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    admin_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_admin_rate_limit_admin_ts", "admin_id", timestamp.desc()),
        Index("ix_admin_rate_limit_ts", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminRateLimitEvent admin={self.admin_id!r} ts={self.timestamp}>"
