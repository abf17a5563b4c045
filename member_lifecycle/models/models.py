"""SQLAlchemy ORM Models for the member lifecycle engine."""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, TimestampMixin, UUIDMixin


# =============================================================================
# ENUMS
# =============================================================================


class SubscriptionEventKind(str, PyEnum):
    """Canonical taxonomy for payment-processor deliveries."""
    CHARGE_FAILED = "charge_failed"
    CHARGED = "charged"
    RECOVERED = "recovered"
    DELINQUENT = "delinquent"
    CANCELED = "canceled"
    SUBSCRIPTION_EVENT = "subscription_event"  # Recognized but not actionable


class ThreadType(str, PyEnum):
    MONTHLY_BOUNCE = "monthly_bounce"
    CANCEL = "cancel"
    YEARLY_RENEWAL = "yearly_renewal"


# =============================================================================
# SUBSCRIPTION EVENTS
# =============================================================================


class SubscriptionEvent(Base, UUIDMixin, TimestampMixin):
    """
    Append-only ledger of classified billing events.

    Rows are only ever updated to record notification outcome.
    """

    __tablename__ = "subscription_events"

    event_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    event_kind: Mapped[SubscriptionEventKind] = mapped_column(
        Enum(
            SubscriptionEventKind,
            name="subscription_event_kind",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    event_type: Mapped[str | None] = mapped_column(
        String(255), nullable=True, comment="Event type as declared upstream"
    )
    member_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    period_key: Mapped[str | None] = mapped_column(String(16), nullable=True)

    subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[float | None] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    status: Mapped[str | None] = mapped_column(String(255), nullable=True)
    occurred_at: Mapped[datetime | None] = mapped_column(nullable=True)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)

    # Notification outcome
    notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notify_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index(
            "idx_subscription_events_member_period",
            "member_email",
            "period_key",
            "event_kind",
        ),
    )


# =============================================================================
# MEMBER THREADS
# =============================================================================


class MemberThread(Base, UUIDMixin, TimestampMixin):
    """One Slack thread per (member, purpose, billing period)."""

    __tablename__ = "member_threads"

    member_email: Mapped[str] = mapped_column(String(320), nullable=False)
    member_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    thread_type: Mapped[ThreadType] = mapped_column(
        Enum(
            ThreadType,
            name="member_thread_type",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)

    slack_channel_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    slack_thread_ts: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # "metadata" is reserved on declarative classes
    thread_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, default=dict, nullable=False
    )

    cancellations: Mapped[list["Cancellation"]] = relationship(back_populates="member_thread")

    __table_args__ = (
        UniqueConstraint(
            "member_email",
            "thread_type",
            "period_key",
            name="uq_member_threads_member_type_period",
        ),
    )

    @property
    def is_rooted(self) -> bool:
        return bool(self.slack_channel_id and self.slack_thread_ts)


# =============================================================================
# CANCELLATIONS
# =============================================================================


class Cancellation(Base, UUIDMixin, TimestampMixin):
    """Back-office record of a member cancellation."""

    __tablename__ = "cancellations"

    member_email: Mapped[str] = mapped_column(String(320), nullable=False)
    member_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(50), default="payment_webhook", nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), default="system", nullable=False)
    member_thread_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("member_threads.id", ondelete="SET NULL"),
        unique=True,
        nullable=True,
    )

    member_thread: Mapped[MemberThread | None] = relationship(back_populates="cancellations")
