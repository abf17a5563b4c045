"""SQLAlchemy ORM Models for the member lifecycle engine."""

from .base import Base, TimestampMixin, UUIDMixin, as_utc, utcnow
from .models import (
    # Enums
    SubscriptionEventKind,
    ThreadType,
    # Tables
    Cancellation,
    MemberThread,
    SubscriptionEvent,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "as_utc",
    "utcnow",
    # Enums
    "SubscriptionEventKind",
    "ThreadType",
    # Tables
    "SubscriptionEvent",
    "MemberThread",
    "Cancellation",
]
