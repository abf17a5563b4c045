"""
Event Classifier: turns raw payment-processor deliveries into canonical events.

The processor's schema is informal. The real meaning of a delivery may sit in
the declared event type, in the status field, or in both, spelled in
dot.case, snake_case or CamelCase. Classification is therefore a prioritized
phrase table over a normalized type string, with a second pass over the
status string for deliveries that only say "subscription something".

Also provides:
- the delivery fingerprint used as the idempotency key
- tolerant extraction of email/amount/ids/time from nested payloads
- billing period keys computed in the business time zone
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from ..models import SubscriptionEventKind

DEFAULT_TIMEZONE = "America/New_York"
FINGERPRINT_MAX_LENGTH = 80
EARLIEST_PLAUSIBLE = datetime(2000, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# CLASSIFICATION RULES
# =============================================================================

# Evaluated top to bottom; the first matching phrase wins.
EVENT_TYPE_RULES: list[tuple[SubscriptionEventKind, tuple[str, ...]]] = [
    (
        SubscriptionEventKind.CHARGE_FAILED,
        (
            "charge failed",
            "charge failure",
            "charge declined",
            "failed charge",
            "payment failed",
            "payment failure",
            "payment declined",
            "failed payment",
            "rebill failed",
            "renewal failed",
        ),
    ),
    (
        SubscriptionEventKind.CHARGED,
        (
            "charge succeeded",
            "charge success",
            "charge successful",
            "payment succeeded",
            "payment success",
            "payment successful",
            "rebill success",
            "renewal succeeded",
            "invoice paid",
            "charged",
            "renewed",
        ),
    ),
    (
        SubscriptionEventKind.RECOVERED,
        ("recovered", "recovery", "reactivated", "restored"),
    ),
    (
        SubscriptionEventKind.DELINQUENT,
        ("delinquent", "past due", "overdue", "dunning"),
    ),
    (
        SubscriptionEventKind.CANCELED,
        ("canceled", "cancelled", "cancel", "cancellation", "subscription deleted"),
    ),
]

# Keyword checks for the status string, used only to refine the generic kind.
# "unpaid" must be checked before "paid".
STATUS_RULES: list[tuple[SubscriptionEventKind, tuple[str, ...]]] = [
    (SubscriptionEventKind.DELINQUENT, ("delinquent", "past due", "unpaid")),
    (SubscriptionEventKind.CANCELED, ("cancel",)),
    (SubscriptionEventKind.RECOVERED, ("recover",)),
    (SubscriptionEventKind.CHARGED, ("succeed", "paid")),
    (SubscriptionEventKind.CHARGE_FAILED, ("fail",)),
]

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATORS = re.compile(r"[\s._\-/:]+")


def normalize_event_type(value: str | None) -> str:
    """'RecurringPaymentFailed' / 'subscription.charge_failed' -> spaced lowercase words."""
    if not value:
        return ""
    text = _CAMEL_BOUNDARY.sub(r"\1 \2", str(value))
    text = _SEPARATORS.sub(" ", text)
    return text.strip().casefold()


def _contains_phrase(normalized: str, phrase: str) -> bool:
    return f" {phrase} " in f" {normalized} "


def _refine_from_status(status: str | None) -> SubscriptionEventKind | None:
    normalized = normalize_event_type(status)
    if not normalized:
        return None
    for kind, keywords in STATUS_RULES:
        if any(keyword in normalized for keyword in keywords):
            return kind
    return None


def classify_event(
    event_type: str | None,
    status: str | None = None,
) -> SubscriptionEventKind | None:
    """
    Map a declared event type (and optional status) to a canonical kind.

    Returns None for deliveries that are not subscription events at all
    (plain orders, refunds, unknown types).
    """
    normalized = normalize_event_type(event_type)
    kind: SubscriptionEventKind | None = None

    for candidate, phrases in EVENT_TYPE_RULES:
        if any(_contains_phrase(normalized, phrase) for phrase in phrases):
            kind = candidate
            break

    if kind is None and "subscription" in normalized:
        kind = SubscriptionEventKind.SUBSCRIPTION_EVENT

    if kind is SubscriptionEventKind.SUBSCRIPTION_EVENT:
        kind = _refine_from_status(status) or kind

    return kind


# =============================================================================
# FINGERPRINT
# =============================================================================


def fingerprint_event(
    payload: dict[str, Any],
    kind: SubscriptionEventKind,
    subscription_id: str | None = None,
    order_id: str | None = None,
    event_id: str | None = None,
) -> str:
    """
    Stable idempotency key for a delivery.

    Byte-identical redeliveries collapse to the same key. Retried charge
    failures often carry identical payloads too; the event store separates
    those by elapsed time, not here.
    """
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    material = "|".join(
        [kind.value, subscription_id or "", order_id or "", event_id or "", canonical]
    )
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"{kind.value}:{digest}"[:FINGERPRINT_MAX_LENGTH]


# =============================================================================
# MONEY & TIME HELPERS
# =============================================================================


def parse_money(value: Any) -> float | None:
    """Parse 99, "99.00" or "$1,299.00" into a float."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value == value and abs(value) != float("inf") else None

    cleaned = re.sub(r"[^0-9.\-]", "", str(value))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def format_currency(value: Any, currency: str | None = "USD") -> str:
    amount = parse_money(value)
    if amount is None:
        return "unknown amount"
    if (currency or "USD").upper() == "USD":
        return f"${amount:,.2f}"
    return f"{amount:,.2f} {currency.upper()}"


def _parse_timestamp(value: Any, tz: ZoneInfo) -> datetime | None:
    if value is None or value == "" or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
        seconds = float(value)
        if seconds > 1e12:  # milliseconds
            seconds /= 1000
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            # Naive timestamps are the processor's local business time
            parsed = parsed.replace(tzinfo=tz)
        return parsed.astimezone(timezone.utc)

    return None


def clamp_occurred_at(value: datetime | None, now: datetime) -> datetime:
    """Reject event times outside 2000-01-01 .. now + 1 day."""
    if value is None or value < EARLIEST_PLAUSIBLE or value > now + timedelta(days=1):
        return now
    return value


def period_key_for(moment: datetime, tz_name: str = DEFAULT_TIMEZONE) -> str:
    """Billing period bucket: YYYY-MM in the business time zone."""
    return moment.astimezone(ZoneInfo(tz_name)).strftime("%Y-%m")


def date_key_for(moment: datetime, tz_name: str = DEFAULT_TIMEZONE) -> str:
    return moment.astimezone(ZoneInfo(tz_name)).strftime("%Y-%m-%d")


def normalize_email(value: Any) -> str | None:
    if not value:
        return None
    email = str(value).strip().lower()
    return email or None


# =============================================================================
# PAYLOAD PARSING
# =============================================================================


def _dig(payload: dict[str, Any], path: str) -> Any:
    current: Any = payload
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _first(payload: dict[str, Any], *paths: str) -> Any:
    for path in paths:
        value = _dig(payload, path)
        if value not in (None, ""):
            return value
    return None


def _as_str(value: Any) -> str | None:
    if value in (None, ""):
        return None
    return str(value)


@dataclass
class ParsedWebhook:
    """A payment-processor delivery with its fields pulled out."""
    event_type: str | None
    kind: SubscriptionEventKind | None
    email: str | None
    occurred_at: datetime
    period_key: str
    date_key: str
    raw_payload: dict[str, Any] = field(default_factory=dict)
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    amount: float | None = None
    currency: str = "USD"
    status: str | None = None
    subscription_id: str | None = None
    order_id: str | None = None
    event_id: str | None = None

    @property
    def is_subscription_event(self) -> bool:
        return self.kind is not None

    @property
    def full_name(self) -> str | None:
        name = " ".join(part for part in (self.first_name, self.last_name) if part).strip()
        return name or None

    @property
    def fingerprint(self) -> str:
        if self.kind is None:
            raise ValueError("Only subscription events have a fingerprint")
        return fingerprint_event(
            self.raw_payload,
            self.kind,
            subscription_id=self.subscription_id,
            order_id=self.order_id,
            event_id=self.event_id,
        )


def parse_webhook(
    payload: dict[str, Any],
    tz_name: str = DEFAULT_TIMEZONE,
    now: datetime | None = None,
) -> ParsedWebhook:
    """Extract the fields the engine needs from a raw delivery."""
    tz = ZoneInfo(tz_name)
    now = now or datetime.now(timezone.utc)

    event_type = _as_str(_first(payload, "type", "event", "event_type", "event_name"))
    status = _as_str(_first(payload, "status", "subscription.status", "order.status"))
    kind = classify_event(event_type, status)

    occurred_raw = _first(
        payload,
        "occurred",
        "occurred_at",
        "event_created_at",
        "created_at",
        "timestamp",
        "subscription.updated_at",
        "order.created_at",
    )
    occurred_at = clamp_occurred_at(_parse_timestamp(occurred_raw, tz), now)

    full_name = _as_str(_first(payload, "customer.name", "name"))
    first_name = _as_str(_first(payload, "customer.first_name", "first_name"))
    last_name = _as_str(_first(payload, "customer.last_name", "last_name"))
    if not first_name and full_name:
        first_name, _, last_name = full_name.partition(" ")
        last_name = last_name or None

    currency = _as_str(_first(payload, "currency", "subscription.currency", "order.currency"))

    return ParsedWebhook(
        event_type=event_type,
        kind=kind,
        email=normalize_email(
            _first(
                payload,
                "customer.email",
                "email",
                "order.email",
                "order.customer_email",
                "subscription.customer_email",
            )
        ),
        occurred_at=occurred_at,
        period_key=period_key_for(occurred_at, tz_name),
        date_key=date_key_for(occurred_at, tz_name),
        raw_payload=payload,
        first_name=first_name,
        last_name=last_name,
        phone=_as_str(_first(payload, "customer.phone_number", "customer.phone", "phone")),
        amount=parse_money(
            _first(
                payload,
                "amount",
                "subscription.amount",
                "subscription.price",
                "order.total",
                "charge.amount",
            )
        ),
        currency=(currency or "USD").upper(),
        status=status,
        subscription_id=_as_str(_first(payload, "subscription.id", "subscription_id")),
        order_id=_as_str(_first(payload, "order.id", "order_id")),
        event_id=_as_str(_first(payload, "id", "event_id")),
    )
