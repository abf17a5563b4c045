"""
Subscription Event Processor: the pipeline behind the payments webhook.

    parse -> classify -> record -> (duplicate?) -> resolve member
          -> escalate -> mark notified | mark error

The event row is committed before any notification work starts, so a failure
further down never loses the delivery. Failures leave the row un-notified
with ``notify_error`` set; a redelivery or a replay runs the pipeline again.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..integrations.types import MemberRecord
from ..models import SubscriptionEvent, SubscriptionEventKind, utcnow
from .errors import EventAlreadyNotifiedError, EventNotFoundError
from .escalation import EscalationPolicy
from .event_classifier import DEFAULT_TIMEZONE, ParsedWebhook, parse_webhook
from .event_store import SubscriptionEventStore
from .member_context import MemberContextResolver

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    status: str  # ignored | duplicate | processed | error
    event_key: str | None = None
    event_kind: str | None = None
    attempt: int | None = None
    action: str | None = None
    error: str | None = None


class SubscriptionEventProcessor:
    def __init__(
        self,
        session: AsyncSession,
        store: SubscriptionEventStore,
        resolver: MemberContextResolver,
        policy: EscalationPolicy,
        tz_name: str = DEFAULT_TIMEZONE,
        now: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._store = store
        self._resolver = resolver
        self._policy = policy
        self._tz_name = tz_name
        self._now = now

    async def process(self, payload: dict[str, Any]) -> ProcessResult:
        """Handle one webhook delivery end to end."""
        parsed = parse_webhook(payload, self._tz_name, now=self._now())
        if not parsed.is_subscription_event:
            logger.info(f"Ignoring non-subscription delivery (type={parsed.event_type!r})")
            return ProcessResult(status="ignored")

        recorded = await self._store.record(parsed)
        await self._session.commit()

        event = recorded.event
        if not recorded.created and event.notified:
            return ProcessResult(
                status="duplicate",
                event_key=event.event_key,
                event_kind=event.event_kind.value,
            )

        return await self._notify(event, parsed)

    async def replay(self, event_key: str) -> ProcessResult:
        """Re-run notification for a recorded event that has not been notified yet."""
        event = await self._store.get_by_key(event_key)
        if event is None:
            raise EventNotFoundError(f"Event {event_key} not found")
        if event.notified:
            raise EventAlreadyNotifiedError(f"Event {event_key} was already notified")

        logger.info(f"Replaying event {event_key}")
        parsed = parse_webhook(event.raw_payload or {}, self._tz_name, now=self._now())
        return await self._notify(event, parsed)

    async def _notify(self, event: SubscriptionEvent, parsed: ParsedWebhook) -> ProcessResult:
        # Rollback expires the instance; keep plain values for the error path
        event_id = event.id
        event_key = event.event_key
        kind = event.event_kind

        if kind is SubscriptionEventKind.SUBSCRIPTION_EVENT:
            await self._store.mark_notified(event_id)
            await self._session.commit()
            return ProcessResult(
                status="processed", event_key=event_key, event_kind=kind.value, action="recorded"
            )

        if not event.member_email:
            return await self._fail(event_id, event_key, kind, "Delivery has no member email")

        try:
            fallback = MemberRecord(source="payload", name=parsed.full_name, phone=parsed.phone)
            context = await self._resolver.resolve(event.member_email, fallback=fallback)
            outcome = await self._policy.handle(event, context)

            await self._store.mark_notified(event_id)
            await self._session.commit()
        except Exception as e:
            logger.exception(f"Notification failed for event {event_key}: {e}")
            await self._session.rollback()
            return await self._fail(event_id, event_key, kind, f"{type(e).__name__}: {e}")

        return ProcessResult(
            status="processed",
            event_key=event_key,
            event_kind=kind.value,
            attempt=outcome.attempt,
            action=outcome.action,
        )

    async def _fail(
        self,
        event_id,
        event_key: str,
        kind: SubscriptionEventKind,
        message: str,
    ) -> ProcessResult:
        await self._store.mark_error(event_id, message)
        await self._session.commit()
        return ProcessResult(
            status="error",
            event_key=event_key,
            event_kind=kind.value,
            error=message,
        )
