"""
Subscription Event Store: append-only, idempotent ledger of billing events.

Guarantees:
1. One row per distinct delivery (unique event_key)
2. Duplicate deliveries are absorbed by the unique constraint, no locks
3. Identical charge-failure payloads far enough apart in time become new
   synthetic attempt rows instead of merging into the first attempt
4. Rows are only ever updated to record notification outcome
"""

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import insert_ignore
from ..models import SubscriptionEvent, SubscriptionEventKind, as_utc, utcnow
from .errors import LifecycleError
from .event_classifier import ParsedWebhook

logger = logging.getLogger(__name__)

ATTEMPT_MARKER = ":attempt:"
DEFAULT_RETRY_GAP = timedelta(hours=6)


@dataclass
class RecordResult:
    """Outcome of recording a delivery."""
    event: SubscriptionEvent
    created: bool
    promoted: bool = False  # New synthetic attempt for a repeated failure


class SubscriptionEventStore:
    """Idempotent insert plus the attempt-counting queries built on it."""

    def __init__(
        self,
        session: AsyncSession,
        retry_gap: timedelta = DEFAULT_RETRY_GAP,
        now: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._retry_gap = retry_gap
        self._now = now

    @property
    def session(self) -> AsyncSession:
        return self._session

    # =========================================================================
    # RECORD
    # =========================================================================

    async def record(self, parsed: ParsedWebhook) -> RecordResult:
        """
        Record a classified delivery.

        Flow:
        1. Insert keyed by the fingerprint (ignored on conflict)
        2. On conflict, load the newest row for the fingerprint, including
           previously promoted attempt rows
        3. charge_failed only: if that row is older than the retry gap, insert
           a synthetic attempt row under a suffixed key
        4. Otherwise return the existing row unchanged
        """
        if parsed.kind is None:
            raise LifecycleError("Cannot record a delivery that is not a subscription event")

        base_key = parsed.fingerprint
        event = await self._insert(base_key, parsed)
        if event is not None:
            return RecordResult(event=event, created=True)

        latest = await self._latest_for_key(base_key)
        if latest is None:
            raise LifecycleError(f"Event {base_key} conflicted but could not be re-read")

        if parsed.kind is SubscriptionEventKind.CHARGE_FAILED:
            elapsed = self._now() - as_utc(latest.created_at)
            if elapsed > self._retry_gap:
                attempt_key = self._attempt_key(base_key)
                event = await self._insert(attempt_key, parsed)
                if event is not None:
                    logger.info(
                        f"Repeated charge failure for {parsed.email} after {elapsed}; "
                        f"recorded as new attempt {attempt_key}"
                    )
                    return RecordResult(event=event, created=True, promoted=True)

        logger.info(f"Duplicate delivery {latest.event_key} (notified={latest.notified})")
        return RecordResult(event=latest, created=False)

    async def _insert(self, event_key: str, parsed: ParsedWebhook) -> SubscriptionEvent | None:
        stmt = (
            insert_ignore(self._session, SubscriptionEvent, ["event_key"])
            .values(
                event_key=event_key,
                event_kind=parsed.kind,
                event_type=parsed.event_type,
                member_email=parsed.email,
                period_key=parsed.period_key,
                subscription_id=parsed.subscription_id,
                order_id=parsed.order_id,
                amount=parsed.amount,
                currency=parsed.currency,
                status=parsed.status,
                occurred_at=parsed.occurred_at,
                raw_payload=parsed.raw_payload,
                created_at=self._now(),
            )
            .returning(SubscriptionEvent.id)
        )
        result = await self._session.execute(stmt)
        event_id = result.scalar_one_or_none()
        if event_id is None:
            return None
        return await self._session.get(SubscriptionEvent, event_id)

    async def _latest_for_key(self, event_key: str) -> SubscriptionEvent | None:
        result = await self._session.execute(
            select(SubscriptionEvent)
            .where(
                or_(
                    SubscriptionEvent.event_key == event_key,
                    SubscriptionEvent.event_key.startswith(
                        f"{event_key}{ATTEMPT_MARKER}", autoescape=True
                    ),
                )
            )
            .order_by(SubscriptionEvent.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def _attempt_key(self, base_key: str) -> str:
        stamp = int(self._now().timestamp() * 1000)
        return f"{base_key}{ATTEMPT_MARKER}{stamp}:{secrets.token_hex(4)}"

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_by_key(self, event_key: str) -> SubscriptionEvent | None:
        result = await self._session.execute(
            select(SubscriptionEvent).where(SubscriptionEvent.event_key == event_key)
        )
        return result.scalar_one_or_none()

    async def count_failed_attempts(
        self,
        email: str,
        period_key: str,
        since: datetime | None = None,
    ) -> int:
        """Count charge failures for a member's billing period, optionally after a recovery."""
        query = select(func.count(SubscriptionEvent.id)).where(
            SubscriptionEvent.event_kind == SubscriptionEventKind.CHARGE_FAILED,
            SubscriptionEvent.member_email == email,
            SubscriptionEvent.period_key == period_key,
        )
        if since is not None:
            query = query.where(SubscriptionEvent.created_at > since)

        result = await self._session.execute(query)
        return result.scalar_one()

    async def has_failures(
        self,
        email: str,
        period_key: str,
        since: datetime | None = None,
    ) -> bool:
        return await self.count_failed_attempts(email, period_key, since) > 0

    # =========================================================================
    # NOTIFICATION OUTCOME
    # =========================================================================

    async def mark_notified(self, event_id: UUID) -> None:
        await self._session.execute(
            update(SubscriptionEvent)
            .where(SubscriptionEvent.id == event_id)
            .values(notified=True, notified_at=self._now(), notify_error=None)
        )

    async def mark_error(self, event_id: UUID, message: str) -> None:
        """Leave the event un-notified so a redelivery retries the pipeline."""
        await self._session.execute(
            update(SubscriptionEvent)
            .where(SubscriptionEvent.id == event_id)
            .values(notified=False, notify_error=message[:2000])
        )
