"""
Escalation Policy: decide what each recorded billing event means for a member.

Per event kind:
- charge_failed: count the attempt in the member's bounce thread, send the
  recovery template on the first attempt, offboard after too many attempts
- charged / recovered: confirm a recovery once, and reset attempt counting
- delinquent: notice + offboarding
- canceled: notice + cancellation record + offboarding
- subscription_event: nothing beyond recording
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select

from ..core.database import insert_ignore
from ..integrations.slack import LifecycleMessages
from ..models import Cancellation, MemberThread, SubscriptionEvent, SubscriptionEventKind, ThreadType, as_utc, utcnow
from .event_classifier import DEFAULT_TIMEZONE, date_key_for, format_currency, period_key_for
from .event_store import SubscriptionEventStore
from .member_context import MemberContext
from .offboarding import OffboardingCoordinator, OffboardingResult
from .thread_registry import PeriodThreadRegistry, ThreadRequest, metadata_time

logger = logging.getLogger(__name__)

DEFAULT_OFFBOARD_AFTER_ATTEMPTS = 4


@dataclass
class EscalationOutcome:
    """What the policy did for one event."""
    action: str
    attempt: int | None = None
    offboarding: OffboardingResult | None = None


class EscalationPolicy:
    def __init__(
        self,
        store: SubscriptionEventStore,
        registry: PeriodThreadRegistry,
        offboarding: OffboardingCoordinator,
        failed_payments_channel: str | None,
        cancellations_channel: str | None,
        payment_update_url: str,
        offboard_after_attempts: int = DEFAULT_OFFBOARD_AFTER_ATTEMPTS,
        tz_name: str = DEFAULT_TIMEZONE,
        now: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._registry = registry
        self._offboarding = offboarding
        self._failed_payments_channel = failed_payments_channel
        self._cancellations_channel = cancellations_channel
        self._payment_update_url = payment_update_url
        self._offboard_after_attempts = offboard_after_attempts
        self._tz_name = tz_name
        self._now = now

    async def handle(self, event: SubscriptionEvent, context: MemberContext) -> EscalationOutcome:
        handlers = {
            SubscriptionEventKind.CHARGE_FAILED: self._on_charge_failed,
            SubscriptionEventKind.CHARGED: self._on_recovery,
            SubscriptionEventKind.RECOVERED: self._on_recovery,
            SubscriptionEventKind.DELINQUENT: self._on_delinquent,
            SubscriptionEventKind.CANCELED: self._on_canceled,
        }
        handler = handlers.get(event.event_kind)
        if handler is None:
            return EscalationOutcome(action="recorded")
        return await handler(event, context)

    # =========================================================================
    # FAILED PAYMENTS
    # =========================================================================

    def _bounce_request(self, event: SubscriptionEvent, context: MemberContext) -> ThreadRequest:
        period_key = self._period_key(event)
        text, blocks = LifecycleMessages.bounce_thread_summary(
            context.name, context.email, context.phone, period_key
        )
        return ThreadRequest(
            email=context.email,
            name=context.name,
            thread_type=ThreadType.MONTHLY_BOUNCE,
            period_key=period_key,
            channel_id=self._failed_payments_channel,
            summary_text=text,
            summary_blocks=blocks,
        )

    async def _on_charge_failed(self, event: SubscriptionEvent, context: MemberContext) -> EscalationOutcome:
        """
        Post the attempt into the bounce thread.

        Attempts are counted within the billing period and only after the last
        recovery, so a failure following a recovery starts again at #1.
        """
        request = self._bounce_request(event, context)
        thread = (await self._registry.ensure_thread(request)).thread

        attempt = await self._store.count_failed_attempts(
            context.email,
            request.period_key,
            since=metadata_time(thread, "last_recovery_at"),
        )
        amount = format_currency(event.amount, event.currency)

        await self._registry.post_to_thread(
            thread, request, LifecycleMessages.attempt_failed(attempt, amount)
        )
        if attempt == 1:
            await self._registry.post_to_thread(
                thread,
                request,
                LifecycleMessages.recovery_template(context.first_name, amount, self._payment_update_url),
            )

        # A new failure cycle: the next success deserves its own confirmation
        if (thread.thread_metadata or {}).get("recovery_posted_at"):
            await self._registry.update_metadata(thread, recovery_posted_at=None)

        offboarding = None
        if attempt >= self._offboard_after_attempts:
            offboarding = await self._offboard_once(
                context, thread, request, reason="failed_payments", cancellation_date=self._date_key(event)
            )

        logger.info(f"Charge failure attempt #{attempt} for {context.email} ({request.period_key})")
        return EscalationOutcome(
            action="offboarded" if offboarding else "attempt_posted",
            attempt=attempt,
            offboarding=offboarding,
        )

    async def _on_recovery(self, event: SubscriptionEvent, context: MemberContext) -> EscalationOutcome:
        period_key = self._period_key(event)
        thread = await self._registry.get_thread(context.email, ThreadType.MONTHLY_BOUNCE, period_key)
        if thread is None or not thread.is_rooted:
            return EscalationOutcome(action="no_thread")
        if (thread.thread_metadata or {}).get("recovery_posted_at"):
            return EscalationOutcome(action="already_recovered")

        since = metadata_time(thread, "last_recovery_at")
        if not await self._store.has_failures(context.email, period_key, since=since):
            return EscalationOutcome(action="no_failures")

        request = self._bounce_request(event, context)
        amount = format_currency(event.amount, event.currency) if event.amount is not None else None
        await self._registry.post_to_thread(
            thread, request, LifecycleMessages.recovery_confirmation(amount)
        )

        now = self._now()
        await self._registry.update_metadata(thread, recovery_posted_at=now, last_recovery_at=now)
        logger.info(f"Payment recovered for {context.email} ({period_key})")
        return EscalationOutcome(action="recovery_posted")

    async def _on_delinquent(self, event: SubscriptionEvent, context: MemberContext) -> EscalationOutcome:
        request = self._bounce_request(event, context)
        thread = (await self._registry.ensure_thread(request)).thread

        await self._registry.post_to_thread(
            thread, request, LifecycleMessages.delinquency_notice(event.status)
        )
        offboarding = await self._offboard_once(
            context, thread, request, reason="delinquent", cancellation_date=self._date_key(event)
        )
        return EscalationOutcome(
            action="offboarded" if offboarding else "notice_posted",
            offboarding=offboarding,
        )

    # =========================================================================
    # CANCELLATIONS
    # =========================================================================

    async def _on_canceled(self, event: SubscriptionEvent, context: MemberContext) -> EscalationOutcome:
        date_key = self._date_key(event)
        text, blocks = LifecycleMessages.cancel_thread_summary(context.name, context.email, date_key)
        request = ThreadRequest(
            email=context.email,
            name=context.name,
            thread_type=ThreadType.CANCEL,
            period_key=date_key,
            channel_id=self._cancellations_channel,
            summary_text=text,
            summary_blocks=blocks,
        )
        thread = (await self._registry.ensure_thread(request)).thread

        await self._registry.post_to_thread(
            thread,
            request,
            LifecycleMessages.cancellation_notice(context.name, context.email, event.status),
        )
        await self.record_cancellation(thread, context, reason=event.status or event.event_type)

        offboarding = await self._offboard_once(
            context, thread, request, reason="canceled", cancellation_date=date_key
        )
        return EscalationOutcome(
            action="offboarded" if offboarding else "notice_posted",
            offboarding=offboarding,
        )

    async def record_cancellation(
        self,
        thread: MemberThread,
        context: MemberContext,
        reason: str | None = None,
    ) -> Cancellation:
        """Insert the cancellation for this thread, or return the one already there."""
        session = self._store.session
        stmt = (
            insert_ignore(session, Cancellation, ["member_thread_id"])
            .values(
                member_email=context.email,
                member_name=context.name,
                reason=reason,
                source="payment_webhook",
                created_by="system",
                member_thread_id=thread.id,
                created_at=self._now(),
            )
        )
        await session.execute(stmt)

        result = await session.execute(
            select(Cancellation).where(Cancellation.member_thread_id == thread.id)
        )
        return result.scalar_one()

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _offboard_once(
        self,
        context: MemberContext,
        thread: MemberThread,
        request: ThreadRequest,
        reason: str,
        cancellation_date: str,
    ) -> OffboardingResult | None:
        if self._offboarding.already_offboarded(thread):
            return None
        return await self._offboarding.offboard(
            context, thread, request, reason=reason, cancellation_date=cancellation_date
        )

    def _period_key(self, event: SubscriptionEvent) -> str:
        if event.period_key:
            return event.period_key
        return period_key_for(as_utc(event.occurred_at or event.created_at), self._tz_name)

    def _date_key(self, event: SubscriptionEvent) -> str:
        return date_key_for(as_utc(event.occurred_at or event.created_at), self._tz_name)
