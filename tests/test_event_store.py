"""
Tests for the Subscription Event Store - Verifying Idempotency Guarantees.

These tests verify:
1. RECORD: a redelivery never creates a second row
2. PROMOTION: a repeated charge failure after the retry gap is a new attempt
3. COUNTING: attempts are scoped to member, period and last recovery
4. OUTCOME: notified / error stamps
"""

from datetime import timedelta

from sqlalchemy import func, select

from member_lifecycle.models import SubscriptionEvent, SubscriptionEventKind
from member_lifecycle.services.event_classifier import parse_webhook
from member_lifecycle.services.event_store import ATTEMPT_MARKER, SubscriptionEventStore

from conftest import failed_payment


async def count_events(session) -> int:
    result = await session.execute(select(func.count(SubscriptionEvent.id)))
    return result.scalar_one()


# =============================================================================
# TEST: IDEMPOTENT RECORD
# =============================================================================


class TestRecord:
    async def test_first_delivery_is_created(self, session, clock):
        store = SubscriptionEventStore(session, now=clock)
        parsed = parse_webhook(failed_payment(), now=clock())

        result = await store.record(parsed)

        assert result.created is True
        assert result.promoted is False
        assert result.event.event_key == parsed.fingerprint
        assert result.event.event_kind is SubscriptionEventKind.CHARGE_FAILED
        assert result.event.member_email == "ann@example.com"
        assert result.event.period_key == "2024-03"
        assert result.event.amount == 97.0
        assert result.event.notified is False

    async def test_redelivery_returns_existing_row(self, session, clock):
        store = SubscriptionEventStore(session, now=clock)
        payload = {"type": "subscription.canceled", "email": "ann@example.com", "id": "evt_1"}

        first = await store.record(parse_webhook(payload, now=clock()))
        clock.advance(days=3)
        second = await store.record(parse_webhook(payload, now=clock()))

        assert second.created is False
        assert second.event.id == first.event.id
        assert await count_events(session) == 1

    async def test_identical_failure_within_gap_is_a_duplicate(self, session, clock):
        store = SubscriptionEventStore(session, retry_gap=timedelta(hours=6), now=clock)
        payload = failed_payment()

        first = await store.record(parse_webhook(payload, now=clock()))
        clock.advance(hours=2)
        second = await store.record(parse_webhook(payload, now=clock()))

        assert second.created is False
        assert second.event.id == first.event.id
        assert await count_events(session) == 1


# =============================================================================
# TEST: ATTEMPT PROMOTION
# =============================================================================


class TestAttemptPromotion:
    async def test_identical_failure_after_gap_is_new_attempt(self, session, clock):
        store = SubscriptionEventStore(session, retry_gap=timedelta(hours=6), now=clock)
        payload = failed_payment()

        first = await store.record(parse_webhook(payload, now=clock()))
        clock.advance(hours=7)
        second = await store.record(parse_webhook(payload, now=clock()))

        assert second.created is True
        assert second.promoted is True
        assert second.event.id != first.event.id
        assert second.event.event_key.startswith(first.event.event_key + ATTEMPT_MARKER)
        assert await count_events(session) == 2

    async def test_gap_is_measured_from_latest_attempt(self, session, clock):
        """A third identical delivery 2h after a promoted attempt is a duplicate of it."""
        store = SubscriptionEventStore(session, retry_gap=timedelta(hours=6), now=clock)
        payload = failed_payment()

        await store.record(parse_webhook(payload, now=clock()))
        clock.advance(hours=7)
        promoted = await store.record(parse_webhook(payload, now=clock()))
        clock.advance(hours=2)
        third = await store.record(parse_webhook(payload, now=clock()))

        assert third.created is False
        assert third.event.id == promoted.event.id
        assert await count_events(session) == 2

    async def test_other_kinds_are_never_promoted(self, session, clock):
        store = SubscriptionEventStore(session, retry_gap=timedelta(hours=6), now=clock)
        payload = {"type": "subscription.delinquent", "email": "ann@example.com"}

        await store.record(parse_webhook(payload, now=clock()))
        clock.advance(days=2)
        second = await store.record(parse_webhook(payload, now=clock()))

        assert second.created is False
        assert await count_events(session) == 1


# =============================================================================
# TEST: ATTEMPT COUNTING
# =============================================================================


class TestCountFailedAttempts:
    async def test_counts_per_member_and_period(self, session, clock):
        store = SubscriptionEventStore(session, now=clock)

        await store.record(parse_webhook(failed_payment(id="evt_1"), now=clock()))
        await store.record(parse_webhook(failed_payment(id="evt_2"), now=clock()))
        await store.record(parse_webhook(failed_payment("bob@example.com", id="evt_3"), now=clock()))
        await store.record(
            parse_webhook(failed_payment(id="evt_4", occurred="2024-02-10T10:00:00"), now=clock())
        )

        assert await store.count_failed_attempts("ann@example.com", "2024-03") == 2
        assert await store.count_failed_attempts("ann@example.com", "2024-02") == 1
        assert await store.count_failed_attempts("bob@example.com", "2024-03") == 1

    async def test_since_excludes_earlier_failures(self, session, clock):
        store = SubscriptionEventStore(session, now=clock)

        await store.record(parse_webhook(failed_payment(id="evt_1"), now=clock()))
        recovery = clock.advance(hours=1)
        clock.advance(hours=1)
        await store.record(parse_webhook(failed_payment(id="evt_2"), now=clock()))

        assert await store.count_failed_attempts("ann@example.com", "2024-03", since=recovery) == 1
        assert await store.has_failures("ann@example.com", "2024-03", since=clock()) is False


# =============================================================================
# TEST: NOTIFICATION OUTCOME
# =============================================================================


class TestNotificationOutcome:
    async def test_mark_notified_clears_error(self, session, clock):
        store = SubscriptionEventStore(session, now=clock)
        event = (await store.record(parse_webhook(failed_payment(), now=clock()))).event

        await store.mark_error(event.id, "Slack down")
        await session.refresh(event)
        assert event.notified is False
        assert event.notify_error == "Slack down"

        await store.mark_notified(event.id)
        await session.refresh(event)
        assert event.notified is True
        assert event.notify_error is None
        assert event.notified_at is not None

    async def test_get_by_key(self, session, clock):
        store = SubscriptionEventStore(session, now=clock)
        event = (await store.record(parse_webhook(failed_payment(), now=clock()))).event

        assert (await store.get_by_key(event.event_key)).id == event.id
        assert await store.get_by_key("charge_failed:missing") is None
