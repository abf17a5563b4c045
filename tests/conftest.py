"""
Shared fixtures: an in-memory SQLite database and in-memory fakes for every
external collaborator (Slack, roster board, community, chat groups).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from member_lifecycle.integrations import (
    ChatGroup,
    CommunityRemovalResult,
    Contact,
    GroupRemovalResult,
    MemberRecord,
    RosterAPIError,
    SlackAPIError,
)
from member_lifecycle.models import Base
from member_lifecycle.services import (
    EscalationPolicy,
    MemberContextResolver,
    NamedResolver,
    OffboardingCoordinator,
    PeriodThreadRegistry,
    SubscriptionEventProcessor,
    SubscriptionEventStore,
)

FAILED_PAYMENTS_CHANNEL = "C_FAILED"
CANCELLATIONS_CHANNEL = "C_CANCEL"
UPDATE_URL = "https://example.test/billing"


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# CLOCK
# =============================================================================


class Clock:
    """Settable UTC clock injected wherever the code asks for ``now``."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2024, 3, 1, 15, 0, tzinfo=timezone.utc))


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================


@dataclass
class Post:
    channel_id: str
    text: str
    blocks: list[dict] | None
    thread_ts: str | None
    ts: str


class FakeSlack:
    """Records posts; threads listed in ``missing`` answer thread_not_found."""

    def __init__(self):
        self.posts: list[Post] = []
        self.missing: set[str] = set()
        self.errors: list[str] = []  # Raised, in order, by the next posts
        self._counter = 0

    async def post_message(self, channel_id, text, blocks=None, thread_ts=None) -> str:
        if self.errors:
            raise SlackAPIError(self.errors.pop(0))
        if thread_ts in self.missing:
            raise SlackAPIError("thread_not_found")
        self._counter += 1
        ts = f"1709300000.{self._counter:06d}"
        self.posts.append(Post(channel_id, text, blocks, thread_ts, ts))
        return ts

    @property
    def roots(self) -> list[Post]:
        return [p for p in self.posts if p.thread_ts is None]

    def replies(self, thread_ts: str | None = None) -> list[Post]:
        return [
            p for p in self.posts
            if p.thread_ts is not None and (thread_ts is None or p.thread_ts == thread_ts)
        ]

    def texts(self) -> list[str]:
        return [p.text for p in self.replies()]


class FakeRoster:
    def __init__(self):
        self.member_updates: list[tuple[str, str, str | None]] = []
        self.team_updates: list[tuple[str, str]] = []
        self.unknown: set[str] = set()
        self.broken: set[str] = set()

    async def find_member_by_email(self, email):
        return None

    async def update_member_status(self, email, status_label, date=None) -> bool:
        if email in self.broken:
            raise RosterAPIError("board unavailable")
        if email in self.unknown:
            return False
        self.member_updates.append((email, status_label, date))
        return True

    async def update_team_member_status(self, email, status_label) -> bool:
        if email in self.broken:
            raise RosterAPIError("board unavailable")
        if email in self.unknown:
            return False
        self.team_updates.append((email, status_label))
        return True


class FakeCommunity:
    def __init__(self):
        self.calls: list[tuple[list[Contact], list[Contact]]] = []
        self.fail = False

    async def remove_members(self, team_members, partners) -> CommunityRemovalResult:
        if self.fail:
            raise RuntimeError("community API down")
        self.calls.append((team_members, partners))
        emails = {c.email for c in [*team_members, *partners] if c.email}
        return CommunityRemovalResult(removed=len(emails))


class FakeChatGroups:
    def __init__(self):
        self.calls: list[tuple[str, list[str]]] = []
        self.failing_groups: set[str] = set()

    async def remove_participants(self, group_id, phone_numbers) -> GroupRemovalResult:
        self.calls.append((group_id, list(phone_numbers)))
        if group_id in self.failing_groups:
            return GroupRemovalResult(success=False, error="not an admin")
        return GroupRemovalResult(success=True)


class FakeDirectory:
    """A member lookup backed by a dict."""

    def __init__(self, source: str = "directory"):
        self.source = source
        self.records: dict[str, MemberRecord] = {}
        self.lookups: list[str] = []

    def add(self, email: str, **fields) -> MemberRecord:
        record = MemberRecord(source=self.source, **fields)
        self.records[email] = record
        return record

    async def lookup(self, email: str) -> MemberRecord | None:
        self.lookups.append(email)
        return self.records.get(email)


CHAT_GROUPS = [
    ChatGroup(key="JID_AI", name="AI Updates", jid="120363000000000001@g.us"),
    ChatGroup(key="JID_BO", name="Business Owners", jid="120363000000000003@g.us"),
]


# =============================================================================
# WIRED PIPELINE
# =============================================================================


@dataclass
class Harness:
    session: AsyncSession
    clock: Clock
    slack: FakeSlack
    roster: FakeRoster
    community: FakeCommunity
    chat: FakeChatGroups
    directory: FakeDirectory
    store: SubscriptionEventStore
    registry: PeriodThreadRegistry
    offboarding: OffboardingCoordinator
    policy: EscalationPolicy
    processor: SubscriptionEventProcessor
    groups: list[ChatGroup] = field(default_factory=list)


@pytest.fixture
def harness(session, clock) -> Harness:
    slack = FakeSlack()
    roster = FakeRoster()
    community = FakeCommunity()
    chat = FakeChatGroups()
    directory = FakeDirectory()

    store = SubscriptionEventStore(session, retry_gap=timedelta(hours=6), now=clock)
    registry = PeriodThreadRegistry(session, slack)
    offboarding = OffboardingCoordinator(
        registry=registry,
        roster=roster,
        community=community,
        chat_groups=chat,
        groups=CHAT_GROUPS,
        now=clock,
    )
    policy = EscalationPolicy(
        store=store,
        registry=registry,
        offboarding=offboarding,
        failed_payments_channel=FAILED_PAYMENTS_CHANNEL,
        cancellations_channel=CANCELLATIONS_CHANNEL,
        payment_update_url=UPDATE_URL,
        offboard_after_attempts=4,
        now=clock,
    )
    processor = SubscriptionEventProcessor(
        session=session,
        store=store,
        resolver=MemberContextResolver([NamedResolver("directory", directory.lookup)]),
        policy=policy,
        now=clock,
    )
    return Harness(
        session=session,
        clock=clock,
        slack=slack,
        roster=roster,
        community=community,
        chat=chat,
        directory=directory,
        store=store,
        registry=registry,
        offboarding=offboarding,
        policy=policy,
        processor=processor,
        groups=CHAT_GROUPS,
    )


def failed_payment(email: str = "ann@example.com", **overrides) -> dict:
    """A charge-failure delivery as the payment processor sends it."""
    payload = {
        "type": "subscription.charge_failed",
        "customer": {
            "email": email,
            "first_name": "Ann",
            "last_name": "Lee",
            "phone_number": "(555) 010-2000",
        },
        "subscription": {"id": "sub_1", "amount": "97.00"},
        "occurred": "2024-03-01T10:00:00",
    }
    payload.update(overrides)
    return payload
