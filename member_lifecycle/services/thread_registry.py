"""
Period Thread Registry: one Slack thread per (member, purpose, billing period).

Lifecycle per (email, thread_type, period_key):

    UNCREATED -> ROOTED -> RE-ROOTED (any number of times)

A row is created lazily with insert-or-ignore; whichever concurrent request
wins the insert owns the canonical row and the loser re-reads it. The row is
rooted by posting a summary as a top-level message. It is re-rooted when the
caller expects a different channel, or when Slack reports the stored thread
no longer exists (deleted by a human).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import insert_ignore
from ..integrations.slack import MessagingChannel, SlackAPIError
from ..models import MemberThread, ThreadType, as_utc
from .errors import ThreadUnavailableError
from .event_classifier import normalize_email

logger = logging.getLogger(__name__)

# Markers describing what was posted into the current thread root. They go
# away with the root. The offboarding guard and last_recovery_at stay.
THREAD_STATE_KEYS = ("recovery_posted_at",)


@dataclass
class ThreadRequest:
    """Everything needed to find, create or re-root a thread."""
    email: str
    thread_type: ThreadType
    period_key: str
    channel_id: str | None = None
    summary_text: str | None = None
    summary_blocks: list[dict] | None = None
    name: str | None = None


@dataclass
class EnsureResult:
    thread: MemberThread
    created: bool


def metadata_time(thread: MemberThread, key: str) -> datetime | None:
    """Read an ISO timestamp stored in thread metadata."""
    value = (thread.thread_metadata or {}).get(key)
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value))
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed {key}={value!r} on thread {thread.id}")
        return None


class PeriodThreadRegistry:
    def __init__(self, session: AsyncSession, messaging: MessagingChannel):
        self._session = session
        self._messaging = messaging

    async def get_thread(
        self,
        email: str,
        thread_type: ThreadType,
        period_key: str,
    ) -> MemberThread | None:
        normalized = normalize_email(email)
        if not normalized:
            return None
        result = await self._session.execute(
            select(MemberThread).where(
                MemberThread.member_email == normalized,
                MemberThread.thread_type == thread_type,
                MemberThread.period_key == period_key,
            )
        )
        return result.scalar_one_or_none()

    async def ensure_thread(self, request: ThreadRequest) -> EnsureResult:
        """
        Find or create the thread row and make sure it is rooted in the
        requested channel.

        Flow:
        1. Insert-or-ignore the (email, type, period) row, then re-read it
        2. If rooted in a different channel than requested, clear pointers
        3. If unrooted and a channel + summary were given, post the summary
           as a new top-level message and store its pointers

        A failed root post is logged and leaves the row unrooted.
        """
        email = normalize_email(request.email)
        if not email:
            raise ThreadUnavailableError("Cannot create a member thread without an email")

        stmt = (
            insert_ignore(
                self._session,
                MemberThread,
                ["member_email", "thread_type", "period_key"],
            )
            .values(
                member_email=email,
                member_name=request.name,
                thread_type=request.thread_type,
                period_key=request.period_key,
            )
            .returning(MemberThread.id)
        )
        inserted_id = (await self._session.execute(stmt)).scalar_one_or_none()

        thread = await self.get_thread(email, request.thread_type, request.period_key)
        if thread is None:
            raise ThreadUnavailableError(
                f"Thread {request.thread_type.value}/{request.period_key} for {email} vanished after insert"
            )
        if inserted_id is not None:
            logger.info(f"Created {request.thread_type.value} thread {request.period_key} for {email}")

        if (
            request.channel_id
            and thread.slack_channel_id
            and thread.slack_channel_id != request.channel_id
        ):
            logger.info(
                f"Moving thread {thread.id} from {thread.slack_channel_id} to {request.channel_id}"
            )
            await self.clear_pointers(thread)

        if not thread.is_rooted and request.channel_id and request.summary_text:
            await self._root(thread, request)

        return EnsureResult(thread=thread, created=inserted_id is not None)

    async def _root(self, thread: MemberThread, request: ThreadRequest) -> None:
        try:
            ts = await self._messaging.post_message(
                request.channel_id,
                request.summary_text,
                request.summary_blocks,
            )
        except SlackAPIError as e:
            logger.error(f"[MemberThreads] Failed to post Slack thread: {e}")
            return

        thread.slack_channel_id = request.channel_id
        thread.slack_thread_ts = ts
        if request.name and not thread.member_name:
            thread.member_name = request.name
        await self._persist()

    async def post_to_thread(
        self,
        thread: MemberThread,
        request: ThreadRequest,
        text: str,
        blocks: list[dict] | None = None,
    ) -> str:
        """
        Reply into the thread, self-healing a deleted root exactly once.

        Raises ThreadUnavailableError when no root can be established, and
        re-raises any Slack error that is not a missing-thread error.
        """
        if not thread.is_rooted:
            thread = (await self.ensure_thread(request)).thread
            if not thread.is_rooted:
                raise ThreadUnavailableError(f"Thread {thread.id} has no Slack root")

        try:
            return await self._messaging.post_message(
                thread.slack_channel_id,
                text,
                blocks,
                thread_ts=thread.slack_thread_ts,
            )
        except SlackAPIError as e:
            if not e.is_thread_missing:
                raise
            logger.warning(
                f"Thread {thread.slack_channel_id}/{thread.slack_thread_ts} is gone ({e.error}); re-creating"
            )
            await self.clear_pointers(thread)
            thread = (await self.ensure_thread(request)).thread
            if not thread.is_rooted:
                raise ThreadUnavailableError(f"Could not re-create thread {thread.id}") from e

        return await self._messaging.post_message(
            thread.slack_channel_id,
            text,
            blocks,
            thread_ts=thread.slack_thread_ts,
        )

    async def clear_pointers(self, thread: MemberThread) -> None:
        thread.slack_channel_id = None
        thread.slack_thread_ts = None
        thread.thread_metadata = {
            key: value
            for key, value in (thread.thread_metadata or {}).items()
            if key not in THREAD_STATE_KEYS
        }
        await self._persist()

    async def update_metadata(self, thread: MemberThread, **changes: Any) -> MemberThread:
        """Merge changes into the metadata bag; a value of None removes the key."""
        merged = dict(thread.thread_metadata or {})
        for key, value in changes.items():
            if value is None:
                merged.pop(key, None)
            elif isinstance(value, datetime):
                merged[key] = value.isoformat()
            else:
                merged[key] = value
        thread.thread_metadata = merged
        await self._persist()
        return thread

    async def _persist(self) -> None:
        # Slack already has the message; never let a later rollback lose it
        await self._session.flush()
        await self._session.commit()
