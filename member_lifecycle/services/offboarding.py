"""
Offboarding Coordinator: remove a member and their people from every system.

Each leg is independent: a failure is logged and recorded on the result, and
the remaining legs still run. The fan-out happens at most once per thread;
``offboarded_at`` in the thread metadata is the guard.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from ..integrations.chat_groups import ChatGroup, ChatGroupProvider, normalize_phone
from ..integrations.community import CommunityPlatform
from ..integrations.roster import RosterSystem
from ..integrations.types import Contact
from ..models import MemberThread, utcnow
from .member_context import MemberContext
from .thread_registry import PeriodThreadRegistry, ThreadRequest

logger = logging.getLogger(__name__)

CANCELED_STATUS = "Canceled"


@dataclass
class LegResult:
    """Successes and failures of one offboarding leg."""
    name: str
    succeeded: int = 0
    failures: list[str] = field(default_factory=list)

    def ok(self) -> None:
        self.succeeded += 1

    def fail(self, message: str) -> None:
        self.failures.append(message)


@dataclass
class OffboardingResult:
    reason: str
    offboarded_at: datetime
    roster: LegResult = field(default_factory=lambda: LegResult("Roster status"))
    team_roster: LegResult = field(default_factory=lambda: LegResult("Team member status"))
    community: LegResult = field(default_factory=lambda: LegResult("Community removal"))
    chat_groups: LegResult = field(default_factory=lambda: LegResult("Chat group removal"))
    skipped: list[Contact] = field(default_factory=list)  # No usable phone

    @property
    def legs(self) -> list[LegResult]:
        return [self.roster, self.team_roster, self.community, self.chat_groups]

    @property
    def has_failures(self) -> bool:
        return any(leg.failures for leg in self.legs)


def build_offboarding_summary(context: MemberContext, result: OffboardingResult) -> str:
    lines = [
        f":door: Offboarding {context.name or context.email} ({result.reason.replace('_', ' ')})"
    ]
    for leg in result.legs:
        status = ":white_check_mark:" if not leg.failures else ":warning:"
        lines.append(f"{status} {leg.name}: {leg.succeeded} ok, {len(leg.failures)} failed")
        for failure in leg.failures:
            lines.append(f"    • {failure}")

    if result.skipped:
        skipped_lines = [
            f"• {contact.name or 'Unknown'} ({contact.email or 'no email'})"
            for contact in result.skipped
        ]
        lines.append(":warning: Skipped (missing phone):\n" + "\n".join(skipped_lines))

    return "\n".join(lines)


class OffboardingCoordinator:
    def __init__(
        self,
        registry: PeriodThreadRegistry,
        roster: RosterSystem,
        community: CommunityPlatform,
        chat_groups: ChatGroupProvider,
        groups: list[ChatGroup],
        now: Callable[[], datetime] = utcnow,
    ):
        self._registry = registry
        self._roster = roster
        self._community = community
        self._chat_groups = chat_groups
        self._groups = groups
        self._now = now

    @staticmethod
    def already_offboarded(thread: MemberThread) -> bool:
        return bool((thread.thread_metadata or {}).get("offboarded_at"))

    async def offboard(
        self,
        context: MemberContext,
        thread: MemberThread,
        request: ThreadRequest,
        reason: str,
        cancellation_date: str | None = None,
    ) -> OffboardingResult | None:
        """
        Run the fan-out for a member, unless this thread already did.

        Returns None when skipped by the idempotency guard.
        """
        if self.already_offboarded(thread):
            logger.info(f"{context.email} already offboarded on thread {thread.id}; skipping fan-out")
            return None

        now = self._now()
        result = OffboardingResult(reason=reason, offboarded_at=now)
        date = cancellation_date or now.date().isoformat()
        logger.info(f"Offboarding {context.email} (reason={reason})")

        await self._update_roster(context, date, result)
        await self._update_team_roster(context, result)
        await self._remove_from_community(context, result)
        await self._remove_from_chat_groups(context, result)

        await self._registry.update_metadata(
            thread,
            offboarded_at=now,
            offboarding_reason=reason,
        )
        await self._registry.post_to_thread(
            thread,
            request,
            build_offboarding_summary(context, result),
        )
        return result

    async def _update_roster(self, context: MemberContext, date: str, result: OffboardingResult) -> None:
        try:
            if await self._roster.update_member_status(context.email, CANCELED_STATUS, date):
                result.roster.ok()
            else:
                result.roster.fail(f"{context.email} not found on roster")
        except Exception as e:
            logger.error(f"Roster status update failed for {context.email}: {e}")
            result.roster.fail(f"{context.email}: {e}")

    async def _update_team_roster(self, context: MemberContext, result: OffboardingResult) -> None:
        for member in context.team_members:
            if not member.email:
                continue
            try:
                if await self._roster.update_team_member_status(member.email, CANCELED_STATUS):
                    result.team_roster.ok()
                else:
                    result.team_roster.fail(f"{member.email} not found on roster")
            except Exception as e:
                logger.error(f"Team member status update failed for {member.email}: {e}")
                result.team_roster.fail(f"{member.email}: {e}")

    async def _remove_from_community(self, context: MemberContext, result: OffboardingResult) -> None:
        try:
            removal = await self._community.remove_members(
                list(context.team_members),
                [context.owner, *context.partners],
            )
        except Exception as e:
            logger.error(f"Community removal failed for {context.email}: {e}")
            result.community.fail(str(e))
            return

        result.community.succeeded += removal.removed
        result.community.failures.extend(removal.errors)

    async def _remove_from_chat_groups(self, context: MemberContext, result: OffboardingResult) -> None:
        phones: list[str] = []
        for contact in [context.owner, *context.partners, *context.team_members]:
            phone = normalize_phone(contact.phone)
            if not phone:
                result.skipped.append(contact)
                continue
            if phone not in phones:
                phones.append(phone)

        if not phones:
            return
        if not self._groups:
            result.chat_groups.fail("No chat groups configured")
            return

        for group in self._groups:
            try:
                removal = await self._chat_groups.remove_participants(group.jid, phones)
            except Exception as e:
                logger.error(f"Chat group removal failed for {group.name}: {e}")
                result.chat_groups.fail(f"{group.name}: {e}")
                continue

            if removal.success:
                result.chat_groups.ok()
            else:
                result.chat_groups.fail(f"{group.name}: {removal.error or 'error'}")
