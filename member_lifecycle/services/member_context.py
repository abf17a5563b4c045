"""
Member Context Resolver: who is this member, and who comes with them.

Resolution contract:
- Resolvers are an explicit ordered list; order is the precedence
- Merge rule: for each field, the first non-empty value wins
  (for the contact lists, the first non-empty list wins)
- Lookups run concurrently; a failing lookup is logged and skipped, never
  blocking the others
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from ..integrations.types import Contact, MemberRecord

logger = logging.getLogger(__name__)

Lookup = Callable[[str], Awaitable[MemberRecord | None]]


@dataclass
class NamedResolver:
    name: str
    lookup: Lookup


@dataclass
class MemberContext:
    email: str
    name: str | None = None
    phone: str | None = None
    team_members: list[Contact] = field(default_factory=list)
    partners: list[Contact] = field(default_factory=list)

    @property
    def first_name(self) -> str | None:
        parts = (self.name or "").split()
        return parts[0] if parts else None

    @property
    def owner(self) -> Contact:
        return Contact(name=self.name, email=self.email, phone=self.phone)


def merge_records(email: str, records: list[MemberRecord]) -> MemberContext:
    context = MemberContext(email=email)
    for record in records:
        if not context.name and record.name:
            context.name = record.name
        if not context.phone and record.phone:
            context.phone = record.phone
        if not context.team_members and record.team_members:
            context.team_members = list(record.team_members)
        if not context.partners and record.partners:
            context.partners = list(record.partners)
    return context


class MemberContextResolver:
    def __init__(self, resolvers: list[NamedResolver]):
        self._resolvers = resolvers

    async def resolve(
        self,
        email: str,
        fallback: MemberRecord | None = None,
    ) -> MemberContext:
        """
        Gather name, phone and rostered contacts for a member.

        ``fallback`` (usually the delivery's own customer fields) is consulted
        last, after every configured resolver.
        """
        results = await asyncio.gather(
            *(self._run(resolver, email) for resolver in self._resolvers)
        )
        records = [record for record in results if record is not None]
        if fallback is not None:
            records.append(fallback)

        context = merge_records(email, records)
        logger.debug(
            f"Resolved context for {email}: name={context.name!r}, "
            f"{len(context.team_members)} team members, {len(context.partners)} partners "
            f"(sources: {[r.source for r in records]})"
        )
        return context

    async def _run(self, resolver: NamedResolver, email: str) -> MemberRecord | None:
        try:
            return await resolver.lookup(email)
        except Exception as e:
            logger.error(f"Member lookup '{resolver.name}' failed for {email}: {e}")
            return None
