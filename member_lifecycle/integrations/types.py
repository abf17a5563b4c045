"""Plain data shapes shared by the collaborator clients."""

from dataclasses import dataclass, field


@dataclass
class Contact:
    """A person attached to a membership (owner, partner or team member)."""
    name: str | None = None
    email: str | None = None
    phone: str | None = None


@dataclass
class MemberRecord:
    """What one external lookup knows about a member."""
    source: str
    name: str | None = None
    phone: str | None = None
    team_members: list[Contact] = field(default_factory=list)
    partners: list[Contact] = field(default_factory=list)
