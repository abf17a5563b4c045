"""Clients for the external systems the lifecycle engine talks to."""

from .chat_groups import (
    ChatGroup,
    ChatGroupProvider,
    GroupRemovalResult,
    WaSenderClient,
    configured_groups,
    normalize_phone,
)
from .community import (
    CircleCommunityClient,
    CommunityConfig,
    CommunityPlatform,
    CommunityRemovalResult,
)
from .records import SqlRecordLookups
from .roster import (
    ColumnCache,
    MondayRosterClient,
    RosterAPIError,
    RosterMember,
    RosterSystem,
)
from .slack import LifecycleMessages, MessagingChannel, SlackAPIError, SlackClient
from .types import Contact, MemberRecord

__all__ = [
    # Shared shapes
    "Contact",
    "MemberRecord",
    # Slack
    "LifecycleMessages",
    "MessagingChannel",
    "SlackAPIError",
    "SlackClient",
    # Roster
    "ColumnCache",
    "MondayRosterClient",
    "RosterAPIError",
    "RosterMember",
    "RosterSystem",
    # Community
    "CircleCommunityClient",
    "CommunityConfig",
    "CommunityPlatform",
    "CommunityRemovalResult",
    # Chat groups
    "ChatGroup",
    "ChatGroupProvider",
    "GroupRemovalResult",
    "WaSenderClient",
    "configured_groups",
    "normalize_phone",
    # Records
    "SqlRecordLookups",
]
