"""Slack integration: Web API client and message builders."""

from .blocks import LifecycleMessages
from .client import MessagingChannel, SlackAPIError, SlackClient, THREAD_MISSING_ERRORS

__all__ = [
    "LifecycleMessages",
    "MessagingChannel",
    "SlackAPIError",
    "SlackClient",
    "THREAD_MISSING_ERRORS",
]
