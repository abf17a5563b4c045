"""Slack Web API client used for member threads."""

import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"

# Errors meaning the stored thread pointer no longer resolves to anything
THREAD_MISSING_ERRORS = frozenset(
    {
        "thread_not_found",
        "message_not_found",
        "channel_not_found",
        "not_in_channel",
        "is_archived",
    }
)


class SlackAPIError(Exception):
    """Slack answered with ok=false (or could not be reached)."""

    def __init__(self, error: str, method: str = "chat.postMessage"):
        self.error = error
        self.method = method
        super().__init__(f"Slack {method} failed: {error}")

    @property
    def is_thread_missing(self) -> bool:
        return self.error in THREAD_MISSING_ERRORS


class MessagingChannel(Protocol):
    """Threaded messaging surface the registry posts into."""

    async def post_message(
        self,
        channel_id: str,
        text: str,
        blocks: list[dict] | None = None,
        thread_ts: str | None = None,
    ) -> str:
        """Post a message and return its ts."""
        ...


class SlackClient:
    """Minimal chat.postMessage wrapper over httpx."""

    def __init__(
        self,
        bot_token: str | None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._bot_token = bot_token
        self._timeout = timeout
        self._transport = transport

    async def post_message(
        self,
        channel_id: str,
        text: str,
        blocks: list[dict] | None = None,
        thread_ts: str | None = None,
    ) -> str:
        if not self._bot_token:
            raise SlackAPIError("not_configured")

        body: dict[str, Any] = {"channel": channel_id, "text": text}
        if blocks:
            body["blocks"] = blocks
        if thread_ts:
            body["thread_ts"] = thread_ts

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{SLACK_API_URL}/chat.postMessage",
                    headers={"Authorization": f"Bearer {self._bot_token}"},
                    json=body,
                )
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error calling Slack chat.postMessage: {e}")
            raise SlackAPIError(f"request_failed: {e}") from e

        if not data.get("ok"):
            error = data.get("error", "unknown_error")
            logger.warning(f"Slack chat.postMessage to {channel_id} failed: {error}")
            raise SlackAPIError(error)

        return data["ts"]
