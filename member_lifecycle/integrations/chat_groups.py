"""Chat-group provider client (WaSender WhatsApp groups)."""

import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

GROUP_DEFINITIONS = [
    ("JID_AI", "Copy Accelerator Pro AI Updates"),
    ("JID_TM", "Copy Accelerator Pro - Team Members"),
    ("JID_BO", "Copy Accelerator Business Owners"),
]


@dataclass
class ChatGroup:
    key: str
    name: str
    jid: str


@dataclass
class GroupRemovalResult:
    success: bool
    error: str | None = None
    details: Any = None


class ChatGroupProvider(Protocol):
    async def remove_participants(self, group_id: str, phone_numbers: list[str]) -> GroupRemovalResult: ...


def normalize_phone(phone: Any) -> str | None:
    """Digits only; bare 10-digit numbers are assumed to be US (+1)."""
    if not phone:
        return None
    digits = re.sub(r"\D", "", str(phone))
    if not digits:
        return None
    if len(digits) == 10:
        return f"1{digits}"
    return digits


def configured_groups(jids: dict[str, str | None]) -> list[ChatGroup]:
    """Groups whose JID is configured, in definition order."""
    return [
        ChatGroup(key=key, name=name, jid=jids[key])
        for key, name in GROUP_DEFINITIONS
        if jids.get(key)
    ]


class WaSenderClient:
    def __init__(
        self,
        api_token: str | None,
        base_url: str = "https://www.wasenderapi.com/api",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_token = api_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def remove_participants(self, group_id: str, phone_numbers: list[str]) -> GroupRemovalResult:
        if not self._api_token:
            return GroupRemovalResult(success=False, error="WASENDER_API_TOKEN not configured")
        if not group_id:
            return GroupRemovalResult(success=False, error="Missing group JID")

        participants = [p for p in (normalize_phone(n) for n in phone_numbers) if p]
        if not participants:
            return GroupRemovalResult(success=False, error="No valid participants to remove")

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/groups/{quote(group_id, safe='')}/participants/remove",
                    headers={"Authorization": f"Bearer {self._api_token}"},
                    json={"participants": participants},
                )
        except httpx.HTTPError as e:
            logger.error(f"[WaSender] Error removing participants from {group_id}: {e}")
            return GroupRemovalResult(success=False, error=str(e))

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            message = data.get("message") or data.get("error") or "Wasender error"
            return GroupRemovalResult(success=False, error=message, details=data)

        return GroupRemovalResult(success=True, details=data)
