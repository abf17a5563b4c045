"""Community platform client (Circle admin API v2)."""

import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from .types import Contact

logger = logging.getLogger(__name__)


@dataclass
class CommunityConfig:
    key: str
    community_id: int
    token: str | None


@dataclass
class CommunityRemovalResult:
    removed: int = 0
    errors: list[str] = field(default_factory=list)


class CommunityPlatform(Protocol):
    async def remove_members(
        self,
        team_members: list[Contact],
        partners: list[Contact],
    ) -> CommunityRemovalResult: ...


class CircleCommunityClient:
    """Removes members by email from every configured Circle community."""

    def __init__(
        self,
        communities: list[CommunityConfig],
        base_url: str = "https://app.circle.so/api/admin/v2",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._communities = [c for c in communities if c.token]
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def remove_members(
        self,
        team_members: list[Contact],
        partners: list[Contact],
    ) -> CommunityRemovalResult:
        result = CommunityRemovalResult()
        if not self._communities:
            result.errors.append("No Circle community tokens configured")
            return result

        emails: list[str] = []
        for contact in [*partners, *team_members]:
            email = (contact.email or "").strip().lower()
            if email and email not in emails:
                emails.append(email)

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for community in self._communities:
                for email in emails:
                    error = await self._remove_one(client, community, email)
                    if error is None:
                        result.removed += 1
                    else:
                        result.errors.append(f"{community.key} {email}: {error}")

        return result

    async def _remove_one(
        self,
        client: httpx.AsyncClient,
        community: CommunityConfig,
        email: str,
    ) -> str | None:
        try:
            response = await client.delete(
                f"{self._base_url}/community_members",
                headers={"Authorization": f"Token {community.token}"},
                params={"email": email, "community_id": community.community_id},
            )
        except httpx.HTTPError as e:
            logger.error(f"[Circle] Error removing {email} from {community.key}: {e}")
            return str(e)

        if response.is_success:
            logger.info(f"[Circle] Removed {email} from {community.key}")
            return None

        if response.status_code == 404:
            # Not a member there; nothing left to remove
            logger.info(f"[Circle] {email} not found in {community.key}")
            return None

        try:
            data = response.json()
        except ValueError:
            data = {}
        message = data.get("message") or data.get("error") or f"HTTP {response.status_code}"
        logger.error(f"[Circle] Failed to remove {email} from {community.key}: {message}")
        return message
