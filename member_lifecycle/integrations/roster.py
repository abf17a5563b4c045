"""
Roster system client (monday.com GraphQL).

Business owners live on one board with partners as subitems; team members
live on a second board linked back to their owner. Column IDs differ per board
and are looked up by title, so they are cached by an explicit ColumnCache
owned by the client.
"""

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from .types import Contact, MemberRecord

logger = logging.getLogger(__name__)

API_VERSION = "2024-10"

# Known subitem column IDs on the business owners board
PARTNER_EMAIL_COLUMN = "email__1"
PARTNER_PHONE_COLUMN = "phone__1"

ITEM_FIELDS = """
    id
    name
    column_values {
        id
        text
        ... on BoardRelationValue {
            linked_items {
                id
                name
                column_values { id text }
            }
        }
    }
    subitems {
        id
        name
        column_values { id text }
    }
"""


class RosterAPIError(Exception):
    """monday.com answered with GraphQL errors or could not be reached."""
    pass


@dataclass
class RosterMember:
    id: str
    name: str
    fields: dict[str, str] = field(default_factory=dict)  # column title -> text
    team_members: list[Contact] = field(default_factory=list)
    partners: list[Contact] = field(default_factory=list)

    def to_record(self) -> MemberRecord:
        return MemberRecord(
            source="roster",
            name=self.name or None,
            phone=self.fields.get("Phone") or None,
            team_members=list(self.team_members),
            partners=list(self.partners),
        )


class RosterSystem(Protocol):
    async def find_member_by_email(self, email: str) -> RosterMember | None: ...

    async def update_member_status(self, email: str, status_label: str, date: str | None = None) -> bool: ...

    async def update_team_member_status(self, email: str, status_label: str) -> bool: ...


class ColumnCache:
    """Per-board map of column title -> {id, type}, expiring after ttl seconds."""

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, dict[str, dict[str, str]]]] = {}

    def get(self, board_id: str) -> dict[str, dict[str, str]] | None:
        entry = self._entries.get(board_id)
        if entry is None:
            return None
        stored_at, columns = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[board_id]
            return None
        return columns

    def set(self, board_id: str, columns: dict[str, dict[str, str]]) -> None:
        self._entries[board_id] = (self._clock(), columns)

    def invalidate(self, board_id: str | None = None) -> None:
        if board_id is None:
            self._entries.clear()
        else:
            self._entries.pop(board_id, None)


class MondayRosterClient:
    """Reads owners/partners/team members and flips their status columns."""

    def __init__(
        self,
        api_token: str | None,
        business_owners_board_id: str,
        team_members_board_id: str,
        api_url: str = "https://api.monday.com/v2",
        timeout: float = 15.0,
        column_cache: ColumnCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_token = api_token
        self._owners_board = business_owners_board_id
        self._team_board = team_members_board_id
        self._api_url = api_url
        self._timeout = timeout
        self._transport = transport
        self.column_cache = column_cache or ColumnCache()

    async def _request(self, query: str, variables: dict[str, Any] | None = None) -> dict:
        if not self._api_token:
            raise RosterAPIError("monday.com API token not configured")

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._api_url,
                    headers={
                        "Authorization": self._api_token,
                        "API-Version": API_VERSION,
                    },
                    json={"query": query, "variables": variables or {}},
                )
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RosterAPIError(f"monday.com request failed: {e}") from e

        if data.get("errors"):
            logger.error(f"[Roster] GraphQL errors: {json.dumps(data['errors'])}")
            raise RosterAPIError(data["errors"][0].get("message", "monday.com API error"))

        return data.get("data") or {}

    async def get_column_ids(self, board_id: str) -> dict[str, dict[str, str]]:
        cached = self.column_cache.get(board_id)
        if cached is not None:
            return cached

        data = await self._request(
            """
            query ($boardId: [ID!]) {
                boards(ids: $boardId) { columns { id title type } }
            }
            """,
            {"boardId": [board_id]},
        )
        boards = data.get("boards") or []
        columns = boards[0].get("columns", []) if boards else []
        column_map = {col["title"]: {"id": col["id"], "type": col["type"]} for col in columns}

        self.column_cache.set(board_id, column_map)
        logger.info(f"[Roster] Cached {len(column_map)} columns for board {board_id}")
        return column_map

    async def _find_item(self, board_id: str, email: str) -> dict | None:
        columns = await self.get_column_ids(board_id)
        email_col = columns.get("Email")
        if not email_col:
            logger.error(f"[Roster] Email column not found on board {board_id}")
            return None

        data = await self._request(
            f"""
            query ($boardId: ID!, $columnId: String!, $value: String!) {{
                items_page_by_column_values(
                    board_id: $boardId,
                    columns: [{{ column_id: $columnId, column_values: [$value] }}],
                    limit: 1
                ) {{
                    items {{ {ITEM_FIELDS} }}
                }}
            }}
            """,
            {"boardId": board_id, "columnId": email_col["id"], "value": email.lower()},
        )
        items = (data.get("items_page_by_column_values") or {}).get("items") or []
        return items[0] if items else None

    async def find_member_by_email(self, email: str) -> RosterMember | None:
        if not email:
            return None

        item = await self._find_item(self._owners_board, email)
        if item is None:
            logger.info(f"[Roster] No business owner found with email: {email}")
            return None

        columns = await self.get_column_ids(self._owners_board)
        titles_by_id = {meta["id"]: title for title, meta in columns.items()}

        fields: dict[str, str] = {}
        team_members: list[Contact] = []
        for value in item.get("column_values") or []:
            title = titles_by_id.get(value["id"], value["id"])
            if value.get("text"):
                fields[title] = value["text"]
            for linked in value.get("linked_items") or []:
                team_members.append(_contact_from_item(linked))

        partners = [
            _contact_from_item(sub, PARTNER_EMAIL_COLUMN, PARTNER_PHONE_COLUMN)
            for sub in item.get("subitems") or []
        ]

        return RosterMember(
            id=item["id"],
            name=item.get("name") or "",
            fields=fields,
            team_members=team_members,
            partners=partners,
        )

    async def _set_status(
        self,
        board_id: str,
        email: str,
        status_label: str,
        date: str | None = None,
    ) -> bool:
        item = await self._find_item(board_id, email)
        if item is None:
            return False

        columns = await self.get_column_ids(board_id)
        values: dict[str, Any] = {}
        if "Status" in columns:
            values[columns["Status"]["id"]] = {"label": status_label}
        if date and "Cancellation Date" in columns:
            values[columns["Cancellation Date"]["id"]] = {"date": date}
        if not values:
            logger.error(f"[Roster] No Status column on board {board_id}")
            return False

        await self._request(
            """
            mutation ($boardId: ID!, $itemId: ID!, $values: JSON!) {
                change_multiple_column_values(
                    board_id: $boardId, item_id: $itemId, column_values: $values
                ) { id }
            }
            """,
            {"boardId": board_id, "itemId": item["id"], "values": json.dumps(values)},
        )
        logger.info(f"[Roster] Set {email} to {status_label} on board {board_id}")
        return True

    async def update_member_status(self, email: str, status_label: str, date: str | None = None) -> bool:
        return await self._set_status(self._owners_board, email, status_label, date)

    async def update_team_member_status(self, email: str, status_label: str) -> bool:
        return await self._set_status(self._team_board, email, status_label)


def _contact_from_item(
    item: dict,
    email_column: str | None = None,
    phone_column: str | None = None,
) -> Contact:
    values = {v["id"]: v.get("text") for v in item.get("column_values") or []}
    email = values.get(email_column) if email_column else None
    phone = values.get(phone_column) if phone_column else None

    # Fall back to the first email/phone-looking column
    for column_id, text in values.items():
        if not text:
            continue
        if not email and column_id.startswith("email"):
            email = text
        if not phone and column_id.startswith("phone"):
            phone = text

    return Contact(name=item.get("name") or None, email=(email or None), phone=(phone or None))
