"""
Read-only lookups against tables owned by other parts of the back office.

- typeform_applications: lead-capture form submissions
- business_owners / team_members: membership records from onboarding
- samcart_orders: the payment processor's order records

Each lookup opens its own session so the resolver can run them concurrently.
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .types import Contact, MemberRecord

logger = logging.getLogger(__name__)


def _join_name(first: str | None, last: str | None) -> str | None:
    name = " ".join(part for part in (first, last) if part).strip()
    return name or None


class SqlRecordLookups:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def lead_capture(self, email: str) -> MemberRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                text(
                    """
                    SELECT first_name, last_name, phone
                    FROM typeform_applications
                    WHERE LOWER(TRIM(email)) = :email
                    ORDER BY created_at DESC
                    LIMIT 1
                    """
                ),
                {"email": email},
            )
            row = result.mappings().first()

        if row is None:
            return None
        return MemberRecord(
            source="lead_capture",
            name=_join_name(row["first_name"], row["last_name"]),
            phone=row["phone"],
        )

    async def membership(self, email: str) -> MemberRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                text(
                    """
                    SELECT id, first_name, last_name, phone, whatsapp_number
                    FROM business_owners
                    WHERE LOWER(TRIM(email)) = :email
                    LIMIT 1
                    """
                ),
                {"email": email},
            )
            owner = result.mappings().first()
            if owner is None:
                return None

            team_result = await session.execute(
                text(
                    """
                    SELECT first_name, last_name, email, phone
                    FROM team_members
                    WHERE business_owner_id = :owner_id
                    ORDER BY created_at
                    """
                ),
                {"owner_id": owner["id"]},
            )
            team_rows = team_result.mappings().all()

        return MemberRecord(
            source="membership",
            name=_join_name(owner["first_name"], owner["last_name"]),
            phone=owner["whatsapp_number"] or owner["phone"],
            team_members=[
                Contact(
                    name=_join_name(row["first_name"], row["last_name"]),
                    email=row["email"],
                    phone=row["phone"],
                )
                for row in team_rows
            ],
        )

    async def order(self, email: str) -> MemberRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                text(
                    """
                    SELECT first_name, last_name, phone
                    FROM samcart_orders
                    WHERE LOWER(TRIM(email)) = :email
                    ORDER BY created_at DESC
                    LIMIT 1
                    """
                ),
                {"email": email},
            )
            row = result.mappings().first()

        if row is None:
            return None
        return MemberRecord(
            source="order",
            name=_join_name(row["first_name"], row["last_name"]),
            phone=row["phone"],
        )
