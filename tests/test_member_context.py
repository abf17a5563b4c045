"""
Tests for the Member Context Resolver and the SQL record lookups.
"""

from sqlalchemy import text

from member_lifecycle.integrations import Contact, MemberRecord, SqlRecordLookups
from member_lifecycle.services import MemberContextResolver, NamedResolver, merge_records

from conftest import FakeDirectory


class TestMergeRecords:
    def test_first_non_empty_value_wins_per_field(self):
        context = merge_records(
            "ann@example.com",
            [
                MemberRecord(source="roster", name="Ann Lee"),
                MemberRecord(
                    source="membership",
                    name="Annie",
                    phone="5550102000",
                    team_members=[Contact(name="Tom", email="tom@example.com")],
                ),
                MemberRecord(source="order", phone="5559999999", partners=[Contact(name="Pat")]),
            ],
        )

        assert context.name == "Ann Lee"
        assert context.phone == "5550102000"
        assert [c.name for c in context.team_members] == ["Tom"]
        assert [c.name for c in context.partners] == ["Pat"]
        assert context.first_name == "Ann"
        assert context.owner == Contact(name="Ann Lee", email="ann@example.com", phone="5550102000")

    def test_nothing_found(self):
        context = merge_records("ann@example.com", [])

        assert context.name is None
        assert context.first_name is None
        assert context.team_members == []

    def test_blank_name_has_no_first_name(self):
        context = merge_records("ann@example.com", [MemberRecord(source="roster", name="   ")])

        assert context.first_name is None


class TestMemberContextResolver:
    async def test_precedence_follows_resolver_order(self):
        roster = FakeDirectory("roster")
        orders = FakeDirectory("order")
        roster.add("ann@example.com", name="Ann Lee")
        orders.add("ann@example.com", name="A. Lee", phone="5550102000")

        resolver = MemberContextResolver(
            [NamedResolver("roster", roster.lookup), NamedResolver("order", orders.lookup)]
        )
        context = await resolver.resolve("ann@example.com")

        assert context.name == "Ann Lee"
        assert context.phone == "5550102000"
        assert roster.lookups == orders.lookups == ["ann@example.com"]

    async def test_failing_lookup_is_skipped(self):
        async def broken(email):
            raise RuntimeError("board unavailable")

        orders = FakeDirectory("order")
        orders.add("ann@example.com", name="Ann Lee")

        resolver = MemberContextResolver(
            [NamedResolver("roster", broken), NamedResolver("order", orders.lookup)]
        )
        context = await resolver.resolve("ann@example.com")

        assert context.name == "Ann Lee"

    async def test_fallback_is_consulted_last(self):
        orders = FakeDirectory("order")
        orders.add("ann@example.com", phone="5550102000")

        resolver = MemberContextResolver([NamedResolver("order", orders.lookup)])
        context = await resolver.resolve(
            "ann@example.com",
            fallback=MemberRecord(source="payload", name="Ann Lee", phone="5551111111"),
        )

        assert context.name == "Ann Lee"
        assert context.phone == "5550102000"


class TestSqlRecordLookups:
    async def create_tables(self, session):
        for ddl in [
            "CREATE TABLE typeform_applications (email TEXT, first_name TEXT, last_name TEXT, "
            "phone TEXT, created_at TIMESTAMP)",
            "CREATE TABLE business_owners (id INTEGER PRIMARY KEY, email TEXT, first_name TEXT, "
            "last_name TEXT, phone TEXT, whatsapp_number TEXT)",
            "CREATE TABLE team_members (business_owner_id INTEGER, first_name TEXT, last_name TEXT, "
            "email TEXT, phone TEXT, created_at TIMESTAMP)",
            "CREATE TABLE samcart_orders (email TEXT, first_name TEXT, last_name TEXT, "
            "phone TEXT, created_at TIMESTAMP)",
        ]:
            await session.execute(text(ddl))
        await session.commit()

    async def test_lookups_read_each_table(self, session, session_factory):
        await self.create_tables(session)
        await session.execute(
            text(
                "INSERT INTO typeform_applications VALUES "
                "(' Ann@Example.com', 'Ann', 'Lee', '5550100001', '2024-01-01'), "
                "('ann@example.com', 'Annie', 'Lee', '5550100002', '2024-02-01')"
            )
        )
        await session.execute(
            text(
                "INSERT INTO business_owners VALUES "
                "(1, 'ann@example.com', 'Ann', 'Lee', '5550100003', '5550100004')"
            )
        )
        await session.execute(
            text(
                "INSERT INTO team_members VALUES "
                "(1, 'Tom', 'Ray', 'tom@example.com', '5550103000', '2024-02-01')"
            )
        )
        await session.execute(
            text("INSERT INTO samcart_orders VALUES ('ann@example.com', 'Ann', NULL, NULL, '2024-02-01')")
        )
        await session.commit()

        lookups = SqlRecordLookups(session_factory)

        lead = await lookups.lead_capture("ann@example.com")
        assert lead.name == "Annie Lee"
        assert lead.phone == "5550100002"

        membership = await lookups.membership("ann@example.com")
        assert membership.phone == "5550100004"
        assert membership.team_members == [Contact(name="Tom Ray", email="tom@example.com", phone="5550103000")]

        order = await lookups.order("ann@example.com")
        assert order.name == "Ann"
        assert order.phone is None

        assert await lookups.order("nobody@example.com") is None
