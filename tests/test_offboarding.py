"""
Tests for the Offboarding Coordinator - independent, fault-tolerant legs.
"""

from member_lifecycle.integrations import Contact
from member_lifecycle.models import ThreadType
from member_lifecycle.services import (
    MemberContext,
    OffboardingResult,
    ThreadRequest,
    build_offboarding_summary,
)

from conftest import CHAT_GROUPS


def member_context() -> MemberContext:
    return MemberContext(
        email="ann@example.com",
        name="Ann Lee",
        phone="+1 (555) 010-2000",
        team_members=[
            Contact(name="Tom Ray", email="tom@example.com", phone="555.010.3000"),
            Contact(name="Sue Kim", email="sue@example.com"),
            Contact(name="No Email", phone="15550102000"),  # Same phone as the owner
        ],
        partners=[Contact(name="Pat Lee", email="pat@example.com", phone="44 20 7946 0000")],
    )


async def rooted_thread(harness):
    request = ThreadRequest(
        email="ann@example.com",
        name="Ann Lee",
        thread_type=ThreadType.MONTHLY_BOUNCE,
        period_key="2024-03",
        channel_id="C_FAILED",
        summary_text="Failed payment: Ann Lee",
    )
    thread = (await harness.registry.ensure_thread(request)).thread
    return thread, request


class TestOffboard:
    async def test_all_legs_run(self, harness):
        thread, request = await rooted_thread(harness)

        result = await harness.offboarding.offboard(
            member_context(), thread, request, reason="delinquent", cancellation_date="2024-03-05"
        )

        assert result.has_failures is False
        assert harness.roster.member_updates == [("ann@example.com", "Canceled", "2024-03-05")]
        assert harness.roster.team_updates == [
            ("tom@example.com", "Canceled"),
            ("sue@example.com", "Canceled"),
        ]

        team_members, partners = harness.community.calls[0]
        assert [c.email for c in partners] == ["ann@example.com", "pat@example.com"]
        assert len(team_members) == 3

        expected_phones = ["15550102000", "442079460000", "15550103000"]
        assert harness.chat.calls == [(group.jid, expected_phones) for group in CHAT_GROUPS]
        assert [c.name for c in result.skipped] == ["Sue Kim"]

        assert thread.thread_metadata["offboarding_reason"] == "delinquent"
        assert thread.thread_metadata["offboarded_at"] == harness.clock().isoformat()
        summary = harness.slack.replies(thread.slack_thread_ts)[-1].text
        assert summary.startswith(":door: Offboarding Ann Lee (delinquent)")
        assert "Skipped (missing phone)" in summary
        assert "Sue Kim (sue@example.com)" in summary

    async def test_failing_legs_do_not_stop_the_others(self, harness):
        thread, request = await rooted_thread(harness)
        harness.roster.broken.add("ann@example.com")
        harness.roster.unknown.add("tom@example.com")
        harness.community.fail = True
        harness.chat.failing_groups.add(CHAT_GROUPS[0].jid)

        result = await harness.offboarding.offboard(
            member_context(), thread, request, reason="canceled"
        )

        assert result.has_failures is True
        assert result.roster.failures == ["ann@example.com: board unavailable"]
        assert result.team_roster.succeeded == 1
        assert result.team_roster.failures == ["tom@example.com not found on roster"]
        assert result.community.failures == ["community API down"]
        assert result.chat_groups.succeeded == 1
        assert result.chat_groups.failures == [f"{CHAT_GROUPS[0].name}: not an admin"]

        # Still stamped and summarized
        assert thread.thread_metadata["offboarding_reason"] == "canceled"
        summary = harness.slack.replies(thread.slack_thread_ts)[-1].text
        assert ":warning: Roster status: 0 ok, 1 failed" in summary

    async def test_second_run_is_skipped(self, harness):
        thread, request = await rooted_thread(harness)

        first = await harness.offboarding.offboard(member_context(), thread, request, reason="delinquent")
        second = await harness.offboarding.offboard(member_context(), thread, request, reason="delinquent")

        assert first is not None
        assert second is None
        assert len(harness.roster.member_updates) == 1

    async def test_no_phones_skips_chat_groups(self, harness):
        thread, request = await rooted_thread(harness)
        context = MemberContext(email="ann@example.com", name="Ann Lee")

        result = await harness.offboarding.offboard(context, thread, request, reason="canceled")

        assert harness.chat.calls == []
        assert [c.email for c in result.skipped] == ["ann@example.com"]


class TestSummary:
    def test_lists_every_leg(self, clock):
        result = OffboardingResult(reason="failed_payments", offboarded_at=clock())
        result.roster.ok()
        result.community.fail("CA bob@example.com: HTTP 500")

        text = build_offboarding_summary(MemberContext(email="ann@example.com"), result)

        lines = text.splitlines()
        assert lines[0] == ":door: Offboarding ann@example.com (failed payments)"
        assert ":white_check_mark: Roster status: 1 ok, 0 failed" in lines
        assert ":warning: Community removal: 0 ok, 1 failed" in lines
        assert "    • CA bob@example.com: HTTP 500" in lines
