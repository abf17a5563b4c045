"""
Tests for wiring the processor from settings.
"""

import logging

from member_lifecycle.core.config import Settings
from member_lifecycle.core.dependencies import build_processor, build_resolvers, build_roster
from member_lifecycle.services import SubscriptionEventProcessor


def settings(**overrides) -> Settings:
    values = {
        "slack_bot_token": "xoxb-test",
        "monday_api_token": None,
        "circle_token_ca": "ca-token",
        "circle_token_spg": None,
        "wasender_api_token": "wa-token",
    }
    values.update(overrides)
    return Settings(**values)


class TestBuildProcessor:
    def test_fully_configured_has_no_warnings(self, session, caplog):
        with caplog.at_level(logging.WARNING, logger="member_lifecycle.core.dependencies"):
            processor = build_processor(session, settings())

        assert isinstance(processor, SubscriptionEventProcessor)
        assert caplog.records == []

    def test_unconfigured_collaborators_are_logged(self, session, caplog):
        with caplog.at_level(logging.WARNING, logger="member_lifecycle.core.dependencies"):
            build_processor(session, settings(circle_token_ca=None, wasender_api_token=None))

        messages = [record.getMessage() for record in caplog.records]
        assert any("Circle" in message for message in messages)
        assert any("WASENDER_API_TOKEN" in message for message in messages)
        assert not any("SLACK_BOT_TOKEN" in message for message in messages)


class TestBuildResolvers:
    def test_roster_is_skipped_without_token(self):
        config = settings()

        resolvers = build_resolvers(config, build_roster(config))

        assert [r.name for r in resolvers] == ["lead_capture", "membership", "order"]

    def test_roster_comes_first_when_configured(self):
        config = settings(monday_api_token="monday-token")

        resolvers = build_resolvers(config, build_roster(config))

        assert [r.name for r in resolvers] == ["roster", "lead_capture", "membership", "order"]
