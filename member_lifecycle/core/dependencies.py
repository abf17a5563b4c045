"""FastAPI dependencies wiring the lifecycle services to their collaborators."""

import logging
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..integrations import (
    CircleCommunityClient,
    ColumnCache,
    CommunityConfig,
    MemberRecord,
    MondayRosterClient,
    SlackClient,
    SqlRecordLookups,
    WaSenderClient,
    configured_groups,
)
from ..services import (
    EscalationPolicy,
    MemberContextResolver,
    NamedResolver,
    OffboardingCoordinator,
    PeriodThreadRegistry,
    SubscriptionEventProcessor,
    SubscriptionEventStore,
)
from .config import Settings, get_settings
from .database import async_session_factory, get_session

logger = logging.getLogger(__name__)
settings = get_settings()

# Shared across requests
column_cache = ColumnCache(ttl_seconds=settings.monday_column_cache_ttl_seconds)


def build_roster(settings: Settings) -> MondayRosterClient:
    return MondayRosterClient(
        api_token=settings.monday_api_token,
        business_owners_board_id=settings.monday_business_owners_board_id,
        team_members_board_id=settings.monday_team_members_board_id,
        api_url=settings.monday_api_url,
        timeout=settings.http_timeout_seconds,
        column_cache=column_cache,
    )


def build_resolvers(settings: Settings, roster: MondayRosterClient) -> list[NamedResolver]:
    """
    Member lookups in precedence order:
    roster board -> lead capture -> membership records -> orders.
    """
    records = SqlRecordLookups(async_session_factory)

    async def roster_lookup(email: str) -> MemberRecord | None:
        member = await roster.find_member_by_email(email)
        return member.to_record() if member else None

    resolvers = []
    if settings.roster_enabled:
        resolvers.append(NamedResolver("roster", roster_lookup))
    resolvers.extend([
        NamedResolver("lead_capture", records.lead_capture),
        NamedResolver("membership", records.membership),
        NamedResolver("order", records.order),
    ])
    return resolvers


def build_processor(session: AsyncSession, settings: Settings) -> SubscriptionEventProcessor:
    """Assemble the full pipeline for one request's session."""
    if not settings.slack_enabled:
        logger.warning("SLACK_BOT_TOKEN not configured; member threads cannot be posted")
    if not settings.community_enabled:
        logger.warning("No Circle community tokens configured; community removal will fail")
    if not settings.chat_groups_enabled:
        logger.warning("WASENDER_API_TOKEN not configured; chat group removal will fail")

    store = SubscriptionEventStore(
        session,
        retry_gap=settings.retry_attempt_gap,
    )
    registry = PeriodThreadRegistry(
        session,
        SlackClient(settings.slack_bot_token, timeout=settings.http_timeout_seconds),
    )
    roster = build_roster(settings)
    offboarding = OffboardingCoordinator(
        registry=registry,
        roster=roster,
        community=CircleCommunityClient(
            [
                CommunityConfig("CA", settings.circle_community_id_ca, settings.circle_token_ca),
                CommunityConfig("SPG", settings.circle_community_id_spg, settings.circle_token_spg),
            ],
            base_url=settings.circle_api_url,
            timeout=settings.http_timeout_seconds,
        ),
        chat_groups=WaSenderClient(
            settings.wasender_api_token,
            base_url=settings.wasender_api_base_url,
            timeout=settings.http_timeout_seconds,
        ),
        groups=configured_groups(
            {"JID_AI": settings.jid_ai, "JID_TM": settings.jid_tm, "JID_BO": settings.jid_bo}
        ),
    )
    policy = EscalationPolicy(
        store=store,
        registry=registry,
        offboarding=offboarding,
        failed_payments_channel=settings.failed_payments_channel,
        cancellations_channel=settings.cancellations_channel,
        payment_update_url=settings.payment_update_url,
        offboard_after_attempts=settings.offboard_after_attempts,
        tz_name=settings.business_timezone,
    )
    return SubscriptionEventProcessor(
        session=session,
        store=store,
        resolver=MemberContextResolver(build_resolvers(settings, roster)),
        policy=policy,
        tz_name=settings.business_timezone,
    )


def get_processor(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SubscriptionEventProcessor:
    return build_processor(session, settings)


# Type aliases for cleaner dependency injection
SettingsDep = Annotated[Settings, Depends(get_settings)]
ProcessorDep = Annotated[SubscriptionEventProcessor, Depends(get_processor)]
