"""Business logic services for the member lifecycle engine."""

from .errors import (
    EventAlreadyNotifiedError,
    EventNotFoundError,
    LifecycleError,
    ThreadUnavailableError,
)
from .escalation import EscalationOutcome, EscalationPolicy
from .event_classifier import (
    ParsedWebhook,
    classify_event,
    fingerprint_event,
    parse_webhook,
)
from .event_store import RecordResult, SubscriptionEventStore
from .member_context import (
    MemberContext,
    MemberContextResolver,
    NamedResolver,
    merge_records,
)
from .offboarding import (
    LegResult,
    OffboardingCoordinator,
    OffboardingResult,
    build_offboarding_summary,
)
from .processor import ProcessResult, SubscriptionEventProcessor
from .thread_registry import EnsureResult, PeriodThreadRegistry, ThreadRequest

__all__ = [
    # Errors
    "LifecycleError",
    "ThreadUnavailableError",
    "EventNotFoundError",
    "EventAlreadyNotifiedError",
    # Classification
    "ParsedWebhook",
    "classify_event",
    "fingerprint_event",
    "parse_webhook",
    # Event store
    "RecordResult",
    "SubscriptionEventStore",
    # Member context
    "MemberContext",
    "MemberContextResolver",
    "NamedResolver",
    "merge_records",
    # Threads
    "EnsureResult",
    "PeriodThreadRegistry",
    "ThreadRequest",
    # Escalation
    "EscalationOutcome",
    "EscalationPolicy",
    "LegResult",
    "OffboardingCoordinator",
    "OffboardingResult",
    "build_offboarding_summary",
    # Pipeline
    "ProcessResult",
    "SubscriptionEventProcessor",
]
