"""Exceptions raised by the lifecycle services."""


class LifecycleError(Exception):
    """Base exception for lifecycle operations."""
    pass


class ThreadUnavailableError(LifecycleError):
    """A member thread could not be created or rooted in Slack."""
    pass


class EventNotFoundError(LifecycleError):
    """Subscription event does not exist."""
    pass


class EventAlreadyNotifiedError(LifecycleError):
    """Subscription event was already fully processed."""
    pass
