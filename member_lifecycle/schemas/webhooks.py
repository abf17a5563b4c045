"""Schemas for the payment webhook endpoints."""

from typing import Literal

from pydantic import Field

from .base import LifecycleBaseModel


class WebhookReceipt(LifecycleBaseModel):
    """
    Acknowledgement returned to the payment processor.

    Always sent with 200 once the delivery is parsed, including when
    notification failed: the event is recorded and will be retried on
    redelivery or replay.
    """

    status: Literal["ignored", "duplicate", "processed", "error"]
    event_key: str | None = None
    event_kind: str | None = None
    attempt: int | None = Field(default=None, description="Charge attempt number within the billing period")
    action: str | None = Field(default=None, description="What the escalation policy did")
    error: str | None = None
