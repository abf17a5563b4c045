"""Member lifecycle API schemas."""

from .base import ErrorDetail, ErrorResponse, LifecycleBaseModel
from .webhooks import WebhookReceipt

__all__ = [
    # Base
    "LifecycleBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    # Webhooks
    "WebhookReceipt",
]
