"""
Payment Webhook Routes: inbound subscription events from the payment processor.

1. POST /webhooks/payments - Ingest a delivery (idempotent)
2. POST /webhooks/payments/replay/{event_key} - Re-run notification for a
   recorded event that failed to notify
"""

import hmac
import json
import logging
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Request, status

from ..core.dependencies import ProcessorDep, SettingsDep
from ..schemas import WebhookReceipt
from ..services import EventAlreadyNotifiedError, EventNotFoundError, ProcessResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/payments", tags=["webhooks"])


def verify_webhook_secret(expected: str | None, provided: str | None) -> None:
    """Shared-secret check, only enforced when a secret is configured."""
    if not expected:
        return
    if not provided or not hmac.compare_digest(expected.encode(), provided.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret",
        )


def build_receipt(result: ProcessResult) -> WebhookReceipt:
    return WebhookReceipt(
        status=result.status,
        event_key=result.event_key,
        event_kind=result.event_kind,
        attempt=result.attempt,
        action=result.action,
        error=result.error,
    )


@router.post(
    "",
    response_model=WebhookReceipt,
    summary="Receive a payment processor webhook",
    description="""
    Record a subscription event and run its notifications.

    Always answers 200 once the body is valid JSON: non-subscription
    deliveries are `ignored`, redeliveries of notified events are
    `duplicate`, and notification failures are `error` (the event stays
    recorded and is retried on redelivery).
    """,
)
async def receive_payment_webhook(
    request: Request,
    processor: ProcessorDep,
    settings: SettingsDep,
    x_webhook_secret: Annotated[str | None, Header(alias="X-Webhook-Secret")] = None,
):
    verify_webhook_secret(settings.payments_webhook_secret, x_webhook_secret)

    try:
        payload = json.loads(await request.body())
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON body",
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook body must be a JSON object",
        )

    result = await processor.process(payload)
    if result.status == "error":
        logger.warning(f"Webhook {result.event_key} recorded but not notified: {result.error}")
    return build_receipt(result)


@router.post(
    "/replay/{event_key}",
    response_model=WebhookReceipt,
    summary="Replay notification for a recorded event",
)
async def replay_payment_event(
    event_key: str,
    processor: ProcessorDep,
    settings: SettingsDep,
    x_webhook_secret: Annotated[str | None, Header(alias="X-Webhook-Secret")] = None,
):
    """Re-run the notification pipeline for an event that is not yet notified."""
    verify_webhook_secret(settings.payments_webhook_secret, x_webhook_secret)

    try:
        result = await processor.replay(event_key)
    except EventNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )
    except EventAlreadyNotifiedError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )
    return build_receipt(result)
