"""Payment webhook receiver endpoints.

Provides:
- POST /webhooks/payments - receive payment processor events
- GET /webhooks/events/{event_id} - event log entry for operators

The processor only cares whether delivery succeeded: every event that
was verified and understood is acknowledged with 200, including events
rejected for domain reasons. Diagnostics go to the log and the event log.
"""

import json
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, Field

from quikpik.application.webhook_service import WebhookService, get_webhook_service

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

SIGNATURE_HEADER = "Payment-Signature"


# ============================================================================
# Schemas
# ============================================================================


class WebhookResponse(BaseModel):
    """Response to webhook delivery."""

    received: bool = Field(default=True, description="Whether the event was accepted")
    event_id: str = Field(..., description="Event ID")


class WebhookErrorResponse(BaseModel):
    """Error response for webhook failures."""

    error_code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")


# ============================================================================
# Dependencies
# ============================================================================


def get_service() -> WebhookService:
    """Get webhook service."""
    return get_webhook_service()


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/payments",
    response_model=WebhookResponse,
    responses={
        400: {"model": WebhookErrorResponse},
        401: {"model": WebhookErrorResponse},
    },
    summary="Receive payment webhook",
    description="Receive a payment processor event, verify its signature and settle the order.",
)
async def receive_payment_webhook(
    request: Request,
    service: Annotated[WebhookService, Depends(get_service)],
    payment_signature: Annotated[str | None, Header(alias=SIGNATURE_HEADER)] = None,
) -> WebhookResponse:
    """Receive and process a payment webhook.

    Raises:
        HTTPException: 401 if the signature is invalid, 400 if the body
            is not a JSON object.
    """
    correlation_id = getattr(request.state, "request_id", None)
    body = (await request.body()).decode("utf-8")

    if not service.verify_signature(body, payment_signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "INVALID_SIGNATURE",
                "message": "Webhook signature verification failed",
            },
        )

    try:
        payload: Any = json.loads(body)
    except json.JSONDecodeError:
        payload = None
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": "INVALID_PAYLOAD", "message": "Webhook body must be a JSON object"},
        )

    result = await service.handle_payload(payload, correlation_id=correlation_id)
    logger.info(
        "Payment webhook handled",
        event_id=result.event_id,
        status=result.status.value,
        success=result.success,
        order_id=result.order_id,
    )
    return WebhookResponse(event_id=result.event_id)


@router.get(
    "/events/{event_id}",
    response_model=dict,
    responses={
        404: {"model": WebhookErrorResponse},
    },
    summary="Get event status",
    description="Get the status of a previously received payment event.",
)
async def get_event_status(
    event_id: str,
    service: Annotated[WebhookService, Depends(get_service)],
) -> dict:
    event_data = await service.event_log.get(event_id)

    if event_data is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error_code": "EVENT_NOT_FOUND",
                "message": f"Event not found: {event_id}",
                "details": {"event_id": event_id},
            },
        )

    return event_data
