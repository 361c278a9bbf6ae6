"""Payment webhook processing service.

Handles incoming payment processor webhooks with:
- Timestamped HMAC signature verification
- Mapping processor payloads onto payment confirmation events
- An event log for operator diagnostics
- Settlement through the reconciler
"""

import hashlib
import hmac
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from quikpik.application.settlement_service import (
    PaymentConfirmationEvent,
    PaymentEventType,
    ReconciliationStatus,
    SettlementReconciler,
    get_settlement_reconciler,
)
from quikpik.domain.exceptions import DomainError, UnresolvableEvent
from quikpik.domain.value_objects import Money
from quikpik.infrastructure.config import settings

logger = structlog.get_logger()


class EventStatus(str, Enum):
    """Status of a webhook event in the event log."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"


@dataclass
class WebhookResult:
    """Result of webhook processing.

    Attributes:
        success: Whether the event was applied (or safely ignored).
        event_id: The event ID.
        status: Final event status.
        message: Status message, for logs only.
        duplicate: Whether this event had already been processed.
        order_id: Settled order, when known.
        reconciliation: Reconciler outcome, when it ran.
    """

    success: bool
    event_id: str
    status: EventStatus
    message: str
    duplicate: bool = False
    order_id: str | None = None
    reconciliation: ReconciliationStatus | None = None


# ============================================================================
# Signature Verification
# ============================================================================


class PaymentSignatureVerifier:
    """Verifies timestamped HMAC-SHA256 signatures.

    The signature header has the form ``t=<unix seconds>,v1=<hex>`` and
    the signed message is ``"<t>.<raw payload>"``. Several ``v1``
    entries may be present during secret rotation.
    """

    def __init__(self, secret: str | None = None, tolerance_seconds: int | None = None) -> None:
        """Initialize verifier.

        Args:
            secret: Shared webhook signing secret.
            tolerance_seconds: Maximum accepted age of a signature.
        """
        self.secret = secret or settings.webhook_secret
        self.tolerance_seconds = (
            tolerance_seconds if tolerance_seconds is not None else settings.webhook_tolerance_seconds
        )

    def compute(self, payload: str, timestamp: int) -> str:
        return hmac.new(
            self.secret.encode(),
            f"{timestamp}.{payload}".encode(),
            hashlib.sha256,
        ).hexdigest()

    def sign(self, payload: str, timestamp: int | None = None) -> str:
        """Build a signature header for ``payload``."""
        timestamp = int(time.time()) if timestamp is None else timestamp
        return f"t={timestamp},v1={self.compute(payload, timestamp)}"

    def verify(self, payload: str, signature: str | None, now: int | None = None) -> bool:
        """Verify the signature header of a webhook payload.

        Args:
            payload: Raw request body.
            signature: Signature header value.
            now: Current unix time.

        Returns:
            True if a signature matches and is within tolerance.
        """
        if not signature:
            logger.warning("Missing webhook signature")
            return False

        timestamp: int | None = None
        candidates: list[str] = []
        for part in signature.split(","):
            key, sep, value = part.strip().partition("=")
            if not sep:
                continue
            if key == "t":
                try:
                    timestamp = int(value)
                except ValueError:
                    timestamp = None
            elif key == "v1":
                candidates.append(value)

        if timestamp is None or not candidates:
            logger.warning("Invalid signature format", signature_prefix=signature[:20])
            return False

        now = int(time.time()) if now is None else now
        if abs(now - timestamp) > self.tolerance_seconds:
            logger.warning("Webhook signature outside tolerance", timestamp=timestamp, now=now)
            return False

        computed = self.compute(payload, timestamp)
        if not any(hmac.compare_digest(computed, candidate) for candidate in candidates):
            logger.warning("Webhook signature mismatch")
            return False

        logger.debug("Webhook signature verified")
        return True


# ============================================================================
# Payload Parsing
# ============================================================================


class _PaymentObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    payment_intent: str | None = None
    amount_received: int | None = Field(default=None, ge=0)
    amount_total: int | None = Field(default=None, ge=0)
    amount: int | None = Field(default=None, ge=0)
    currency: str = Field(min_length=3, max_length=3)
    metadata: dict[str, Any] = Field(default_factory=dict)


class _EventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: dict[str, Any]


class _ProcessorEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    type: str
    data: _EventData


def parse_payment_event(payload: dict[str, Any]) -> PaymentConfirmationEvent | None:
    """Map a processor webhook payload onto a payment confirmation.

    Args:
        payload: Decoded webhook JSON.

    Returns:
        The confirmation, or None for event types that do not confirm a payment.

    Raises:
        UnresolvableEvent: If a confirmation payload is malformed.
    """
    event_id = str(payload.get("id") or "unknown")
    try:
        envelope = _ProcessorEvent.model_validate(payload)
    except ValidationError as e:
        raise UnresolvableEvent(event_id, f"malformed event envelope: {e.error_count()} error(s)") from e

    try:
        event_type = PaymentEventType(envelope.type)
    except ValueError:
        return None

    try:
        obj = _PaymentObject.model_validate(envelope.data.object)
    except ValidationError as e:
        raise UnresolvableEvent(envelope.id, f"malformed payment object: {e.error_count()} error(s)") from e

    if event_type == PaymentEventType.CHECKOUT_SESSION_COMPLETED:
        amount = obj.amount_total
        reference = obj.payment_intent or obj.id
    else:
        amount = obj.amount_received if obj.amount_received is not None else obj.amount
        reference = obj.id
    if amount is None:
        raise UnresolvableEvent(envelope.id, "payment object carries no amount")

    return PaymentConfirmationEvent(
        event_id=envelope.id,
        event_type=event_type,
        payment_reference=reference,
        amount=Money(amount_cents=amount, currency=obj.currency),
        metadata=obj.metadata,
    )


# ============================================================================
# Event Log
# ============================================================================


class InMemoryEventLog:
    """In-memory log of received payment events.

    Bounded by entry count and age; the oldest entries go first. An
    evicted event that is delivered again is simply reconciled again,
    which the reconciler treats as already processed.
    """

    def __init__(self, max_entries: int | None = None, ttl_seconds: int | None = None) -> None:
        self.max_entries = max_entries or settings.webhook_event_log_max_entries
        self.ttl = timedelta(seconds=ttl_seconds or settings.webhook_event_log_ttl_seconds)
        self._events: OrderedDict[str, dict[str, Any]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._events)

    def _evict(self, now: datetime) -> None:
        cutoff = now - self.ttl
        while self._events:
            oldest = next(iter(self._events.values()))
            if len(self._events) <= self.max_entries and oldest["received_at"] >= cutoff:
                break
            self._events.popitem(last=False)

    async def is_processed(self, event_id: str) -> bool:
        entry = self._events.get(event_id)
        return entry is not None and entry["status"] == EventStatus.PROCESSED.value

    async def store(
        self,
        event_id: str,
        event_type: str,
        status: EventStatus,
        payment_reference: str | None = None,
        correlation_id: str | None = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        previous = self._events.get(event_id)
        self._events[event_id] = {
            "event_id": event_id,
            "event_type": event_type,
            "payment_reference": payment_reference,
            "received_at": previous["received_at"] if previous else now,
            "processed_at": now if status == EventStatus.PROCESSED else None,
            "status": status.value,
            "attempts": (previous["attempts"] + 1) if previous else 1,
            "order_id": None,
            "error_code": None,
            "error_message": None,
            "correlation_id": correlation_id,
        }
        self._evict(now)

    async def get(self, event_id: str) -> dict[str, Any] | None:
        entry = self._events.get(event_id)
        return dict(entry) if entry else None

    async def update_status(
        self,
        event_id: str,
        status: EventStatus,
        order_id: str | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        entry = self._events.get(event_id)
        if entry is None:
            return
        entry["status"] = status.value
        if status == EventStatus.PROCESSED:
            entry["processed_at"] = datetime.now(timezone.utc)
        if order_id:
            entry["order_id"] = order_id
        entry["error_code"] = error_code
        entry["error_message"] = error_message


# ============================================================================
# Webhook Service
# ============================================================================


class WebhookService:
    """Service for processing payment webhooks."""

    def __init__(
        self,
        event_log: InMemoryEventLog | None = None,
        signature_verifier: PaymentSignatureVerifier | None = None,
        reconciler: SettlementReconciler | None = None,
    ) -> None:
        """Initialize webhook service.

        Args:
            event_log: Event log for diagnostics and duplicate detection.
            signature_verifier: Signature verifier.
            reconciler: Settlement reconciler. Defaults to the shared instance.
        """
        self.event_log = event_log or InMemoryEventLog()
        self.signature_verifier = signature_verifier or PaymentSignatureVerifier()
        self._reconciler = reconciler

    @property
    def reconciler(self) -> SettlementReconciler:
        return self._reconciler or get_settlement_reconciler()

    def verify_signature(self, payload: str, signature: str | None) -> bool:
        return self.signature_verifier.verify(payload, signature)

    async def handle_payload(self, payload: dict[str, Any], correlation_id: str | None = None) -> WebhookResult:
        """Parse a verified webhook payload and process it.

        Raises:
            Exception: Unexpected (non-domain) failures propagate so the
                processor retries the delivery.
        """
        event_id = str(payload.get("id") or f"unidentified:{correlation_id or uuid4()}")
        try:
            event = parse_payment_event(payload)
        except UnresolvableEvent as e:
            logger.error("Unresolvable payment webhook", event_id=event_id, error=e.message)
            await self.event_log.store(event_id, str(payload.get("type")), EventStatus.FAILED, correlation_id=correlation_id)
            await self.event_log.update_status(
                event_id, EventStatus.FAILED, error_code=e.error_code, error_message=e.message
            )
            return WebhookResult(success=False, event_id=event_id, status=EventStatus.FAILED, message=e.message)

        if event is None:
            logger.debug("Ignoring webhook event type", event_id=event_id, event_type=payload.get("type"))
            await self.event_log.store(event_id, str(payload.get("type")), EventStatus.IGNORED, correlation_id=correlation_id)
            return WebhookResult(success=True, event_id=event_id, status=EventStatus.IGNORED, message="Event type ignored")

        return await self.process_event(event, correlation_id=correlation_id)

    async def process_event(
        self,
        event: PaymentConfirmationEvent,
        correlation_id: str | None = None,
    ) -> WebhookResult:
        """Process a payment confirmation.

        Args:
            event: The confirmation to apply.
            correlation_id: Request correlation ID.

        Returns:
            Processing result. Domain failures are reported with
            ``success=False`` and must not be retried.
        """
        logger.info(
            "Processing payment event",
            event_id=event.event_id,
            event_type=event.event_type.value,
            payment_reference=event.payment_reference,
            amount_cents=event.amount.amount_cents,
            correlation_id=correlation_id,
        )

        if await self.event_log.is_processed(event.event_id):
            logger.info("Duplicate payment event ignored", event_id=event.event_id)
            return WebhookResult(
                success=True,
                event_id=event.event_id,
                status=EventStatus.DUPLICATE,
                message="Event already processed",
                duplicate=True,
            )

        await self.event_log.store(
            event.event_id,
            event.event_type.value,
            EventStatus.PROCESSING,
            payment_reference=event.payment_reference,
            correlation_id=correlation_id,
        )

        try:
            result = await self.reconciler.reconcile(event)
        except DomainError as e:
            logger.error(
                "Payment event rejected",
                event_id=event.event_id,
                payment_reference=event.payment_reference,
                error_code=e.error_code,
                error=e.message,
                details=e.details,
            )
            await self.event_log.update_status(
                event.event_id, EventStatus.FAILED, error_code=e.error_code, error_message=e.message
            )
            return WebhookResult(success=False, event_id=event.event_id, status=EventStatus.FAILED, message=e.message)
        except Exception as e:
            await self.event_log.update_status(
                event.event_id, EventStatus.FAILED, error_code="INTERNAL_ERROR", error_message=str(e)
            )
            raise

        await self.event_log.update_status(event.event_id, EventStatus.PROCESSED, order_id=result.order_id)
        return WebhookResult(
            success=True,
            event_id=event.event_id,
            status=EventStatus.PROCESSED,
            message=result.message,
            order_id=result.order_id,
            reconciliation=result.status,
        )


# Global service instance
_webhook_service: WebhookService | None = None


def get_webhook_service() -> WebhookService:
    """Get or create the webhook service instance.

    Returns:
        WebhookService instance.
    """
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService()
    return _webhook_service


def reset_webhook_service() -> None:
    """Reset the webhook service (for testing)."""
    global _webhook_service
    _webhook_service = None
