"""Settlement notifications.

Notifications are fire-and-forget: a failure is logged and never undoes
or blocks settlement.
"""

from typing import Any, Protocol

import httpx
import structlog

from quikpik.domain.entities import Order
from quikpik.infrastructure.config import settings

logger = structlog.get_logger()


class NotificationError(Exception):
    """Error from a notification relay."""

    def __init__(self, channel: str, message: str, status_code: int | None = None) -> None:
        self.channel = channel
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{channel}] {message}")


class Notifier(Protocol):
    """Delivers settlement notifications."""

    async def send_order_confirmation(self, order: Order) -> None:
        """Email the retailer a confirmation of the paid order."""
        ...

    async def send_wholesaler_new_order(self, order: Order) -> None:
        """Tell the wholesaler a paid order is waiting."""
        ...


def order_summary(order: Order) -> dict[str, Any]:
    """Notification payload for an order."""
    return {
        "order_id": order.id,
        "wholesaler_id": order.wholesaler_id,
        "retailer_id": order.retailer_id,
        "status": order.status.value,
        "currency": order.currency,
        "total": str(order.total.to_decimal()),
        "wholesaler_net": str(order.wholesaler_net.to_decimal()),
        "fulfillment_type": order.delivery.fulfillment_type.value,
        "items": [
            {
                "product_id": item.product_id,
                "product_name": item.product_name,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price.to_decimal()),
                "line_total": str(item.line_total.to_decimal()),
            }
            for item in order.items
        ],
    }


class LoggingNotifier:
    """Writes notifications to the log instead of delivering them."""

    async def send_order_confirmation(self, order: Order) -> None:
        logger.info(
            "Order confirmation notification",
            order_id=order.id,
            recipient=order.customer.email if order.customer else None,
            total_cents=order.total.amount_cents,
        )

    async def send_wholesaler_new_order(self, order: Order) -> None:
        logger.info(
            "Wholesaler new order notification",
            order_id=order.id,
            wholesaler_id=order.wholesaler_id,
            item_count=order.item_count,
        )


class HttpNotifier:
    """Posts notifications to email and messaging relays over HTTP."""

    def __init__(
        self,
        email_relay_url: str | None,
        messaging_relay_url: str | None,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize HTTP notifier.

        Args:
            email_relay_url: Endpoint accepting order confirmation emails.
            messaging_relay_url: Endpoint accepting wholesaler messages.
            timeout: Request timeout in seconds.
            client: Optional pre-built client (for testing).
        """
        self.email_relay_url = email_relay_url
        self.messaging_relay_url = messaging_relay_url
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post(self, channel: str, url: str | None, payload: dict[str, Any]) -> None:
        if not url:
            logger.debug("Notification channel not configured", channel=channel)
            return
        try:
            client = await self._get_client()
            response = await client.post(url, json=payload)
        except httpx.RequestError as e:
            raise NotificationError(channel, f"Request failed: {e}") from e
        if response.status_code >= 400:
            raise NotificationError(channel, f"Relay rejected notification: {response.text}", response.status_code)

    async def send_order_confirmation(self, order: Order) -> None:
        if order.customer is None or not order.customer.email:
            logger.info("No customer email for order confirmation", order_id=order.id)
            return
        payload = {
            "to": order.customer.email,
            "name": order.customer.name,
            "template": "order_confirmation",
            "order": order_summary(order),
        }
        await self._post("email", self.email_relay_url, payload)

    async def send_wholesaler_new_order(self, order: Order) -> None:
        payload = {
            "wholesaler_id": order.wholesaler_id,
            "template": "new_order",
            "order": order_summary(order),
        }
        await self._post("messaging", self.messaging_relay_url, payload)


class NotificationDispatcher:
    """Sends every settlement notification, swallowing and logging failures."""

    def __init__(self, notifier: Notifier | None = None) -> None:
        self.notifier = notifier or get_notifier()

    async def order_settled(self, order: Order) -> None:
        sends = (
            ("order_confirmation", self.notifier.send_order_confirmation),
            ("wholesaler_new_order", self.notifier.send_wholesaler_new_order),
        )
        for name, send in sends:
            try:
                await send(order)
            except Exception as e:
                logger.error(
                    "Notification failed",
                    notification=name,
                    order_id=order.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )


# Global notifier instance
_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    """Get or create the configured notifier.

    An HTTP notifier is used when any relay URL is configured.
    """
    global _notifier
    if _notifier is None:
        if settings.email_relay_url or settings.messaging_relay_url:
            _notifier = HttpNotifier(
                settings.email_relay_url,
                settings.messaging_relay_url,
                timeout=settings.notification_timeout,
            )
        else:
            _notifier = LoggingNotifier()
    return _notifier


def set_notifier(notifier: Notifier | None) -> None:
    """Replace the notifier (for testing)."""
    global _notifier
    _notifier = notifier


async def close_notifier() -> None:
    """Release the notifier's HTTP client, if it holds one."""
    global _notifier
    if isinstance(_notifier, HttpNotifier):
        await _notifier.close()
    _notifier = None
