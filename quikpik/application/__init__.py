"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from quikpik.application.inventory_service import InventoryAdjuster
from quikpik.application.notifications import NotificationDispatcher, get_notifier
from quikpik.application.order_builder import OrderBuilder
from quikpik.application.order_service import (
    ArchiveSweeper,
    OrderService,
    get_order_service,
)
from quikpik.application.settlement_service import (
    SettlementReconciler,
    get_settlement_reconciler,
)
from quikpik.application.webhook_service import (
    WebhookService,
    get_webhook_service,
)

__all__ = [
    "ArchiveSweeper",
    "InventoryAdjuster",
    "NotificationDispatcher",
    "get_notifier",
    "OrderBuilder",
    "OrderService",
    "get_order_service",
    "SettlementReconciler",
    "get_settlement_reconciler",
    "WebhookService",
    "get_webhook_service",
]
