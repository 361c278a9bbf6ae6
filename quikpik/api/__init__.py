"""API layer module.

Contains FastAPI routers and request/response schemas.
"""

from quikpik.api.health import router as health_router
from quikpik.api.inventory import router as inventory_router
from quikpik.api.orders import router as orders_router
from quikpik.api.pricing import router as pricing_router
from quikpik.api.webhooks import router as webhooks_router

__all__ = [
    "health_router",
    "inventory_router",
    "orders_router",
    "pricing_router",
    "webhooks_router",
]
