"""Inventory API endpoints.

Provides:
- GET /inventory/{product_id}/movements - stock audit trail
- POST /inventory/{product_id}/adjust - manual stock correction
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from quikpik.api.errors import domain_http_exception
from quikpik.api.schemas import (
    ErrorResponse,
    StockAdjustRequest,
    StockMovementSchema,
    StockMovementsResponse,
)
from quikpik.application.inventory_service import InventoryAdjuster
from quikpik.domain.exceptions import DomainError, InsufficientStock

router = APIRouter(prefix="/inventory", tags=["Inventory"])


def get_adjuster() -> InventoryAdjuster:
    """Get inventory adjuster bound to the configured storage."""
    return InventoryAdjuster()


@router.get(
    "/{product_id}/movements",
    response_model=StockMovementsResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="List stock movements",
)
async def list_movements(
    product_id: str,
    adjuster: Annotated[InventoryAdjuster, Depends(get_adjuster)],
) -> StockMovementsResponse:
    try:
        movements = await adjuster.movements(product_id)
    except DomainError as e:
        raise domain_http_exception(e) from e
    return StockMovementsResponse(
        product_id=product_id,
        movements=[StockMovementSchema.from_movement(m) for m in movements],
    )


@router.post(
    "/{product_id}/adjust",
    response_model=StockMovementSchema,
    status_code=status.HTTP_201_CREATED,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Adjust stock",
    description="Apply a signed manual correction to a product's stock.",
)
async def adjust_stock(
    product_id: str,
    request: StockAdjustRequest,
    adjuster: Annotated[InventoryAdjuster, Depends(get_adjuster)],
) -> StockMovementSchema:
    if request.delta == 0:
        raise domain_http_exception(
            DomainError("delta must be non-zero", details={"product_id": product_id}),
            status.HTTP_422_UNPROCESSABLE_ENTITY,
        )
    try:
        movement = await adjuster.adjust(product_id, request.delta, note=request.note)
    except InsufficientStock as e:
        raise domain_http_exception(e, status.HTTP_422_UNPROCESSABLE_ENTITY) from e
    except DomainError as e:
        raise domain_http_exception(e) from e
    return StockMovementSchema.from_movement(movement)
