"""Pricing API endpoints.

Provides:
- POST /pricing/quote - price a set of lines without creating an order
"""

from decimal import Decimal

from fastapi import APIRouter, HTTPException, status

from quikpik.api.errors import domain_http_exception
from quikpik.api.schemas import ErrorResponse, QuoteRequest, QuoteResponse, TotalsResponse
from quikpik.domain.exceptions import DomainError
from quikpik.domain.pricing import PricedLine, compute_order_totals, parse_unit_price
from quikpik.domain.value_objects import FeeModel, FeeSchedule, Money
from quikpik.infrastructure.config import settings

router = APIRouter(prefix="/pricing", tags=["Pricing"])


def _fee_schedule(request: QuoteRequest) -> FeeSchedule:
    """Configured schedule, with any overrides from the request applied."""
    model = request.fee_model or settings.fee_model
    commission = request.commission_rate if request.commission_rate is not None else settings.commission_rate
    if model == FeeModel.CUSTOMER_FUNDED:
        surcharge = request.surcharge_rate if request.surcharge_rate is not None else settings.surcharge_rate
        fixed = request.fixed_surcharge if request.fixed_surcharge is not None else settings.fixed_surcharge
        return FeeSchedule.customer_funded(commission, surcharge, Money.from_decimal(Decimal(fixed), request.currency))
    return FeeSchedule.wholesaler_funded(commission)


@router.post(
    "/quote",
    response_model=QuoteResponse,
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Quote order totals",
    description="Compute subtotal, fees, total and wholesaler payout for a set of priced lines.",
)
async def quote(request: QuoteRequest) -> QuoteResponse:
    try:
        schedule = _fee_schedule(request)
        lines = [
            PricedLine(
                unit_price=parse_unit_price(line.unit_price, request.currency, product_id=line.product_id),
                quantity=line.quantity,
                moq=line.moq,
                product_id=line.product_id,
            )
            for line in request.lines
        ]
        delivery = (
            Money.from_decimal(request.delivery_cost, request.currency) if request.delivery_cost is not None else None
        )
        totals = compute_order_totals(lines, schedule, delivery_cost=delivery)
    except DomainError as e:
        raise domain_http_exception(e, status.HTTP_422_UNPROCESSABLE_ENTITY) from e
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error_code": "VALIDATION_ERROR", "message": str(e), "details": {}},
        ) from e

    return QuoteResponse(fee_model=schedule.model, totals=TotalsResponse.from_totals(totals))
