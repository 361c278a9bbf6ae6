"""Order API endpoints.

Provides endpoints for order lifecycle management:
- POST /orders - submit a cart as a pending order
- GET /orders/{id} - order details and status
- POST /orders/{id}/payment - attach the processor payment id
- POST /orders/{id}/confirm - wholesaler accepts the order
- POST /orders/{id}/fulfill - mark a paid order fulfilled
- POST /orders/{id}/archive - archive a fulfilled order
- POST /orders/{id}/cancel - cancel an order
- POST /orders/{id}/refund - refund all or part of an order
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from quikpik.api.errors import cart_http_exception, domain_http_exception
from quikpik.api.schemas import (
    ErrorResponse,
    OrderCancelRequest,
    OrderCreateRequest,
    OrderRefundRequest,
    OrderResponse,
    PaymentInstructionsResponse,
    PaymentReferenceRequest,
    PriceSchema,
    RefundResponse,
    TransitionResponse,
    order_to_response,
)
from quikpik.application.order_service import OrderService, TransitionResult, get_order_service
from quikpik.domain.exceptions import DomainError
from quikpik.domain.value_objects import CustomerContact, DeliveryInfo, LineItem, Money
from quikpik.infrastructure.config import settings

router = APIRouter(prefix="/orders", tags=["Orders"])

ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# ============================================================================
# Dependencies
# ============================================================================


def get_service() -> OrderService:
    """Get order service."""
    return get_order_service()


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        outcome=result.outcome.value,
        order=order_to_response(result.order),
        restored_items=result.restored_items,
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Submit cart",
    description="Build a pending order from a retailer's cart. Stock is reserved only once payment is confirmed.",
)
async def create_order(
    request: OrderCreateRequest,
    service: Annotated[OrderService, Depends(get_service)],
) -> OrderResponse:
    """Submit a cart as a pending order.

    Raises:
        HTTPException: 422 with the offending product and its MOQ or
            stock limit when the cart is invalid.
    """
    currency = settings.currency
    try:
        customer = None
        if request.customer is not None:
            customer = CustomerContact(**request.customer.model_dump())
        delivery = None
        if request.delivery is not None:
            cost = request.delivery.delivery_cost
            delivery = DeliveryInfo(
                fulfillment_type=request.delivery.fulfillment_type,
                delivery_cost=Money.from_decimal(cost, currency) if cost is not None else None,
                carrier=request.delivery.carrier,
                address=request.delivery.address,
            )
        line_items = [LineItem(product_id=item.product_id, quantity=item.quantity) for item in request.items]
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error_code": "VALIDATION_ERROR", "message": str(e), "details": {}},
        ) from e

    try:
        order = await service.submit_cart(
            line_items,
            wholesaler_id=request.wholesaler_id,
            retailer_id=request.retailer_id,
            delivery=delivery,
            customer=customer,
        )
    except DomainError as e:
        raise cart_http_exception(e) from e

    return order_to_response(order)


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get order details",
    description="Get an order with its items, money breakdown and status history.",
)
async def get_order(
    order_id: str,
    service: Annotated[OrderService, Depends(get_service)],
) -> OrderResponse:
    try:
        order = await service.get_order(order_id)
    except DomainError as e:
        raise domain_http_exception(e) from e
    return order_to_response(order)


@router.post(
    "/{order_id}/payment",
    response_model=PaymentInstructionsResponse,
    responses=ERROR_RESPONSES,
    summary="Attach payment reference",
    description="Record the processor payment id and get the amount and metadata to put on the payment.",
)
async def attach_payment(
    order_id: str,
    request: PaymentReferenceRequest,
    service: Annotated[OrderService, Depends(get_service)],
) -> PaymentInstructionsResponse:
    try:
        instructions = await service.attach_payment_reference(order_id, request.payment_reference)
    except DomainError as e:
        raise domain_http_exception(e) from e
    return PaymentInstructionsResponse(
        order_id=instructions.order_id,
        payment_reference=instructions.payment_reference,
        amount=PriceSchema.from_money(instructions.amount),
        metadata=instructions.metadata,
    )


@router.post(
    "/{order_id}/confirm",
    response_model=TransitionResponse,
    responses=ERROR_RESPONSES,
    summary="Confirm order",
)
async def confirm_order(
    order_id: str,
    service: Annotated[OrderService, Depends(get_service)],
) -> TransitionResponse:
    try:
        result = await service.confirm_order(order_id)
    except DomainError as e:
        raise domain_http_exception(e) from e
    return _transition_response(result)


@router.post(
    "/{order_id}/fulfill",
    response_model=TransitionResponse,
    responses=ERROR_RESPONSES,
    summary="Fulfill order",
    description="Mark a paid order fulfilled. It is archived automatically once the archive delay has passed.",
)
async def fulfill_order(
    order_id: str,
    service: Annotated[OrderService, Depends(get_service)],
) -> TransitionResponse:
    try:
        result = await service.fulfill_order(order_id)
    except DomainError as e:
        raise domain_http_exception(e) from e
    return _transition_response(result)


@router.post(
    "/{order_id}/archive",
    response_model=TransitionResponse,
    responses=ERROR_RESPONSES,
    summary="Archive order",
)
async def archive_order(
    order_id: str,
    service: Annotated[OrderService, Depends(get_service)],
) -> TransitionResponse:
    try:
        result = await service.archive_order(order_id)
    except DomainError as e:
        raise domain_http_exception(e) from e
    return _transition_response(result)


@router.post(
    "/{order_id}/cancel",
    response_model=TransitionResponse,
    responses=ERROR_RESPONSES,
    summary="Cancel order",
    description="Cancel a pending or confirmed order. Any deducted stock is restored.",
)
async def cancel_order(
    order_id: str,
    request: OrderCancelRequest,
    service: Annotated[OrderService, Depends(get_service)],
) -> TransitionResponse:
    try:
        result = await service.cancel_order(order_id, reason=request.reason, cancelled_by=request.cancelled_by)
    except DomainError as e:
        raise domain_http_exception(e) from e
    return _transition_response(result)


@router.post(
    "/{order_id}/refund",
    response_model=RefundResponse,
    responses={**ERROR_RESPONSES, 422: {"model": ErrorResponse}},
    summary="Refund order",
    description="Refund a paid or fulfilled order, fully or in part.",
)
async def refund_order(
    order_id: str,
    request: OrderRefundRequest,
    service: Annotated[OrderService, Depends(get_service)],
) -> RefundResponse:
    """Refund an order.

    Omitting ``amount`` refunds the remaining balance. Partial refunds
    accumulate; the order moves to ``refunded`` once the total is reached.
    """
    try:
        amount = None
        if request.amount is not None:
            order = await service.get_order(order_id)
            amount = Money(amount_cents=request.amount, currency=order.currency)
        result = await service.refund_order(order_id, amount=amount, reason=request.reason)
    except DomainError as e:
        raise domain_http_exception(e) from e

    return RefundResponse(
        amount=PriceSchema.from_money(result.amount),
        fully_refunded=result.fully_refunded,
        outcome=result.outcome.value if result.outcome else None,
        order=order_to_response(result.order),
        restored_items=result.restored_items,
    )
