"""Mapping of domain errors onto HTTP errors."""

from fastapi import HTTPException, status

from quikpik.domain.exceptions import (
    BelowMinimumOrderQuantity,
    ConcurrentModification,
    DomainError,
    DuplicatePaymentReference,
    IllegalTransition,
    InsufficientStock,
    InvalidLineItem,
    InvalidRefundAmount,
    MoneyError,
    OrderNotFound,
    ProductNotFound,
    StockContention,
)

_STATUS_BY_ERROR: list[tuple[type[DomainError], int]] = [
    (OrderNotFound, status.HTTP_404_NOT_FOUND),
    (ProductNotFound, status.HTTP_404_NOT_FOUND),
    (IllegalTransition, status.HTTP_409_CONFLICT),
    (ConcurrentModification, status.HTTP_409_CONFLICT),
    (DuplicatePaymentReference, status.HTTP_409_CONFLICT),
    (StockContention, status.HTTP_409_CONFLICT),
    (InvalidLineItem, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (BelowMinimumOrderQuantity, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InsufficientStock, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidRefundAmount, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (MoneyError, status.HTTP_422_UNPROCESSABLE_ENTITY),
]


def domain_http_exception(error: DomainError, status_code: int | None = None) -> HTTPException:
    """Build the HTTPException for a domain error.

    Args:
        error: The domain error.
        status_code: Override for the mapped status code.

    Returns:
        HTTPException whose detail carries error_code, message and details.
    """
    if status_code is None:
        status_code = next(
            (code for error_type, code in _STATUS_BY_ERROR if isinstance(error, error_type)),
            status.HTTP_400_BAD_REQUEST,
        )
    return HTTPException(
        status_code=status_code,
        detail={
            "error_code": error.error_code,
            "message": error.message,
            "details": error.details,
        },
    )


def cart_http_exception(error: DomainError) -> HTTPException:
    """Cart submission errors are all input the retailer must correct."""
    if isinstance(error, ProductNotFound):
        return domain_http_exception(error, status.HTTP_422_UNPROCESSABLE_ENTITY)
    return domain_http_exception(error)
