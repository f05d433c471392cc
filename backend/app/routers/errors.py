from typing import Any, Callable

from fastapi import HTTPException, status

from ..domain.errors import (
    BackendError,
    DomainError,
    DuplicateRefundError,
    InsufficientCreditError,
    PaymentError,
    PaymentMethodDisabledError,
    ReconciliationError,
    RefundStateError,
    RescheduleNotAllowedError,
    SeatConflictError,
    SlotValidationError,
    UnknownReferenceError,
)

_CONFLICTS = (InsufficientCreditError, DuplicateRefundError, RefundStateError, RescheduleNotAllowedError)


def http_error(exc: DomainError) -> HTTPException:
    if isinstance(exc, SlotValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"kind": exc.kind.value, "message": exc.message},
        )
    if isinstance(exc, SeatConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"reason": exc.reason, "overlapping_seats": exc.overlapping_seats},
        )
    if isinstance(exc, PaymentMethodDisabledError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "retryable": False},
        )
    if isinstance(exc, PaymentError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": str(exc), "retryable": True},
        )
    if isinstance(exc, UnknownReferenceError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ReconciliationError) or isinstance(exc, _CONFLICTS):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, BackendError):
        if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_409_CONFLICT):
            return HTTPException(status_code=exc.status_code, detail=str(exc))
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def emit_or_500(emit: Callable[..., None], **fields: Any) -> None:
    try:
        emit(**fields)
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")
