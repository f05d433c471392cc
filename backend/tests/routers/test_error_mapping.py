import pytest
from app.domain.errors import (
    BackendError,
    DomainError,
    DuplicateRefundError,
    FeeConfigError,
    InsufficientCreditError,
    PaymentError,
    PaymentMethodDisabledError,
    ReconciliationError,
    RefundStateError,
    RescheduleNotAllowedError,
    SeatConflictError,
    SlotValidationError,
    SlotViolation,
    UnknownReferenceError,
)
from app.routers.errors import emit_or_500, http_error
from fastapi import HTTPException


@pytest.mark.parametrize(
    "exc, status_code",
    [
        (SlotValidationError(SlotViolation.PAST_START, "booking cannot start in the past"), 422),
        (SeatConflictError("capacity_exceeded"), 409),
        (PaymentMethodDisabledError("paynow is disabled"), 400),
        (PaymentError("gateway timed out"), 502),
        (UnknownReferenceError("unknown payment reference X"), 404),
        (ReconciliationError("amount mismatch"), 409),
        (InsufficientCreditError("balance too low"), 409),
        (DuplicateRefundError("already refunded"), 409),
        (RefundStateError("booking has already started"), 409),
        (RescheduleNotAllowedError("booking has already started"), 409),
        (BackendError("booking not found", status_code=404), 404),
        (BackendError("refund already processed", status_code=409), 409),
        (BackendError("upstream down", status_code=503), 502),
        (BackendError("connection refused"), 502),
        (FeeConfigError("bad settings"), 400),
    ],
)
def test_domain_errors_map_to_status(exc: DomainError, status_code: int) -> None:
    assert http_error(exc).status_code == status_code


def test_payment_errors_say_whether_to_retry() -> None:
    assert http_error(PaymentError("timeout")).detail == {"message": "timeout", "retryable": True}
    assert http_error(PaymentMethodDisabledError("off")).detail == {"message": "off", "retryable": False}


def test_slot_errors_carry_their_kind() -> None:
    err = http_error(SlotValidationError(SlotViolation.CROSS_DAY_WINDOW, "not allowed"))
    assert err.detail == {"kind": "cross_day_window", "message": "not allowed"}


def test_emit_or_500_turns_log_failure_into_500() -> None:
    def failing(**kwargs: object) -> None:
        raise RuntimeError("fail log")

    with pytest.raises(HTTPException) as excinfo:
        emit_or_500(failing, action="booking.created")
    assert excinfo.value.status_code == 500

    seen: list[dict[str, object]] = []
    emit_or_500(lambda **kwargs: seen.append(kwargs), action="booking.created")
    assert seen == [{"action": "booking.created"}]
