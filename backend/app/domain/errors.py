from __future__ import annotations

from enum import StrEnum
from typing import Iterable


class DomainError(Exception):
    """Base class for errors raised by booking and pricing rules."""


class SlotViolation(StrEnum):
    GRANULARITY = "granularity"
    PAST_START = "past_start"
    ORDERING = "ordering"
    MIN_DURATION = "min_duration"
    HORIZON = "horizon"
    CROSS_DAY_SPAN = "cross_day_span"
    CROSS_DAY_WINDOW = "cross_day_window"


class SlotValidationError(DomainError):
    def __init__(self, kind: SlotViolation, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class SeatConflictError(DomainError):
    def __init__(self, reason: str, overlapping_seats: Iterable[str] = ()) -> None:
        self.reason = reason
        self.overlapping_seats = sorted(overlapping_seats)
        super().__init__(f"{reason}: {', '.join(self.overlapping_seats)}" if self.overlapping_seats else reason)


class InstrumentError(DomainError):
    """A discount instrument could not be applied. Never fatal for an invoice."""

    source = "instrument"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PackageExhaustedError(InstrumentError):
    source = "package"


class PromoIneligibleError(InstrumentError):
    source = "promo"

    def __init__(self, code: str, reason: str) -> None:
        super().__init__(f"promo code {code} is not eligible: {reason}")
        self.code = code
        self.reason = reason


class CreditUnavailableError(InstrumentError):
    source = "credit"


class CreditExpiredError(CreditUnavailableError):
    pass


class FeeConfigError(DomainError):
    pass


class PaymentError(DomainError):
    retryable = True


class PaymentMethodDisabledError(PaymentError):
    retryable = False


class ReconciliationError(DomainError):
    pass


class UnknownReferenceError(ReconciliationError):
    pass


class InsufficientCreditError(DomainError):
    pass


class DuplicateRefundError(DomainError):
    pass


class RefundStateError(DomainError):
    pass


class RescheduleNotAllowedError(DomainError):
    pass


class BackendError(DomainError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
