from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..domain.clients import BookingBackend
from ..domain.errors import DuplicateRefundError, RefundStateError
from ..domain.ledger import CreditLedger, RefundPolicy, RefundTransaction, StoreCredit
from ..models import RefundStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefundOutcome:
    refund: RefundTransaction
    credit: Optional[StoreCredit] = None


@dataclass(frozen=True)
class CreditSummary:
    credits: list[StoreCredit]
    total: Decimal
    expired: list[StoreCredit]


async def request_refund(
    backend: BookingBackend,
    *,
    booking_id: str,
    user_id: int,
    reason: str,
    now: datetime,
    policy: RefundPolicy = RefundPolicy(),
) -> RefundOutcome:
    booking = await backend.booking(booking_id)
    if booking.user_id != user_id:
        raise RefundStateError(f"booking {booking_id} belongs to another user")
    if booking.start_at <= now:
        raise RefundStateError("booking has already started")

    refunds = await backend.user_refunds(user_id)
    if any(r.booking_id == booking_id and r.status == RefundStatus.APPROVED for r in refunds):
        raise DuplicateRefundError(f"booking {booking_id} was already refunded")

    # Dry run against a snapshot so rule violations surface before the backend is touched.
    ledger = CreditLedger.from_snapshot(refunds=refunds, credits=await backend.user_credits(user_id), policy=policy)
    try:
        ledger.request(
            booking_id=booking_id,
            owner_id=user_id,
            refund_amount=booking.total_amount,
            reason=reason,
            now=now,
        )
    except ValueError as exc:
        raise RefundStateError(str(exc)) from exc

    refund = await backend.request_refund(booking_id, reason, user_id)
    if not policy.auto_approve:
        return RefundOutcome(refund=refund)

    credit = await backend.approve_refund(refund.id)
    refund.status = RefundStatus.APPROVED
    refund.credit_id = credit.id
    refund.credit_amount = credit.amount
    refund.processed_at = now
    logger.info("refund %s approved as credit %s (%s)", refund.id, credit.id, credit.amount)
    return RefundOutcome(refund=refund, credit=credit)


async def reject_refund(backend: BookingBackend, *, refund_id: str) -> RefundTransaction:
    refund = await backend.reject_refund(refund_id)
    if refund.status != RefundStatus.REJECTED:
        raise RefundStateError(f"refund {refund_id} is {refund.status.value}")
    return refund


async def list_credits(backend: BookingBackend, *, user_id: int, now: datetime) -> CreditSummary:
    ledger = CreditLedger.from_snapshot(credits=await backend.user_credits(user_id))
    expired = ledger.sweep_expiry(now)
    return CreditSummary(
        credits=ledger.available_credits(user_id, now),
        total=ledger.total_available(user_id, now),
        expired=expired,
    )
