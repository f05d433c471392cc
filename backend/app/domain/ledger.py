"""Refund to store-credit state machine.

REQUESTED -> APPROVED (credit ACTIVE -> USED | EXPIRED), or REQUESTED -> REJECTED.
The ledger works over a snapshot of one user's records; the backend remains
the source of truth and enforces the same rules transactionally.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional

from ..models import CreditStatus, RefundStatus
from .errors import (
    CreditExpiredError,
    DuplicateRefundError,
    InsufficientCreditError,
    RefundStateError,
)

ZERO = Decimal("0")
CREDIT_VALIDITY = timedelta(days=30)


@dataclass
class StoreCredit:
    id: str
    owner_id: int
    amount: Decimal
    refunded_from_booking_id: str
    issued_at: datetime
    expires_at: datetime
    status: CreditStatus = CreditStatus.ACTIVE
    used_amount: Decimal = ZERO

    @property
    def balance(self) -> Decimal:
        return max(self.amount - self.used_amount, ZERO)

    def is_expired(self, now: datetime) -> bool:
        return self.status == CreditStatus.EXPIRED or now > self.expires_at

    def is_usable(self, now: datetime) -> bool:
        return self.status == CreditStatus.ACTIVE and not self.is_expired(now) and self.balance > ZERO


@dataclass(frozen=True)
class CreditUsage:
    id: str
    credit_id: str
    owner_id: int
    booking_id: str
    amount_used: Decimal
    used_at: datetime


@dataclass
class RefundTransaction:
    id: str
    booking_id: str
    owner_id: int
    refund_amount: Decimal
    reason: str
    requested_at: datetime
    status: RefundStatus = RefundStatus.REQUESTED
    credit_amount: Decimal = ZERO
    processed_at: Optional[datetime] = None
    credit_id: Optional[str] = None


@dataclass(frozen=True)
class RefundPolicy:
    # Approval follows every successful request immediately.
    auto_approve: bool = True
    credit_ratio: Decimal = Decimal("1")
    credit_validity: timedelta = CREDIT_VALIDITY


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class CreditLedger:
    policy: RefundPolicy = field(default_factory=RefundPolicy)
    refunds: dict[str, RefundTransaction] = field(default_factory=dict)
    credits: dict[str, StoreCredit] = field(default_factory=dict)
    usages: list[CreditUsage] = field(default_factory=list)
    id_factory: Callable[[], str] = _new_id

    @classmethod
    def from_snapshot(
        cls,
        *,
        refunds: Iterable[RefundTransaction] = (),
        credits: Iterable[StoreCredit] = (),
        usages: Iterable[CreditUsage] = (),
        policy: RefundPolicy | None = None,
    ) -> "CreditLedger":
        return cls(
            policy=policy or RefundPolicy(),
            refunds={r.id: r for r in refunds},
            credits={c.id: c for c in credits},
            usages=list(usages),
        )

    def request(
        self,
        *,
        booking_id: str,
        owner_id: int,
        refund_amount: Decimal,
        reason: str,
        now: datetime,
    ) -> RefundTransaction:
        if refund_amount <= ZERO:
            raise ValueError("refund_amount must be positive")
        if self.outstanding_for(booking_id) is not None:
            raise DuplicateRefundError(f"a refund is already pending for booking {booking_id}")

        refund = RefundTransaction(
            id=self.id_factory(),
            booking_id=booking_id,
            owner_id=owner_id,
            refund_amount=refund_amount,
            reason=reason,
            requested_at=now,
        )
        self.refunds[refund.id] = refund
        if self.policy.auto_approve:
            self.approve(refund.id, now=now)
        return refund

    def outstanding_for(self, booking_id: str) -> RefundTransaction | None:
        for refund in self.refunds.values():
            if refund.booking_id == booking_id and refund.status == RefundStatus.REQUESTED:
                return refund
        return None

    def approve(self, refund_id: str, *, now: datetime) -> StoreCredit:
        refund = self._refund(refund_id)
        # Replayed approvals must not issue a second credit.
        if refund.status == RefundStatus.APPROVED and refund.credit_id in self.credits:
            return self.credits[refund.credit_id]
        if refund.status != RefundStatus.REQUESTED:
            raise RefundStateError(f"refund {refund_id} is {refund.status.value}")

        credit = StoreCredit(
            id=self.id_factory(),
            owner_id=refund.owner_id,
            amount=refund.refund_amount * self.policy.credit_ratio,
            refunded_from_booking_id=refund.booking_id,
            issued_at=now,
            expires_at=now + self.policy.credit_validity,
        )
        self.credits[credit.id] = credit
        refund.status = RefundStatus.APPROVED
        refund.credit_amount = credit.amount
        refund.credit_id = credit.id
        refund.processed_at = now
        return credit

    def reject(self, refund_id: str, *, now: datetime) -> RefundTransaction:
        refund = self._refund(refund_id)
        if refund.status != RefundStatus.REQUESTED:
            raise RefundStateError(f"refund {refund_id} is {refund.status.value}")
        refund.status = RefundStatus.REJECTED
        refund.processed_at = now
        return refund

    def consume(self, credit_id: str, amount: Decimal, *, booking_id: str, now: datetime) -> CreditUsage:
        if amount <= ZERO:
            raise ValueError("amount must be positive")
        credit = self.credits.get(credit_id)
        if credit is None:
            raise InsufficientCreditError(f"credit {credit_id} not found")
        if credit.is_expired(now):
            credit.status = CreditStatus.EXPIRED
            raise CreditExpiredError(f"credit {credit_id} expired at {credit.expires_at.isoformat()}")
        if credit.status != CreditStatus.ACTIVE or amount > credit.balance:
            raise InsufficientCreditError(f"credit {credit_id} has only {credit.balance} left")

        usage = CreditUsage(
            id=self.id_factory(),
            credit_id=credit.id,
            owner_id=credit.owner_id,
            booking_id=booking_id,
            amount_used=amount,
            used_at=now,
        )
        self.usages.append(usage)
        credit.used_amount += amount
        if credit.balance == ZERO:
            credit.status = CreditStatus.USED
        return usage

    def sweep_expiry(self, now: datetime) -> list[StoreCredit]:
        expired: list[StoreCredit] = []
        for credit in self.credits.values():
            if credit.status == CreditStatus.ACTIVE and credit.expires_at < now:
                credit.status = CreditStatus.EXPIRED
                expired.append(credit)
        return expired

    def balance(self, credit_id: str) -> Decimal:
        credit = self.credits.get(credit_id)
        return credit.balance if credit is not None else ZERO

    def available_credits(self, owner_id: int, now: datetime) -> list[StoreCredit]:
        """Usable credits of a user, soonest expiry first."""
        usable = [c for c in self.credits.values() if c.owner_id == owner_id and c.is_usable(now)]
        return sorted(usable, key=lambda c: (c.expires_at, c.id))

    def total_available(self, owner_id: int, now: datetime) -> Decimal:
        return sum((c.balance for c in self.available_credits(owner_id, now)), ZERO)

    def _refund(self, refund_id: str) -> RefundTransaction:
        refund = self.refunds.get(refund_id)
        if refund is None:
            raise RefundStateError(f"refund {refund_id} not found")
        return refund
