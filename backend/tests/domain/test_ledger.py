import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from app.domain.errors import CreditExpiredError, DuplicateRefundError, InsufficientCreditError, RefundStateError
from app.domain.ledger import CreditLedger, RefundPolicy, StoreCredit
from app.models import CreditStatus, RefundStatus

NOW = datetime(2025, 3, 10, 2, 0, tzinfo=timezone.utc)


def _ledger(auto_approve: bool = True) -> CreditLedger:
    counter = itertools.count(1)
    return CreditLedger(policy=RefundPolicy(auto_approve=auto_approve), id_factory=lambda: f"id-{next(counter)}")


def _credit(credit_id: str, expires_at: datetime, amount: str = "10", owner_id: int = 1) -> StoreCredit:
    return StoreCredit(
        id=credit_id,
        owner_id=owner_id,
        amount=Decimal(amount),
        refunded_from_booking_id="b-0",
        issued_at=expires_at - timedelta(days=30),
        expires_at=expires_at,
    )


def test_refund_becomes_credit_that_is_partly_consumed() -> None:
    ledger = _ledger()
    refund = ledger.request(booking_id="b-1", owner_id=1, refund_amount=Decimal("20"), reason="sick", now=NOW)

    assert refund.status == RefundStatus.APPROVED
    assert refund.credit_amount == Decimal("20")
    assert refund.processed_at == NOW
    credit = ledger.credits[refund.credit_id or ""]
    assert credit.status == CreditStatus.ACTIVE
    assert credit.amount == Decimal("20")
    assert credit.expires_at == NOW + timedelta(days=30)
    assert credit.refunded_from_booking_id == "b-1"

    usage = ledger.consume(credit.id, Decimal("15"), booking_id="b-2", now=NOW + timedelta(days=1))
    assert usage.amount_used == Decimal("15")
    assert ledger.balance(credit.id) == Decimal("5")
    assert credit.status == CreditStatus.ACTIVE
    assert ledger.total_available(1, NOW + timedelta(days=1)) == Decimal("5")


def test_consuming_the_full_balance_marks_credit_used() -> None:
    ledger = _ledger()
    refund = ledger.request(booking_id="b-1", owner_id=1, refund_amount=Decimal("20"), reason="", now=NOW)
    credit_id = refund.credit_id or ""
    ledger.consume(credit_id, Decimal("15"), booking_id="b-2", now=NOW)
    ledger.consume(credit_id, Decimal("5"), booking_id="b-3", now=NOW)
    assert ledger.credits[credit_id].status == CreditStatus.USED
    assert [u.booking_id for u in ledger.usages] == ["b-2", "b-3"]


def test_without_auto_approval_refund_waits() -> None:
    ledger = _ledger(auto_approve=False)
    refund = ledger.request(booking_id="b-1", owner_id=1, refund_amount=Decimal("20"), reason="", now=NOW)
    assert refund.status == RefundStatus.REQUESTED
    assert ledger.credits == {}
    assert ledger.outstanding_for("b-1") is refund


def test_second_request_for_pending_booking_is_rejected() -> None:
    ledger = _ledger(auto_approve=False)
    ledger.request(booking_id="b-1", owner_id=1, refund_amount=Decimal("20"), reason="", now=NOW)
    with pytest.raises(DuplicateRefundError):
        ledger.request(booking_id="b-1", owner_id=1, refund_amount=Decimal("20"), reason="", now=NOW)


def test_non_positive_refund_is_rejected() -> None:
    with pytest.raises(ValueError):
        _ledger().request(booking_id="b-1", owner_id=1, refund_amount=Decimal("0"), reason="", now=NOW)


def test_approving_twice_issues_one_credit() -> None:
    ledger = _ledger(auto_approve=False)
    refund = ledger.request(booking_id="b-1", owner_id=1, refund_amount=Decimal("20"), reason="", now=NOW)
    first = ledger.approve(refund.id, now=NOW)
    second = ledger.approve(refund.id, now=NOW + timedelta(hours=1))
    assert first is second
    assert len(ledger.credits) == 1


def test_reject_then_approve_is_an_invalid_transition() -> None:
    ledger = _ledger(auto_approve=False)
    refund = ledger.request(booking_id="b-1", owner_id=1, refund_amount=Decimal("20"), reason="", now=NOW)
    rejected = ledger.reject(refund.id, now=NOW)
    assert rejected.status == RefundStatus.REJECTED
    with pytest.raises(RefundStateError):
        ledger.approve(refund.id, now=NOW)
    with pytest.raises(RefundStateError):
        ledger.reject(refund.id, now=NOW)


def test_unknown_refund_is_an_invalid_transition() -> None:
    with pytest.raises(RefundStateError):
        _ledger().approve("missing", now=NOW)


def test_credit_policy_ratio_scales_credit() -> None:
    ledger = CreditLedger(policy=RefundPolicy(credit_ratio=Decimal("0.5")))
    refund = ledger.request(booking_id="b-1", owner_id=1, refund_amount=Decimal("20"), reason="", now=NOW)
    assert refund.credit_amount == Decimal("10")


def test_consuming_expired_credit_marks_it_expired() -> None:
    ledger = CreditLedger.from_snapshot(credits=[_credit("c-1", NOW - timedelta(seconds=1))])
    with pytest.raises(CreditExpiredError):
        ledger.consume("c-1", Decimal("1"), booking_id="b-2", now=NOW)
    assert ledger.credits["c-1"].status == CreditStatus.EXPIRED


def test_credit_is_usable_at_its_expiry_instant() -> None:
    ledger = CreditLedger.from_snapshot(credits=[_credit("c-1", NOW)])
    ledger.consume("c-1", Decimal("1"), booking_id="b-2", now=NOW)
    assert ledger.balance("c-1") == Decimal("9")


def test_overdrawing_credit_is_rejected() -> None:
    ledger = CreditLedger.from_snapshot(credits=[_credit("c-1", NOW + timedelta(days=1))])
    with pytest.raises(InsufficientCreditError):
        ledger.consume("c-1", Decimal("10.01"), booking_id="b-2", now=NOW)
    with pytest.raises(InsufficientCreditError):
        ledger.consume("missing", Decimal("1"), booking_id="b-2", now=NOW)
    with pytest.raises(ValueError):
        ledger.consume("c-1", Decimal("0"), booking_id="b-2", now=NOW)


def test_sweep_expiry_marks_only_lapsed_active_credits() -> None:
    lapsed = _credit("c-1", NOW - timedelta(days=1))
    live = _credit("c-2", NOW + timedelta(days=1))
    used = _credit("c-3", NOW - timedelta(days=2))
    used.status = CreditStatus.USED
    ledger = CreditLedger.from_snapshot(credits=[lapsed, live, used])

    expired = ledger.sweep_expiry(NOW)

    assert [c.id for c in expired] == ["c-1"]
    assert lapsed.status == CreditStatus.EXPIRED
    assert live.status == CreditStatus.ACTIVE
    assert used.status == CreditStatus.USED


def test_available_credits_are_ordered_by_expiry() -> None:
    ledger = CreditLedger.from_snapshot(
        credits=[
            _credit("late", NOW + timedelta(days=20), amount="5"),
            _credit("soon", NOW + timedelta(days=2), amount="7"),
            _credit("other", NOW + timedelta(days=1), owner_id=2),
        ]
    )
    assert [c.id for c in ledger.available_credits(1, NOW)] == ["soon", "late"]
    assert ledger.total_available(1, NOW) == Decimal("12")
