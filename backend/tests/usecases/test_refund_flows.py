from datetime import timedelta
from decimal import Decimal

import pytest
from app.domain.errors import BackendError, DuplicateRefundError, RefundStateError
from app.domain.ledger import RefundPolicy, RefundTransaction
from app.models import CreditStatus, RefundStatus
from app.usecases.refunds import list_credits, reject_refund, request_refund

from tests.fakes import NOW, FakeBackend, make_booking, make_credit


def _refund(refund_id: str, booking_id: str, status: RefundStatus) -> RefundTransaction:
    return RefundTransaction(
        id=refund_id,
        booking_id=booking_id,
        owner_id=1,
        refund_amount=Decimal("20"),
        reason="",
        requested_at=NOW - timedelta(days=1),
        status=status,
    )


@pytest.mark.asyncio
async def test_refund_is_approved_into_store_credit(backend: FakeBackend) -> None:
    backend.bookings["bk-1"] = make_booking()

    outcome = await request_refund(backend, booking_id="bk-1", user_id=1, reason="unwell", now=NOW)

    assert backend.refund_requests == [("bk-1", "unwell", 1)]
    assert backend.approved == ["rf-1"]
    assert outcome.credit is not None
    assert outcome.credit.amount == Decimal("20")
    assert outcome.refund.status == RefundStatus.APPROVED
    assert outcome.refund.credit_id == outcome.credit.id
    assert outcome.refund.credit_amount == Decimal("20")


@pytest.mark.asyncio
async def test_refund_waits_without_auto_approval(backend: FakeBackend) -> None:
    backend.bookings["bk-1"] = make_booking()

    outcome = await request_refund(
        backend,
        booking_id="bk-1",
        user_id=1,
        reason="",
        now=NOW,
        policy=RefundPolicy(auto_approve=False),
    )

    assert outcome.credit is None
    assert outcome.refund.status == RefundStatus.REQUESTED
    assert backend.approved == []


@pytest.mark.asyncio
async def test_refund_of_other_users_booking_is_refused(backend: FakeBackend) -> None:
    backend.bookings["bk-1"] = make_booking(user_id=2)
    with pytest.raises(RefundStateError):
        await request_refund(backend, booking_id="bk-1", user_id=1, reason="", now=NOW)
    assert backend.refund_requests == []


@pytest.mark.asyncio
async def test_refund_of_started_booking_is_refused(backend: FakeBackend) -> None:
    backend.bookings["bk-1"] = make_booking(start=NOW - timedelta(minutes=30))
    with pytest.raises(RefundStateError):
        await request_refund(backend, booking_id="bk-1", user_id=1, reason="", now=NOW)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [RefundStatus.APPROVED, RefundStatus.REQUESTED])
async def test_second_refund_for_a_booking_is_refused(backend: FakeBackend, status: RefundStatus) -> None:
    backend.bookings["bk-1"] = make_booking()
    backend.refunds = [_refund("rf-0", "bk-1", status)]
    with pytest.raises(DuplicateRefundError):
        await request_refund(backend, booking_id="bk-1", user_id=1, reason="", now=NOW)
    assert backend.refund_requests == []


@pytest.mark.asyncio
async def test_refund_of_free_booking_is_refused(backend: FakeBackend) -> None:
    backend.bookings["bk-1"] = make_booking(total="0")
    with pytest.raises(RefundStateError):
        await request_refund(backend, booking_id="bk-1", user_id=1, reason="", now=NOW)


@pytest.mark.asyncio
async def test_reject_pending_refund(backend: FakeBackend) -> None:
    backend.refunds = [_refund("rf-0", "bk-1", RefundStatus.REQUESTED)]
    refund = await reject_refund(backend, refund_id="rf-0")
    assert refund.status == RefundStatus.REJECTED


@pytest.mark.asyncio
async def test_reject_processed_refund_fails(backend: FakeBackend) -> None:
    backend.refunds = [_refund("rf-0", "bk-1", RefundStatus.APPROVED)]
    with pytest.raises(BackendError):
        await reject_refund(backend, refund_id="rf-0")


@pytest.mark.asyncio
async def test_list_credits_sweeps_expired_and_totals_the_rest(backend: FakeBackend) -> None:
    backend.credits = [
        make_credit("cr-old", amount="8", expires_at=NOW - timedelta(days=1)),
        make_credit("cr-late", amount="5", expires_at=NOW + timedelta(days=20)),
        make_credit("cr-soon", amount="7", expires_at=NOW + timedelta(days=2)),
    ]

    summary = await list_credits(backend, user_id=1, now=NOW)

    assert [c.id for c in summary.credits] == ["cr-soon", "cr-late"]
    assert summary.total == Decimal("12")
    assert [c.id for c in summary.expired] == ["cr-old"]
    assert summary.expired[0].status == CreditStatus.EXPIRED
