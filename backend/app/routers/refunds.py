from fastapi import APIRouter, Depends, Path, status

from ..config import Settings
from ..deps import get_admin_user_id, get_app_settings, get_backend, get_current_user_id
from ..domain.clients import BookingBackend
from ..domain.errors import DomainError
from ..schemas import CreditRead, CreditSummaryRead, RefundCreate, RefundRead
from ..usecases import refunds as refund_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import utc_now
from .errors import emit_or_500, http_error

router = APIRouter(prefix="", tags=["refunds"])


@router.post("/refunds", response_model=RefundRead, status_code=status.HTTP_201_CREATED)
async def request_refund(
    payload: RefundCreate,
    backend: BookingBackend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
    user_id: int = Depends(get_current_user_id),
) -> RefundRead:
    try:
        outcome = await refund_usecase.request_refund(
            backend,
            booking_id=payload.booking_id,
            user_id=user_id,
            reason=payload.reason,
            now=utc_now(),
            policy=settings.refund_policy,
        )
    except DomainError as exc:
        raise http_error(exc) from exc

    refund = outcome.refund
    emit_or_500(
        emit_audit_log,
        action="refund.requested",
        initiator="user",
        subject_id=refund.booking_id,
        user_id=user_id,
        amount=refund.refund_amount,
        extra={"refund_id": refund.id},
    )
    if outcome.credit is not None:
        emit_or_500(
            emit_audit_log,
            action="refund.approved",
            initiator="system",
            subject_id=refund.booking_id,
            user_id=user_id,
            amount=outcome.credit.amount,
            status_to=refund.status,
            extra={"refund_id": refund.id, "credit_id": outcome.credit.id},
        )
    return RefundRead.from_refund(refund)


@router.post("/admin/refunds/{refund_id}/reject", response_model=RefundRead)
async def reject_refund(
    refund_id: str = Path(..., min_length=1),
    backend: BookingBackend = Depends(get_backend),
    admin_id: int = Depends(get_admin_user_id),
) -> RefundRead:
    try:
        refund = await refund_usecase.reject_refund(backend, refund_id=refund_id)
    except DomainError as exc:
        raise http_error(exc) from exc

    emit_or_500(
        emit_audit_log,
        action="refund.rejected",
        initiator="admin",
        subject_id=refund.booking_id,
        user_id=refund.owner_id,
        status_to=refund.status,
        extra={"refund_id": refund.id, "admin_id": admin_id},
    )
    return RefundRead.from_refund(refund)


@router.get("/me/credits", response_model=CreditSummaryRead)
async def list_my_credits(
    backend: BookingBackend = Depends(get_backend),
    user_id: int = Depends(get_current_user_id),
) -> CreditSummaryRead:
    try:
        summary = await refund_usecase.list_credits(backend, user_id=user_id, now=utc_now())
    except DomainError as exc:
        raise http_error(exc) from exc
    return CreditSummaryRead(
        credits=[CreditRead.from_credit(c) for c in summary.credits],
        total_available=summary.total,
    )
