from decimal import Decimal, InvalidOperation
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..deps import get_app_settings, get_backend, get_current_user_id, get_session
from ..domain.clients import BookingBackend
from ..domain.errors import DomainError, PaymentError, ReconciliationError
from ..infrastructure.gateway import verify_webhook_signature
from ..infrastructure.repositories import SqlAlchemyDraftRepository, SqlAlchemyPaymentIntentRepository
from ..models import PaymentStatus
from ..schemas import PaymentRead, WebhookAck
from ..usecases import payments as payment_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import utc_now
from .errors import emit_or_500, http_error

router = APIRouter(prefix="/payments", tags=["payments"])


def _parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid amount")


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
    backend: BookingBackend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
) -> WebhookAck:
    form = await request.form()
    fields = {key: str(value) for key, value in form.items()}
    signature = fields.pop("hmac", "")
    if not verify_webhook_signature(fields, signature, settings.gateway_webhook_salt):
        raise http_error(ReconciliationError("invalid webhook signature"))

    reference = fields.get("reference_number")
    if not reference:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="reference_number required")
    amount = _parse_amount(fields.get("amount"))

    intents = SqlAlchemyPaymentIntentRepository(session)
    drafts = SqlAlchemyDraftRepository(session)
    failure: Optional[PaymentError] = None
    async with session.begin():
        try:
            outcome = await payment_usecase.reconcile(
                intents,
                backend,
                drafts,
                reference=reference,
                status=fields.get("status", ""),
                amount=amount,
                now=utc_now(),
            )
        except PaymentError as exc:
            # The FAILED mark must still be committed.
            failure = exc
        except DomainError as exc:
            raise http_error(exc) from exc

    if failure is not None:
        emit_or_500(
            emit_audit_log,
            action="payment.failed",
            initiator="gateway",
            subject_id=None,
            user_id=None,
            reference=reference,
            amount=amount,
            status_to=PaymentStatus.FAILED,
            message=str(failure),
        )
        return WebhookAck(reference=reference, status=PaymentStatus.FAILED, retryable=failure.retryable)

    intent = outcome.intent
    if outcome.changed:
        emit_or_500(
            emit_audit_log,
            action="payment.completed",
            initiator="gateway",
            subject_id=intent.subject_id,
            user_id=intent.user_id,
            reference=reference,
            amount=intent.total,
            status_from=outcome.status_from,
            status_to=intent.status,
            extra={"kind": intent.kind.value},
        )
    return WebhookAck(reference=reference, status=intent.status, retryable=False)


@router.get("/return", response_model=PaymentRead)
async def payment_return(
    reference: str = Query(..., min_length=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> PaymentRead:
    intents = SqlAlchemyPaymentIntentRepository(session)
    try:
        intent = await payment_usecase.payment_status(intents, reference=reference, user_id=user_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return PaymentRead.from_intent(intent)
