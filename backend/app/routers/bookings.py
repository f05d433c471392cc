from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..deps import get_app_settings, get_backend, get_checkout_target, get_current_user_id, get_gateway, get_session
from ..domain.clients import BookingBackend, PaymentGateway
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemyPaymentIntentRepository
from ..schemas import (
    BookingCreate,
    BookingExtend,
    BookingQuoteRead,
    BookingRead,
    BookingReschedule,
    CheckoutRead,
    InvoiceRead,
)
from ..usecases import bookings as booking_usecase
from ..usecases.checkout import CheckoutTarget, Payer
from ..utils.audit_log import emit_audit_log
from ..utils.time import utc_now
from .errors import emit_or_500, http_error

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("/quote", response_model=BookingQuoteRead)
async def quote_booking(
    payload: BookingCreate,
    backend: BookingBackend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
    user_id: int = Depends(get_current_user_id),
) -> BookingQuoteRead:
    try:
        quote = await booking_usecase.quote_booking(
            backend,
            payload.to_request(),
            user_id=user_id,
            now=utc_now(),
            capacity=settings.capacity_for(payload.location),
            rules=settings.slot_rules,
            policy=settings.promo_stacking,
        )
    except DomainError as exc:
        raise http_error(exc) from exc

    return BookingQuoteRead(
        location=quote.window.location,
        start_at=quote.window.start_at,
        end_at=quote.window.end_at,
        hours=quote.hours,
        invoice=InvoiceRead.from_invoice(quote.invoice),
    )


@router.post("", response_model=CheckoutRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    session: AsyncSession = Depends(get_session),
    backend: BookingBackend = Depends(get_backend),
    gateway: PaymentGateway = Depends(get_gateway),
    target: CheckoutTarget = Depends(get_checkout_target),
    settings: Settings = Depends(get_app_settings),
    user_id: int = Depends(get_current_user_id),
) -> CheckoutRead:
    intents = SqlAlchemyPaymentIntentRepository(session)
    async with session.begin():
        try:
            checkout = await booking_usecase.create_booking(
                backend,
                gateway,
                intents,
                payload.to_request(),
                user_id=user_id,
                now=utc_now(),
                capacity=settings.capacity_for(payload.location),
                target=target,
                rules=settings.slot_rules,
                policy=settings.promo_stacking,
            )
        except DomainError as exc:
            raise http_error(exc) from exc

    emit_or_500(
        emit_audit_log,
        action="booking.created",
        initiator="user",
        subject_id=checkout.subject_id,
        user_id=user_id,
        reference=checkout.reference,
        amount=checkout.invoice.total,
        status_to=checkout.status,
        extra={"discount_source": checkout.invoice.discount_source},
    )
    return CheckoutRead.from_checkout(checkout)


@router.post("/{booking_id}/reschedule", response_model=BookingRead)
async def reschedule_booking(
    payload: BookingReschedule,
    booking_id: str = Path(..., min_length=1),
    backend: BookingBackend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
    user_id: int = Depends(get_current_user_id),
) -> BookingRead:
    try:
        before, after = await booking_usecase.reschedule_booking(
            backend,
            booking_id=booking_id,
            user_id=user_id,
            start_at=payload.start_at,
            end_at=payload.end_at,
            seat_numbers=frozenset(payload.seat_numbers) if payload.seat_numbers else None,
            now=utc_now(),
            capacities=settings.location_capacities,
            rules=settings.slot_rules,
        )
    except DomainError as exc:
        raise http_error(exc) from exc

    emit_or_500(
        emit_audit_log,
        action="booking.rescheduled",
        initiator="user",
        subject_id=booking_id,
        user_id=user_id,
        extra={
            "from_start": before.start_at.isoformat(),
            "from_end": before.end_at.isoformat(),
            "to_start": after.start_at.isoformat(),
            "to_end": after.end_at.isoformat(),
        },
    )
    return BookingRead.from_snapshot(after)


@router.post("/{booking_id}/extend", response_model=CheckoutRead, status_code=status.HTTP_201_CREATED)
async def extend_booking(
    payload: BookingExtend,
    booking_id: str = Path(..., min_length=1),
    session: AsyncSession = Depends(get_session),
    backend: BookingBackend = Depends(get_backend),
    gateway: PaymentGateway = Depends(get_gateway),
    target: CheckoutTarget = Depends(get_checkout_target),
    settings: Settings = Depends(get_app_settings),
    user_id: int = Depends(get_current_user_id),
) -> CheckoutRead:
    intents = SqlAlchemyPaymentIntentRepository(session)
    async with session.begin():
        try:
            checkout = await booking_usecase.extend_booking(
                backend,
                gateway,
                intents,
                booking_id=booking_id,
                user_id=user_id,
                new_end_at=payload.new_end_at,
                method=payload.payment_method,
                credit_id=payload.credit_id,
                now=utc_now(),
                capacities=settings.location_capacities,
                target=target,
                payer=Payer(email=payload.email, name=payload.name),
                rules=settings.slot_rules,
            )
        except DomainError as exc:
            raise http_error(exc) from exc

    emit_or_500(
        emit_audit_log,
        action="booking.extended",
        initiator="user",
        subject_id=booking_id,
        user_id=user_id,
        reference=checkout.reference,
        amount=checkout.invoice.total,
        status_to=checkout.status,
        extra={"new_end_at": payload.new_end_at.isoformat()},
    )
    return CheckoutRead.from_checkout(checkout)
