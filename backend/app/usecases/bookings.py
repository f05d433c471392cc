from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Mapping, Optional

from ..domain.availability import check_availability
from ..domain.clients import BookingBackend, BookingSnapshot, PaymentGateway
from ..domain.discounts import (
    DiscountResult,
    Instruments,
    Notice,
    PackagePass,
    ResolutionContext,
    StackingPolicy,
    resolve,
)
from ..domain.errors import RescheduleNotAllowedError, SlotValidationError, SlotViolation
from ..domain.pricing import Invoice, build_invoice
from ..domain.repositories import PaymentIntentRepository
from ..domain.slots import ReservationWindow, SlotRules, duration_hours, validate_window
from ..models import MemberRole, PaymentKind, PaymentMethod
from .checkout import (
    Checkout,
    CheckoutTarget,
    Payer,
    load_fee_settings,
    lookup_credit,
    lookup_promos,
    start_payment,
)

logger = logging.getLogger(__name__)

MIN_EXTENSION = timedelta(minutes=60)


@dataclass(frozen=True)
class BookingRequest:
    location: str
    start_at: datetime
    end_at: datetime
    seat_numbers: frozenset[str]
    headcount: dict[MemberRole, int]
    method: PaymentMethod
    member_role: MemberRole = MemberRole.MEMBER
    package_id: Optional[str] = None
    promo_codes: tuple[str, ...] = ()
    credit_id: Optional[str] = None
    special_requests: str = ""
    payer: Payer = field(default_factory=Payer)


@dataclass(frozen=True)
class BookingQuote:
    window: ReservationWindow
    hours: Decimal
    result: DiscountResult
    invoice: Invoice


def _find_package(packages: list[PackagePass], package_id: str) -> Optional[PackagePass]:
    for package in packages:
        if package.id == package_id:
            return package
    return None


async def quote_booking(
    backend: BookingBackend,
    request: BookingRequest,
    *,
    user_id: int,
    now: datetime,
    capacity: int,
    rules: SlotRules = SlotRules(),
    policy: StackingPolicy = StackingPolicy.EXCLUSIVE,
) -> BookingQuote:
    window = validate_window(
        ReservationWindow(request.location, request.start_at, request.end_at, request.seat_numbers),
        now,
        rules=rules,
    )
    booked = await backend.booked_seats(window.location, window.start_at, window.end_at)
    check_availability(window.location, booked, window.seat_numbers, capacity)

    hours = duration_hours(window.start_at, window.end_at)
    rate_card = await backend.location_pricing(window.location)
    base_cost = rate_card.base_cost(hours, request.headcount)
    fee_settings = await load_fee_settings(backend)

    notices: list[Notice] = []
    package: Optional[PackagePass] = None
    if request.package_id is not None:
        package = _find_package(await backend.user_packages(user_id, request.member_role), request.package_id)
        if package is None:
            notices.append(Notice("package", f"package {request.package_id} not found"))

    promos = await lookup_promos(backend, request.promo_codes, user_id=user_id, amount=base_cost)
    notices.extend(promos.notices)
    prior_bookings = await backend.user_booking_count(user_id) if promos.promos else 0

    credit, credit_notices = await lookup_credit(backend, request.credit_id, user_id=user_id)
    notices.extend(credit_notices)

    context = ResolutionContext(
        user_id=user_id,
        now=now,
        hourly_rate=rate_card.hourly_rate(request.member_role, hours),
        member_role=request.member_role,
        promo_usage=promos.usage,
        prior_bookings=prior_bookings,
    )
    result = resolve(
        base_cost,
        hours,
        Instruments(package=package, promos=promos.promos, credit=credit),
        context,
        policy=policy,
    )
    if notices:
        result = replace(result, notices=tuple(notices) + result.notices)
    invoice = build_invoice(result, request.method, fee_settings)
    return BookingQuote(window=window, hours=hours, result=result, invoice=invoice)


def _booking_payload(user_id: int, request: BookingRequest, quote: BookingQuote) -> dict[str, Any]:
    window, invoice, result = quote.window, quote.invoice, quote.result
    return {
        "userId": user_id,
        "location": window.location,
        "startAt": window.start_at.isoformat(),
        "endAt": window.end_at.isoformat(),
        "seatNumbers": sorted(window.seat_numbers),
        "pax": sum(request.headcount.values()),
        "members": request.headcount.get(MemberRole.MEMBER, 0),
        "tutors": request.headcount.get(MemberRole.TUTOR, 0),
        "students": request.headcount.get(MemberRole.STUDENT, 0),
        "totalCost": str(invoice.subtotal),
        "discountAmount": str(invoice.discount_amount),
        "totalAmount": str(invoice.total),
        "paymentMethod": request.method.value,
        "packageId": result.package_id,
        "packageUsed": str(result.covered_hours) if result.package_id else None,
        "promoCode": result.promo_code,
        "creditId": result.credit_draw.credit_id if result.credit_draw else None,
        "creditAmount": str(invoice.credit_applied),
        "specialRequests": request.special_requests or None,
    }


async def create_booking(
    backend: BookingBackend,
    gateway: PaymentGateway,
    intents: PaymentIntentRepository,
    request: BookingRequest,
    *,
    user_id: int,
    now: datetime,
    capacity: int,
    target: CheckoutTarget,
    rules: SlotRules = SlotRules(),
    policy: StackingPolicy = StackingPolicy.EXCLUSIVE,
) -> Checkout:
    quote = await quote_booking(
        backend, request, user_id=user_id, now=now, capacity=capacity, rules=rules, policy=policy
    )
    ref = await backend.create_booking(_booking_payload(user_id, request, quote))
    logger.info("booking %s created for user %s, total %s", ref.booking_id, user_id, quote.invoice.total)

    async def confirm(reference: str) -> None:
        await backend.confirm_booking(ref.booking_id, reference)

    return await start_payment(
        gateway,
        intents,
        kind=PaymentKind.BOOKING,
        subject_id=ref.booking_id,
        user_id=user_id,
        method=request.method,
        invoice=quote.invoice,
        target=target,
        confirm=confirm,
        purpose=f"Booking {ref.booking_ref or ref.booking_id}",
        payer=request.payer,
    )


async def _owned_booking(backend: BookingBackend, booking_id: str, user_id: int) -> BookingSnapshot:
    booking = await backend.booking(booking_id)
    if booking.user_id != user_id:
        raise RescheduleNotAllowedError(f"booking {booking_id} belongs to another user")
    return booking


async def reschedule_booking(
    backend: BookingBackend,
    *,
    booking_id: str,
    user_id: int,
    start_at: datetime,
    end_at: datetime,
    seat_numbers: Optional[frozenset[str]],
    now: datetime,
    capacities: Mapping[str, int],
    rules: SlotRules = SlotRules(),
) -> tuple[BookingSnapshot, BookingSnapshot]:
    """Move a booking to a new window. Returns the booking before and after."""
    current = await _owned_booking(backend, booking_id, user_id)
    if current.start_at <= now:
        raise RescheduleNotAllowedError("booking has already started")

    window = validate_window(
        ReservationWindow(current.location, start_at, end_at, seat_numbers or current.seat_numbers),
        now,
        rules=rules,
    )
    if window.duration > current.end_at - current.start_at:
        raise RescheduleNotAllowedError("a longer booking must be extended instead")

    occupied = await backend.reschedule_occupied_seats(booking_id, window.start_at, window.end_at)
    check_availability(
        window.location,
        occupied,
        window.seat_numbers,
        capacities.get(window.location, 0),
    )
    updated = await backend.reschedule_booking(
        booking_id, window.start_at, window.end_at, sorted(window.seat_numbers)
    )
    logger.info("booking %s moved to %s - %s", booking_id, window.start_at.isoformat(), window.end_at.isoformat())
    return current, updated


@dataclass(frozen=True)
class ExtensionQuote:
    booking: BookingSnapshot
    window: ReservationWindow
    hours: Decimal
    result: DiscountResult
    invoice: Invoice


async def quote_extension(
    backend: BookingBackend,
    *,
    booking_id: str,
    user_id: int,
    new_end_at: datetime,
    method: PaymentMethod,
    credit_id: Optional[str],
    now: datetime,
    capacities: Mapping[str, int],
    rules: SlotRules = SlotRules(),
) -> ExtensionQuote:
    current = await _owned_booking(backend, booking_id, user_id)
    window = validate_window(
        ReservationWindow(current.location, current.start_at, new_end_at, current.seat_numbers),
        now,
        rules=rules,
        require_future=False,
    )
    if window.end_at - current.end_at < MIN_EXTENSION:
        raise SlotValidationError(SlotViolation.MIN_DURATION, "an extension must add at least 60 minutes")

    # Only the added interval needs to be free; the booking already holds the rest.
    booked = await backend.booked_seats(window.location, current.end_at, window.end_at)
    check_availability(window.location, booked, window.seat_numbers, capacities.get(window.location, 0))

    hours = duration_hours(current.end_at, window.end_at)
    rate_card = await backend.location_pricing(window.location)
    base_cost = rate_card.extension_cost(hours, current.headcount)
    fee_settings = await load_fee_settings(backend)

    credit, notices = await lookup_credit(backend, credit_id, user_id=user_id)
    context = ResolutionContext(user_id=user_id, now=now, hourly_rate=Decimal("0"))
    result = resolve(base_cost, hours, Instruments(credit=credit), context)
    if notices:
        result = replace(result, notices=notices + result.notices)
    invoice = build_invoice(result, method, fee_settings)
    return ExtensionQuote(booking=current, window=window, hours=hours, result=result, invoice=invoice)


async def extend_booking(
    backend: BookingBackend,
    gateway: PaymentGateway,
    intents: PaymentIntentRepository,
    *,
    booking_id: str,
    user_id: int,
    new_end_at: datetime,
    method: PaymentMethod,
    credit_id: Optional[str],
    now: datetime,
    capacities: Mapping[str, int],
    target: CheckoutTarget,
    payer: Payer = Payer(),
    rules: SlotRules = SlotRules(),
) -> Checkout:
    quote = await quote_extension(
        backend,
        booking_id=booking_id,
        user_id=user_id,
        new_end_at=new_end_at,
        method=method,
        credit_id=credit_id,
        now=now,
        capacities=capacities,
        rules=rules,
    )
    invoice = quote.invoice
    await backend.extend_booking(
        booking_id,
        {
            "newEndAt": quote.window.end_at.isoformat(),
            "seatNumbers": sorted(quote.window.seat_numbers),
            "extensionHours": str(quote.hours),
            "extensionCost": str(invoice.subtotal),
            "totalAmount": str(invoice.total),
            "paymentMethod": method.value,
            "creditId": quote.result.credit_draw.credit_id if quote.result.credit_draw else None,
            "creditAmount": str(invoice.credit_applied),
        },
    )

    async def confirm(reference: str) -> None:
        await backend.confirm_extension(booking_id, reference)

    return await start_payment(
        gateway,
        intents,
        kind=PaymentKind.EXTENSION,
        subject_id=booking_id,
        user_id=user_id,
        method=method,
        invoice=invoice,
        target=target,
        confirm=confirm,
        purpose=f"Extension of booking {booking_id}",
        payer=payer,
    )
