from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal

from ..domain.clients import BookingBackend, PackageOffer, PaymentGateway
from ..domain.discounts import DiscountResult, Instruments, ResolutionContext, resolve
from ..domain.pricing import Invoice, build_invoice, package_cost
from ..domain.repositories import PaymentIntentRepository
from ..models import MemberRole, PaymentKind, PaymentMethod
from .checkout import Checkout, CheckoutTarget, Payer, load_fee_settings, lookup_promos, start_payment


@dataclass(frozen=True)
class PackageRequest:
    package_id: str
    quantity: int
    method: PaymentMethod
    member_role: MemberRole = MemberRole.MEMBER
    promo_codes: tuple[str, ...] = ()
    payer: Payer = field(default_factory=Payer)


@dataclass(frozen=True)
class PackageQuote:
    offer: PackageOffer
    result: DiscountResult
    invoice: Invoice


async def quote_package(
    backend: BookingBackend,
    request: PackageRequest,
    *,
    user_id: int,
    now: datetime,
    default_outlet_fee: Decimal,
) -> PackageQuote:
    offer = await backend.package_offer(request.package_id)
    outlet_fee = offer.outlet_fee if offer.outlet_fee is not None else default_outlet_fee
    base_cost = package_cost(offer.price, request.quantity, outlet_fee)
    fee_settings = await load_fee_settings(backend)

    promos = await lookup_promos(backend, request.promo_codes, user_id=user_id, amount=base_cost)
    prior_bookings = await backend.user_booking_count(user_id) if promos.promos else 0
    context = ResolutionContext(
        user_id=user_id,
        now=now,
        hourly_rate=Decimal("0"),
        member_role=request.member_role,
        promo_usage=promos.usage,
        prior_bookings=prior_bookings,
    )
    result = resolve(base_cost, Decimal("0"), Instruments(promos=promos.promos), context)
    if promos.notices:
        result = replace(result, notices=promos.notices + result.notices)
    return PackageQuote(offer=offer, result=result, invoice=build_invoice(result, request.method, fee_settings))


async def purchase_package(
    backend: BookingBackend,
    gateway: PaymentGateway,
    intents: PaymentIntentRepository,
    request: PackageRequest,
    *,
    user_id: int,
    now: datetime,
    default_outlet_fee: Decimal,
    target: CheckoutTarget,
) -> Checkout:
    quote = await quote_package(backend, request, user_id=user_id, now=now, default_outlet_fee=default_outlet_fee)
    invoice = quote.invoice
    purchase_id = await backend.purchase_package(
        {
            "userId": user_id,
            "packageId": quote.offer.id,
            "quantity": request.quantity,
            "totalAmount": str(invoice.total),
            "discountAmount": str(invoice.discount_amount),
            "promoCode": quote.result.promo_code,
            "paymentMethod": request.method.value,
        }
    )

    async def confirm(reference: str) -> None:
        await backend.confirm_package(purchase_id, reference)

    return await start_payment(
        gateway,
        intents,
        kind=PaymentKind.PACKAGE,
        subject_id=purchase_id,
        user_id=user_id,
        method=request.method,
        invoice=invoice,
        target=target,
        confirm=confirm,
        purpose=f"{quote.offer.name or 'Package'} x{request.quantity}",
        payer=request.payer,
    )
