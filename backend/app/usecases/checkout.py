"""Pieces shared by every flow that ends in a charge: fee settings, promo and
credit lookup, and handing the invoice to the payment gateway."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Sequence

from ..domain.clients import BookingBackend, PaymentGateway
from ..domain.discounts import Notice, PromoCode
from ..domain.errors import BackendError, FeeConfigError, PromoIneligibleError
from ..domain.fees import FeeSettings
from ..domain.ledger import StoreCredit
from ..domain.pricing import Invoice
from ..domain.repositories import PaymentIntentRepository
from ..infrastructure.gateway import gateway_methods
from ..models import PaymentIntent, PaymentKind, PaymentMethod, PaymentStatus
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutTarget:
    currency: str
    redirect_url: str
    webhook_url: str


@dataclass(frozen=True)
class Payer:
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class Checkout:
    subject_id: str
    reference: str
    invoice: Invoice
    status: PaymentStatus
    checkout_url: Optional[str] = None


@dataclass(frozen=True)
class PromoLookup:
    promos: tuple[PromoCode, ...]
    usage: dict[str, int]
    notices: tuple[Notice, ...]


def new_reference(kind: PaymentKind) -> str:
    return f"{kind.value[:3].upper()}-{uuid.uuid4().hex}"


async def load_fee_settings(backend: BookingBackend) -> FeeSettings:
    """Fee settings are read per invoice; built-in defaults only when the backend cannot answer."""
    try:
        return await backend.payment_fee_settings()
    except (BackendError, FeeConfigError) as exc:
        logger.warning("payment fee settings unavailable, using defaults: %s", exc)
        return FeeSettings()


async def lookup_promos(
    backend: BookingBackend,
    codes: Sequence[str],
    *,
    user_id: int,
    amount: Decimal,
) -> PromoLookup:
    if not codes:
        return PromoLookup(promos=(), usage={}, notices=())

    wallet = await backend.user_promos(user_id)
    known = {promo.code: promo for promo in wallet.promos}
    usage = dict(wallet.usage)
    promos: list[PromoCode] = []
    notices: list[Notice] = []
    for code in dict.fromkeys(codes):
        if code in known:
            promos.append(known[code])
            continue
        eligibility = await backend.check_promo_eligibility(code, user_id, amount)
        if not eligibility.eligible or eligibility.promo is None:
            notices.append(Notice.from_error(PromoIneligibleError(code, eligibility.reason or "not found")))
            continue
        promos.append(eligibility.promo)
        usage[code] = eligibility.usage_count
    return PromoLookup(promos=tuple(promos), usage=usage, notices=tuple(notices))


async def lookup_credit(
    backend: BookingBackend,
    credit_id: Optional[str],
    *,
    user_id: int,
) -> tuple[Optional[StoreCredit], tuple[Notice, ...]]:
    if credit_id is None:
        return None, ()
    for credit in await backend.user_credits(user_id):
        if credit.id == credit_id:
            return credit, ()
    return None, (Notice("credit", f"credit {credit_id} not found"),)


async def start_payment(
    gateway: PaymentGateway,
    intents: PaymentIntentRepository,
    *,
    kind: PaymentKind,
    subject_id: str,
    user_id: int,
    method: PaymentMethod,
    invoice: Invoice,
    target: CheckoutTarget,
    confirm: Callable[[str], Awaitable[None]],
    purpose: str,
    payer: Payer = Payer(),
) -> Checkout:
    """
    Record a payment intent and either settle it at once (nothing to charge)
    or obtain a checkout URL from the gateway.
    """
    reference = new_reference(kind)
    intent: PaymentIntent = await intents.create(
        reference=reference,
        kind=kind,
        subject_id=subject_id,
        user_id=user_id,
        method=method,
        subtotal=invoice.subtotal,
        discount_amount=invoice.discount_amount,
        fee=invoice.fee,
        total=invoice.total,
    )

    if invoice.skip_payment:
        await confirm(reference)
        intent.status = PaymentStatus.COMPLETED
        intent.completed_at = utc_now_naive()
        await intents.save(intent)
        logger.info("%s %s fully covered, payment skipped", kind.value, subject_id)
        return Checkout(subject_id=subject_id, reference=reference, invoice=invoice, status=intent.status)

    checkout_url = await gateway.create_payment(
        amount=invoice.total,
        currency=target.currency,
        reference=reference,
        redirect_url=target.redirect_url,
        webhook_url=target.webhook_url,
        methods=gateway_methods(method),
        email=payer.email,
        name=payer.name,
        purpose=purpose,
    )
    intent.checkout_url = checkout_url
    await intents.save(intent)
    return Checkout(
        subject_id=subject_id,
        reference=reference,
        invoice=invoice,
        status=intent.status,
        checkout_url=checkout_url,
    )
