from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..domain.clients import BookingBackend
from ..domain.errors import PaymentError, ReconciliationError, UnknownReferenceError
from ..domain.pricing import to_cents
from ..domain.repositories import DraftRepository, PaymentIntentRepository
from ..models import DraftNamespace, PaymentIntent, PaymentKind, PaymentStatus
from ..utils.time import to_utc_naive
from .drafts import clear_drafts

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"completed", "succeeded"})
FAILURE_STATUSES = frozenset({"failed", "canceled", "cancelled", "declined", "rejected", "expired"})

_DRAFTS_BY_KIND: dict[PaymentKind, tuple[DraftNamespace, ...]] = {
    PaymentKind.BOOKING: (DraftNamespace.BOOKING, DraftNamespace.DISCOUNT),
    PaymentKind.EXTENSION: (DraftNamespace.BOOKING, DraftNamespace.DISCOUNT),
    PaymentKind.PACKAGE: (DraftNamespace.PACKAGE, DraftNamespace.DISCOUNT),
}


@dataclass(frozen=True)
class Reconciliation:
    intent: PaymentIntent
    status_from: PaymentStatus
    changed: bool


async def _confirm_at_backend(backend: BookingBackend, intent: PaymentIntent) -> None:
    if intent.kind == PaymentKind.BOOKING:
        await backend.confirm_booking(intent.subject_id, intent.reference)
    elif intent.kind == PaymentKind.EXTENSION:
        await backend.confirm_extension(intent.subject_id, intent.reference)
    else:
        await backend.confirm_package(intent.subject_id, intent.reference)


async def reconcile(
    intents: PaymentIntentRepository,
    backend: BookingBackend,
    drafts: DraftRepository,
    *,
    reference: str,
    status: str,
    amount: Optional[Decimal],
    now: datetime,
) -> Reconciliation:
    """
    Apply a gateway result to the payment intent it refers to.

    Replays of an already completed payment change nothing. A failure status
    marks the intent FAILED and raises PaymentError; callers must persist the
    intent before surfacing the error.
    """
    intent = await intents.get_by_reference_for_update(reference)
    if intent is None:
        raise UnknownReferenceError(f"unknown payment reference {reference}")
    status_from = intent.status
    if intent.status == PaymentStatus.COMPLETED:
        return Reconciliation(intent=intent, status_from=status_from, changed=False)

    normalized = status.strip().lower()
    if normalized in FAILURE_STATUSES:
        intent.status = PaymentStatus.FAILED
        await intents.save(intent)
        logger.info("payment %s reported %s", reference, normalized)
        raise PaymentError(f"payment {reference} {normalized}")
    if normalized not in SUCCESS_STATUSES:
        return Reconciliation(intent=intent, status_from=status_from, changed=False)

    if amount is not None and to_cents(amount) != to_cents(intent.total):
        raise ReconciliationError(f"payment {reference} amount {amount} does not match {intent.total}")

    await _confirm_at_backend(backend, intent)
    intent.status = PaymentStatus.COMPLETED
    intent.completed_at = to_utc_naive(now)
    await intents.save(intent)
    await clear_drafts(drafts, user_id=intent.user_id, namespaces=_DRAFTS_BY_KIND[intent.kind])
    return Reconciliation(intent=intent, status_from=status_from, changed=True)


async def payment_status(intents: PaymentIntentRepository, *, reference: str, user_id: int) -> PaymentIntent:
    intent = await intents.get_by_reference(reference)
    if intent is None or intent.user_id != user_id:
        raise UnknownReferenceError(f"unknown payment reference {reference}")
    return intent
