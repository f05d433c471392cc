"""Collaborators the usecases talk to: the remote booking backend and the payment gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Protocol, Sequence

from ..models import MemberRole, PackageType
from .discounts import PackagePass, PromoCode
from .fees import FeeSettings
from .ledger import RefundTransaction, StoreCredit
from .pricing import RateCard


@dataclass(frozen=True)
class BookingRef:
    booking_id: str
    booking_ref: str


@dataclass(frozen=True)
class BookingSnapshot:
    id: str
    user_id: int
    location: str
    start_at: datetime
    end_at: datetime
    seat_numbers: frozenset[str]
    headcount: dict[MemberRole, int] = field(default_factory=dict)
    total_amount: Decimal = Decimal("0")
    confirmed: bool = False


@dataclass(frozen=True)
class PromoEligibility:
    eligible: bool
    reason: str = ""
    promo: Optional[PromoCode] = None
    usage_count: int = 0


@dataclass(frozen=True)
class PromoWallet:
    """Promo codes a user may redeem, with how often each was already used."""

    promos: tuple[PromoCode, ...] = ()
    usage: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class PackageOffer:
    id: str
    name: str
    package_type: PackageType
    price: Decimal
    outlet_fee: Optional[Decimal] = None


class BookingBackend(Protocol):
    async def booked_seats(self, location: str, start_at: datetime, end_at: datetime) -> frozenset[str]: ...

    async def reschedule_occupied_seats(self, booking_id: str, start_at: datetime, end_at: datetime) -> frozenset[str]: ...

    async def location_pricing(self, location: str) -> RateCard: ...

    async def create_booking(self, payload: dict[str, Any]) -> BookingRef: ...

    async def booking(self, booking_id: str) -> BookingSnapshot: ...

    async def confirm_booking(self, booking_id: str, reference: str) -> None: ...

    async def confirm_extension(self, booking_id: str, reference: str) -> None: ...
    async def reschedule_booking(
        self,
        booking_id: str,
        start_at: datetime,
        end_at: datetime,
        seat_numbers: Sequence[str],
    ) -> BookingSnapshot: ...

    async def extend_booking(self, booking_id: str, payload: dict[str, Any]) -> None: ...

    async def user_booking_count(self, user_id: int) -> int: ...

    async def user_packages(self, user_id: int, role: MemberRole) -> list[PackagePass]: ...

    async def package_offer(self, package_id: str) -> PackageOffer: ...

    async def purchase_package(self, payload: dict[str, Any]) -> str: ...

    async def confirm_package(self, purchase_id: str, reference: str) -> None: ...

    async def check_promo_eligibility(self, code: str, user_id: int, amount: Decimal) -> PromoEligibility: ...

    async def user_promos(self, user_id: int) -> PromoWallet: ...

    async def user_credits(self, user_id: int) -> list[StoreCredit]: ...

    async def user_refunds(self, user_id: int) -> list[RefundTransaction]: ...

    async def request_refund(self, booking_id: str, reason: str, user_id: int) -> RefundTransaction: ...

    async def approve_refund(self, refund_id: str) -> StoreCredit: ...

    async def reject_refund(self, refund_id: str) -> RefundTransaction: ...

    async def payment_fee_settings(self) -> FeeSettings: ...


class PaymentGateway(Protocol):
    async def create_payment(
        self,
        *,
        amount: Decimal,
        currency: str,
        reference: str,
        redirect_url: str,
        webhook_url: str,
        methods: Sequence[str],
        email: str | None = None,
        name: str | None = None,
        purpose: str | None = None,
    ) -> str: ...
