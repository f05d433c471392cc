"""Discount instrument resolution.

The order is fixed: package pass, then promo code, then store credit. Each
instrument that cannot be used degrades to the next one and leaves a notice on
the result instead of failing the invoice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Mapping, Optional

from ..models import DiscountShape, MemberRole, PackageType, PromoType
from .errors import (
    CreditExpiredError,
    CreditUnavailableError,
    InstrumentError,
    PackageExhaustedError,
    PromoIneligibleError,
)
from .ledger import StoreCredit

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Hours a single use of a pass covers when the backend does not say.
DEFAULT_HOUR_LIMITS: dict[PackageType, Decimal] = {
    PackageType.HALF_DAY: Decimal("4"),
    PackageType.FULL_DAY: Decimal("8"),
    PackageType.SEMESTER_BUNDLE: Decimal("4"),
}


class StackingPolicy(StrEnum):
    EXCLUSIVE = "exclusive"
    COMBINABLE = "combinable"


@dataclass(frozen=True)
class PackagePass:
    id: str
    owner_id: int
    package_type: PackageType
    total_count: int
    remaining_count: int
    hour_limit_per_use: Decimal
    expires_at: datetime
    target_role: Optional[MemberRole] = None
    name: str = ""


@dataclass(frozen=True)
class PromoCode:
    code: str
    promo_type: PromoType
    discount_shape: DiscountShape
    discount_value: Decimal
    max_usage_per_user: int
    priority: int = 0
    minimum_amount: Optional[Decimal] = None
    maximum_discount: Optional[Decimal] = None
    active_from: Optional[datetime] = None
    active_to: Optional[datetime] = None
    max_total_usage: Optional[int] = None
    current_usage: int = 0
    is_active: bool = True
    groups: frozenset[MemberRole] = frozenset()
    user_ids: frozenset[int] = frozenset()


@dataclass(frozen=True)
class Instruments:
    package: Optional[PackagePass] = None
    promos: tuple[PromoCode, ...] = ()
    credit: Optional[StoreCredit] = None


@dataclass(frozen=True)
class ResolutionContext:
    user_id: int
    now: datetime
    hourly_rate: Decimal
    member_role: MemberRole = MemberRole.MEMBER
    promo_usage: Mapping[str, int] = field(default_factory=dict)
    prior_bookings: int = 0


@dataclass(frozen=True)
class Notice:
    source: str
    message: str

    @classmethod
    def from_error(cls, exc: InstrumentError) -> "Notice":
        return cls(source=exc.source, message=exc.message)


@dataclass(frozen=True)
class CreditDraw:
    credit_id: str
    amount: Decimal


@dataclass(frozen=True)
class DiscountResult:
    base_cost: Decimal
    amount_due: Decimal
    package_discount: Decimal = ZERO
    promo_discount: Decimal = ZERO
    credit_applied: Decimal = ZERO
    package_id: Optional[str] = None
    covered_hours: Decimal = ZERO
    promo_code: Optional[str] = None
    credit_draw: Optional[CreditDraw] = None
    notices: tuple[Notice, ...] = ()

    @property
    def discount_amount(self) -> Decimal:
        return self.base_cost - self.amount_due

    @property
    def sources(self) -> tuple[str, ...]:
        found: list[str] = []
        if self.package_id is not None:
            found.append("package")
        if self.promo_code is not None:
            found.append(f"promo:{self.promo_code}")
        if self.credit_draw is not None:
            found.append("credit")
        return tuple(found)


def covered_package_hours(package: PackagePass, hours: Decimal, context: ResolutionContext) -> Decimal:
    if package.owner_id != context.user_id:
        raise PackageExhaustedError(f"package {package.id} belongs to another user")
    if package.remaining_count <= 0:
        raise PackageExhaustedError(f"package {package.id} has no passes left")
    if context.now > package.expires_at:
        raise PackageExhaustedError(f"package {package.id} expired at {package.expires_at.isoformat()}")
    if package.target_role is not None and package.target_role != context.member_role:
        raise PackageExhaustedError(f"package {package.id} is for {package.target_role.value} bookings")
    return min(hours, package.hour_limit_per_use)


def check_promo_eligibility(promo: PromoCode, base_cost: Decimal, context: ResolutionContext) -> None:
    """Raise PromoIneligibleError with the first failing rule."""
    code = promo.code
    if not promo.is_active:
        raise PromoIneligibleError(code, "inactive")
    if promo.active_from is not None and context.now < promo.active_from:
        raise PromoIneligibleError(code, "not yet active")
    if promo.active_to is not None and context.now > promo.active_to:
        raise PromoIneligibleError(code, "expired")
    if context.promo_usage.get(code, 0) >= promo.max_usage_per_user:
        raise PromoIneligibleError(code, "usage limit reached")
    if promo.max_total_usage is not None and promo.current_usage >= promo.max_total_usage:
        raise PromoIneligibleError(code, "fully redeemed")
    if promo.minimum_amount is not None and base_cost < promo.minimum_amount:
        raise PromoIneligibleError(code, f"minimum amount {promo.minimum_amount} not met")

    if promo.promo_type == PromoType.GROUP_SPECIFIC and context.member_role not in promo.groups:
        raise PromoIneligibleError(code, "not available for your group")
    if promo.promo_type == PromoType.USER_SPECIFIC and context.user_id not in promo.user_ids:
        raise PromoIneligibleError(code, "not issued to you")
    if promo.promo_type == PromoType.WELCOME and context.prior_bookings > 0:
        raise PromoIneligibleError(code, "only valid on a first booking")


def promo_amount(promo: PromoCode, owed: Decimal) -> Decimal:
    if promo.discount_shape == DiscountShape.PERCENTAGE:
        amount = owed * promo.discount_value / Decimal(100)
        if promo.maximum_discount is not None:
            amount = min(amount, promo.maximum_discount)
    else:
        amount = promo.discount_value
    return max(min(amount, owed), ZERO)


def select_promo(
    promos: tuple[PromoCode, ...],
    base_cost: Decimal,
    context: ResolutionContext,
) -> tuple[Optional[PromoCode], list[Notice]]:
    eligible: list[PromoCode] = []
    notices: list[Notice] = []
    for promo in promos:
        try:
            check_promo_eligibility(promo, base_cost, context)
        except PromoIneligibleError as exc:
            notices.append(Notice.from_error(exc))
            continue
        eligible.append(promo)
    if not eligible:
        return None, notices
    # Highest priority wins; code order breaks ties so the choice is stable.
    eligible.sort(key=lambda p: (-p.priority, p.code))
    return eligible[0], notices


def credit_draw(credit: StoreCredit, owed: Decimal, context: ResolutionContext) -> Optional[CreditDraw]:
    if credit.owner_id != context.user_id:
        raise CreditUnavailableError(f"credit {credit.id} belongs to another user")
    if credit.is_expired(context.now):
        raise CreditExpiredError(f"credit {credit.id} expired at {credit.expires_at.isoformat()}")
    if not credit.is_usable(context.now):
        raise CreditUnavailableError(f"credit {credit.id} has no balance left")
    amount = min(credit.balance, owed)
    if amount <= ZERO:
        return None
    return CreditDraw(credit_id=credit.id, amount=amount)


def resolve(
    base_cost: Decimal,
    hours: Decimal,
    instruments: Instruments,
    context: ResolutionContext,
    *,
    policy: StackingPolicy = StackingPolicy.EXCLUSIVE,
) -> DiscountResult:
    """
    Apply the selected instruments to a base cost.

    With the EXCLUSIVE policy a usable package pass suppresses promo codes;
    COMBINABLE applies the promo to what the package leaves owing. Amounts are
    not rounded here.
    """
    owed = base_cost
    notices: list[Notice] = []

    package_discount = ZERO
    covered = ZERO
    package_id: Optional[str] = None
    if instruments.package is not None:
        try:
            covered = covered_package_hours(instruments.package, hours, context)
        except PackageExhaustedError as exc:
            logger.info("package not applied: %s", exc.message)
            notices.append(Notice.from_error(exc))
        else:
            package_discount = min(covered * context.hourly_rate, owed)
            owed -= package_discount
            package_id = instruments.package.id

    promo_discount = ZERO
    promo_code: Optional[str] = None
    if instruments.promos:
        if package_id is not None and policy == StackingPolicy.EXCLUSIVE:
            for promo in instruments.promos:
                notices.append(Notice("promo", f"promo code {promo.code} cannot be combined with a package"))
        else:
            winner, promo_notices = select_promo(instruments.promos, base_cost, context)
            for notice in promo_notices:
                logger.info("promo not applied: %s", notice.message)
            notices.extend(promo_notices)
            if winner is not None:
                promo_discount = promo_amount(winner, owed)
                owed -= promo_discount
                promo_code = winner.code

    credit_applied = ZERO
    draw: Optional[CreditDraw] = None
    if instruments.credit is not None:
        try:
            draw = credit_draw(instruments.credit, owed, context)
        except CreditUnavailableError as exc:
            logger.info("credit not applied: %s", exc.message)
            notices.append(Notice.from_error(exc))
        if draw is not None:
            credit_applied = draw.amount
            owed -= credit_applied

    return DiscountResult(
        base_cost=base_cost,
        amount_due=owed,
        package_discount=package_discount,
        promo_discount=promo_discount,
        credit_applied=credit_applied,
        package_id=package_id,
        covered_hours=covered,
        promo_code=promo_code,
        credit_draw=draw,
        notices=tuple(notices),
    )
