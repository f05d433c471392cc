from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping, Optional

from ..models import MemberRole, PaymentMethod
from .discounts import DiscountResult, Notice
from .fees import FeeSettings, compute_fee

ZERO = Decimal("0")
CENT = Decimal("0.01")
ONE_HOUR = Decimal("1")


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Rate:
    one_hour_rate: Decimal
    over_one_hour_rate: Decimal

    def for_hours(self, hours: Decimal) -> Decimal:
        return self.one_hour_rate if hours <= ONE_HOUR else self.over_one_hour_rate


DEFAULT_RATES: dict[MemberRole, Rate] = {
    MemberRole.STUDENT: Rate(Decimal("4.00"), Decimal("3.00")),
    MemberRole.MEMBER: Rate(Decimal("5.00"), Decimal("4.00")),
    MemberRole.TUTOR: Rate(Decimal("6.00"), Decimal("5.00")),
}


@dataclass(frozen=True)
class RateCard:
    rates: Mapping[MemberRole, Rate] = field(default_factory=lambda: dict(DEFAULT_RATES))

    @classmethod
    def from_backend(cls, rows: Iterable[Mapping[str, Any]]) -> "RateCard":
        """Active pricing rows for one location; roles without a row keep the default rate."""
        rates = dict(DEFAULT_RATES)
        for row in rows:
            if not row.get("isActive", True):
                continue
            role = MemberRole(str(row["memberType"]).upper())
            rates[role] = Rate(
                one_hour_rate=Decimal(str(row["oneHourRate"])),
                over_one_hour_rate=Decimal(str(row["overOneHourRate"])),
            )
        return cls(rates=rates)

    def hourly_rate(self, role: MemberRole, hours: Decimal) -> Decimal:
        return self.rates[role].for_hours(hours)

    def base_cost(self, hours: Decimal, headcount: Mapping[MemberRole, int]) -> Decimal:
        """Every person in the party pays their own role's rate for the whole window."""
        return sum(
            (self.hourly_rate(role, hours) * hours * count for role, count in headcount.items() if count > 0),
            ZERO,
        )

    def extension_cost(self, hours: Decimal, headcount: Mapping[MemberRole, int]) -> Decimal:
        return sum(
            (self.rates[role].one_hour_rate * hours * count for role, count in headcount.items() if count > 0),
            ZERO,
        )


def package_cost(unit_price: Decimal, quantity: int, outlet_fee: Decimal) -> Decimal:
    if quantity < 1:
        raise ValueError("quantity must be >= 1")
    return unit_price * quantity + outlet_fee


@dataclass(frozen=True)
class Invoice:
    subtotal: Decimal
    discount_amount: Decimal
    fee: Decimal
    total: Decimal
    amount_due: Decimal
    credit_applied: Decimal = ZERO
    discount_source: Optional[str] = None
    notices: tuple[Notice, ...] = ()

    @property
    def skip_payment(self) -> bool:
        return self.total == ZERO


def build_invoice(result: DiscountResult, method: PaymentMethod, settings: FeeSettings) -> Invoice:
    """
    Round to cents and add the payment-method fee.
    The fee is computed on the rounded amount due, which is what gets charged.
    """
    subtotal = to_cents(result.base_cost)
    amount_due = to_cents(result.amount_due)
    quote = compute_fee(amount_due, method, settings)
    fee = to_cents(quote.fee)
    return Invoice(
        subtotal=subtotal,
        discount_amount=subtotal - amount_due,
        fee=fee,
        total=amount_due + fee,
        amount_due=amount_due,
        credit_applied=to_cents(result.credit_applied),
        discount_source="+".join(result.sources) or None,
        notices=result.notices,
    )
