from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from ..models import PaymentMethod
from .errors import FeeConfigError, PaymentMethodDisabledError

ZERO = Decimal("0")

_SETTING_KEYS = {
    "PAYNOW_TRANSACTION_FEE": "paynow_flat_fee",
    "CREDIT_CARD_TRANSACTION_FEE_PERCENTAGE": "credit_card_fee_percentage",
    "PAYNOW_ENABLED": "paynow_enabled",
    "CREDIT_CARD_ENABLED": "card_enabled",
}


@dataclass(frozen=True)
class FeeSettings:
    paynow_flat_fee: Decimal = Decimal("0.20")
    credit_card_fee_percentage: Decimal = Decimal("5.0")
    paynow_enabled: bool = True
    card_enabled: bool = True
    # PayNow is free from this amount upwards.
    paynow_fee_threshold: Decimal = Decimal("10")

    @classmethod
    def from_backend(cls, payload: Any) -> "FeeSettings":
        """
        Build settings from the backend's payment-settings payload.

        Accepts either the raw list of ``{settingKey, settingValue, settingType}``
        rows or an already flattened mapping. Missing keys keep their defaults.
        """
        if isinstance(payload, Mapping) and "data" in payload:
            payload = payload["data"]
        if isinstance(payload, list):
            try:
                flat = {row["settingKey"]: row.get("settingValue") for row in payload}
            except (KeyError, TypeError, AttributeError) as exc:
                raise FeeConfigError("malformed payment settings rows") from exc
        elif isinstance(payload, Mapping):
            flat = dict(payload)
        else:
            raise FeeConfigError("unexpected payment settings payload")

        values: dict[str, Any] = {}
        for key, attr in _SETTING_KEYS.items():
            raw = flat.get(key)
            if raw is None:
                continue
            if attr.endswith("_enabled"):
                values[attr] = _parse_bool(raw)
            else:
                values[attr] = _parse_decimal(key, raw)
        return cls(**values)

    def is_enabled(self, method: PaymentMethod) -> bool:
        return self.paynow_enabled if method == PaymentMethod.PAYNOW else self.card_enabled


@dataclass(frozen=True)
class FeeQuote:
    fee: Decimal
    total: Decimal


def _parse_decimal(key: str, raw: Any) -> Decimal:
    try:
        value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise FeeConfigError(f"{key} is not a number: {raw!r}") from exc
    if value < 0:
        raise FeeConfigError(f"{key} cannot be negative")
    return value


def _parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() not in {"false", "0", "no", ""}


def compute_fee(subtotal: Decimal, method: PaymentMethod, settings: FeeSettings) -> FeeQuote:
    if subtotal <= ZERO:
        # Nothing is charged, so no gateway fee either.
        return FeeQuote(fee=ZERO, total=ZERO)
    if not settings.is_enabled(method):
        raise PaymentMethodDisabledError(f"payment method {method.value} is disabled")

    if method == PaymentMethod.CARD:
        fee = subtotal * settings.credit_card_fee_percentage / Decimal(100)
    else:
        fee = settings.paynow_flat_fee if subtotal < settings.paynow_fee_threshold else ZERO
    return FeeQuote(fee=fee, total=subtotal + fee)
