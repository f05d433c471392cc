from __future__ import annotations

import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Mapping, Sequence

import httpx

from ..domain.clients import PaymentGateway
from ..domain.errors import PaymentError
from ..models import PaymentMethod

logger = logging.getLogger(__name__)

GATEWAY_METHODS: dict[PaymentMethod, str] = {
    PaymentMethod.PAYNOW: "paynow_online",
    PaymentMethod.CARD: "card",
}


def gateway_methods(method: PaymentMethod) -> list[str]:
    return [GATEWAY_METHODS[method]]


def generate_signature(fields: Mapping[str, str], salt: str) -> str:
    """HMAC-SHA256 over the fields sorted by key, each written as key followed by value."""
    message = "".join(f"{key}{fields[key]}" for key in sorted(fields) if key != "hmac")
    return hmac.new(salt.encode(), message.encode(), hashlib.sha256).hexdigest()


def verify_webhook_signature(fields: Mapping[str, str], signature: str, salt: str) -> bool:
    if not salt or not signature:
        return False
    return hmac.compare_digest(generate_signature(fields, salt), signature)


class HttpPaymentGateway(PaymentGateway):
    def __init__(self, client: httpx.AsyncClient, api_key: str) -> None:
        self.client = client
        self.api_key = api_key

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
    ) -> str:
        data: dict[str, object] = {
            "amount": f"{amount:.2f}",
            "currency": currency,
            "reference_number": reference,
            "redirect_url": redirect_url,
            "webhook": webhook_url,
            "payment_methods[]": list(methods),
        }
        if email:
            data["email"] = email
        if name:
            data["name"] = name
        if purpose:
            data["purpose"] = purpose

        try:
            response = await self.client.post(
                "/payment-requests",
                data=data,
                headers={"X-BUSINESS-API-KEY": self.api_key, "X-Requested-With": "XMLHttpRequest"},
            )
        except httpx.TimeoutException as exc:
            logger.warning("gateway timeout for reference %s", reference)
            raise PaymentError(f"Payment gateway timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise PaymentError(f"Payment gateway unreachable: {exc}") from exc

        if response.status_code >= 400:
            logger.warning("gateway rejected reference %s with %s", reference, response.status_code)
            raise PaymentError(f"Payment gateway returned {response.status_code}")
        try:
            url = response.json().get("url")
        except ValueError as exc:
            raise PaymentError("Payment gateway returned invalid JSON") from exc
        if not url:
            raise PaymentError("Payment gateway response has no checkout url")
        return str(url)
