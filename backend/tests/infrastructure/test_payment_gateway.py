from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest
from app.domain.errors import PaymentError
from app.infrastructure.gateway import HttpPaymentGateway, generate_signature, verify_webhook_signature


def _gateway(handler) -> HttpPaymentGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://gateway.test/v1")
    return HttpPaymentGateway(client, api_key="key-123")


async def _create(gateway: HttpPaymentGateway) -> str:
    return await gateway.create_payment(
        amount=Decimal("7.7"),
        currency="SGD",
        reference="BOO-abc",
        redirect_url="https://app.test/payments/return",
        webhook_url="https://api.test/payments/webhook",
        methods=["paynow_online"],
        email="jo@example.com",
        purpose="Booking REF1",
    )


@pytest.mark.asyncio
async def test_create_payment_posts_form_and_returns_url() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": "pr-1", "url": "https://checkout.test/pr-1"})

    url = await _create(_gateway(handler))

    assert url == "https://checkout.test/pr-1"
    request = seen[0]
    assert request.url.path == "/v1/payment-requests"
    assert request.headers["X-BUSINESS-API-KEY"] == "key-123"
    form = parse_qs(request.content.decode())
    assert form["amount"] == ["7.70"]
    assert form["reference_number"] == ["BOO-abc"]
    assert form["payment_methods[]"] == ["paynow_online"]
    assert form["email"] == ["jo@example.com"]
    assert "name" not in form


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(422, json={"message": "invalid amount"}),
        lambda request: httpx.Response(200, json={"id": "pr-1"}),
        lambda request: httpx.Response(200, text="not json"),
    ],
)
async def test_gateway_failures_are_retryable_payment_errors(handler) -> None:
    with pytest.raises(PaymentError) as excinfo:
        await _create(_gateway(handler))
    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_gateway_timeout_is_payment_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(PaymentError, match="timed out"):
        await _create(_gateway(handler))


def test_signature_ignores_hmac_field_and_key_order() -> None:
    fields = {"status": "completed", "reference_number": "BOO-abc", "amount": "7.70"}
    signature = generate_signature(fields, "salt")
    assert generate_signature({**fields, "hmac": "whatever"}, "salt") == signature
    assert generate_signature(dict(reversed(list(fields.items()))), "salt") == signature


def test_verify_webhook_signature() -> None:
    fields = {"status": "completed", "reference_number": "BOO-abc", "amount": "7.70"}
    signature = generate_signature(fields, "salt")

    assert verify_webhook_signature(fields, signature, "salt") is True
    assert verify_webhook_signature({**fields, "amount": "0.01"}, signature, "salt") is False
    assert verify_webhook_signature(fields, signature, "other") is False
    assert verify_webhook_signature(fields, "", "salt") is False
    assert verify_webhook_signature(fields, signature, "") is False
