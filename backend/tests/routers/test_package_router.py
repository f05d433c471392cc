from decimal import Decimal
from typing import Any, cast

import pytest
from app.config import Settings
from app.domain.clients import PackageOffer
from app.models import PackageType, PaymentStatus
from app.routers import packages as router
from app.schemas import PackagePurchaseCreate
from app.usecases.checkout import CheckoutTarget
from sqlalchemy.ext.asyncio import AsyncSession

from tests.fakes import FakeBackend, FakeGateway, FakeIntentRepo


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


@pytest.fixture
def backend() -> FakeBackend:
    backend = FakeBackend()
    backend.offers["half"] = PackageOffer(
        id="half", name="Half Day Pass", package_type=PackageType.HALF_DAY, price=Decimal("40")
    )
    return backend


@pytest.mark.asyncio
async def test_quote_uses_configured_outlet_fee(backend: FakeBackend) -> None:
    result = await router.quote_package(
        payload=PackagePurchaseCreate(package_id="half", quantity=2),
        backend=backend,
        settings=Settings(outlet_fee=Decimal("3")),
        user_id=1,
    )
    assert result.name == "Half Day Pass"
    assert result.invoice.subtotal == Decimal("83.00")


@pytest.mark.asyncio
async def test_purchase_emits_audit(backend: FakeBackend, monkeypatch: pytest.MonkeyPatch) -> None:
    intents = FakeIntentRepo()
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(router, "SqlAlchemyPaymentIntentRepository", lambda s: intents)  # type: ignore[assignment]
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: calls.append(kwargs))

    result = await router.purchase_package(
        payload=PackagePurchaseCreate(package_id="half", quantity=1),
        session=cast(AsyncSession, DummySession()),
        backend=backend,
        gateway=FakeGateway(),
        target=CheckoutTarget(currency="SGD", redirect_url="https://app.test/r", webhook_url="https://api.test/w"),
        settings=Settings(),
        user_id=1,
    )

    assert result.status == PaymentStatus.PENDING
    assert result.reference in intents.items
    assert calls[0]["action"] == "package.purchased"
    assert calls[0]["extra"] == {"package_id": "half", "quantity": 1}
