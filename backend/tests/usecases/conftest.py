import pytest
from app.usecases.checkout import CheckoutTarget

from tests.fakes import FakeBackend, FakeDraftRepo, FakeGateway, FakeIntentRepo


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def intents() -> FakeIntentRepo:
    return FakeIntentRepo()


@pytest.fixture
def drafts() -> FakeDraftRepo:
    return FakeDraftRepo()


@pytest.fixture
def target() -> CheckoutTarget:
    return CheckoutTarget(
        currency="SGD",
        redirect_url="https://app.test/payments/return",
        webhook_url="https://api.test/payments/webhook",
    )
