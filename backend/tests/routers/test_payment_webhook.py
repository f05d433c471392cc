from typing import Any, AsyncIterator

import pytest
from app.config import Settings
from app.deps import get_app_settings, get_backend, get_current_user_id, get_session
from app.infrastructure.gateway import generate_signature
from app.models import PaymentKind, PaymentStatus
from app.routers import payments as router
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from tests.fakes import FakeBackend, FakeDraftRepo, FakeIntentRepo

SALT = "webhook-salt"


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


class Harness:
    def __init__(self) -> None:
        self.backend = FakeBackend()
        self.intents = FakeIntentRepo()
        self.drafts = FakeDraftRepo()
        self.audit: list[dict[str, Any]] = []


@pytest.fixture
def harness(monkeypatch: pytest.MonkeyPatch) -> Harness:
    h = Harness()
    monkeypatch.setattr(router, "SqlAlchemyPaymentIntentRepository", lambda s: h.intents)  # type: ignore[assignment]
    monkeypatch.setattr(router, "SqlAlchemyDraftRepository", lambda s: h.drafts)  # type: ignore[assignment]
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: h.audit.append(kwargs))
    return h


def _app(harness: Harness) -> FastAPI:
    app = FastAPI()
    app.include_router(router.router)

    async def override_session() -> AsyncIterator[DummySession]:
        yield DummySession()

    async def override_backend() -> FakeBackend:
        return harness.backend

    async def override_settings() -> Settings:
        return Settings(gateway_webhook_salt=SALT)

    async def override_user() -> int:
        return 1

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_backend] = override_backend
    app.dependency_overrides[get_app_settings] = override_settings
    app.dependency_overrides[get_current_user_id] = override_user
    return app


def _signed(**fields: str) -> dict[str, str]:
    return {**fields, "hmac": generate_signature(fields, SALT)}


async def _post(harness: Harness, form: dict[str, str]) -> Any:
    transport = ASGITransport(app=_app(harness))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post("/payments/webhook", data=form)


@pytest.mark.asyncio
async def test_signed_success_confirms_booking(harness: Harness) -> None:
    harness.intents.add("BOO-1", kind=PaymentKind.BOOKING, total="7.70")

    resp = await _post(harness, _signed(reference_number="BOO-1", status="completed", amount="7.70"))

    assert resp.status_code == 200
    assert resp.json() == {"reference": "BOO-1", "status": "completed", "retryable": False}
    assert harness.backend.confirmed == [("booking", "subject-1", "BOO-1")]
    assert [a["action"] for a in harness.audit] == ["payment.completed"]
    assert harness.audit[0]["status_from"] == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_replayed_webhook_is_acknowledged_without_audit(harness: Harness) -> None:
    harness.intents.add("BOO-1", status=PaymentStatus.COMPLETED)

    resp = await _post(harness, _signed(reference_number="BOO-1", status="completed", amount="7.70"))

    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert harness.backend.confirmed == []
    assert harness.audit == []


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(harness: Harness) -> None:
    harness.intents.add("BOO-1")
    form = _signed(reference_number="BOO-1", status="completed", amount="7.70")
    form["amount"] = "0.01"

    resp = await _post(harness, form)

    assert resp.status_code == 409
    assert harness.intents.items["BOO-1"].status == PaymentStatus.PENDING
    assert harness.backend.confirmed == []


@pytest.mark.asyncio
async def test_unsigned_webhook_is_rejected(harness: Harness) -> None:
    harness.intents.add("BOO-1")
    resp = await _post(harness, {"reference_number": "BOO-1", "status": "completed"})
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_failed_payment_is_recorded_and_reported_retryable(harness: Harness) -> None:
    harness.intents.add("PAC-1", kind=PaymentKind.PACKAGE)

    resp = await _post(harness, _signed(reference_number="PAC-1", status="failed", amount="7.70"))

    assert resp.status_code == 200
    assert resp.json() == {"reference": "PAC-1", "status": "failed", "retryable": True}
    assert harness.intents.items["PAC-1"].status == PaymentStatus.FAILED
    assert [a["action"] for a in harness.audit] == ["payment.failed"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "form, expected",
    [
        ({"reference_number": "BOO-404", "status": "completed"}, 404),
        ({"status": "completed"}, 400),
        ({"reference_number": "BOO-1", "status": "completed", "amount": "abc"}, 400),
        ({"reference_number": "BOO-1", "status": "completed", "amount": "1.00"}, 409),
    ],
)
async def test_webhook_rejections(harness: Harness, form: dict[str, str], expected: int) -> None:
    harness.intents.add("BOO-1", total="7.70")
    resp = await _post(harness, _signed(**form))
    assert resp.status_code == expected
    assert harness.backend.confirmed == []


@pytest.mark.asyncio
async def test_audit_failure_returns_500(harness: Harness, monkeypatch: pytest.MonkeyPatch) -> None:
    harness.intents.add("BOO-1")

    def failing_emit(**kwargs: Any) -> None:
        raise RuntimeError("fail log")

    monkeypatch.setattr(router, "emit_audit_log", failing_emit)
    resp = await _post(harness, _signed(reference_number="BOO-1", status="completed"))
    assert resp.status_code == 500


@pytest.mark.asyncio
async def test_return_page_reads_status_only(harness: Harness) -> None:
    harness.intents.add("BOO-1", user_id=1)
    transport = ASGITransport(app=_app(harness))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/payments/return", params={"reference": "BOO-1", "status": "completed"})
        missing = await client.get("/payments/return", params={"reference": "BOO-2"})

    assert resp.status_code == 200
    assert resp.json()["status"] == "pending"
    assert resp.json()["kind"] == "booking"
    assert harness.backend.confirmed == []
    assert missing.status_code == 404
