import re
import uuid
from contextvars import ContextVar

import httpx

REQUEST_ID_HEADER = "X-Request-ID"
_MAX_LENGTH = 64
_ALLOWED = re.compile(r"^[A-Za-z0-9._:-]+$")

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    return uuid.uuid4().hex


def normalize_request_id(value: str | None) -> str | None:
    """Accept a caller-supplied id only if it is short and log-safe."""
    if value is None:
        return None
    value = value.strip()
    if not value or len(value) > _MAX_LENGTH or not _ALLOWED.match(value):
        return None
    return value


def set_request_id(request_id: str | None) -> None:
    _request_id_ctx.set(request_id)


def get_request_id() -> str | None:
    return _request_id_ctx.get()


async def attach_request_id(request: httpx.Request) -> None:
    """httpx request hook: forward the current id to the backend and the gateway."""
    request_id = get_request_id()
    if request_id and REQUEST_ID_HEADER not in request.headers:
        request.headers[REQUEST_ID_HEADER] = request_id
