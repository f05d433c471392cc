import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request, Response

from .database import dispose_engine, init_models
from .routers import bookings, drafts, packages, payments, refunds
from .utils.request_id import REQUEST_ID_HEADER, generate_request_id, normalize_request_id, set_request_id

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    await init_models()
    try:
        yield
    finally:
        await dispose_engine()


app = FastAPI(title="Cowork Booking API", lifespan=lifespan)


async def request_id_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    request_id = normalize_request_id(request.headers.get(REQUEST_ID_HEADER)) or generate_request_id()
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


app.middleware("http")(request_id_middleware)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(bookings.router)
app.include_router(packages.router)
app.include_router(refunds.router)
app.include_router(payments.router)
app.include_router(drafts.router)
