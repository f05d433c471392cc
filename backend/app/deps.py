from typing import AsyncIterator

import httpx
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import async_session
from .infrastructure.backend import HttpBookingBackend
from .infrastructure.gateway import HttpPaymentGateway
from .usecases.checkout import CheckoutTarget
from .utils.auth import TokenError, decode_access_token, parse_bearer
from .utils.request_id import attach_request_id


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(authorization: str | None = Header(default=None)) -> int:
    settings = get_settings()
    try:
        token = parse_bearer(authorization)
        return decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except TokenError as exc:
        raise _unauthorized(str(exc)) from exc


async def get_admin_user_id(user_id: int = Depends(get_current_user_id)) -> int:
    if user_id not in get_settings().admin_user_ids:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin only")
    return user_id


async def get_app_settings() -> Settings:
    return get_settings()


async def get_backend(settings: Settings = Depends(get_app_settings)) -> AsyncIterator[HttpBookingBackend]:
    async with httpx.AsyncClient(
        base_url=settings.backend_base_url,
        timeout=settings.backend_timeout_seconds,
        event_hooks={"request": [attach_request_id]},
    ) as client:
        yield HttpBookingBackend(client)


async def get_gateway(settings: Settings = Depends(get_app_settings)) -> AsyncIterator[HttpPaymentGateway]:
    async with httpx.AsyncClient(
        base_url=settings.gateway_base_url,
        timeout=settings.backend_timeout_seconds,
        event_hooks={"request": [attach_request_id]},
    ) as client:
        yield HttpPaymentGateway(client, api_key=settings.gateway_api_key)


async def get_checkout_target(settings: Settings = Depends(get_app_settings)) -> CheckoutTarget:
    return CheckoutTarget(
        currency=settings.currency,
        redirect_url=settings.redirect_url("payments/return"),
        webhook_url=settings.webhook_url,
    )
