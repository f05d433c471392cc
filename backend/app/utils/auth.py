from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

# Covers a checkout round trip through the gateway.
DEFAULT_TOKEN_TTL = timedelta(hours=2)
CLOCK_SKEW = timedelta(seconds=30)


class TokenError(ValueError):
    """Raised when a request does not carry a usable bearer token."""


def parse_bearer(authorization: str | None) -> str:
    if authorization is None:
        raise TokenError("Authorization header required")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise TokenError("Bearer token required")
    return token.strip()


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
    now: datetime | None = None,
) -> str:
    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": issued,
        "exp": issued + (expires_delta if expires_delta is not None else DEFAULT_TOKEN_TTL),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> int:
    """Return the member id in ``sub``; expiry is checked with a small skew allowance."""
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=list(algorithms),
            leeway=CLOCK_SKEW,
            options={"require": ["exp", "sub"]},
        )
    except InvalidTokenError as exc:
        raise TokenError("invalid token") from exc

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise TokenError("token sub is not an integer") from exc
    if user_id <= 0:
        raise TokenError("token sub is not a member id")
    return user_id
