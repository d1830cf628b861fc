from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from app.core.settings import settings


class TokenError(ValueError):
    pass


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode an access token issued by the external auth service."""
    options = {"verify_aud": settings.jwt_audience is not None}
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except JWTError as exc:
        raise TokenError("Invalid or expired token") from exc
    if not payload.get("sub"):
        raise TokenError("Token missing subject")
    return payload


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    """Mint a token in the auth service's format. Used by scripts and tests."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode: dict[str, Any] = {"sub": subject, "exp": expire}
    if settings.jwt_audience is not None:
        to_encode["aud"] = settings.jwt_audience
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)
