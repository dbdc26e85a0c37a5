"""
HS256 JWT verification.

Access tokens are issued by the platform's auth service and signed with a
shared secret; this service only verifies them. ``create_access_token`` exists
for local development and tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from liqrewards.config import get_settings


def create_access_token(account_id: int, expires_minutes: int = 60) -> str:
    """
    Create an access token for ``account_id``.

    Args:
        account_id: The account's ID, stored in ``sub``.
        expires_minutes: Lifetime of the token.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(account_id),
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
        "iss": settings.jwt_issuer,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode an access token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or has no usable subject.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type", "access") != "access":
        msg = f"Expected token type 'access', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)

    return payload


def account_id_from_token(token: str) -> int:
    """Verify a token and return its account id."""
    payload = verify_token(token)
    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        msg = "Token subject is not an account id"
        raise jwt.InvalidTokenError(msg) from None
