"""HS256 access token verification."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from liqrewards.auth.jwt import account_id_from_token, create_access_token, verify_token
from liqrewards.config import get_settings


def _encode(payload: dict) -> str:
    settings = get_settings()
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


class TestTokens:
    def test_round_trip_account_id(self) -> None:
        token = create_access_token(1234)
        assert account_id_from_token(token) == 1234
        assert verify_token(token)["iss"] == get_settings().jwt_issuer

    def test_expired_token_rejected(self) -> None:
        token = create_access_token(1, expires_minutes=-1)
        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            verify_token(token)

    def test_wrong_secret_rejected(self) -> None:
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "1", "exp": now + timedelta(minutes=5), "iss": get_settings().jwt_issuer},
            "some-other-secret",
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)

    def test_refresh_token_type_rejected(self) -> None:
        now = datetime.now(timezone.utc)
        token = _encode(
            {"sub": "1", "exp": now + timedelta(minutes=5), "iss": get_settings().jwt_issuer, "type": "refresh"}
        )
        with pytest.raises(jwt.InvalidTokenError, match="refresh"):
            verify_token(token)

    def test_non_numeric_subject_rejected(self) -> None:
        now = datetime.now(timezone.utc)
        token = _encode({"sub": "alice", "exp": now + timedelta(minutes=5), "iss": get_settings().jwt_issuer})
        with pytest.raises(jwt.InvalidTokenError):
            account_id_from_token(token)

    def test_missing_issuer_rejected(self) -> None:
        now = datetime.now(timezone.utc)
        token = _encode({"sub": "1", "exp": now + timedelta(minutes=5)})
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)
