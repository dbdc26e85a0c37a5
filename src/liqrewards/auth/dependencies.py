"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from liqrewards.auth.jwt import account_id_from_token

_bearer = HTTPBearer()


async def get_current_account_id(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
) -> int:
    """
    Extract and verify the bearer JWT, return the account id.

    Accounts are owned by the auth service; the rewards row is provisioned
    lazily by the first grant. Raises 401 on failure.
    """
    try:
        return account_id_from_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
