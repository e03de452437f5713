"""Request identity: the acting user and tenant, both taken from the bearer token."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from importhub.auth.utils import verify_token
from importhub.core.config import settings

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    if not credentials:
        raise _unauthorized("Not authenticated")

    payload = verify_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid token")
    return payload


def _claim_uuid(value: object, detail: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError as e:
        raise _unauthorized(detail) from e


async def get_current_user_id(payload: dict = Depends(get_token_payload)) -> UUID:
    user_id = payload.get("user_id") or payload.get("sub")
    if not user_id:
        raise _unauthorized("Invalid token payload")
    return _claim_uuid(user_id, "Invalid token payload")


async def get_current_tenant_id(payload: dict = Depends(get_token_payload)) -> UUID:
    """Tenant from the ``tenant_id`` claim, else the configured default tenant."""
    return _claim_uuid(payload.get("tenant_id") or settings.tenant_id, "Invalid tenant in token")
