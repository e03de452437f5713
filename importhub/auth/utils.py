"""Bearer token helpers.

The workspace application issues the tokens this API accepts.
``create_access_token`` exists for tooling and tests.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from importhub.core.config import settings

logger = logging.getLogger(__name__)

TOKEN_TYPE = "access"


def create_access_token(claims: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Sign ``claims`` (``user_id``, ``tenant_id``) into an access token."""
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    payload = {**claims, "type": TOKEN_TYPE, "iat": issued_at, "exp": issued_at + lifetime}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> Optional[dict]:
    """Decode an access token; None when expired, tampered with or not an access token."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except JWTError as e:
        logger.warning(f"Rejected access token: {e}")
        return None

    if payload.get("type") != TOKEN_TYPE:
        return None
    return payload
