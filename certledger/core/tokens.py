# certledger/core/tokens.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError
from certledger.core.config import settings


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(*, sub: str, roles: list[str] | None = None) -> str:
    """Short-lived access token, signed with SECRET_KEY."""
    payload: Dict[str, Any] = {
        "type": "access",
        "sub": sub,
        "roles": sorted(roles or []),
        "jti": uuid.uuid4().hex,
        "iat": int(_now().timestamp()),
        "exp": int((_now() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)).timestamp()),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access(token: str) -> Optional[Dict[str, Any]]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload, dict) or payload.get("type") != "access":
        return None
    if not payload.get("sub"):
        return None
    return payload
