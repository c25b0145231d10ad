# supply_hub/auth.py
"""
Bearer-token verification.

Tokens are HS256 JWTs carrying ``userId``, ``role`` (customer/admin) and
``customerId``. Issuing tokens over HTTP is not part of this service;
``issue_token`` exists for ops scripts and tests.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header

from supply_hub.exceptions import AuthenticationError, PermissionDeniedError
from supply_hub.settings import settings

ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"


@dataclass(frozen=True)
class CurrentUser:
    user_id: Optional[int]
    role: str
    customer_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def issue_token(user_id: int, role: str, customer_id: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user_id,
        "role": role,
        "customerId": customer_id,
        "iat": now,
        "exp": now + timedelta(days=settings.TOKEN_TTL_DAYS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        raise AuthenticationError("Invalid or expired token", code="AUTH_INVALID") from e

    role = payload.get("role")
    if role not in (ROLE_ADMIN, ROLE_CUSTOMER):
        raise AuthenticationError("Token carries no valid role", code="AUTH_INVALID")

    customer_id = payload.get("customerId")
    return CurrentUser(
        user_id=payload.get("userId"),
        role=role,
        customer_id=int(customer_id) if customer_id is not None else None,
    )


async def get_current_user(authorization: Optional[str] = Header(default=None)) -> CurrentUser:
    """FastAPI dependency: ``Authorization: Bearer <token>`` -> CurrentUser."""
    header = authorization or ""
    token = header[7:].strip() if header.startswith("Bearer ") else None
    if not token:
        raise AuthenticationError("Missing authentication token", code="AUTH_MISSING")
    return decode_token(token)


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise PermissionDeniedError("Admin privileges required")
    return user
