"""Auth dependencies — JWT validation, role enforcement.

Sign-in and token issuance live outside this service; it only verifies
bearer tokens against persisted sessions.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mess_backend.auth.models import User, UserSession
from mess_backend.common.constants import ROLE_HIERARCHY, UserRole
from mess_backend.common.exceptions import ForbiddenException
from mess_backend.config import settings
from mess_backend.database import get_db


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Validate JWT, verify session, return the authenticated User."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    # Session must exist, not revoked, not expired
    result = await db.execute(
        select(UserSession).where(
            UserSession.token_hash == _hash_token(token),
            UserSession.is_revoked.is_(False),
            UserSession.expires_at > datetime.now(timezone.utc),
        ),
    )
    if result.scalars().first() is None:
        raise HTTPException(status_code=401, detail="Session invalid or expired.")

    user_result = await db.execute(
        select(User).where(
            User.id == uuid.UUID(payload["sub"]),
            User.is_active.is_(True),
        ),
    )
    user = user_result.scalars().first()
    if user is None:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    request.state.user_id = user.id
    request.state.user_role = user.role
    return user


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership.

    Respects hierarchy — e.g. admin can access mess-owner endpoints.
    """

    async def _check(
        request: Request,
        user: User = Depends(get_current_user),
    ) -> User:
        user_role: UserRole = request.state.user_role
        effective_roles = ROLE_HIERARCHY.get(user_role, {user_role})
        if not effective_roles.intersection(set(allowed_roles)):
            raise ForbiddenException(
                detail=f"Role '{user_role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return user

    return _check
