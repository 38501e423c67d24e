"""Principal resolution for lifecycle calls.

Every engine operation takes an explicit ``AuthContext``. Over HTTP it is
built from ``Authorization: Bearer <session token>``; the token is verified
against the auth service's public key and the role comes from the
principal's profile.
"""

import uuid
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.config import settings
from labormarket.database import get_db
from labormarket.models.profile import Profile, UserType
from labormarket.utils.crypto import verify_session_token


@dataclass(frozen=True)
class AuthContext:
    """The authenticated principal performing an action."""

    principal_id: uuid.UUID
    role: UserType
    token: str | None = None

    @property
    def is_client(self) -> bool:
        return self.role == UserType.CLIENT

    @property
    def is_laborer(self) -> bool:
        return self.role == UserType.LABORER


async def resolve_principal(db: AsyncSession, token: str) -> AuthContext | None:
    """Verify a session token and load the principal's role. None if invalid."""
    if not settings.session_public_key:
        return None
    principal_id = verify_session_token(
        settings.session_public_key, token, settings.session_max_age_seconds
    )
    if principal_id is None:
        return None
    result = await db.execute(select(Profile).where(Profile.id == principal_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        return None
    return AuthContext(principal_id=profile.id, role=profile.user_type, token=token)


async def require_auth(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Missing authentication headers")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization scheme")

    auth = await resolve_principal(db, auth_header[7:].strip())
    if auth is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return auth
