# apps/api/complisite/middleware/auth.py
"""
Authentication Dependencies - Complisite
Validates Supabase-issued access tokens (HS256, aud=authenticated).
The token's `sub` is the user id every membership check runs against.
"""

import logging
import uuid
from typing import Annotated, Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from complisite.core.config import settings
from complisite.core.errors import Unauthorized
from complisite.db.models import User
from complisite.db.session import get_db

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)  # Optional Bearer, fallback to cookie


class AuthUser(BaseModel):
    """Current authenticated user context"""
    id: uuid.UUID
    email: Optional[str] = None
    role: str = "authenticated"


def decode_access_token(token: str) -> AuthUser:
    """Validate signature, audience and expiry; raise Unauthorized otherwise."""
    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.SUPABASE_JWT_AUDIENCE,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid JWT: {e}")
        raise Unauthorized("Invalid token")

    try:
        user_id = uuid.UUID(str(payload["sub"]))
    except ValueError:
        raise Unauthorized("Invalid token subject")

    return AuthUser(
        id=user_id,
        email=payload.get("email"),
        role=payload.get("role", "authenticated"),
    )


async def get_current_user(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)] = None,
) -> AuthUser:
    """
    Dependency: current user from the Bearer token (or access_token cookie).
    Creates the application user row on first sight of a new auth user.
    """
    token = credentials.credentials if credentials else request.cookies.get("access_token")
    if not token:
        raise Unauthorized("Not authenticated")

    auth_user = decode_access_token(token)

    user = await db.get(User, auth_user.id)
    if user is None:
        if not auth_user.email:
            raise Unauthorized("Token carries no email for a new account")
        db.add(User(id=auth_user.id, email=auth_user.email.lower()))
        await db.flush()
        logger.info(f"Created user record for {auth_user.id}")

    request.state.user_id = str(auth_user.id)
    return auth_user


CurrentUser = Annotated[AuthUser, Depends(get_current_user)]
