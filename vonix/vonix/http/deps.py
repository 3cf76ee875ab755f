from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator

import logging

import jwt
from fastapi import Depends, Header, Request
from jwt.exceptions import InvalidTokenError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import AuthConfig
from ..db.models import User
from ..db.session import get_session
from .errors import USER_NOT_FOUND, ApiError

TOKEN_TTL = timedelta(days=7)


@dataclass
class RequestContext:
    user_id: int
    username: str | None
    role: str


async def get_db() -> AsyncIterator[AsyncSession]:
    async with get_session() as session:
        yield session


def create_access_token(
    auth: AuthConfig,
    user_id: int,
    username: str,
    role: str = "user",
    ttl: timedelta = TOKEN_TTL,
) -> str:
    """Sign a token with the claims the auth service issues."""
    now = datetime.now(timezone.utc)
    claims = {
        "id": user_id,
        "username": username,
        "role": role,
        "iat": now,
        "exp": now + ttl,
    }
    return jwt.encode(claims, auth.jwt_secret, algorithm=auth.jwt_algorithm)


def _auth_config(request: Request) -> AuthConfig:
    return request.app.state.config.auth


async def bearer_auth(
    request: Request,
    authorization: str | None = Header(None),
) -> RequestContext:
    token = None
    if authorization:
        parts = authorization.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            token = parts[1].strip()
    if not token:
        raise ApiError(401, "Access token required")

    auth = _auth_config(request)
    try:
        claims = jwt.decode(token, auth.jwt_secret, algorithms=[auth.jwt_algorithm])
        user_id = int(claims["id"])
    except (InvalidTokenError, KeyError, TypeError, ValueError) as exc:
        logging.debug("API token rejected path=%s error=%s", request.url.path, exc)
        raise ApiError(403, "Invalid or expired token")

    logging.info(
        "API %s %s user=%s", request.method, request.url.path, user_id
    )
    return RequestContext(
        user_id=user_id,
        username=claims.get("username"),
        role=claims.get("role", "user"),
    )


async def current_user(
    ctx: RequestContext = Depends(bearer_auth),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the token to a stored account.

    A token whose account was deleted yields ``USER_NOT_FOUND`` so the client
    can force a logout instead of retrying.
    """
    user = await db.get(User, ctx.user_id)
    if user is None:
        logging.warning("API user %s from token not found", ctx.user_id)
        raise ApiError(
            404,
            "User not found. Please log out and log in again.",
            code=USER_NOT_FOUND,
        )
    return user
