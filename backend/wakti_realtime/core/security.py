"""
Supabase-style access tokens: HS256 JWT with the user id in `sub`.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Header

from wakti_realtime.config import settings
from wakti_realtime.core.errors import MSG_AUTH_NOT_CONFIGURED, MSG_UNAUTHORIZED, AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


@dataclass(frozen=True)
class AuthUser:
    id: str
    role: str
    claims: dict[str, Any]


def decode_access_token(token: str, *, secret: str | None = None) -> AuthUser:
    """Verify signature and expiry. Raises AuthenticationError on any failure."""
    secret = secret if secret is not None else settings.supabase_jwt_secret
    if not secret:
        raise ConfigurationError(MSG_AUTH_NOT_CONFIGURED)
    token = (token or "").strip()
    if not token:
        raise AuthenticationError(MSG_UNAUTHORIZED)
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"verify_aud": False},
        )
    except jwt.PyJWTError as e:
        logger.debug("Access token rejected: %s", e)
        raise AuthenticationError(MSG_UNAUTHORIZED) from e
    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationError(MSG_UNAUTHORIZED)
    return AuthUser(id=str(user_id), role=str(claims.get("role") or JWT_AUDIENCE), claims=claims)


def bearer_token(authorization: str | None) -> str:
    value = (authorization or "").strip()
    if value.lower().startswith("bearer "):
        return value[7:].strip()
    return ""


def get_current_user(authorization: str | None = Header(None)) -> AuthUser:
    """FastAPI dependency: the caller's verified identity from the Authorization header."""
    return decode_access_token(bearer_token(authorization))


def create_access_token(user_id: str, *, role: str = JWT_AUDIENCE, secret: str | None = None, expires_in: int = 3600) -> str:
    """Mint a token in the Supabase shape. Used by scripts and tests."""
    secret = secret if secret is not None else settings.supabase_jwt_secret
    now = int(time.time())
    payload = {"sub": user_id, "role": role, "aud": JWT_AUDIENCE, "iat": now, "exp": now + expires_in}
    token = jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    return token
