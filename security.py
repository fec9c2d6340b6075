"""
Authentication and access control.

Access tokens and refresh tokens are PyJWT HS256 tokens signed with two
different secrets and carried in HTTP-only cookies. Request handlers receive
an immutable AuthContext through FastAPI dependencies instead of reading
identity off the request.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

import bcrypt
import jwt
from fastapi import Depends, Request, Response

from errors import Forbidden, Unauthorized
from schemas import Role
from settings import settings

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "auth_token"
REFRESH_COOKIE = "refresh_token"
AUTH_COOKIES = (ACCESS_COOKIE, REFRESH_COOKIE)
ACCESS_COOKIE_MAX_AGE = 15 * 60
REFRESH_COOKIE_MAX_AGE = 7 * 24 * 60 * 60
ALGORITHM = "HS256"


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    role: Optional[Role] = None


# Passwords

def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Tokens

def _expiry(seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


def create_access_token(user_id: str, role: str) -> str:
    payload = {"userId": user_id, "userRole": role, "exp": _expiry(settings.access_token_ttl_seconds)}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=ALGORITHM)


def create_refresh_token(user_id: str) -> str:
    payload = {"userId": user_id, "exp": _expiry(settings.refresh_token_ttl_seconds)}
    return jwt.encode(payload, settings.refresh_secret_key, algorithm=ALGORITHM)


def create_tokens(user_id: str, role: str) -> Tuple[str, str]:
    return create_access_token(user_id, role), create_refresh_token(user_id)


def decode_access_token(token: str) -> AuthContext:
    """Verify signature and expiry. Raises jwt.PyJWTError or ValueError."""
    payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])
    user_id = payload.get("userId")
    if not user_id:
        raise ValueError("token has no userId")
    role = payload.get("userRole")
    return AuthContext(user_id=str(user_id), role=Role(role) if role else None)


def decode_refresh_token(token: str) -> str:
    payload = jwt.decode(token, settings.refresh_secret_key, algorithms=[ALGORITHM])
    user_id = payload.get("userId")
    if not user_id:
        raise ValueError("token has no userId")
    return str(user_id)


# Cookies

def _cookie_options() -> dict:
    return {"httponly": True, "secure": settings.is_production, "samesite": "strict", "path": "/"}


def set_access_cookie(response: Response, token: str) -> None:
    response.set_cookie(ACCESS_COOKIE, token, max_age=ACCESS_COOKIE_MAX_AGE, **_cookie_options())


def set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    set_access_cookie(response, access_token)
    response.set_cookie(REFRESH_COOKIE, refresh_token, max_age=REFRESH_COOKIE_MAX_AGE, **_cookie_options())


def clear_cookies(response: Response, names=AUTH_COOKIES) -> None:
    for name in names:
        response.delete_cookie(name, **_cookie_options())


# Dependencies

def get_auth_context(request: Request) -> AuthContext:
    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise Unauthorized(clear_cookies=(ACCESS_COOKIE,))
    try:
        return decode_access_token(token)
    except (jwt.PyJWTError, ValueError) as exc:
        logger.info("Rejected access token on %s %s: %s", request.method, request.url.path, exc)
        raise Unauthorized(clear_cookies=(ACCESS_COOKIE,))


def require_role(*allowed: Role) -> Callable[..., AuthContext]:
    """Dependency factory for the flat role allow-list.

    Roles are not hierarchical: an admin only passes a gate that lists admin.
    """
    allowed_values = {Role(r) for r in allowed}

    def dependency(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if auth.role is None:
            raise Unauthorized()
        if auth.role not in allowed_values:
            raise Forbidden()
        return auth

    return dependency
