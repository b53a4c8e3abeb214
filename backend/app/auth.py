"""Authentication helpers and FastAPI security dependencies.

This module decodes JWT access tokens and provides the dependencies
`get_current_user`, `get_optional_user` and `require_admin`. The token
is taken from the `Authorization: Bearer` header first, then from the
`auth-token` cookie and finally from the readable `token` cookie.

Session state is mirrored into several cookies so both server-rendered
pages and client scripts can see it; `set_session_cookies` and
`clear_session_cookies` keep those names in one place.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, Response, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session
from .config import settings
from .database import get_session
from .services import JWT_SECRET, JWT_ALGORITHM
from . import models, repositories

bearer_scheme = HTTPBearer(auto_error=False)

ACCESS_COOKIE = "auth-token"
READABLE_TOKEN_COOKIE = "token"
STATUS_COOKIE = "auth-status"
REFRESH_COOKIE = "refresh-token"
SESSION_COOKIES = (ACCESS_COOKIE, READABLE_TOKEN_COOKIE, STATUS_COOKIE, REFRESH_COOKIE)


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail='invalid token')


def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(ACCESS_COOKIE) or request.cookies.get(READABLE_TOKEN_COOKIE)


def _user_from_token(token: str, db: Session) -> models.User:
    payload = decode_token(token)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid token payload')
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    return user


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The user is loaded through the request's session so services can
    update it. Raises HTTPException(401) for any authentication issue.
    """
    token = extract_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail='authentication required')
    return _user_from_token(token, db)


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> Optional[models.User]:
    """Like `get_current_user` but returns `None` instead of failing."""
    token = extract_token(request, credentials)
    if not token:
        return None
    try:
        return _user_from_token(token, db)
    except HTTPException:
        return None


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail='admin only')
    return user


def set_session_cookies(response: Response, access_token: str, refresh_token: Optional[str] = None) -> None:
    max_age = settings.ACCESS_TOKEN_EXPIRE_HOURS * 3600
    common = {"max_age": max_age, "path": "/", "samesite": "lax", "secure": settings.COOKIE_SECURE}
    response.set_cookie(ACCESS_COOKIE, access_token, httponly=True, **common)
    response.set_cookie(READABLE_TOKEN_COOKIE, access_token, httponly=False, **common)
    response.set_cookie(STATUS_COOKIE, "authenticated", httponly=False, **common)
    if refresh_token:
        response.set_cookie(
            REFRESH_COOKIE, refresh_token, httponly=True, path="/", samesite="lax",
            secure=settings.COOKIE_SECURE, max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 86400,
        )


def clear_session_cookies(response: Response) -> None:
    for name in SESSION_COOKIES:
        response.delete_cookie(name, path="/")
