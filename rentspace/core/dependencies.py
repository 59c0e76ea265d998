from datetime import timedelta
from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .config import settings
from .exceptions import AuthenticationError
from rentspace import crud, models
from rentspace.database import get_db
from rentspace.services.login import LockoutPolicy
from rentspace.services.sessions import SessionManager, ensure_in_good_standing, token_predates_password_change
from rentspace.services.two_factor import TwoFactorManager


@lru_cache
def get_session_manager() -> SessionManager:
    return SessionManager(
        secret_key=settings.SECRET_KEY,
        refresh_secret_key=settings.REFRESH_SECRET_KEY,
        algorithm=settings.ALGORITHM,
        access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        challenge_ttl=timedelta(minutes=settings.TWO_FACTOR_CHALLENGE_EXPIRE_MINUTES),
        rotate_refresh_tokens=settings.REFRESH_TOKEN_ROTATION,
    )


@lru_cache
def get_two_factor_manager() -> TwoFactorManager:
    return TwoFactorManager(
        issuer=settings.TWO_FACTOR_ISSUER,
        valid_window=settings.TWO_FACTOR_VALID_WINDOW,
        backup_code_count=settings.TWO_FACTOR_BACKUP_CODES,
        allow_password_only_disable=settings.TWO_FACTOR_ALLOW_PASSWORD_ONLY_DISABLE,
    )


def get_lockout_policy() -> LockoutPolicy:
    return LockoutPolicy(
        max_attempts=settings.MAX_LOGIN_ATTEMPTS,
        cooldown=timedelta(minutes=settings.LOCKOUT_MINUTES),
    )


async def get_token_from_cookie_or_header(request: Request):
    token = request.cookies.get("accessToken")
    if token:
        return token

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[len("Bearer "):]

    raise AuthenticationError("Not authorized to access this route")


def get_current_user(
        token: str = Depends(get_token_from_cookie_or_header),
        db: Session = Depends(get_db),
        sessions: SessionManager = Depends(get_session_manager),
) -> models.User:
    payload = sessions.decode_access(token)
    user = crud.get_user(db, int(payload["sub"]))
    if user is None:
        raise AuthenticationError("Not authorized to access this route")
    if token_predates_password_change(payload, user):
        raise AuthenticationError("User recently changed password. Please log in again.")
    ensure_in_good_standing(user)
    return user
