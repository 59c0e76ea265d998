from __future__ import annotations
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from rentspace import crud, models
from rentspace.core import security
from rentspace.core.config import settings
from rentspace.core.exceptions import InvalidCredentialsError, InvalidOrExpiredTokenError, ServerError
from rentspace.services.sessions import SessionManager
from rentspace.utils import Notifier

logger = logging.getLogger(__name__)


def _set_new_password(user: models.User, new_password: str):
    user.password = security.get_password_hash(new_password)
    # One second back so tokens minted right after the change stay valid.
    user.password_changed_at = security.utcnow() - timedelta(seconds=1)


def request_reset(db: Session, email: str, notifier: Notifier):
    user = crud.get_user_by_email(db, email)
    if user is None:
        logger.info("Password reset requested for unknown email")
        return

    token = security.generate_reset_token()
    user.password_reset_token_hash = security.hash_token(token)
    user.password_reset_expires_at = security.utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
    db.commit()

    try:
        notifier.send(
            user.email,
            "password_reset",
            {
                "full_name": user.full_name,
                "reset_url": f"{settings.FRONTEND_URL}/reset-password/{token}",
                "expires_in": f"{settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes",
            },
        )
    except Exception:
        logger.exception("Failed to send password reset email for user %s", user.id)
        crud.clear_reset_token(db, user)
        db.commit()
        raise ServerError("Email could not be sent")


def complete_reset(db: Session, token: str, new_password: str, sessions: SessionManager) -> models.User:
    user = crud.get_user_by_reset_token(db, security.hash_token(token.strip()), security.utcnow())
    if user is None:
        raise InvalidOrExpiredTokenError()

    _set_new_password(user, new_password)
    crud.clear_reset_token(db, user)
    sessions.revoke_all(db, user.id)
    db.commit()
    logger.info("Password reset completed for user %s", user.id)
    return user


def change_password(db: Session, user: models.User, current_password: str, new_password: str):
    if not security.verify_password(current_password, user.password):
        raise InvalidCredentialsError("Current password is incorrect")
    _set_new_password(user, new_password)
    db.commit()
    logger.info("Password changed for user %s", user.id)
