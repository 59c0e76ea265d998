from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session

from rentspace import crud, models
from rentspace.core import security
from rentspace.core.exceptions import InvalidCredentialsError, LockedError
from rentspace.services.sessions import ensure_in_good_standing
from rentspace.services.two_factor import TwoFactorManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    cooldown: timedelta = timedelta(minutes=30)


def record_failed_attempt(db: Session, user: models.User, policy: LockoutPolicy):
    now = security.utcnow()
    attempts, lock_until = crud.register_failed_login(
        db, user.id, policy.max_attempts, now + policy.cooldown, now
    )
    if lock_until is not None and lock_until > now:
        logger.warning("User %s locked after %d failed attempts", user.id, attempts)
        raise LockedError()
    raise InvalidCredentialsError()


def _finish_login(db: Session, user: models.User):
    # A lock set by a concurrent failure while the hash was checked still wins.
    if not crud.register_successful_login(db, user.id, security.utcnow()):
        raise LockedError()
    db.refresh(user)


def authenticate(db: Session, identifier: str, password: str, policy: LockoutPolicy) -> models.User:
    user = crud.get_user_by_identifier(db, identifier)
    if user is None:
        security.burn_password_check(password)
        raise InvalidCredentialsError()

    if user.is_locked(security.utcnow()):
        raise LockedError()
    ensure_in_good_standing(user)

    if not security.verify_password(password, user.password):
        record_failed_attempt(db, user, policy)

    _finish_login(db, user)
    logger.info("User %s authenticated", user.id)
    return user


def complete_two_factor_login(db: Session, user_id: int, code: str, two_factor: TwoFactorManager,
                              policy: LockoutPolicy) -> models.User:
    """Second login step: a TOTP or backup code for a password-verified user."""
    user = crud.get_user(db, user_id)
    if user is None or not user.two_factor_enabled:
        raise InvalidCredentialsError()
    if user.is_locked(security.utcnow()):
        raise LockedError()
    ensure_in_good_standing(user)

    if not two_factor.verify_second_factor(db, user, code):
        record_failed_attempt(db, user, policy)

    _finish_login(db, user)
    return user
