from __future__ import annotations
import logging
from datetime import timedelta

from fastapi import BackgroundTasks
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rentspace import crud, models, schemas
from rentspace.core import security
from rentspace.core.config import settings
from rentspace.core.exceptions import (
    AlreadyExistsError,
    AlreadyVerifiedError,
    CodeExpiredError,
    InvalidCodeError,
    NotFoundError,
    RateLimitedError,
)
from rentspace.utils import Notifier, send_best_effort

logger = logging.getLogger(__name__)

CHANNEL_TEMPLATES = {
    models.CHANNEL_EMAIL: "email_verification",
    models.CHANNEL_PHONE: "phone_verification",
}


def _expires_in_text() -> str:
    return f"{settings.OTP_EXPIRE_MINUTES} minutes"


def _dispatch_code(background_tasks: BackgroundTasks, notifier: Notifier, user: models.User,
                   channel: str, code: str):
    target = user.email if channel == models.CHANNEL_EMAIL else user.phone
    background_tasks.add_task(
        send_best_effort,
        notifier,
        target,
        CHANNEL_TEMPLATES[channel],
        {"full_name": user.full_name, "otp": code, "expires_in": _expires_in_text()},
    )


def _issue_code(db: Session, user: models.User, channel: str) -> str:
    code = security.generate_otp(settings.OTP_LENGTH)
    expires_at = security.utcnow() + timedelta(minutes=settings.OTP_EXPIRE_MINUTES)
    crud.set_channel_code(db, user, channel, security.hash_token(code), expires_at)
    return code


def register(db: Session, user_in: schemas.UserCreate, background_tasks: BackgroundTasks,
             notifier: Notifier) -> models.User:
    errors = {}
    if crud.get_user_by_email(db, user_in.email):
        errors["email"] = ["Email address is already registered"]
    if crud.get_user_by_phone(db, user_in.phone):
        errors["phone"] = ["Phone number is already registered"]
    if errors:
        raise AlreadyExistsError(errors=errors)

    try:
        user = crud.create_user(db, user_in)
    except IntegrityError:
        db.rollback()
        raise AlreadyExistsError()
    email_code = _issue_code(db, user, models.CHANNEL_EMAIL)
    phone_code = _issue_code(db, user, models.CHANNEL_PHONE)
    while phone_code == email_code:
        phone_code = _issue_code(db, user, models.CHANNEL_PHONE)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s as %s", user.id, user.role)

    _dispatch_code(background_tasks, notifier, user, models.CHANNEL_EMAIL, email_code)
    _dispatch_code(background_tasks, notifier, user, models.CHANNEL_PHONE, phone_code)
    return user


def _get_user_or_404(db: Session, user_id: int) -> models.User:
    user = crud.get_user(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _channel_state(user: models.User, channel: str):
    if channel == models.CHANNEL_EMAIL:
        return user.email_verified, user.email_otp_hash, user.email_otp_expires_at
    return user.phone_verified, user.phone_otp_hash, user.phone_otp_expires_at


def verify_code(db: Session, user_id: int, code: str, channel: str) -> models.User:
    user = _get_user_or_404(db, user_id)
    verified, code_hash, expires_at = _channel_state(user, channel)

    if verified:
        raise AlreadyVerifiedError(f"{channel} is already verified")
    if not code_hash or expires_at is None or expires_at < security.utcnow():
        raise CodeExpiredError()
    if channel == models.CHANNEL_PHONE and not crud.reserve_phone_attempt(
            db, user.id, settings.PHONE_OTP_MAX_ATTEMPTS):
        db.rollback()
        raise RateLimitedError("Too many OTP attempts. Please request a new OTP.")
    if channel == models.CHANNEL_PHONE:
        db.refresh(user, ["phone_otp_attempts"])

    if not security.tokens_match(code.strip(), code_hash):
        db.commit()
        logger.info("Invalid %s code for user %s", channel, user.id)
        raise InvalidCodeError("Invalid OTP")

    crud.mark_channel_verified(db, user, channel, security.utcnow())
    db.commit()
    db.refresh(user)
    logger.info("User %s verified %s", user.id, channel)
    return user


def resend_code(db: Session, user_id: int, channel: str, background_tasks: BackgroundTasks,
                notifier: Notifier):
    user = _get_user_or_404(db, user_id)
    verified, _, _ = _channel_state(user, channel)
    if verified:
        raise AlreadyVerifiedError(f"{channel} is already verified")

    code = _issue_code(db, user, channel)
    db.commit()
    db.refresh(user)
    _dispatch_code(background_tasks, notifier, user, channel, code)
