# rentspace/crud.py
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from . import models, schemas
from .core.security import get_password_hash


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_user_by_email(db: Session, email: str):
    return db.query(models.User).filter(models.User.email == email.strip().lower()).first()


def get_user_by_phone(db: Session, phone: str):
    return db.query(models.User).filter(models.User.phone == phone.strip()).first()


def get_user_by_identifier(db: Session, identifier: str):
    if "@" in identifier:
        return get_user_by_email(db, identifier)
    return get_user_by_phone(db, identifier)


def create_user(db: Session, user: schemas.UserCreate) -> models.User:
    db_user = models.User(
        full_name=user.full_name,
        email=user.email,
        phone=user.phone,
        password=get_password_hash(user.password),
        role=user.role,
        status=models.STATUS_PENDING,
    )
    db.add(db_user)
    db.flush()
    return db_user


def set_channel_code(db: Session, user: models.User, channel: str, code_hash: str, expires_at: datetime):
    if channel == models.CHANNEL_EMAIL:
        user.email_otp_hash = code_hash
        user.email_otp_expires_at = expires_at
    else:
        user.phone_otp_hash = code_hash
        user.phone_otp_expires_at = expires_at
        user.phone_otp_attempts = 0


def reserve_phone_attempt(db: Session, user_id: int, max_attempts: int) -> bool:
    """Consume one phone OTP attempt; False once the budget is spent."""
    result = db.execute(
        update(models.User)
        .where(models.User.id == user_id, models.User.phone_otp_attempts < max_attempts)
        .values(phone_otp_attempts=models.User.phone_otp_attempts + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def mark_channel_verified(db: Session, user: models.User, channel: str, now: datetime):
    if channel == models.CHANNEL_EMAIL:
        user.email_verified = True
        user.email_verified_at = now
        user.email_otp_hash = None
        user.email_otp_expires_at = None
        if user.status == models.STATUS_PENDING:
            user.status = models.STATUS_ACTIVE
    else:
        user.phone_verified = True
        user.phone_verified_at = now
        user.phone_otp_hash = None
        user.phone_otp_expires_at = None
        user.phone_otp_attempts = 0


def register_failed_login(
        db: Session, user_id: int, max_attempts: int, lock_until: datetime, now: datetime
) -> Tuple[int, Optional[datetime]]:
    # An expired lock restarts the count.
    db.execute(
        update(models.User)
        .where(models.User.id == user_id, models.User.lock_until.is_not(None), models.User.lock_until <= now)
        .values(login_attempts=0, lock_until=None)
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(models.User)
        .where(models.User.id == user_id)
        .values(login_attempts=models.User.login_attempts + 1)
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(models.User)
        .where(
            models.User.id == user_id,
            models.User.login_attempts >= max_attempts,
            or_(models.User.lock_until.is_(None), models.User.lock_until <= now),
        )
        .values(lock_until=lock_until)
        .execution_options(synchronize_session=False)
    )
    attempts, locked_until = db.execute(
        select(models.User.login_attempts, models.User.lock_until).where(models.User.id == user_id)
    ).one()
    db.commit()
    return attempts, locked_until


def register_successful_login(db: Session, user_id: int, now: datetime) -> bool:
    """Reset the counters unless a lock landed meanwhile; False when locked."""
    result = db.execute(
        update(models.User)
        .where(
            models.User.id == user_id,
            or_(models.User.lock_until.is_(None), models.User.lock_until <= now),
        )
        .values(login_attempts=0, lock_until=None, last_login=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def add_session(db: Session, user_id: int, token_hash: str, family_id: str,
                expires_at: datetime, device_info: Optional[str] = None) -> models.RefreshSession:
    row = models.RefreshSession(
        user_id=user_id,
        token_hash=token_hash,
        family_id=family_id,
        expires_at=expires_at,
        device_info=(device_info or "Unknown Device")[:255],
    )
    db.add(row)
    db.flush()
    return row


def get_session_by_hash(db: Session, token_hash: str) -> Optional[models.RefreshSession]:
    return db.query(models.RefreshSession).filter(models.RefreshSession.token_hash == token_hash).first()


def mark_session_rotated(db: Session, session_id: int, now: datetime) -> bool:
    result = db.execute(
        update(models.RefreshSession)
        .where(models.RefreshSession.id == session_id, models.RefreshSession.rotated_at.is_(None))
        .values(rotated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def delete_session_family(db: Session, user_id: int, family_id: str) -> int:
    result = db.execute(
        delete(models.RefreshSession)
        .where(models.RefreshSession.user_id == user_id, models.RefreshSession.family_id == family_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def delete_user_sessions(db: Session, user_id: int) -> int:
    result = db.execute(
        delete(models.RefreshSession)
        .where(models.RefreshSession.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def get_active_sessions(db: Session, user_id: int, now: datetime) -> List[models.RefreshSession]:
    return (
        db.query(models.RefreshSession)
        .filter(
            models.RefreshSession.user_id == user_id,
            models.RefreshSession.rotated_at.is_(None),
            models.RefreshSession.expires_at > now,
        )
        .order_by(models.RefreshSession.issued_at)
        .all()
    )


def get_user_by_reset_token(db: Session, token_hash: str, now: datetime):
    return (
        db.query(models.User)
        .filter(
            models.User.password_reset_token_hash == token_hash,
            models.User.password_reset_expires_at > now,
        )
        .first()
    )


def clear_reset_token(db: Session, user: models.User):
    user.password_reset_token_hash = None
    user.password_reset_expires_at = None


def replace_backup_codes(db: Session, user_id: int, code_hashes: List[str]):
    db.execute(
        delete(models.BackupCode)
        .where(models.BackupCode.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    db.add_all(models.BackupCode(user_id=user_id, code_hash=code_hash) for code_hash in code_hashes)


def consume_backup_code(db: Session, user_id: int, code_hash: str, now: datetime) -> bool:
    result = db.execute(
        update(models.BackupCode)
        .where(
            models.BackupCode.user_id == user_id,
            models.BackupCode.code_hash == code_hash,
            models.BackupCode.used.is_(False),
        )
        .values(used=True, used_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def count_unused_backup_codes(db: Session, user_id: int) -> int:
    return db.execute(
        select(func.count(models.BackupCode.id))
        .where(models.BackupCode.user_id == user_id, models.BackupCode.used.is_(False))
    ).scalar_one()


def delete_user(db: Session, user: models.User):
    db.delete(user)
    db.commit()
