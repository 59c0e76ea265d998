"""Two-factor authentication built on TOTP with single-use backup codes."""
from __future__ import annotations
import base64
import logging
from io import BytesIO
from typing import List, Optional, Tuple

import pyotp
import qrcode
from sqlalchemy.orm import Session

from rentspace import crud, models
from rentspace.core import security
from rentspace.core.exceptions import (
    AlreadyEnabledError,
    InvalidCodeError,
    InvalidCredentialsError,
    TwoFactorNotEnabledError,
    TwoFactorNotSetUpError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def qr_code_data_url(uri: str) -> str:
    image = qrcode.make(uri)
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


class TwoFactorManager:
    def __init__(self, issuer: str = "Rent Space", valid_window: int = 2, backup_code_count: int = 10,
                 allow_password_only_disable: bool = True):
        self.issuer = issuer
        self.valid_window = valid_window
        self.backup_code_count = backup_code_count
        self.allow_password_only_disable = allow_password_only_disable

    def _require_password(self, user: models.User, password: str):
        if not security.verify_password(password, user.password):
            raise InvalidCredentialsError("Password is incorrect")

    def verify_totp(self, secret: Optional[str], code: str, for_time=None) -> bool:
        if not secret:
            return False
        code = (code or "").strip().replace(" ", "")
        if not code.isdigit():
            return False
        return bool(pyotp.TOTP(secret).verify(code, for_time=for_time, valid_window=self.valid_window))

    def consume_backup_code(self, db: Session, user: models.User, code: str) -> bool:
        code_hash = security.hash_token((code or "").strip().upper())
        if not crud.consume_backup_code(db, user.id, code_hash, security.utcnow()):
            return False
        db.commit()
        logger.info("User %s consumed a backup code", user.id)
        return True

    def verify_second_factor(self, db: Session, user: models.User, code: str) -> bool:
        if self.verify_totp(user.two_factor_secret, code):
            return True
        return self.consume_backup_code(db, user, code)

    def _new_backup_codes(self, db: Session, user: models.User) -> List[str]:
        codes = [security.generate_backup_code() for _ in range(self.backup_code_count)]
        crud.replace_backup_codes(db, user.id, [security.hash_token(code) for code in codes])
        return codes

    def setup(self, db: Session, user: models.User) -> Tuple[str, str]:
        if user.two_factor_enabled:
            raise AlreadyEnabledError()
        secret = pyotp.random_base32()
        user.two_factor_secret = secret
        user.two_factor_enabled = False
        db.commit()
        uri = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=self.issuer)
        return secret, uri

    def confirm_enable(self, db: Session, user: models.User, code: str) -> List[str]:
        if user.two_factor_enabled:
            raise AlreadyEnabledError()
        if not user.two_factor_secret:
            raise TwoFactorNotSetUpError()
        if not self.verify_totp(user.two_factor_secret, code):
            raise InvalidCodeError("Invalid verification code")

        user.two_factor_enabled = True
        user.two_factor_enabled_at = security.utcnow()
        codes = self._new_backup_codes(db, user)
        db.commit()
        logger.info("User %s enabled two-factor authentication", user.id)
        return codes

    def disable(self, db: Session, user: models.User, password: str, code: Optional[str] = None):
        if not user.two_factor_enabled:
            raise TwoFactorNotEnabledError()
        self._require_password(user, password)
        if code:
            if not self.verify_second_factor(db, user, code):
                raise InvalidCodeError("Invalid verification code")
        elif not self.allow_password_only_disable:
            raise ValidationError("Verification code is required", errors={"token": ["required"]})

        user.two_factor_enabled = False
        user.two_factor_secret = None
        user.two_factor_enabled_at = None
        crud.replace_backup_codes(db, user.id, [])
        db.commit()
        logger.info("User %s disabled two-factor authentication", user.id)

    def regenerate_backup_codes(self, db: Session, user: models.User, password: str) -> List[str]:
        if not user.two_factor_enabled:
            raise TwoFactorNotEnabledError()
        self._require_password(user, password)
        codes = self._new_backup_codes(db, user)
        db.commit()
        return codes

    def status(self, db: Session, user: models.User) -> dict:
        return {
            "enabled": bool(user.two_factor_enabled),
            "backupCodesRemaining": crud.count_unused_backup_codes(db, user.id) if user.two_factor_enabled else 0,
        }
