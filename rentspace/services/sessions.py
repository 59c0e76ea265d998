"""Access/refresh token issuance, refresh, and revocation."""
from __future__ import annotations
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from rentspace import crud, models
from rentspace.core import security
from rentspace.core.exceptions import (
    AccountBannedError,
    AccountSuspendedError,
    AuthenticationError,
    InvalidTokenError,
)

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"
TWO_FACTOR_CHALLENGE = "2fa"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


def ensure_in_good_standing(user: models.User):
    if user.status == models.STATUS_SUSPENDED:
        raise AccountSuspendedError()
    if user.status == models.STATUS_BANNED:
        raise AccountBannedError()


class SessionManager:
    """
    Mints signed access tokens and server-side tracked refresh tokens.

    Refresh tokens are stored as SHA-256 digests in ``refresh_sessions``;
    a token that is structurally valid but no longer has a row is refused.
    Each login starts a family, and with rotation on every refresh replaces
    the presented token with a new one in the same family. Presenting a
    token that was already rotated revokes the whole family.
    """

    def __init__(self, secret_key: str, refresh_secret_key: str, algorithm: str = "HS256",
                 access_ttl: timedelta = timedelta(days=7), refresh_ttl: timedelta = timedelta(days=30),
                 challenge_ttl: timedelta = timedelta(minutes=5), rotate_refresh_tokens: bool = True):
        self.secret_key = secret_key
        self.refresh_secret_key = refresh_secret_key
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.challenge_ttl = challenge_ttl
        self.rotate_refresh_tokens = rotate_refresh_tokens

    @property
    def access_expires_in(self) -> int:
        return int(self.access_ttl.total_seconds())

    def create_access_token(self, user: models.User) -> str:
        return security.create_token(
            {"sub": str(user.id), "role": user.role, "typ": ACCESS},
            self.secret_key, self.algorithm, self.access_ttl,
        )

    def _create_refresh_token(self, db: Session, user_id: int, family_id: str,
                              device_info: Optional[str]) -> str:
        token = security.create_token(
            {"sub": str(user_id), "fam": family_id, "jti": secrets.token_hex(16), "typ": REFRESH},
            self.refresh_secret_key, self.algorithm, self.refresh_ttl,
        )
        crud.add_session(
            db,
            user_id=user_id,
            token_hash=security.hash_token(token),
            family_id=family_id,
            expires_at=security.utcnow() + self.refresh_ttl,
            device_info=device_info,
        )
        return token

    def issue(self, db: Session, user: models.User, device_info: Optional[str] = None) -> TokenPair:
        refresh_token = self._create_refresh_token(db, user.id, secrets.token_hex(16), device_info)
        db.commit()
        logger.info("Issued session for user %s", user.id)
        return TokenPair(self.create_access_token(user), refresh_token, self.access_expires_in)

    def refresh(self, db: Session, refresh_token: Optional[str]) -> TokenPair:
        if not refresh_token:
            raise AuthenticationError("Refresh token is required")
        payload = security.decode_token(refresh_token, self.refresh_secret_key, self.algorithm, REFRESH)
        row = crud.get_session_by_hash(db, security.hash_token(refresh_token))
        if row is None or str(row.user_id) != payload["sub"]:
            raise InvalidTokenError("Invalid refresh token")

        user = crud.get_user(db, row.user_id)
        if user is None:
            raise InvalidTokenError("Invalid refresh token")
        ensure_in_good_standing(user)

        if not self.rotate_refresh_tokens:
            return TokenPair(self.create_access_token(user), refresh_token, self.access_expires_in)

        if row.rotated_at is not None or not crud.mark_session_rotated(db, row.id, security.utcnow()):
            user_id, family_id = row.user_id, row.family_id
            crud.delete_session_family(db, user_id, family_id)
            db.commit()
            logger.warning("Refresh token reuse for user %s, revoked session family", user_id)
            raise InvalidTokenError("Invalid refresh token")

        new_refresh = self._create_refresh_token(db, user.id, row.family_id, row.device_info)
        db.commit()
        return TokenPair(self.create_access_token(user), new_refresh, self.access_expires_in)

    def revoke(self, db: Session, user_id: int, refresh_token: str) -> bool:
        row = crud.get_session_by_hash(db, security.hash_token(refresh_token))
        if row is None or row.user_id != user_id:
            return False
        crud.delete_session_family(db, user_id, row.family_id)
        db.commit()
        logger.info("Revoked session for user %s", user_id)
        return True

    def revoke_token(self, db: Session, refresh_token: Optional[str]) -> bool:
        """Logout by token alone; structurally invalid tokens are ignored."""
        if not refresh_token:
            return False
        try:
            payload = security.decode_token(refresh_token, self.refresh_secret_key, self.algorithm, REFRESH)
        except InvalidTokenError:
            return False
        return self.revoke(db, int(payload["sub"]), refresh_token)

    def revoke_all(self, db: Session, user_id: int) -> int:
        count = crud.delete_user_sessions(db, user_id)
        logger.info("Revoked %d session tokens for user %s", count, user_id)
        return count

    def active_sessions(self, db: Session, user_id: int):
        return crud.get_active_sessions(db, user_id, security.utcnow())

    def decode_access(self, token: str) -> dict:
        return security.decode_token(token, self.secret_key, self.algorithm, ACCESS)

    def create_challenge_token(self, user: models.User) -> str:
        return security.create_token(
            {"sub": str(user.id), "typ": TWO_FACTOR_CHALLENGE},
            self.secret_key, self.algorithm, self.challenge_ttl,
        )

    def decode_challenge(self, token: str) -> dict:
        return security.decode_token(token, self.secret_key, self.algorithm, TWO_FACTOR_CHALLENGE)


def token_predates_password_change(payload: dict, user: models.User) -> bool:
    if user.password_changed_at is None:
        return False
    return int(payload.get("iat", 0)) < security.to_timestamp(user.password_changed_at)
