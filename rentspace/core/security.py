from __future__ import annotations
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from jose import jwt, JWTError
from pwdlib import PasswordHash

from .exceptions import InvalidTokenError

password_hash = PasswordHash.recommended()


def utcnow() -> datetime:
    # Naive UTC, matching what the DateTime columns hand back.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_timestamp(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def verify_password(plain_password, password):
    return password_hash.verify(plain_password, password)


def get_password_hash(password):
    return password_hash.hash(password)


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return password_hash.hash(secrets.token_urlsafe(16))


def burn_password_check(plain_password: str) -> None:
    """Spend the same work as a real verification when no user matched."""
    password_hash.verify(plain_password, _dummy_hash())


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def tokens_match(token: str, expected_hash: str | None) -> bool:
    if not expected_hash:
        return False
    return hmac.compare_digest(hash_token(token), expected_hash)


def generate_otp(length: int = 6) -> str:
    return str(secrets.randbelow(10 ** length)).zfill(length)


def generate_reset_token() -> str:
    return secrets.token_hex(20)


def generate_backup_code() -> str:
    return secrets.token_hex(4).upper()


def create_token(data: dict, secret_key: str, algorithm: str, expires_delta: timedelta):
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    to_encode.update({"iat": int(now.timestamp()), "exp": now + expires_delta})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def decode_token(token: str, secret_key: str, algorithm: str, expected_type: str) -> dict:
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError:
        raise InvalidTokenError()
    if payload.get("typ") != expected_type or payload.get("sub") is None:
        raise InvalidTokenError()
    return payload
