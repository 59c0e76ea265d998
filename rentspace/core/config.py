# rentspace/core/config.py
import os
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
DOTENV = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), ".env")


class Settings(BaseSettings):
    SECRET_KEY: str
    REFRESH_SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 7 * 24 * 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    REFRESH_TOKEN_ROTATION: bool = True
    TWO_FACTOR_CHALLENGE_EXPIRE_MINUTES: int = 5
    DATABASE_URL: str = "sqlite:///./rentspace.db"
    ENVIRONMENT: str = "development"

    OTP_LENGTH: int = 6
    OTP_EXPIRE_MINUTES: int = 10
    PHONE_OTP_MAX_ATTEMPTS: int = 5
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 30
    PASSWORD_RESET_EXPIRE_MINUTES: int = 10

    TWO_FACTOR_ISSUER: str = "Rent Space"
    TWO_FACTOR_VALID_WINDOW: int = 2
    TWO_FACTOR_BACKUP_CODES: int = 10
    TWO_FACTOR_ALLOW_PASSWORD_ONLY_DISABLE: bool = True

    FRONTEND_URL: str = "http://localhost:3000"
    ALLOWED_HOSTS: List[str] = ["localhost", "127.0.0.1", "testserver"]
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    NOTIFY_TIMEOUT_SECONDS: float = 10.0
    SMTP_SERVER: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""

    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""

    model_config = SettingsConfigDict(
        env_file=DOTENV,
        env_ignore_empty=True,
        extra="ignore"
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


settings = Settings()
