from __future__ import annotations
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

PHONE_PATTERN = r"^\+?[0-9]{8,15}$"

Role = Literal["owner", "borrower", "both"]
Channel = Literal["email", "phone"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserCreate(CamelModel):
    full_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(pattern=PHONE_PATTERN)
    password: str = Field(min_length=8)
    role: Role

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Full name is required")
        return value

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("phone", mode="before")
    @classmethod
    def strip_phone(cls, value):
        return value.strip() if isinstance(value, str) else value


class LoginRequest(CamelModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    password: str = Field(min_length=1)

    @model_validator(mode="after")
    def identifier_required(self):
        if not self.email and not self.phone:
            raise ValueError("Email or phone is required")
        return self

    @property
    def identifier(self) -> str:
        return (self.email or self.phone).strip()


class TwoFactorLogin(CamelModel):
    challenge_token: str
    code: str = Field(min_length=1)


class VerifyOTP(CamelModel):
    user_id: int
    otp: str = Field(min_length=1)
    type: Channel


class ResendOTP(CamelModel):
    user_id: int
    type: Channel


class RefreshRequest(CamelModel):
    refresh_token: Optional[str] = None


class ForgotPassword(CamelModel):
    email: EmailStr


class ResetPassword(CamelModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=8)


class ChangePassword(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8)


class PasswordConfirm(CamelModel):
    password: str = Field(min_length=1)


class SelectRole(CamelModel):
    role: Role


class TwoFactorVerify(CamelModel):
    token: str = Field(min_length=1)


class TwoFactorDisable(CamelModel):
    password: str = Field(min_length=1)
    token: Optional[str] = None


class User(CamelModel):
    id: int
    full_name: str
    email: str
    phone: str
    role: str
    status: str
    email_verified: bool
    phone_verified: bool
    is_fully_verified: bool
    two_factor_enabled: bool
    last_login: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def serialize_user(user) -> dict:
    return User.model_validate(user).model_dump(mode="json", by_alias=True)
