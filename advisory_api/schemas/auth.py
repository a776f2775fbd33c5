# advisory_api/schemas/auth.py
from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from advisory_api.schemas.user import UserOut

# E.164 or bare digits, after spaces/dashes/parens are stripped
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{7,14}$")
_PHONE_NOISE = re.compile(r"[\s\-()]")


def clean_phone(value: Any) -> Any:
    if isinstance(value, str):
        value = _PHONE_NOISE.sub("", value).strip()
        if not value:
            return None
        if not PHONE_PATTERN.match(value):
            raise ValueError("phone must be in E.164 format or digits only")
    return value


def clean_email(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip().lower()
        return value or None
    return value


class LoginType(str, Enum):
    PHONE = "PHONE"
    EMAIL = "EMAIL"


class SocialProvider(str, Enum):
    google = "google"
    apple = "apple"


class LoginIn(BaseModel):
    type: LoginType
    phone: str | None = None
    email: EmailStr | None = None
    password: str | None = Field(default=None, max_length=128)

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("phone", mode="before")
    @classmethod
    def _phone(cls, v: Any) -> Any:
        return clean_phone(v)

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v: Any) -> Any:
        return clean_email(v)

    @model_validator(mode="after")
    def _required_for_type(self) -> "LoginIn":
        if self.type == LoginType.PHONE and not self.phone:
            raise ValueError("Phone is required")
        if self.type == LoginType.EMAIL:
            if not self.email:
                raise ValueError("Email is required")
            if not self.password or not self.password.strip():
                raise ValueError("Password is required")
        return self


class SocialLoginIn(BaseModel):
    type: SocialProvider
    id_token: str = Field(min_length=1)
    device_id: str | None = Field(default=None, max_length=128)

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class VerifyOtpIn(BaseModel):
    otp_id: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=12)
    email: EmailStr | None = None
    phone: str | None = None

    @field_validator("phone", mode="before")
    @classmethod
    def _phone(cls, v: Any) -> Any:
        return clean_phone(v)

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v: Any) -> Any:
        return clean_email(v)


class CompleteProfileIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = None
    email: EmailStr | None = None
    is_advisor: bool
    terms_accepted: bool

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("phone", mode="before")
    @classmethod
    def _phone(cls, v: Any) -> Any:
        return clean_phone(v)

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v: Any) -> Any:
        return clean_email(v)

    @field_validator("terms_accepted")
    @classmethod
    def _terms(cls, v: bool) -> bool:
        if v is not True:
            raise ValueError("Terms of Service must be accepted")
        return v


class RequestPasswordResetIn(BaseModel):
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v: Any) -> Any:
        return clean_email(v)


class VerifyPasswordResetOtpIn(BaseModel):
    email: EmailStr
    otp_id: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=12)

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v: Any) -> Any:
        return clean_email(v)


class ResetPasswordIn(BaseModel):
    reset_token: str = Field(min_length=1)
    new_password: str = Field(min_length=6, max_length=128)
    confirm_password: str

    @model_validator(mode="after")
    def _passwords_match(self) -> "ResetPasswordIn":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class OtpSentOut(BaseModel):
    otp_id: str
    message: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    refresh_token: str
    refresh_expires_at: datetime
    user: UserOut
    profile_completion_required: bool


class ResetTokenOut(BaseModel):
    reset_token: str
    expires_in: int


class LogoutOut(BaseModel):
    message: str
    revoked_sessions: int


class MessageOut(BaseModel):
    message: str
