from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from advisory_api.schemas.auth import LoginType, clean_email, clean_phone


class OtpVerifyIn(BaseModel):
    """Low-level verification; the medium (email or phone) must be named."""

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

    @model_validator(mode="after")
    def _email_or_phone(self) -> "OtpVerifyIn":
        if not self.email and not self.phone:
            raise ValueError("Either email or phone must be provided")
        return self


class ResendOtpIn(BaseModel):
    type: LoginType
    purpose: Literal["login", "reset"]
    phone: str | None = None
    email: EmailStr | None = None

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
    def _identifier_for_type(self) -> "ResendOtpIn":
        if self.type == LoginType.PHONE and not self.phone:
            raise ValueError("Phone is required")
        if self.type == LoginType.EMAIL and not self.email:
            raise ValueError("Email is required for email login")
        return self


class OtpVerifiedOut(BaseModel):
    user_id: str
    purpose: str


class OtpResentOut(BaseModel):
    otp_id: str
    user_id: str
    message: str
