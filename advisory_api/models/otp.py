from __future__ import annotations

import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func

from advisory_api.core.base import Base


class OtpPurpose(str, enum.Enum):
    login = "login"
    reset = "reset"
    verify = "verify"


class OtpChannel(str, enum.Enum):
    email = "email"
    phone = "phone"


class Otp(Base):
    __tablename__ = "otps"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Reference only: OTPs outlive nothing and own nothing.
    user_id = Column(String(36), nullable=False, index=True)

    purpose = Column(String(16), nullable=False)
    # Medium the code was issued for (email/phone); None for codes created outside a delivery flow.
    channel = Column(String(16), nullable=True)

    # Store ONLY a hash of the code (never the plaintext)
    code_hash = Column(String(255), nullable=False)

    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Monotonic: false -> true, never back.
    used = Column(Boolean, nullable=False, default=False, server_default="false")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
