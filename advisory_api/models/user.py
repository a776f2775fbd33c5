# advisory_api/models/user.py
import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, String, UniqueConstraint, func

from advisory_api.core.base import Base


class AuthProvider(str, enum.Enum):
    phone = "phone"
    email = "email"
    google = "google"
    apple = "apple"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("provider", "provider_id", name="uq_users_provider_provider_id"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Either may be missing, but each is globally unique when set.
    email = Column(String(255), unique=True, index=True, nullable=True)
    phone = Column(String(32), unique=True, index=True, nullable=True)
    password_hash = Column(String(255), nullable=True)

    # Plain string column holding an AuthProvider value (portable across sqlite/postgres).
    provider = Column(String(20), nullable=False)
    provider_id = Column(String(255), nullable=True, index=True)

    name = Column(String(200), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    is_advisor = Column(Boolean, nullable=False, default=False, server_default="false")

    is_email_verified = Column(Boolean, nullable=False, default=False, server_default="false")
    is_phone_verified = Column(Boolean, nullable=False, default=False, server_default="false")
    # Soft delete only; rows are never removed.
    is_deleted = Column(Boolean, nullable=False, default=False, server_default="false")

    profile_completed = Column(Boolean, nullable=False, default=False, server_default="false")
    terms_accepted_at = Column(DateTime(timezone=True), nullable=True)

    last_login_at = Column(DateTime(timezone=True), nullable=True)
    # Watermark: reset tokens issued before this moment are dead.
    last_password_reset_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
