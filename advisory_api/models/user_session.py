# advisory_api/models/user_session.py
import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Text, func

from advisory_api.core.base import Base


class UserSession(Base):
    __tablename__ = "user_sessions"

    # Also the public half of the refresh token: "<id>.<secret>"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(String(36), nullable=False, index=True)
    device_id = Column(String(128), nullable=True, index=True)

    # Hash of the random secret half of the token (never the raw secret)
    token_hash = Column(String(255), nullable=False)

    ip = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)

    # Revocation flag; rows are kept for audit instead of being deleted
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")

    expires_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
