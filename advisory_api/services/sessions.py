from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from advisory_api.core.clock import is_past, utcnow
from advisory_api.core.errors import UnauthorizedError, ValidationError
from advisory_api.core.security import SecretHasher
from advisory_api.models.user_session import UserSession

logger = logging.getLogger(__name__)

# 64 random bytes -> 128 hex chars
REFRESH_SECRET_BYTES = 64
DEFAULT_TTL_DAYS = 30


@dataclass(frozen=True)
class IssuedSession:
    refresh_token: str
    expires_at: datetime
    session_id: str


def split_refresh_token(token: str | None) -> tuple[str, str]:
    """
    Parse "<session_id>.<secret>" into its two halves.

    Raises ValidationError unless there are exactly two non-empty parts.
    """
    parts = (token or "").strip().split(".")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValidationError("Malformed token")
    return parts[0], parts[1]


class SessionService:
    """Refresh-token sessions, one row per login. Revocation is always soft."""

    def __init__(self, db: Session, hasher: SecretHasher, *, default_ttl_days: int = DEFAULT_TTL_DAYS) -> None:
        self.db = db
        self.hasher = hasher
        self.default_ttl_days = default_ttl_days

    def create_session(
        self,
        user_id: str,
        device_info: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
        ttl_days: int | None = None,
    ) -> IssuedSession:
        secret = secrets.token_hex(REFRESH_SECRET_BYTES)
        expires_at = utcnow() + timedelta(days=ttl_days if ttl_days is not None else self.default_ttl_days)

        row = UserSession(
            user_id=str(user_id),
            device_id=device_info,
            token_hash=self.hasher.hash(secret),
            ip=ip,
            user_agent=user_agent,
            is_active=True,
            expires_at=expires_at,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)

        logger.info("Session created: id=%s user_id=%s device_id=%s", row.id, row.user_id, device_info)
        return IssuedSession(refresh_token=f"{row.id}.{secret}", expires_at=expires_at, session_id=row.id)

    def _expire(self, row: UserSession) -> None:
        row.is_active = False
        self.db.commit()
        logger.info("Session expired lazily: id=%s", row.id)

    def validate_refresh_token(self, token: str) -> Optional[UserSession]:
        """
        Return the session only when it is active, unexpired and the secret matches.

        Misses are reported as None; only a malformed token raises.
        """
        session_id, secret = split_refresh_token(token)

        row = self.db.get(UserSession, session_id)
        if row is None or not row.is_active:
            return None

        if is_past(row.expires_at):
            self._expire(row)
            return None

        if not self.hasher.verify(secret, row.token_hash):
            return None
        return row

    def is_session_active(self, session_id: str | None) -> bool:
        if not session_id:
            return False
        row = self.db.get(UserSession, str(session_id))
        if row is None or not row.is_active:
            return False
        if is_past(row.expires_at):
            self._expire(row)
            return False
        return True

    def revoke_by_id(self, session_id: str) -> bool:
        row = self.db.get(UserSession, str(session_id))
        if row is None:
            return False
        if row.is_active:
            row.is_active = False
            self.db.commit()
            logger.info("Session revoked: id=%s", row.id)
        return True

    def revoke_by_refresh_token(self, token: str) -> bool:
        """Revoke the session a refresh token belongs to, if the secret matches."""
        row = self.validate_refresh_token(token)
        if row is None:
            return False
        return self.revoke_by_id(row.id)

    def revoke_all_by_user_id(self, user_id: str) -> int:
        count = (
            self.db.query(UserSession)
            .filter(UserSession.user_id == str(user_id), UserSession.is_active.is_(True))
            .update({"is_active": False}, synchronize_session=False)
        )
        self.db.commit()
        logger.info("Revoked %s session(s) for user_id=%s", count, user_id)
        return count

    def rotate(
        self,
        session_id: str,
        user_id: str,
        device_info: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> IssuedSession:
        # Conditional deactivation: a concurrent rotate of the same session loses.
        updated = (
            self.db.query(UserSession)
            .filter(
                UserSession.id == str(session_id),
                UserSession.user_id == str(user_id),
                UserSession.is_active.is_(True),
            )
            .update({"is_active": False}, synchronize_session=False)
        )
        self.db.commit()
        if not updated:
            raise UnauthorizedError("Invalid refresh token")
        return self.create_session(user_id, device_info=device_info, ip=ip, user_agent=user_agent)
