# advisory_api/dependencies/auth.py
from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from advisory_api.core.config import settings
from advisory_api.core.database import get_db
from advisory_api.core.errors import UnauthorizedError
from advisory_api.core.security import ACCESS_PURPOSE, build_hasher, get_token_signer
from advisory_api.models.user import User
from advisory_api.services.sessions import SessionService
from advisory_api.services.users import UserStore

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class AccessGate:
    """
    Request-authentication gate for bearer access tokens.

    Whether revoked sessions are honoured is decided once, at construction. With
    session validation disabled, an access token keeps working after logout until
    it expires.
    """

    def __init__(self, *, session_validation_enabled: bool) -> None:
        self.session_validation_enabled = bool(session_validation_enabled)
        if self.session_validation_enabled:
            logger.info("Access gate: session validation enabled (jti checked on every request)")
        else:
            logger.warning(
                "Access gate: session validation DISABLED; access tokens stay valid after logout until expiry"
            )

    def authenticate(self, creds: HTTPAuthorizationCredentials | None, db: Session) -> User:
        """
        Validates:
          - Authorization: Bearer <token>
          - token signature + exp + purpose
          - referenced session still active (when enabled)
          - user exists + not deleted
        Returns:
          - User SQLAlchemy model
        """
        if not creds or creds.scheme.lower() != "bearer" or not creds.credentials:
            raise _unauthorized("Missing Authorization header")

        try:
            payload = get_token_signer().decode(creds.credentials, ACCESS_PURPOSE)
        except UnauthorizedError:
            raise _unauthorized("Invalid or expired token")

        session_id = payload.get("jti")
        if self.session_validation_enabled and session_id:
            sessions = SessionService(db, build_hasher(settings.SESSION_HASH_SCHEME))
            if not sessions.is_session_active(session_id):
                raise _unauthorized("Session has been revoked")

        user = UserStore(db).get_by_id(payload.get("sub"))
        if user is None:
            raise _unauthorized("User not found")
        if user.is_deleted:
            raise _unauthorized("User not found")
        return user


access_gate = AccessGate(session_validation_enabled=settings.SESSION_VALIDATION_ENABLED)


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    return access_gate.authenticate(creds, db)
