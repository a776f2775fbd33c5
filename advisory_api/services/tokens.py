from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from advisory_api.core.security import TokenSigner
from advisory_api.models.user import User
from advisory_api.services.sessions import IssuedSession, SessionService
from advisory_api.services.users import UserStore

logger = logging.getLogger(__name__)


class TokenIssuer:
    """
    Convergence point of every successful authentication path.

    Always opens a fresh refresh session (no reuse across logins) and mints an
    access token whose `jti` is that session's id.
    """

    def __init__(self, sessions: SessionService, signer: TokenSigner, users: UserStore) -> None:
        self.sessions = sessions
        self.signer = signer
        self.users = users

    def sign_tokens_for_user(
        self,
        user: User,
        device_info: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        issued = self.sessions.create_session(user.id, device_info=device_info, ip=ip, user_agent=user_agent)

        try:
            self.users.touch_last_login(user)
        except SQLAlchemyError:
            # Never fail a login over bookkeeping.
            self.users.db.rollback()
            logger.warning("Could not update last_login_at for user_id=%s", user.id, exc_info=True)

        return self.build_payload(user, issued)

    def build_payload(self, user: User, issued: IssuedSession) -> dict[str, Any]:
        access_token = self.signer.create_access_token(
            user_id=user.id,
            session_id=issued.session_id,
            email=user.email,
            phone=user.phone,
        )
        return {
            "access_token": access_token,
            "token_type": "bearer",
            "refresh_token": issued.refresh_token,
            "refresh_expires_at": issued.expires_at,
            "user": user,
            "profile_completion_required": not bool(user.profile_completed),
        }
