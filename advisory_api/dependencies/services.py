"""
Explicit wiring of the auth collaborators for one request.

Every request gets its own store/service instances bound to its DB session;
nothing is cached across requests.
"""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends
from sqlalchemy.orm import Session

from advisory_api.core.config import settings
from advisory_api.core.database import get_db
from advisory_api.core.security import build_hasher, get_token_signer
from advisory_api.services.auth import AuthService
from advisory_api.services.otp import OtpService
from advisory_api.services.otp_delivery import OtpDeliveryQueue
from advisory_api.services.sessions import SessionService
from advisory_api.services.social_identity import GoogleIdentityVerifier, SocialIdentityVerifier
from advisory_api.services.tokens import TokenIssuer
from advisory_api.services.users import UserStore


@dataclass
class AuthContext:
    users: UserStore
    sessions: SessionService
    otps: OtpService
    issuer: TokenIssuer
    auth: AuthService


def social_verifiers() -> dict[str, SocialIdentityVerifier]:
    return {"google": GoogleIdentityVerifier(settings.GOOGLE_CLIENT_ID)}


def build_auth_context(db: Session, *, queue: OtpDeliveryQueue | None = None) -> AuthContext:
    signer = get_token_signer()
    users = UserStore(db)
    sessions = SessionService(
        db,
        build_hasher(settings.SESSION_HASH_SCHEME),
        default_ttl_days=settings.REFRESH_SESSION_TTL_DAYS,
    )
    issuer = TokenIssuer(sessions, signer, users)
    otps = OtpService(
        db,
        build_hasher(settings.OTP_HASH_SCHEME),
        queue or OtpDeliveryQueue(),
        users,
        settings,
        token_issuer=issuer,
    )
    auth = AuthService(db, users, otps, sessions, issuer, signer, social_verifiers(), settings)
    return AuthContext(users=users, sessions=sessions, otps=otps, issuer=issuer, auth=auth)


def get_auth_context(db: Session = Depends(get_db)) -> AuthContext:
    return build_auth_context(db)


def get_auth_service(ctx: AuthContext = Depends(get_auth_context)) -> AuthService:
    return ctx.auth


def get_otp_service(ctx: AuthContext = Depends(get_auth_context)) -> OtpService:
    return ctx.otps
