# advisory_api/services/auth.py
"""
Auth orchestrator.

Entry point for every authentication flow:
- phone OTP login, email/password login (with OTP signup), Google sign-in
- one-time profile completion
- password reset (request -> verify OTP -> reset token -> new password)
- refresh-token rotation and logout

Collaborators are passed in explicitly; see advisory_api.dependencies.services
for how a request's AuthService is assembled.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping

from sqlalchemy.orm import Session

from advisory_api.core.clock import as_aware, utcnow
from advisory_api.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    NotImplementedProviderError,
    UnauthorizedError,
    ValidationError,
)
from advisory_api.core.password_policy import ensure_strong_password
from advisory_api.core.security import PASSWORD_RESET_PURPOSE, TokenSigner, hash_password, verify_password
from advisory_api.models.otp import OtpChannel, OtpPurpose
from advisory_api.models.user import AuthProvider, User
from advisory_api.services.otp import OtpService, generate_code
from advisory_api.services.sessions import SessionService
from advisory_api.services.social_identity import InvalidSocialTokenError, SocialIdentityVerifier
from advisory_api.services.tokens import TokenIssuer
from advisory_api.services.users import UserStore, normalize_email, normalize_phone

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_TOKEN = "Invalid or expired token"
RESET_REQUESTED_MESSAGE = "If an account exists for this email, a password reset code has been sent."


class AuthService:
    def __init__(
        self,
        db: Session,
        users: UserStore,
        otps: OtpService,
        sessions: SessionService,
        issuer: TokenIssuer,
        signer: TokenSigner,
        social_verifiers: Mapping[str, SocialIdentityVerifier],
        config: Any,
    ) -> None:
        self.db = db
        self.users = users
        self.otps = otps
        self.sessions = sessions
        self.issuer = issuer
        self.signer = signer
        self.social_verifiers = dict(social_verifiers)
        self.config = config

    # -----------------------------
    # Login
    # -----------------------------
    def login(
        self,
        type: str,
        *,
        phone: str | None = None,
        email: str | None = None,
        password: str | None = None,
        device_info: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        kind = (type or "").strip().upper()
        if kind == "PHONE":
            return self._login_with_phone(phone)
        if kind == "EMAIL":
            return self._login_with_email(
                email, password, device_info=device_info, ip=ip, user_agent=user_agent
            )
        raise ValidationError("Unsupported login type")

    def _login_with_phone(self, phone: str | None) -> dict[str, Any]:
        normalized = normalize_phone(phone)
        if not normalized:
            raise ValidationError("phone is required for PHONE login")

        user = self.users.get_by_phone(normalized)
        if user is None:
            try:
                user = self.users.create(provider=AuthProvider.phone.value, phone=normalized)
            except ConflictError:
                # A concurrent login created the same phone first; use that row.
                user = self.users.get_by_phone(normalized)
                if user is None:
                    raise
        if user.is_deleted:
            raise UnauthorizedError(INVALID_CREDENTIALS)

        issued = self.otps.issue_and_enqueue(user, OtpPurpose.login.value, OtpChannel.phone.value)
        return {"otp_id": issued.otp_id, "message": "OTP sent to your phone"}

    def _login_with_email(
        self,
        email: str | None,
        password: str | None,
        *,
        device_info: str | None,
        ip: str | None,
        user_agent: str | None,
    ) -> dict[str, Any]:
        normalized = normalize_email(email)
        if not normalized:
            raise ValidationError("email is required for EMAIL login")

        user = self.users.get_by_email(normalized)
        if user is None:
            password_hash = None
            if password:
                ensure_strong_password(password, email=normalized)
                password_hash = hash_password(password)
            user = self.users.create(
                provider=AuthProvider.email.value,
                email=normalized,
                password_hash=password_hash,
            )
            issued = self.otps.issue_and_enqueue(user, OtpPurpose.login.value, OtpChannel.email.value)
            return {"otp_id": issued.otp_id, "message": "OTP sent to your email"}

        if user.is_deleted:
            raise UnauthorizedError(INVALID_CREDENTIALS)

        # Same message whichever check fails.
        if not verify_password(password or "", user.password_hash):
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not user.is_email_verified:
            raise ForbiddenError("Email not verified")

        return self.sign_tokens_for_user(user, device_info=device_info, ip=ip, user_agent=user_agent)

    def verify_login_otp(
        self,
        otp_id: str,
        code: str,
        *,
        email: str | None = None,
        phone: str | None = None,
        device_info: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        return self.otps.verify_otp(
            otp_id,
            code,
            device_info,
            ip,
            email,
            phone,
            expected_purpose=OtpPurpose.login.value,
            user_agent=user_agent,
        )

    # -----------------------------
    # Social login
    # -----------------------------
    def social_login(
        self,
        provider: str,
        id_token: str,
        device_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        name = (provider or "").strip().lower()
        if name == AuthProvider.apple.value:
            raise NotImplementedProviderError("Apple sign-in is not implemented yet")
        if name != AuthProvider.google.value:
            raise ValidationError("Unsupported social provider")

        verifier = self.social_verifiers.get(name)
        if verifier is None:
            raise NotImplementedProviderError(f"{name} sign-in is not configured")

        try:
            identity = verifier.verify(id_token)
        except InvalidSocialTokenError as exc:
            raise UnauthorizedError("Invalid identity token") from exc

        email = normalize_email(identity.email)
        user = self.users.get_by_provider_id(name, identity.provider_id)

        if user is None and email:
            by_email = self.users.get_by_email(email)
            if by_email is not None:
                if by_email.provider != name:
                    raise ConflictError("This email is registered with a different sign-in method")
                if by_email.provider_id and by_email.provider_id != identity.provider_id:
                    raise ConflictError("This email is linked to another account")
                user = by_email

        if user is None:
            user = self.users.create(
                provider=name,
                provider_id=identity.provider_id,
                email=email,
                is_email_verified=bool(email and identity.email_verified),
                name=identity.name,
            )
            logger.info("Social sign-up: provider=%s user_id=%s", name, user.id)
        else:
            self._backfill_social_fields(user, identity.provider_id, email, identity.email_verified, identity.name)

        if user.is_deleted:
            raise UnauthorizedError(INVALID_CREDENTIALS)

        return self.sign_tokens_for_user(user, device_info=device_id, ip=ip, user_agent=user_agent)

    def _backfill_social_fields(
        self,
        user: User,
        provider_id: str,
        email: str | None,
        email_verified: bool,
        name: str | None,
    ) -> None:
        """Fill in newly available fields; never overwrite existing values."""
        changes: dict[str, Any] = {}
        if not user.provider_id:
            changes["provider_id"] = provider_id
        if email and not user.email and self.users.get_by_email(email) is None:
            changes["email"] = email
        if email_verified and email and email == (changes.get("email") or user.email) and not user.is_email_verified:
            changes["is_email_verified"] = True
        if name and not user.name:
            changes["name"] = name
        if changes:
            self.users.update(user, **changes)
            logger.info("Backfilled %s for user_id=%s", ",".join(sorted(changes)), user.id)

    # -----------------------------
    # Sessions
    # -----------------------------
    def sign_tokens_for_user(
        self,
        user: User,
        device_info: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        return self.issuer.sign_tokens_for_user(user, device_info=device_info, ip=ip, user_agent=user_agent)

    def refresh(
        self,
        refresh_token: str,
        device_info: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        session = self.sessions.validate_refresh_token(refresh_token)
        if session is None:
            raise UnauthorizedError("Invalid refresh token")

        user = self.users.get_by_id(session.user_id)
        if user is None or user.is_deleted:
            self.sessions.revoke_by_id(session.id)
            raise UnauthorizedError("Invalid refresh token")

        issued = self.sessions.rotate(
            session.id,
            user.id,
            device_info=device_info or session.device_id,
            ip=ip,
            user_agent=user_agent,
        )
        return self.issuer.build_payload(user, issued)

    def logout(self, user_id: str) -> dict[str, Any]:
        # Revokes every session of the user (all devices).
        count = self.sessions.revoke_all_by_user_id(user_id)
        return {"message": "Logged out", "revoked_sessions": count}

    def logout_session(self, refresh_token: str) -> dict[str, Any]:
        revoked = self.sessions.revoke_by_refresh_token(refresh_token)
        return {"message": "Session revoked", "revoked": revoked}

    # -----------------------------
    # Profile completion
    # -----------------------------
    def complete_profile(
        self,
        user_id: str,
        *,
        first_name: str,
        last_name: str,
        is_advisor: bool,
        terms_accepted: bool,
        phone: str | None = None,
        email: str | None = None,
    ) -> User:
        user = self.users.get_by_id(user_id)
        if user is None or user.is_deleted:
            raise NotFoundError("User not found")
        if user.profile_completed:
            raise ConflictError("Profile already completed")
        if not terms_accepted:
            raise ValidationError("Terms must be accepted")

        changes: dict[str, Any] = {}
        new_email = normalize_email(email)
        new_phone = normalize_phone(phone)

        if user.provider == AuthProvider.phone.value:
            if not new_email:
                raise ValidationError("email is required to complete a phone account")
            self._ensure_email_available(new_email, user)
            changes["email"] = new_email
        elif user.provider in {AuthProvider.email.value, AuthProvider.google.value}:
            if not new_phone:
                raise ValidationError("phone is required to complete this account")
            self._ensure_phone_available(new_phone, user)
            changes["phone"] = new_phone
        else:
            if new_email and new_email != user.email:
                self._ensure_email_available(new_email, user)
                changes["email"] = new_email
            if new_phone and new_phone != user.phone:
                self._ensure_phone_available(new_phone, user)
                changes["phone"] = new_phone

        first = first_name.strip()
        last = last_name.strip()
        changes.update(
            first_name=first,
            last_name=last,
            name=f"{first} {last}".strip(),
            is_advisor=bool(is_advisor),
            profile_completed=True,
            terms_accepted_at=utcnow(),
        )
        # One commit for the fields and the completion flag.
        user = self.users.update(user, **changes)
        logger.info("Profile completed: user_id=%s", user.id)
        return user

    def _ensure_email_available(self, email: str, user: User) -> None:
        existing = self.users.get_by_email(email)
        if existing is not None and existing.id != user.id:
            raise ConflictError("Email is already registered")

    def _ensure_phone_available(self, phone: str, user: User) -> None:
        existing = self.users.get_by_phone(phone)
        if existing is not None and existing.id != user.id:
            raise ConflictError("Phone number is already registered")

    # -----------------------------
    # Password reset
    # -----------------------------
    def request_password_reset(self, email: str) -> dict[str, Any]:
        normalized = normalize_email(email)
        user = self.users.get_by_email(normalized)
        if user is None or user.is_deleted:
            # Same shape and hashing cost as the real thing: no account enumeration.
            self.otps.hasher.hash(generate_code(self.config.OTP_LENGTH))
            logger.info("Password reset requested for unknown email")
            return {"otp_id": str(uuid.uuid4()), "message": RESET_REQUESTED_MESSAGE}

        if user.provider != AuthProvider.email.value:
            raise ValidationError(
                f"This account signs in with {user.provider}. Password reset is not available for it."
            )

        self.otps.invalidate_unused_for_user(user.id, OtpPurpose.reset.value)
        issued = self.otps.issue_and_enqueue(
            user,
            OtpPurpose.reset.value,
            OtpChannel.email.value,
            ttl_minutes=self.config.OTP_RESET_TTL_MINUTES,
        )
        return {"otp_id": issued.otp_id, "message": RESET_REQUESTED_MESSAGE}

    def verify_password_reset_otp(self, email: str, otp_id: str, code: str) -> dict[str, Any]:
        result = self.otps.verify_otp(otp_id, code, email=email, expected_purpose=OtpPurpose.reset.value)

        user = self.users.get_by_id(result["user_id"])
        if user is None or user.is_deleted or user.email != normalize_email(email):
            raise UnauthorizedError("Invalid OTP")
        if user.provider != AuthProvider.email.value:
            raise ValidationError("Password reset is not available for this account")

        token = self.signer.create_password_reset_token(user_id=user.id, email=user.email)
        return {"reset_token": token, "expires_in": self.signer.reset_ttl_minutes * 60}

    def reset_password(self, reset_token: str, new_password: str) -> dict[str, Any]:
        claims = self.signer.decode(reset_token, PASSWORD_RESET_PURPOSE)

        user = self.users.get_by_id(claims.get("sub"))
        if user is None or user.is_deleted:
            raise UnauthorizedError(INVALID_TOKEN)
        if user.provider != AuthProvider.email.value:
            raise ValidationError("Password reset is not available for this account")
        if normalize_email(claims.get("email")) != user.email:
            raise UnauthorizedError(INVALID_TOKEN)

        issued_at = claims.get("iat")
        if issued_at is None:
            raise UnauthorizedError(INVALID_TOKEN)
        watermark = as_aware(user.last_password_reset_at)
        if watermark is not None and watermark.timestamp() > float(issued_at):
            # Token predates the latest reset: already spent.
            raise UnauthorizedError(INVALID_TOKEN)

        ensure_strong_password(new_password, email=user.email)
        self.users.update(
            user,
            password_hash=hash_password(new_password),
            last_password_reset_at=utcnow(),
        )
        self.sessions.revoke_all_by_user_id(user.id)
        logger.info("Password reset completed: user_id=%s", user.id)
        return {"message": "Password has been reset successfully"}
