# advisory_api/services/otp.py
"""
OTP ledger.

Codes are random numeric strings; only a one-way hash is stored. Every verification
failure (missing, used, expired, wrong purpose, wrong code, wrong medium, or a medium
other than the one the code was sent to) surfaces as
the same generic message.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from advisory_api.core.clock import is_past, utcnow
from advisory_api.core.errors import DependencyError, NotFoundError, UnauthorizedError, ValidationError
from advisory_api.core.security import SecretHasher
from advisory_api.models.otp import Otp, OtpChannel, OtpPurpose
from advisory_api.models.user import User
from advisory_api.services.users import UserStore, normalize_email, normalize_phone

if TYPE_CHECKING:
    from advisory_api.services.otp_delivery import OtpDeliveryQueue
    from advisory_api.services.tokens import TokenIssuer

logger = logging.getLogger(__name__)

INVALID_OTP = "Invalid OTP"


@dataclass(frozen=True)
class IssuedOtp:
    otp_id: str
    code: str


def generate_code(length: int) -> str:
    """Uniform over [10^(n-1), 10^n - 1], so every code has exactly `length` digits."""
    length = max(int(length), 1)
    low = 10 ** (length - 1) if length > 1 else 0
    high = 10 ** length - 1
    return str(low + secrets.randbelow(high - low + 1))


def mark_otp_used(db: Session, otp_id: str) -> bool:
    """
    Flip used=false -> true in one conditional UPDATE.

    Returns False when the row is missing or was already used, so two concurrent
    consumers can never both succeed.
    """
    updated = (
        db.query(Otp)
        .filter(Otp.id == str(otp_id), Otp.used.is_(False))
        .update({"used": True}, synchronize_session=False)
    )
    db.commit()
    return bool(updated)


class OtpService:
    def __init__(
        self,
        db: Session,
        hasher: SecretHasher,
        queue: "OtpDeliveryQueue",
        users: UserStore,
        config: Any,
        token_issuer: Optional["TokenIssuer"] = None,
    ) -> None:
        self.db = db
        self.hasher = hasher
        self.queue = queue
        self.users = users
        self.config = config
        self.token_issuer = token_issuer

    # -----------------------------
    # Issuance
    # -----------------------------
    def create_otp(
        self,
        user_id: str,
        purpose: str,
        ttl_minutes: int | None = None,
        channel: str | None = None,
    ) -> IssuedOtp:
        if purpose not in {p.value for p in OtpPurpose}:
            raise ValidationError(f"Unsupported OTP purpose: {purpose}")

        code = generate_code(self.config.OTP_LENGTH)
        ttl = ttl_minutes if ttl_minutes is not None else self.config.OTP_TTL_MINUTES

        otp = Otp(
            user_id=str(user_id),
            purpose=purpose,
            channel=channel,
            code_hash=self.hasher.hash(code),
            attempts=0,
            expires_at=utcnow() + timedelta(minutes=ttl),
            used=False,
        )
        self.db.add(otp)
        self.db.commit()
        self.db.refresh(otp)

        logger.info("OTP created: id=%s user_id=%s purpose=%s channel=%s", otp.id, otp.user_id, purpose, channel)
        return IssuedOtp(otp_id=otp.id, code=code)

    def issue_and_enqueue(
        self,
        user: User,
        purpose: str,
        channel: str,
        ttl_minutes: int | None = None,
    ) -> IssuedOtp:
        """
        Create an OTP and hand it to the delivery queue.

        If the job can't be queued, the OTP is invalidated before DependencyError is
        raised, so no usable-but-undelivered code is left behind.
        """
        from advisory_api.services.otp_delivery import DeliveryQueueError, build_job

        if channel == OtpChannel.email.value:
            recipient = {"email": user.email}
        elif channel == OtpChannel.phone.value:
            recipient = {"phone": user.phone}
        else:
            raise ValidationError(f"Unsupported OTP channel: {channel}")
        if not any(recipient.values()):
            raise ValidationError(f"User has no {channel} to send the code to")

        issued = self.create_otp(user.id, purpose, ttl_minutes=ttl_minutes, channel=channel)
        job = build_job(otp_id=issued.otp_id, user_id=user.id, code=issued.code, purpose=purpose, **recipient)
        try:
            self.queue.enqueue(job)
        except DeliveryQueueError as exc:
            self.invalidate_otp(issued.otp_id)
            raise DependencyError("Could not send the verification code. Please try again.") from exc
        return issued

    def resend_otp(
        self,
        type: str,
        purpose: str,
        phone: str | None = None,
        email: str | None = None,
    ) -> dict[str, Any]:
        kind = (type or "").strip().upper()
        if kind == "PHONE":
            if not phone:
                raise ValidationError("phone is required")
            user = self.users.get_by_phone(phone)
            channel = OtpChannel.phone.value
        elif kind == "EMAIL":
            if not email:
                raise ValidationError("email is required")
            user = self.users.get_by_email(email)
            channel = OtpChannel.email.value
        else:
            raise ValidationError("Unsupported type")

        if purpose not in {OtpPurpose.login.value, OtpPurpose.reset.value}:
            raise ValidationError("Unsupported OTP purpose")
        if user is None or user.is_deleted:
            raise NotFoundError("User not found")

        self.invalidate_unused_for_user(user.id, purpose)
        ttl = self.config.OTP_RESET_TTL_MINUTES if purpose == OtpPurpose.reset.value else None
        issued = self.issue_and_enqueue(user, purpose, channel, ttl_minutes=ttl)
        return {"otp_id": issued.otp_id, "user_id": user.id, "message": "OTP resent successfully"}

    # -----------------------------
    # Invalidation
    # -----------------------------
    def invalidate_otp(self, otp_id: str) -> bool:
        changed = mark_otp_used(self.db, otp_id)
        if changed:
            logger.info("OTP invalidated: id=%s", otp_id)
        return changed

    def invalidate_unused_for_user(self, user_id: str, purpose: str) -> int:
        count = (
            self.db.query(Otp)
            .filter(Otp.user_id == str(user_id), Otp.purpose == purpose, Otp.used.is_(False))
            .update({"used": True}, synchronize_session=False)
        )
        self.db.commit()
        if count:
            logger.info("Invalidated %s unused %s OTP(s) for user_id=%s", count, purpose, user_id)
        return count

    def prune_expired_otps(self, older_than: datetime | None = None) -> int:
        """Housekeeping: physically delete rows that expired before `older_than` (default: now)."""
        cutoff = older_than or utcnow()
        count = self.db.query(Otp).filter(Otp.expires_at < cutoff).delete(synchronize_session=False)
        self.db.commit()
        logger.info("Pruned %s expired OTP(s)", count)
        return count

    # -----------------------------
    # Verification
    # -----------------------------
    def _record_failed_attempt(self, otp: Otp) -> None:
        # The lockout decision is made against the stored counter, not this session's copy.
        max_attempts = self.config.OTP_MAX_ATTEMPTS
        self.db.query(Otp).filter(Otp.id == otp.id).update(
            {
                "attempts": Otp.attempts + 1,
                "used": case((Otp.attempts + 1 >= max_attempts, True), else_=Otp.used),
            },
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(otp)
        if otp.used and otp.attempts >= max_attempts:
            logger.warning("OTP %s locked after %s failed attempts", otp.id, otp.attempts)

    def verify_otp(
        self,
        otp_id: str,
        code: str,
        device_info: str | None = None,
        ip: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        *,
        expected_purpose: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        if not otp_id or not code:
            raise UnauthorizedError(INVALID_OTP)

        otp = self.db.get(Otp, str(otp_id))
        if otp is None or otp.used or is_past(otp.expires_at):
            raise UnauthorizedError(INVALID_OTP)
        if expected_purpose is not None and otp.purpose != expected_purpose:
            raise UnauthorizedError(INVALID_OTP)

        if not self.hasher.verify(str(code), otp.code_hash):
            self._record_failed_attempt(otp)
            raise UnauthorizedError(INVALID_OTP)

        user = self.users.get_by_id(otp.user_id)
        if user is None or user.is_deleted:
            raise UnauthorizedError(INVALID_OTP)

        # A code proves ownership of the medium it was sent to, and no other.
        supplied = {
            channel
            for channel, value in ((OtpChannel.email.value, email), (OtpChannel.phone.value, phone))
            if value is not None
        }
        if otp.channel and supplied - {otp.channel}:
            raise UnauthorizedError(INVALID_OTP)

        verified_channels: set[str] = set()
        if email is not None:
            if not user.email or normalize_email(email) != user.email:
                raise UnauthorizedError(INVALID_OTP)
            verified_channels.add(OtpChannel.email.value)
        if phone is not None:
            if not user.phone or normalize_phone(phone) != normalize_phone(user.phone):
                raise UnauthorizedError(INVALID_OTP)
            verified_channels.add(OtpChannel.phone.value)
        if otp.channel:
            verified_channels.add(otp.channel)

        purpose = otp.purpose
        if not mark_otp_used(self.db, otp.id):
            # Lost the race against a concurrent verification of the same code.
            raise UnauthorizedError(INVALID_OTP)

        self._mark_verified(user, verified_channels)
        logger.info("OTP verified: id=%s user_id=%s purpose=%s", otp_id, user.id, purpose)

        if purpose == OtpPurpose.login.value:
            if self.token_issuer is None:
                raise RuntimeError("OtpService needs a token issuer to complete login OTPs")
            return self.token_issuer.sign_tokens_for_user(
                user, device_info=device_info, ip=ip, user_agent=user_agent
            )
        return {"user_id": user.id, "purpose": purpose}

    def _mark_verified(self, user: User, channels: set[str]) -> None:
        changed = False
        if OtpChannel.email.value in channels and user.email and not user.is_email_verified:
            user.is_email_verified = True
            changed = True
        if OtpChannel.phone.value in channels and user.phone and not user.is_phone_verified:
            user.is_phone_verified = True
            changed = True
        if changed:
            self.db.commit()
