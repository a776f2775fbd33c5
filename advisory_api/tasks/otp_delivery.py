from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from advisory_api.celery_app import celery_app
from advisory_api.core.config import settings
from advisory_api.core.database import SessionLocal
from advisory_api.services import email as email_service
from advisory_api.services import sms as sms_service
from advisory_api.services.otp import mark_otp_used


logger = logging.getLogger(__name__)

# Swapped out in tests
session_factory = SessionLocal


def backoff_seconds(retries: int) -> int:
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return settings.OTP_DELIVERY_BACKOFF_SECONDS * (2 ** retries)


def _ttl_for(purpose: str) -> int:
    return settings.OTP_RESET_TTL_MINUTES if purpose == "reset" else settings.OTP_TTL_MINUTES


def _deliver(*, code: str, purpose: str, email: str | None, phone: str | None) -> None:
    ttl = _ttl_for(purpose)
    if email:
        email_service.send_otp_email(email, code, purpose, ttl)
        logger.info("OTP sent via email to %s for purpose=%s", email, purpose)
    elif phone:
        sms_service.send_sms(phone, sms_service.otp_message(code, purpose, ttl))
        logger.info("OTP sent via SMS to %s for purpose=%s", phone, purpose)
    else:
        raise ValueError("Either email or phone must be provided")


def _invalidate(otp_id: str) -> None:
    db = session_factory()
    try:
        mark_otp_used(db, otp_id)
        logger.warning("OTP %s invalidated after delivery failed permanently", otp_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not invalidate undeliverable OTP %s", otp_id)
    finally:
        db.close()


@celery_app.task(
    bind=True,
    name="otp.send_otp",
    max_retries=max(settings.OTP_DELIVERY_MAX_ATTEMPTS - 1, 0),
)
def send_otp(self, otp_id, user_id, code, purpose, email=None, phone=None):
    try:
        _deliver(code=code, purpose=purpose, email=email, phone=phone)
    except Exception as exc:  # pylint: disable=broad-except
        attempt = self.request.retries + 1
        logger.error(
            "OTP delivery failed: otp_id=%s user_id=%s attempt=%s error=%s",
            otp_id,
            user_id,
            attempt,
            exc.__class__.__name__,
        )
        if self.request.retries >= self.max_retries:
            _invalidate(otp_id)
            raise
        raise self.retry(exc=exc, countdown=backoff_seconds(self.request.retries))
