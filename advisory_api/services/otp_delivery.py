"""
Queueing contract between OTP issuance and the delivery worker.

Job payload (JSON): {email?, phone?, code, purpose, user_id, otp_id}
"""
from __future__ import annotations

import logging
from typing import Any

from advisory_api import celery_app
from advisory_api.tasks.otp_delivery import send_otp

logger = logging.getLogger(__name__)


class DeliveryQueueError(RuntimeError):
    """Raised when a delivery job could not be published."""


def build_job(
    *,
    otp_id: str,
    user_id: str,
    code: str,
    purpose: str,
    email: str | None = None,
    phone: str | None = None,
) -> dict[str, Any]:
    if not email and not phone:
        raise ValueError("An OTP job needs an email or a phone recipient")
    job: dict[str, Any] = {"otp_id": otp_id, "user_id": user_id, "code": code, "purpose": purpose}
    if email:
        job["email"] = email
    else:
        job["phone"] = phone
    return job


class OtpDeliveryQueue:
    def enqueue(self, job: dict[str, Any]) -> None:
        try:
            celery_app.enqueue(send_otp, **job)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(
                "Failed to enqueue OTP delivery: otp_id=%s error=%s",
                job.get("otp_id"),
                exc.__class__.__name__,
            )
            raise DeliveryQueueError("OTP delivery could not be queued") from exc
        logger.info("OTP delivery queued: otp_id=%s purpose=%s", job.get("otp_id"), job.get("purpose"))
