from __future__ import annotations

import logging

import httpx

from advisory_api.core.config import settings
from advisory_api.services.users import normalize_phone

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

_PURPOSE_LABELS = {
    "login": "login code",
    "reset": "password reset code",
    "verify": "verification code",
}


class SmsError(Exception):
    """Base exception for SMS delivery failures."""


class SmsNotConfiguredError(SmsError):
    """Raised when SMS is enabled but Twilio credentials are missing."""


class SmsDeliveryError(SmsError):
    """Raised when Twilio rejects the message or the call fails."""


def otp_message(code: str, purpose: str, ttl_minutes: int) -> str:
    label = _PURPOSE_LABELS.get(purpose, "verification code")
    return f"Your {label} is: {code}. This code will expire in {ttl_minutes} minutes."


def format_phone_number(phone: str) -> str:
    """
    Twilio wants E.164. We never guess a country code.

    Raises:
        SmsDeliveryError: if the number has no leading '+<country code>'.
    """
    cleaned = normalize_phone(phone) or ""
    if not cleaned.startswith("+"):
        raise SmsDeliveryError("Phone number must include country code (+<country code><number>).")
    return cleaned


def _require_config() -> tuple[str, str, str]:
    sid = (settings.TWILIO_ACCOUNT_SID or "").strip()
    token = (settings.TWILIO_AUTH_TOKEN or "").strip()
    sender = (settings.TWILIO_PHONE_NUMBER or "").strip()
    if not sid or not token:
        raise SmsNotConfiguredError("TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN are not set")
    if not sender:
        raise SmsNotConfiguredError("TWILIO_PHONE_NUMBER is not set")
    return sid, token, sender


def send_sms(to: str, body: str) -> str | None:
    """
    Send a text message through Twilio's Messages API.

    With TWILIO_ENABLED=false the message is dropped (logged without its body).
    Returns the Twilio message SID when one was sent.
    """
    if not settings.TWILIO_ENABLED:
        logger.warning("SMS sending is disabled; dropping message to %s", to)
        return None

    recipient = format_phone_number(to)
    sid, token, sender = _require_config()
    url = f"{TWILIO_API_BASE}/Accounts/{sid}/Messages.json"

    try:
        response = httpx.post(
            url,
            data={"To": recipient, "From": sender, "Body": body},
            auth=(sid, token),
            timeout=settings.TWILIO_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as exc:
        logger.warning("Twilio request failed: to=%s error=%s", recipient, exc.__class__.__name__)
        raise SmsDeliveryError("Unable to reach SMS provider.") from exc

    try:
        payload = response.json()
    except ValueError:
        payload = {}

    if response.status_code >= 400:
        code = payload.get("code")
        logger.error("Twilio rejected message: to=%s status=%s code=%s", recipient, response.status_code, code)
        if code == 20003:
            raise SmsDeliveryError("SMS provider authentication failed.")
        if code == 21211:
            raise SmsDeliveryError("Invalid phone number format.")
        raise SmsDeliveryError(payload.get("message") or "SMS provider rejected the message.")

    if payload.get("status") == "failed" or payload.get("error_code"):
        raise SmsDeliveryError(payload.get("error_message") or "SMS provider reported a failure.")

    message_sid = payload.get("sid")
    logger.info("SMS sent: to=%s sid=%s", recipient, message_sid)
    return message_sid
