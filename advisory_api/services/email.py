from __future__ import annotations

import logging
import smtplib
from email.mime.text import MIMEText
from email.utils import formatdate
from html import escape as html_escape

import boto3
import resend
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError, NoCredentialsError

from advisory_api.core.config import settings

logger = logging.getLogger(__name__)

_OTP_SUBJECTS = {
    "login": "Your login code",
    "reset": "Your password reset code",
    "verify": "Your verification code",
}


class EmailNotConfiguredError(RuntimeError):
    pass


class EmailDeliveryError(RuntimeError):
    """Raised when a provider is configured but delivery fails."""


def _normalize_provider(raw: str | None) -> str:
    """
    Supported providers: resend (default when unset), ses, smtp.
    "gmail" is accepted as an alias for smtp.
    """
    provider = (raw or "").strip().lower()
    if not provider:
        return "resend"
    if provider == "gmail":
        return "smtp"
    if provider in {"resend", "ses", "smtp"}:
        return provider
    raise EmailNotConfiguredError(
        f"Unsupported EMAIL_PROVIDER={provider!r}. Supported: resend (default), ses, smtp."
    )


def _require_from_email() -> str:
    if not settings.FROM_EMAIL:
        raise EmailNotConfiguredError("FROM_EMAIL is not set")
    return settings.FROM_EMAIL


def _send_email_ses(to_email: str, subject: str, body: str) -> str | None:
    region = (settings.AWS_REGION or "").strip()
    if not region:
        raise EmailNotConfiguredError("AWS_REGION is not set (required for SES)")
    from_email = _require_from_email()
    client = boto3.client("ses", region_name=region)

    try:
        res = client.send_email(
            Source=from_email,
            Destination={"ToAddresses": [to_email]},
            Message={
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {"Text": {"Data": body, "Charset": "UTF-8"}},
            },
        )
    except (NoCredentialsError, EndpointConnectionError) as e:
        logger.exception("SES email failed (credentials/endpoint)")
        raise EmailDeliveryError("SES email failed: provider unreachable") from e
    except ClientError as e:
        code = (e.response or {}).get("Error", {}).get("Code", "ClientError")
        logger.exception("SES email failed (client error %s)", code)
        raise EmailDeliveryError(f"SES email failed: {code}") from e
    except BotoCoreError as e:
        logger.exception("SES email failed (botocore)")
        raise EmailDeliveryError("SES email failed") from e

    msg_id = res.get("MessageId")
    logger.info("SES email sent: to=%s msg_id=%s", to_email, msg_id)
    return msg_id


def _send_email_resend(to_email: str, subject: str, body: str) -> str | None:
    api_key = (settings.RESEND_API_KEY or "").strip()
    if not api_key:
        raise EmailNotConfiguredError("RESEND_API_KEY is not set")
    from_email = _require_from_email()

    payload = {
        "from": from_email,
        "to": [to_email],
        "subject": subject,
        "text": body,
        "html": f"<pre>{html_escape(body)}</pre>",
    }

    try:
        resend.api_key = api_key
        res = resend.Emails.send(payload)  # type: ignore[attr-defined]
    except Exception as e:  # noqa: BLE001 - the SDK raises several unrelated types
        raise EmailDeliveryError(f"Resend send failed: {e.__class__.__name__}") from e

    msg_id: str | None = None
    if isinstance(res, dict):
        if res.get("error"):
            raise EmailDeliveryError("Resend API returned an error")
        v = res.get("id")
        if isinstance(v, str) and v.strip():
            msg_id = v.strip()

    logger.info("Resend email sent: to=%s msg_id=%s", to_email, msg_id)
    return msg_id


def _send_email_smtp(to_email: str, subject: str, body: str) -> None:
    if not settings.SMTP_HOST:
        raise EmailNotConfiguredError("SMTP_HOST is not set")
    if not settings.SMTP_FROM_EMAIL:
        raise EmailNotConfiguredError("SMTP_FROM_EMAIL is not set")

    msg = MIMEText(body, "plain", "utf-8")
    msg["From"] = settings.SMTP_FROM_EMAIL
    msg["To"] = to_email
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)

    if settings.SMTP_USE_SSL:
        server: smtplib.SMTP = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10)
    else:
        server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10)

    try:
        server.ehlo()
        if settings.SMTP_USE_TLS and not settings.SMTP_USE_SSL:
            server.starttls()
            server.ehlo()
        if settings.SMTP_USERNAME:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.sendmail(settings.SMTP_FROM_EMAIL, [to_email], msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        logger.exception("SMTP email failed")
        raise EmailDeliveryError("SMTP email failed") from e
    finally:
        try:
            server.quit()
        except (smtplib.SMTPException, OSError):
            pass

    logger.info("SMTP email sent: to=%s", to_email)


def send_email(to_email: str, subject: str, body: str) -> str | None:
    """
    Sends email using the configured provider.
    - EMAIL_ENABLED=false: nothing is sent (logged only)
    - EMAIL_PROVIDER=resend (default): Resend API
    - EMAIL_PROVIDER=ses: AWS SES via boto3
    - EMAIL_PROVIDER=smtp (alias gmail): SMTP via stdlib
    """
    if not settings.EMAIL_ENABLED:
        logger.info("EMAIL_ENABLED=false; skipping email to %s (%s)", to_email, subject)
        return None

    provider = _normalize_provider(settings.EMAIL_PROVIDER)
    if provider == "smtp":
        _send_email_smtp(to_email=to_email, subject=subject, body=body)
        return None
    if provider == "ses":
        return _send_email_ses(to_email=to_email, subject=subject, body=body)
    return _send_email_resend(to_email=to_email, subject=subject, body=body)


def send_otp_email(to_email: str, code: str, purpose: str, ttl_minutes: int) -> str | None:
    subject = _OTP_SUBJECTS.get(purpose, _OTP_SUBJECTS["verify"])
    minutes = f"{ttl_minutes} minute{'s' if ttl_minutes != 1 else ''}"
    body = (
        f"{subject}: {code}\n\n"
        f"This code expires in {minutes}.\n\n"
        "If you didn't request this, you can ignore this message."
    )
    return send_email(to_email=to_email, subject=subject, body=body)
