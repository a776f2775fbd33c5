from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token

from advisory_api.core.errors import DependencyError

logger = logging.getLogger(__name__)


class InvalidSocialTokenError(Exception):
    """The identity token failed verification (signature, expiry, audience or shape)."""


@dataclass(frozen=True)
class SocialIdentity:
    provider_id: str
    email: Optional[str]
    email_verified: bool
    name: Optional[str]


class SocialIdentityVerifier(Protocol):
    def verify(self, token: str) -> SocialIdentity: ...


class GoogleIdentityVerifier:
    """Verifies Google ID tokens against our OAuth client id (the audience)."""

    def __init__(self, client_id: str) -> None:
        self.client_id = (client_id or "").strip()

    def verify(self, token: str) -> SocialIdentity:
        if not self.client_id:
            raise DependencyError("Google sign-in is not configured")
        if not token or not token.strip():
            raise InvalidSocialTokenError("Missing identity token")

        try:
            claims = google_id_token.verify_oauth2_token(
                token.strip(),
                google_requests.Request(),
                self.client_id,
            )
        except google_exceptions.TransportError as exc:
            logger.warning("Could not reach Google to verify an identity token")
            raise DependencyError("Identity provider is unavailable. Please try again.") from exc
        except (ValueError, google_exceptions.GoogleAuthError) as exc:
            logger.info("Google identity token rejected: %s", exc.__class__.__name__)
            raise InvalidSocialTokenError("Invalid identity token") from exc

        subject = claims.get("sub")
        if not subject:
            raise InvalidSocialTokenError("Identity token has no subject")

        email_verified = claims.get("email_verified", False)
        if isinstance(email_verified, str):
            email_verified = email_verified.strip().lower() == "true"

        return SocialIdentity(
            provider_id=str(subject),
            email=claims.get("email"),
            email_verified=bool(email_verified),
            name=claims.get("name"),
        )
