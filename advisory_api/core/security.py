# advisory_api/core/security.py
from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Protocol

from jose import JWTError, jwt
from passlib.context import CryptContext

from advisory_api.core.config import settings
from advisory_api.core.errors import UnauthorizedError

ACCESS_PURPOSE = "access"
PASSWORD_RESET_PURPOSE = "password-reset"


# -------------------------
# Hashing capability
# -------------------------
class SecretHasher(Protocol):
    def hash(self, secret: str) -> str: ...

    def verify(self, secret: str, hashed: str) -> bool: ...


@lru_cache(maxsize=8)
def _crypt_context(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


class BcryptHasher:
    """One-way bcrypt hashing via passlib. `rounds` is the cost factor."""

    def __init__(self, rounds: int = 10) -> None:
        self._context = _crypt_context(int(rounds))

    def hash(self, secret: str) -> str:
        return self._context.hash(secret)

    def verify(self, secret: str, hashed: str) -> bool:
        if not secret or not hashed:
            return False
        try:
            return self._context.verify(secret, hashed)
        except (TypeError, ValueError):
            # Unrecognised/malformed stored hash
            return False


class HmacHasher:
    """
    HMAC-SHA256 keyed by a server secret. Suited to high-entropy secrets (refresh tokens)
    where a slow KDF buys nothing.
    """

    def __init__(self, key: str) -> None:
        if not key:
            raise RuntimeError("An HMAC key is required (JWT_SECRET).")
        self._key = key.encode("utf-8")

    def hash(self, secret: str) -> str:
        return hmac.new(self._key, secret.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify(self, secret: str, hashed: str) -> bool:
        if not secret or not hashed:
            return False
        return hmac.compare_digest(self.hash(secret), hashed)


def build_hasher(scheme: str, *, rounds: int | None = None, key: str | None = None) -> SecretHasher:
    normalized = (scheme or "bcrypt").strip().lower()
    if normalized == "bcrypt":
        return BcryptHasher(rounds if rounds is not None else settings.BCRYPT_ROUNDS)
    if normalized == "hmac":
        return HmacHasher(key if key is not None else settings.JWT_SECRET)
    raise RuntimeError(f"Unsupported hash scheme {scheme!r}. Supported: bcrypt, hmac.")


# -------------------------
# Password hashing
# -------------------------
def hash_password(password: str) -> str:
    return _crypt_context(settings.BCRYPT_ROUNDS).hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return _crypt_context(settings.BCRYPT_ROUNDS).verify(password, password_hash)
    except (TypeError, ValueError):
        return False


# -------------------------
# JWT signer
# -------------------------
def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class TokenSigner:
    """
    Stateless signer/verifier for access tokens and password-reset tokens.
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        access_ttl_minutes: int = 15,
        reset_ttl_minutes: int = 15,
    ) -> None:
        if not secret or not secret.strip():
            raise RuntimeError("JWT_SECRET must be set (auth is required).")
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl_minutes = access_ttl_minutes
        self.reset_ttl_minutes = reset_ttl_minutes

    def _encode(self, claims: dict[str, Any], ttl: timedelta) -> str:
        now = _now_utc()
        payload = {
            **claims,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def create_access_token(
        self,
        *,
        user_id: str,
        session_id: str,
        email: str | None = None,
        phone: str | None = None,
    ) -> str:
        """
        Access token used for API auth: Authorization: Bearer <token>
        `jti` links the token to its refresh session so revocation propagates.
        """
        return self._encode(
            {
                "sub": str(user_id),
                "email": email,
                "phone": phone,
                "jti": str(session_id),
                "purpose": ACCESS_PURPOSE,
            },
            timedelta(minutes=self.access_ttl_minutes),
        )

    def create_password_reset_token(self, *, user_id: str, email: str) -> str:
        return self._encode(
            {"sub": str(user_id), "email": email, "purpose": PASSWORD_RESET_PURPOSE},
            timedelta(minutes=self.reset_ttl_minutes),
        )

    def decode(self, token: str, expected_purpose: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError:
            raise UnauthorizedError("Invalid or expired token")

        if payload.get("purpose") != expected_purpose:
            raise UnauthorizedError("Invalid or expired token")
        if not payload.get("sub"):
            raise UnauthorizedError("Invalid or expired token")
        return payload


def get_token_signer() -> TokenSigner:
    return TokenSigner(
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
        access_ttl_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES,
        reset_ttl_minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES,
    )
