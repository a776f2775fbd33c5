from __future__ import annotations

from typing import List

from advisory_api.core.config import settings
from advisory_api.core.errors import ValidationError

COMMON_WEAK_PASSWORDS = {
    "password",
    "password1",
    "password123",
    "123456",
    "1234567",
    "12345678",
    "123456789",
    "qwerty",
    "qwerty123",
    "abc123",
    "letmein",
    "111111",
    "123123",
    "iloveyou",
    "admin",
    "welcome",
    "monkey",
    "dragon",
    "football",
    "sunshine",
    "princess",
    "passw0rd",
    "trustno1",
}

# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def _normalize(value: str | None) -> str:
    return (value or "").strip().lower()


def evaluate_password(password: str, *, email: str | None = None) -> List[str]:
    """
    Returns a list of violation codes if the password does not meet policy.
    """
    pw = password or ""
    violations: list[str] = []
    min_length = max(int(getattr(settings, "PASSWORD_MIN_LENGTH", 6) or 0), 1)

    if len(pw) < min_length:
        violations.append("min_length")
    if len(pw.encode("utf-8")) > MAX_PASSWORD_BYTES:
        violations.append("max_length")

    normalized_pw = pw.lower()
    if normalized_pw in COMMON_WEAK_PASSWORDS:
        violations.append("denylist_common")

    email_norm = _normalize(email)
    if email_norm:
        local_part = email_norm.split("@")[0]
        if email_norm in normalized_pw or (len(local_part) >= 4 and local_part in normalized_pw):
            violations.append("contains_email")

    return violations


def ensure_strong_password(password: str, *, email: str | None = None) -> None:
    violations = evaluate_password(password, email=email)
    if violations:
        raise ValidationError(
            "Password does not meet requirements.",
            details={"code": "WEAK_PASSWORD", "violations": violations},
        )
