# advisory_api/services/users.py
"""
Credential store.

Responsibilities:
- User lookup by id, email, phone or (provider, provider_id)
- Normalizing emails/phones before they are compared or persisted
- Translating unique-constraint violations into ConflictError
"""
from __future__ import annotations

import logging
import re
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from advisory_api.core.clock import utcnow
from advisory_api.core.errors import ConflictError
from advisory_api.models.user import User

logger = logging.getLogger(__name__)

_PHONE_STRIP = re.compile(r"[^\d+]")


def normalize_email(email: str | None) -> str | None:
    """Trim + lowercase. Empty input normalizes to None."""
    if email is None:
        return None
    clean = email.strip().lower()
    return clean or None


def normalize_phone(phone: str | None) -> str | None:
    """Keep digits and a leading '+'; spaces, dashes, dots and parens are dropped."""
    if phone is None:
        return None
    clean = _PHONE_STRIP.sub("", phone.strip())
    if clean.startswith("+"):
        clean = "+" + clean[1:].replace("+", "")
    else:
        clean = clean.replace("+", "")
    return clean or None


class UserStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_by_id(self, user_id: str | None) -> Optional[User]:
        if not user_id:
            return None
        return self.db.get(User, str(user_id))

    def get_by_email(self, email: str | None) -> Optional[User]:
        """Look up a user by email address (case-insensitive)."""
        normalized = normalize_email(email)
        if not normalized:
            return None
        return self.db.query(User).filter(User.email == normalized).first()

    def get_by_phone(self, phone: str | None) -> Optional[User]:
        normalized = normalize_phone(phone)
        if not normalized:
            return None
        return self.db.query(User).filter(User.phone == normalized).first()

    def get_by_provider_id(self, provider: str, provider_id: str | None) -> Optional[User]:
        """Look up a social-login user by the identity provider's stable subject."""
        if not provider_id:
            return None
        return (
            self.db.query(User)
            .filter(User.provider == provider, User.provider_id == provider_id)
            .first()
        )

    def create(self, **fields: Any) -> User:
        """
        Insert a new user.

        Emails/phones are normalized first. If a concurrent request inserted the
        same email, phone or (provider, provider_id) between our lookup and this
        insert, the unique constraint rejects it and ConflictError is raised.
        """
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        if "phone" in fields:
            fields["phone"] = normalize_phone(fields["phone"])

        user = User(**fields)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.info("User insert rejected by unique constraint: provider=%s", fields.get("provider"))
            raise ConflictError("An account with these details already exists") from exc
        self.db.refresh(user)

        logger.info("Created user: id=%s provider=%s", user.id, user.provider)
        return user

    def update(self, user: User, **fields: Any) -> User:
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        if "phone" in fields:
            fields["phone"] = normalize_phone(fields["phone"])

        for key, value in fields.items():
            setattr(user, key, value)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError("An account with these details already exists") from exc
        self.db.refresh(user)
        return user

    def touch_last_login(self, user: User) -> None:
        user.last_login_at = utcnow()
        self.db.commit()
