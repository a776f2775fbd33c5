from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class UserOut(BaseModel):
    id: str
    email: str | None = None
    phone: str | None = None
    provider: str
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    is_advisor: bool
    is_email_verified: bool
    is_phone_verified: bool
    profile_completed: bool
    terms_accepted_at: datetime | None = None
    last_login_at: datetime | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
