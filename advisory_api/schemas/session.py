from __future__ import annotations

from pydantic import BaseModel, Field


class RefreshIn(BaseModel):
    refresh_token: str = Field(min_length=1)


class RevokeIn(BaseModel):
    refresh_token: str = Field(min_length=1)


class RevokeOut(BaseModel):
    message: str
    revoked: bool
