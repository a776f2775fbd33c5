from __future__ import annotations

from fastapi import APIRouter, Depends

from advisory_api.dependencies.auth import get_current_user
from advisory_api.models.user import User
from advisory_api.schemas.user import UserOut

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserOut)
def get_me(user: User = Depends(get_current_user)) -> User:
    return user
