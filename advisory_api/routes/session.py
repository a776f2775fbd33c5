from __future__ import annotations

from fastapi import APIRouter, Depends

from advisory_api.dependencies.request_meta import RequestMeta, get_request_meta
from advisory_api.dependencies.services import get_auth_service
from advisory_api.schemas.auth import TokenOut
from advisory_api.schemas.session import RefreshIn, RevokeIn, RevokeOut
from advisory_api.services.auth import AuthService

router = APIRouter(prefix="/session", tags=["session"])


@router.post("/refresh", response_model=TokenOut)
def refresh(
    payload: RefreshIn,
    meta: RequestMeta = Depends(get_request_meta),
    auth: AuthService = Depends(get_auth_service),
):
    """Rotate a refresh token: the old one stops working, a new pair is returned."""
    return auth.refresh(payload.refresh_token, device_info=meta.device_id, ip=meta.ip, user_agent=meta.user_agent)


@router.post("/revoke", response_model=RevokeOut)
def revoke(payload: RevokeIn, auth: AuthService = Depends(get_auth_service)):
    return auth.logout_session(payload.refresh_token)
