# advisory_api/routes/auth.py
from fastapi import APIRouter, Depends, Request

from advisory_api.core.rate_limit import AUTH_LIMIT, limiter
from advisory_api.dependencies.auth import get_current_user
from advisory_api.dependencies.request_meta import RequestMeta, get_request_meta
from advisory_api.dependencies.services import get_auth_service
from advisory_api.models.user import User
from advisory_api.schemas.auth import (
    CompleteProfileIn,
    LoginIn,
    LogoutOut,
    MessageOut,
    OtpSentOut,
    RequestPasswordResetIn,
    ResetPasswordIn,
    ResetTokenOut,
    SocialLoginIn,
    TokenOut,
    VerifyOtpIn,
    VerifyPasswordResetOtpIn,
)
from advisory_api.schemas.user import UserOut
from advisory_api.services.auth import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=OtpSentOut | TokenOut)
@limiter.limit(AUTH_LIMIT)
def login(
    request: Request,
    payload: LoginIn,
    meta: RequestMeta = Depends(get_request_meta),
    auth: AuthService = Depends(get_auth_service),
):
    """
    PHONE, or EMAIL for a new account: sends an OTP and returns its id.
    EMAIL for an existing, verified account: password check, then tokens.
    """
    return auth.login(
        payload.type.value,
        phone=payload.phone,
        email=payload.email,
        password=payload.password,
        device_info=meta.device_id,
        ip=meta.ip,
        user_agent=meta.user_agent,
    )


@router.post("/social-login", response_model=TokenOut)
def social_login(
    payload: SocialLoginIn,
    meta: RequestMeta = Depends(get_request_meta),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.social_login(
        payload.type.value,
        payload.id_token,
        device_id=payload.device_id or meta.device_id,
        ip=meta.ip,
        user_agent=meta.user_agent,
    )


@router.post("/verify-otp", response_model=TokenOut)
def verify_otp(
    payload: VerifyOtpIn,
    meta: RequestMeta = Depends(get_request_meta),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.verify_login_otp(
        payload.otp_id,
        payload.code,
        email=payload.email,
        phone=payload.phone,
        device_info=meta.device_id,
        ip=meta.ip,
        user_agent=meta.user_agent,
    )


@router.post("/logout", response_model=LogoutOut)
def logout(
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.logout(user.id)


@router.post("/complete-profile", response_model=UserOut)
def complete_profile(
    payload: CompleteProfileIn,
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.complete_profile(
        user.id,
        first_name=payload.first_name,
        last_name=payload.last_name,
        is_advisor=payload.is_advisor,
        terms_accepted=payload.terms_accepted,
        phone=payload.phone,
        email=payload.email,
    )


@router.post("/request-password-reset", response_model=OtpSentOut)
@limiter.limit(AUTH_LIMIT)
def request_password_reset(
    request: Request,
    payload: RequestPasswordResetIn,
    auth: AuthService = Depends(get_auth_service),
):
    return auth.request_password_reset(payload.email)


@router.post("/verify-password-reset-otp", response_model=ResetTokenOut)
def verify_password_reset_otp(
    payload: VerifyPasswordResetOtpIn,
    auth: AuthService = Depends(get_auth_service),
):
    return auth.verify_password_reset_otp(payload.email, payload.otp_id, payload.code)


@router.post("/reset-password", response_model=MessageOut)
def reset_password(
    payload: ResetPasswordIn,
    auth: AuthService = Depends(get_auth_service),
):
    return auth.reset_password(payload.reset_token, payload.new_password)
