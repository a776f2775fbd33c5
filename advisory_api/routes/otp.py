from fastapi import APIRouter, Depends, Request

from advisory_api.core.rate_limit import AUTH_LIMIT, limiter
from advisory_api.dependencies.request_meta import RequestMeta, get_request_meta
from advisory_api.dependencies.services import get_otp_service
from advisory_api.schemas.auth import TokenOut
from advisory_api.schemas.otp import OtpResentOut, OtpVerifiedOut, OtpVerifyIn, ResendOtpIn
from advisory_api.services.otp import OtpService

router = APIRouter(prefix="/otp", tags=["otp"])


@router.post("/verify", response_model=TokenOut | OtpVerifiedOut)
def verify(
    payload: OtpVerifyIn,
    meta: RequestMeta = Depends(get_request_meta),
    otps: OtpService = Depends(get_otp_service),
):
    # Login OTPs come back as tokens; reset/verify OTPs as {user_id, purpose}.
    return otps.verify_otp(
        payload.otp_id,
        payload.code,
        meta.device_id,
        meta.ip,
        payload.email,
        payload.phone,
        user_agent=meta.user_agent,
    )


@router.post("/resend", response_model=OtpResentOut)
@limiter.limit(AUTH_LIMIT)
def resend(
    request: Request,
    payload: ResendOtpIn,
    otps: OtpService = Depends(get_otp_service),
):
    return otps.resend_otp(payload.type.value, payload.purpose, phone=payload.phone, email=payload.email)
