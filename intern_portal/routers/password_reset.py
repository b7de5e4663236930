"""
Password reset via one-time code delivered to the registered phone number.

Public endpoints (no auth):
    POST /api/password-reset/request
    POST /api/password-reset/resend
    POST /api/password-reset/verify
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from ..dependencies import get_recovery_service, rate_limiter_dependency
from ..schemas.password_reset import (
    ChallengeResponse,
    DebugInfo,
    PhoneRequest,
    ResetResponse,
    VerifyResetRequest,
)
from ..services.recovery import ChallengeRequestResult, RateLimitService, RecoveryService
from ..services.recovery.audit import AuditService
from ..services.recovery.errors import RateLimited
from ..services.recovery.rate_limit import ACTION_START, ACTION_VERIFY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/password-reset", tags=["password-reset"])


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _enforce_rate_limit(limiter: RateLimitService, action: str, request: Request) -> None:
    ip = _client_ip(request)
    allowed, error_msg = limiter.hit(action, ip)
    if not allowed:
        AuditService.log_rate_limited(action, error_msg, request_id=_request_id(request), ip=ip)
        raise RateLimited(error_msg)


def _challenge_response(result: ChallengeRequestResult) -> ChallengeResponse:
    if result.delivered:
        message = "OTP sent to your registered phone number successfully"
    else:
        # Soft failure: the code was issued and stays valid until it expires
        message = "OTP generated but delivery failed. Please try again later or contact admin."
    return ChallengeResponse(
        message=message,
        phone=result.masked_phone,
        delivered=result.delivered,
        debug=DebugInfo(otp=result.debug_code) if result.debug_code else None,
    )


@router.post("/request", response_model=ChallengeResponse, response_model_exclude_none=True)
async def request_password_reset(
    payload: PhoneRequest,
    request: Request,
    service: RecoveryService = Depends(get_recovery_service),
    limiter: RateLimitService = Depends(rate_limiter_dependency),
):
    """Request a password reset code for a registered intern phone number"""
    _enforce_rate_limit(limiter, ACTION_START, request)
    result = await service.request_challenge(
        payload.phone,
        request_id=_request_id(request),
        ip=_client_ip(request),
    )
    return _challenge_response(result)


@router.post("/resend", response_model=ChallengeResponse, response_model_exclude_none=True)
async def resend_password_reset(
    payload: PhoneRequest,
    request: Request,
    service: RecoveryService = Depends(get_recovery_service),
    limiter: RateLimitService = Depends(rate_limiter_dependency),
):
    """Request a new code; refused while the previous one is still valid"""
    _enforce_rate_limit(limiter, ACTION_START, request)
    result = await service.resend_challenge(
        payload.phone,
        request_id=_request_id(request),
        ip=_client_ip(request),
    )
    return _challenge_response(result)


@router.post("/verify", response_model=ResetResponse)
def verify_and_reset_password(
    payload: VerifyResetRequest,
    request: Request,
    service: RecoveryService = Depends(get_recovery_service),
    limiter: RateLimitService = Depends(rate_limiter_dependency),
):
    """Verify the code and set the new password"""
    _enforce_rate_limit(limiter, ACTION_VERIFY, request)
    service.verify_and_reset(
        payload.phone,
        payload.otp,
        payload.new_password,
        request_id=_request_id(request),
        ip=_client_ip(request),
    )
    return ResetResponse(message="Password reset successful. You can now login with your new password.")
