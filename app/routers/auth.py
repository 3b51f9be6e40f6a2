import logging

from fastapi import APIRouter, Depends

from app.core.config import settings
from app.core.errors import ErrorCode, RelayError
from app.core.otp import normalize_email
from app.core.redis import RateLimiter
from app.core.supabase import SupabaseGateway, get_gateway
from app.schemas.auth import (
    LoginRequest,
    LoginResponse,
    MfaVerifyRequest,
    MfaVerifyResponse,
    OtpResponse,
    SendOtpRequest,
)
from app.services.auth_service import AuthService
from app.services.otp_service import OTPService, get_otp_service

router = APIRouter(prefix="/api", tags=["auth"])

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def get_auth_service(
    gateway: SupabaseGateway = Depends(get_gateway),
    otp_service: OTPService = Depends(get_otp_service),
) -> AuthService:
    return AuthService(
        gateway,
        otp_service,
        auto_provision_profile=settings.AUTO_PROVISION_PROFILE,
        default_role=settings.DEFAULT_ROLE,
    )


def _enforce_rate_limit(email: str, action: str, max_requests: int, window_seconds: int):
    if not email:
        return
    identifier = normalize_email(email)
    is_allowed, _ = RateLimiter.check_rate_limit(
        identifier=identifier,
        action=action,
        max_requests=max_requests,
        window_seconds=window_seconds,
    )
    if not is_allowed:
        retry_after = RateLimiter.get_remaining_time(identifier, action)
        raise RelayError(
            ErrorCode.RATE_LIMITED,
            f"Demasiados intentos. Intenta nuevamente en {retry_after} segundos.",
            headers={"Retry-After": str(retry_after)},
        )


@router.post("/auth/login", response_model=LoginResponse, response_model_exclude_none=True)
def login(payload: LoginRequest, service: AuthService = Depends(get_auth_service)):
    # Rate limit: max 10 login attempts per 5 minutes per e-mail
    _enforce_rate_limit(payload.email, "login", max_requests=10, window_seconds=300)

    result = service.login(payload.email, payload.password)
    if not result["requires_mfa"]:
        RateLimiter.reset(normalize_email(payload.email), "login")
    return LoginResponse(**result)


@router.post("/send-otp", response_model=OtpResponse, response_model_exclude_none=True)
def send_otp(payload: SendOtpRequest, otp_service: OTPService = Depends(get_otp_service)):
    """
    Store a caller-generated code for the e-mail and mail it.
    The code is valid for OTP_EXPIRY_MINUTES and replaces any earlier one.
    """
    # Rate limit: max 3 sends per 10 minutes per e-mail
    _enforce_rate_limit(payload.email, "send_otp", max_requests=3, window_seconds=600)

    otp_service.issue(payload.email, payload.otp)
    return OtpResponse(
        success=True,
        message="Código enviado",
        expires_in_seconds=otp_service.get_remaining_time(payload.email),
    )


@router.post("/mfa/verify", response_model=MfaVerifyResponse, response_model_exclude_none=True)
def verify_mfa(payload: MfaVerifyRequest, service: AuthService = Depends(get_auth_service)):
    # Rate limit: max 10 verification attempts per 5 minutes per e-mail
    _enforce_rate_limit(payload.email, "verify_otp", max_requests=10, window_seconds=300)

    result = service.verify_mfa(payload.email, payload.code)
    return MfaVerifyResponse(**result)
