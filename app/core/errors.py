from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_TOKEN_MISSING = "AUTH_TOKEN_MISSING"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_USER_INACTIVE = "AUTH_USER_INACTIVE"
    AUTHZ_FORBIDDEN = "AUTHZ_FORBIDDEN"
    OTP_EMPTY = "OTP_EMPTY"
    OTP_NOT_FOUND = "OTP_NOT_FOUND"
    OTP_EXPIRED = "OTP_EXPIRED"
    OTP_MISMATCH = "OTP_MISMATCH"
    OTP_LOCKED = "OTP_LOCKED"
    RATE_LIMITED = "RATE_LIMITED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    USER_EXISTS = "USER_EXISTS"
    ROLE_NOT_FOUND = "ROLE_NOT_FOUND"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


STATUS_CODES = {
    ErrorCode.AUTH_INVALID_CREDENTIALS: 401,
    ErrorCode.AUTH_TOKEN_MISSING: 401,
    ErrorCode.AUTH_TOKEN_INVALID: 401,
    ErrorCode.AUTH_USER_INACTIVE: 403,
    ErrorCode.AUTHZ_FORBIDDEN: 403,
    ErrorCode.OTP_EMPTY: 400,
    ErrorCode.OTP_NOT_FOUND: 404,
    ErrorCode.OTP_EXPIRED: 410,
    ErrorCode.OTP_MISMATCH: 400,
    ErrorCode.OTP_LOCKED: 429,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.PROFILE_NOT_FOUND: 404,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.USER_EXISTS: 409,
    ErrorCode.ROLE_NOT_FOUND: 400,
    ErrorCode.UPSTREAM_ERROR: 502,
    ErrorCode.UPSTREAM_UNAVAILABLE: 503,
    ErrorCode.INTERNAL_ERROR: 500,
}


class RelayError(Exception):
    """Domain failure rendered as {"success": false, "error": ...}."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: Optional[int] = None,
        headers: Optional[dict] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code or STATUS_CODES.get(code, 500)
        self.headers = headers

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code.value}
