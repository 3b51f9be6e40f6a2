from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.users import UserOut


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class LoginResponse(BaseModel):
    success: bool = True
    requires_mfa: bool = Field(False, alias="requiresMFA")
    token: Optional[str] = None
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    user: Optional[UserOut] = None
    email: Optional[str] = None
    user_id: Optional[str] = Field(None, alias="userId")

    class Config:
        populate_by_name = True


class SendOtpRequest(BaseModel):
    email: Optional[str] = None
    otp: Optional[str] = None


class MfaVerifyRequest(BaseModel):
    email: Optional[str] = None
    code: Optional[str] = None


class OtpResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    expires_in_seconds: Optional[int] = Field(None, alias="expiresInSeconds")

    class Config:
        populate_by_name = True


class MfaVerifyResponse(BaseModel):
    success: bool = True
    token: Optional[str] = None
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    user: Optional[UserOut] = None

    class Config:
        populate_by_name = True


class HealthResponse(BaseModel):
    status: str
    timestamp: str
