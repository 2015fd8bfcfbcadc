# app/schemas/auth/auth.py
from pydantic import BaseModel, Field, validator
from typing import Optional, List
import re

from ...models import OtpPurpose, Role


class OTPRequest(BaseModel):
    phone: str = Field(..., description="Phone number in E.164 format, e.g. +14155550123")
    role: Optional[Role] = Field(None, description="Role to register, or to bind a login code to")
    purpose: OtpPurpose = Field(OtpPurpose.LOGIN, description="'registration' or 'login'")


class VerifyOTPRequest(OTPRequest):
    code: str = Field(..., description="One-time code received by SMS")
    fullName: Optional[str] = Field(None, min_length=2, max_length=100, description="Name for a new profile")

    @validator('code')
    def validate_code(cls, v):
        v = v.strip()
        if not v.isdigit():
            raise ValueError('OTP must contain digits only')
        return v

    @validator('fullName')
    def validate_full_name(cls, v):
        if v is None:
            return v
        if not re.match(r"^[a-zA-Z\s\-'.]+$", v):
            raise ValueError('Name can only contain letters, spaces, hyphens, apostrophes and dots')
        return v.strip()


class RoleSelectRequest(BaseModel):
    selectionToken: str
    role: Role


class RefreshTokenRequest(BaseModel):
    refreshToken: str


class LogoutRequest(BaseModel):
    refreshToken: Optional[str] = Field(None, description="Revoke only this token; omit to log out everywhere")


class SwitchRoleRequest(BaseModel):
    role: Role


class OTPDispatchResponse(BaseModel):
    phone: str
    role: Optional[Role] = None
    purpose: OtpPurpose
    expiresIn: int
    resendAfter: int


class TokenResponse(BaseModel):
    accessToken: str
    refreshToken: str
    tokenType: str = "bearer"
    expiresIn: int
    refreshExpiresIn: int
    role: Role


class RoleSelectionResponse(BaseModel):
    selectionRequired: bool = True
    selectionToken: str
    availableRoles: List[Role]


class LogoutResponse(BaseModel):
    revoked: int
