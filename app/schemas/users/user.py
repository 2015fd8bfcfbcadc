# app/schemas/users/user.py
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from ...models import ProfileStatus, Role


class ProfileResponse(BaseModel):
    id: str
    role: Role
    status: ProfileStatus
    fullName: Optional[str] = None
    createdAt: datetime

    @classmethod
    def from_dto(cls, profile) -> "ProfileResponse":
        return cls(
            id=profile.id,
            role=profile.role,
            status=profile.status,
            fullName=profile.full_name,
            createdAt=profile.created_at,
        )


class UserResponse(BaseModel):
    id: str
    phone: str
    isActive: bool
    isSuspended: bool
    suspensionReason: Optional[str] = None
    lockedUntil: Optional[datetime] = None
    lastLoginAt: Optional[datetime] = None
    createdAt: datetime

    @classmethod
    def from_dto(cls, user) -> "UserResponse":
        return cls(
            id=user.id,
            phone=user.phone,
            isActive=user.is_active,
            isSuspended=user.is_suspended,
            suspensionReason=user.suspension_reason,
            lockedUntil=user.locked_until,
            lastLoginAt=user.last_login_at,
            createdAt=user.created_at,
        )


class MeResponse(BaseModel):
    user: UserResponse
    activeRole: Role
    activeProfile: ProfileResponse
    profiles: List[ProfileResponse]


class RolesResponse(BaseModel):
    activeRole: Role
    roles: List[ProfileResponse]


# Admin requests
class SuspendUserRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)


class LockUserRequest(BaseModel):
    minutes: int = Field(120, ge=1, le=60 * 24 * 30, description="Lock duration in minutes")


class ProfileStatusUpdateRequest(BaseModel):
    status: ProfileStatus
