# app/routers/admin_router.py
from fastapi import APIRouter, Depends

from .deps import get_account_service, require_roles
from ..application.services.account_service import AccountService
from ..application.services.authorization_service import AuthContext
from ..exceptions import create_success_response
from ..models import Role
from ..schemas import (
    LockUserRequest, ProfileResponse, ProfileStatusUpdateRequest,
    SuspendUserRequest, UserResponse,
)

router = APIRouter(prefix="/admin", tags=["Administration"])

require_admin = require_roles(Role.ADMIN)


@router.post("/users/{user_id}/suspend")
def suspend_user(
    user_id: str,
    body: SuspendUserRequest,
    admin: AuthContext = Depends(require_admin),
    accounts: AccountService = Depends(get_account_service),
):
    """Suspend an account and revoke its refresh tokens"""
    user = accounts.suspend(admin.user.id, user_id, body.reason)
    return create_success_response(UserResponse.from_dto(user).dict())


@router.post("/users/{user_id}/unsuspend")
def unsuspend_user(
    user_id: str,
    admin: AuthContext = Depends(require_admin),
    accounts: AccountService = Depends(get_account_service),
):
    user = accounts.unsuspend(admin.user.id, user_id)
    return create_success_response(UserResponse.from_dto(user).dict())


@router.post("/users/{user_id}/lock")
def lock_user(
    user_id: str,
    body: LockUserRequest,
    admin: AuthContext = Depends(require_admin),
    accounts: AccountService = Depends(get_account_service),
):
    user = accounts.lock(admin.user.id, user_id, body.minutes)
    return create_success_response(UserResponse.from_dto(user).dict())


@router.post("/users/{user_id}/unlock")
def unlock_user(
    user_id: str,
    admin: AuthContext = Depends(require_admin),
    accounts: AccountService = Depends(get_account_service),
):
    """Clear the lock and the failed-attempt counter"""
    user = accounts.unlock(admin.user.id, user_id)
    return create_success_response(UserResponse.from_dto(user).dict())


@router.post("/users/{user_id}/deactivate")
def deactivate_user(
    user_id: str,
    admin: AuthContext = Depends(require_admin),
    accounts: AccountService = Depends(get_account_service),
):
    user = accounts.deactivate(admin.user.id, user_id)
    return create_success_response(UserResponse.from_dto(user).dict())


@router.post("/users/{user_id}/reactivate")
def reactivate_user(
    user_id: str,
    admin: AuthContext = Depends(require_admin),
    accounts: AccountService = Depends(get_account_service),
):
    user = accounts.reactivate(admin.user.id, user_id)
    return create_success_response(UserResponse.from_dto(user).dict())


@router.patch("/profiles/{profile_id}")
def update_profile_status(
    profile_id: str,
    body: ProfileStatusUpdateRequest,
    admin: AuthContext = Depends(require_admin),
    accounts: AccountService = Depends(get_account_service),
):
    profile = accounts.set_profile_status(admin.user.id, profile_id, body.status)
    return create_success_response(ProfileResponse.from_dto(profile).dict())
