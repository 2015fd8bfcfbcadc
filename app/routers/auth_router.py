# app/routers/auth_router.py
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request

from .deps import get_auth_context, get_auth_service, get_client_info
from ..application.services.auth_service import AuthService, LoginResult
from ..application.services.authorization_service import AuthContext
from ..application.services.token_service import TokenPair
from ..exceptions import create_success_response
from ..schemas import (
    LogoutRequest, LogoutResponse, MeResponse, OTPDispatchResponse, OTPRequest,
    ProfileResponse, RefreshTokenRequest, RoleSelectionResponse, RoleSelectRequest,
    RolesResponse, SwitchRoleRequest, TokenResponse, UserResponse, VerifyOTPRequest,
)
from ..utils import mask_phone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _token_data(pair: TokenPair) -> Dict[str, Any]:
    return TokenResponse(
        accessToken=pair.access_token,
        refreshToken=pair.refresh_token,
        tokenType=pair.token_type,
        expiresIn=pair.expires_in,
        refreshExpiresIn=pair.refresh_expires_in,
        role=pair.role,
    ).dict()


def _login_data(result: LoginResult) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "user": UserResponse.from_dto(result.user).dict(),
        "profiles": [ProfileResponse.from_dto(p).dict() for p in result.profiles],
        "isNewUser": result.is_new_user,
    }
    if result.tokens is None:
        data.update(RoleSelectionResponse(
            selectionToken=result.selection_token,
            availableRoles=result.available_roles,
        ).dict())
    else:
        data["selectionRequired"] = False
        data["activeRole"] = result.profile.role.value
        data.update(_token_data(result.tokens))
    return data


def _dispatch(request: Request, body: OTPRequest, auth_service: AuthService, resend: bool) -> Dict[str, Any]:
    client_info = get_client_info(request)
    dispatch = auth_service.request_otp(
        body.phone, body.role, body.purpose,
        ip_address=client_info["ip_address"],
        request_id=client_info["request_id"],
        resend=resend,
    )
    data = OTPDispatchResponse(
        phone=mask_phone(dispatch.phone),
        role=dispatch.role,
        purpose=dispatch.purpose,
        expiresIn=dispatch.expires_in,
        resendAfter=dispatch.resend_after,
    ).dict()
    return create_success_response(data)


@router.post("/otp", status_code=202)
def request_otp(request: Request, body: OTPRequest, auth_service: AuthService = Depends(get_auth_service)):
    """Send a one-time code for registration or login"""
    return _dispatch(request, body, auth_service, resend=False)


@router.post("/otp/resend", status_code=202)
def resend_otp(request: Request, body: OTPRequest, auth_service: AuthService = Depends(get_auth_service)):
    """Issue a fresh code, replacing the previous one"""
    return _dispatch(request, body, auth_service, resend=True)


@router.post("/otp/verify")
def verify_otp(request: Request, body: VerifyOTPRequest, auth_service: AuthService = Depends(get_auth_service)):
    """Verify a code; returns a token pair or the roles to choose from"""
    client_info = get_client_info(request)
    result = auth_service.verify_otp(
        body.phone, body.role, body.purpose, body.code,
        full_name=body.fullName,
        ip_address=client_info["ip_address"],
        request_id=client_info["request_id"],
    )
    return create_success_response(_login_data(result))


@router.post("/role/select")
def select_role(request: Request, body: RoleSelectRequest, auth_service: AuthService = Depends(get_auth_service)):
    client_info = get_client_info(request)
    result = auth_service.select_role(body.selectionToken, body.role, **client_info)
    return create_success_response(_login_data(result))


@router.post("/token/refresh")
def refresh_token(request: Request, body: RefreshTokenRequest, auth_service: AuthService = Depends(get_auth_service)):
    client_info = get_client_info(request)
    pair = auth_service.refresh(body.refreshToken, **client_info)
    return create_success_response(_token_data(pair))


@router.post("/logout")
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    ctx: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Revoke one refresh token, or every one the user holds when none is given"""
    client_info = get_client_info(request)
    revoked = auth_service.logout(ctx, body.refreshToken if body else None, **client_info)
    return create_success_response(LogoutResponse(revoked=revoked).dict())


@router.get("/me")
def me(ctx: AuthContext = Depends(get_auth_context)):
    data = MeResponse(
        user=UserResponse.from_dto(ctx.user),
        activeRole=ctx.role,
        activeProfile=ProfileResponse.from_dto(ctx.active_profile),
        profiles=[ProfileResponse.from_dto(p) for p in ctx.profiles],
    ).dict()
    return create_success_response(data)


@router.get("/roles")
def list_roles(ctx: AuthContext = Depends(get_auth_context)):
    data = RolesResponse(
        activeRole=ctx.role,
        roles=[ProfileResponse.from_dto(p) for p in ctx.profiles],
    ).dict()
    return create_success_response(data)


@router.post("/roles/switch")
def switch_role(
    request: Request,
    body: SwitchRoleRequest,
    ctx: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    client_info = get_client_info(request)
    result = auth_service.switch_role(ctx, body.role, **client_info)
    return create_success_response(_login_data(result))
