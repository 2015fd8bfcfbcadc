import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from ..ports.audit_logger import AuditLogger
from ..ports.user_repo import ProfileDto, UserDto, UserRepository
from .abuse_guard import AbuseGuard
from .authorization_service import AuthContext
from .otp_engine import OtpDispatch, OtpEngine
from .role_resolver import RoleResolver
from .token_service import TokenPair, TokenService
from ...exceptions import AccountLocked, AuthError, InvalidCode
from ...models import OtpPurpose, Role
from ...utils import mask_phone, normalize_phone, utcnow

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    """What a successful verification or role selection hands back to the client.

    Either `tokens` is set, or `selection_token` together with
    `available_roles` when the user still has to pick a role.
    """
    user: UserDto
    profiles: List[ProfileDto]
    profile: Optional[ProfileDto] = None
    tokens: Optional[TokenPair] = None
    selection_token: Optional[str] = None
    available_roles: List[str] = field(default_factory=list)
    is_new_user: bool = False


@dataclass
class AuthService:
    otp: OtpEngine
    resolver: RoleResolver
    tokens: TokenService
    user_repo: UserRepository
    guard: AbuseGuard
    audit: AuditLogger
    lock_threshold: int = 10
    lock_duration_seconds: int = 7200

    def _audit(self, action: str, ip_address: Optional[str], request_id: Optional[str], **kwargs) -> None:
        self.audit.log(action, ip_address=ip_address, request_id=request_id, **kwargs)

    def request_otp(self, phone: str, role: Optional[Role], purpose: OtpPurpose,
                    ip_address: Optional[str] = None, request_id: Optional[str] = None,
                    resend: bool = False) -> OtpDispatch:
        action = "otp_resend" if resend else "otp_request"
        send = self.otp.resend if resend else self.otp.request
        role_value = role.value if role else None
        try:
            dispatch = send(phone, role, purpose, ip_address)
        except AuthError as e:
            self._audit(action, ip_address, request_id, phone=phone, role=role_value, success=False,
                        details={"purpose": purpose.value, "error": e.code})
            raise
        self._audit(action, ip_address, request_id, phone=dispatch.phone, role=role_value,
                    details={"purpose": purpose.value})
        return dispatch

    def resend_otp(self, phone: str, role: Optional[Role], purpose: OtpPurpose,
                   ip_address: Optional[str] = None, request_id: Optional[str] = None) -> OtpDispatch:
        return self.request_otp(phone, role, purpose, ip_address, request_id, resend=True)

    def _record_failure(self, user: UserDto, ip_address: Optional[str], request_id: Optional[str]) -> None:
        lock_until = utcnow() + timedelta(seconds=self.lock_duration_seconds)
        updated = self.user_repo.record_failed_login(user.id, self.lock_threshold, lock_until)
        if updated and updated.is_locked(utcnow()):
            logger.warning(f"Account {user.id} locked until {updated.locked_until.isoformat()}")
            self._audit("account_locked", ip_address, request_id, phone=user.phone, user_id=user.id,
                        details={"lockedUntil": updated.locked_until.isoformat()})

    def verify_otp(self, phone: str, role: Optional[Role], purpose: OtpPurpose, code: str,
                   full_name: Optional[str] = None, ip_address: Optional[str] = None,
                   request_id: Optional[str] = None) -> LoginResult:
        phone = normalize_phone(phone)
        role_value = role.value if role else None
        existing = self.user_repo.get_by_phone(phone)

        if purpose == OtpPurpose.LOGIN and existing and existing.is_locked(utcnow()):
            self._audit("otp_verify", ip_address, request_id, phone=phone, user_id=existing.id, role=role_value,
                        success=False, details={"error": AccountLocked.code})
            raise AccountLocked(existing.locked_until)

        try:
            self.otp.verify(phone, role, purpose, code, ip_address)
        except AuthError as e:
            if isinstance(e, InvalidCode) and purpose == OtpPurpose.LOGIN and existing:
                self._record_failure(existing, ip_address, request_id)
            self._audit("otp_verify", ip_address, request_id, phone=phone, role=role_value, success=False,
                        details={"purpose": purpose.value, "error": e.code})
            raise

        if purpose == OtpPurpose.REGISTRATION:
            resolution = self.resolver.resolve_registration(phone, role, full_name)
        else:
            resolution = self.resolver.resolve_login(phone, role)
        user = resolution.user
        profiles = self.user_repo.list_profiles(user.id)

        if resolution.needs_selection:
            roles = [p.role.value for p in resolution.available]
            selection_token = self.tokens.issue_selection_token(user.id, roles)
            self._audit("role_selection_required", ip_address, request_id, phone=phone, user_id=user.id,
                        details={"availableRoles": roles})
            return LoginResult(user=user, profiles=profiles, selection_token=selection_token, available_roles=roles)

        pair = self.tokens.issue(user.id, resolution.profile.role.value)
        self.user_repo.record_successful_login(user.id, utcnow())
        action = "register" if purpose == OtpPurpose.REGISTRATION else "login"
        self._audit(action, ip_address, request_id, phone=phone, user_id=user.id, role=pair.role)
        logger.info(f"{action.capitalize()} succeeded for {mask_phone(phone)} as {pair.role}")
        return LoginResult(user=user, profiles=profiles, profile=resolution.profile, tokens=pair,
                           is_new_user=existing is None)

    def select_role(self, selection_token: str, role: Role, ip_address: Optional[str] = None,
                    request_id: Optional[str] = None) -> LoginResult:
        self.guard.check_auth(ip_address)
        claims = self.tokens.consume_selection_token(selection_token, role=role.value)
        resolution = self.resolver.resolve_selection(claims["sub"], role, allowed=claims.get("roles") or [])
        user = resolution.user
        pair = self.tokens.issue(user.id, role.value)
        self.user_repo.record_successful_login(user.id, utcnow())
        self._audit("login", ip_address, request_id, phone=user.phone, user_id=user.id, role=role.value,
                    details={"via": "role_selection"})
        return LoginResult(user=user, profiles=self.user_repo.list_profiles(user.id),
                           profile=resolution.profile, tokens=pair)

    def refresh(self, refresh_token: str, ip_address: Optional[str] = None,
                request_id: Optional[str] = None) -> TokenPair:
        self.guard.check_auth(ip_address)
        try:
            record, next_jti = self.tokens.rotate(refresh_token)
        except AuthError as e:
            self._audit("token_refresh", ip_address, request_id, success=False, details={"error": e.code})
            raise
        resolution = self.resolver.resolve_for_refresh(record.user_id, record.active_role)
        pair = self.tokens.issue(record.user_id, resolution.profile.role.value, refresh_jti=next_jti)
        self._audit("token_refresh", ip_address, request_id, user_id=record.user_id, role=pair.role)
        return pair

    def logout(self, ctx: AuthContext, refresh_token: Optional[str] = None,
               ip_address: Optional[str] = None, request_id: Optional[str] = None) -> int:
        if refresh_token:
            revoked = 1 if self.tokens.revoke_refresh(refresh_token, ctx.user.id) else 0
        else:
            revoked = self.tokens.revoke_all(ctx.user.id)
        self._audit("logout", ip_address, request_id, user_id=ctx.user.id, role=ctx.role.value,
                    details={"revoked": revoked, "all": refresh_token is None})
        return revoked

    def switch_role(self, ctx: AuthContext, role: Role, ip_address: Optional[str] = None,
                    request_id: Optional[str] = None) -> LoginResult:
        resolution = self.resolver.resolve_selection(ctx.user.id, role)
        pair = self.tokens.issue(ctx.user.id, role.value)
        self._audit("role_switch", ip_address, request_id, user_id=ctx.user.id, role=role.value,
                    details={"from": ctx.role.value})
        return LoginResult(user=resolution.user, profiles=self.user_repo.list_profiles(ctx.user.id),
                           profile=resolution.profile, tokens=pair)
