import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..ports.user_repo import ProfileDto, UserDto, UserRepository
from .role_resolver import check_account_status, ensure_profile_active
from .token_service import TokenService
from ...exceptions import Forbidden, Unauthenticated
from ...models import Role, TokenKind

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    user: UserDto
    active_profile: ProfileDto
    profiles: List[ProfileDto]
    claims: Dict[str, Any]

    @property
    def role(self) -> Role:
        return self.active_profile.role


@dataclass
class AuthorizationService:
    tokens: TokenService
    user_repo: UserRepository

    def authenticate(self, token: Optional[str]) -> AuthContext:
        if not token:
            raise Unauthenticated()
        claims = self.tokens.verify(token, TokenKind.ACCESS)

        # Status is reloaded on every request; the token only says who and which role
        user = self.user_repo.get_by_id(claims["sub"])
        if not user:
            raise Unauthenticated("User not found")
        check_account_status(user)

        profiles = self.user_repo.list_profiles(user.id)
        active = next((p for p in profiles if p.role.value == claims["role"]), None)
        if active is None:
            raise Unauthenticated("Role is no longer available")
        ensure_profile_active(active)
        return AuthContext(user=user, active_profile=active, profiles=profiles, claims=claims)

    @staticmethod
    def authorize(ctx: AuthContext, *allowed_roles: Role) -> AuthContext:
        if allowed_roles and ctx.role not in allowed_roles:
            logger.info(f"User {ctx.user.id} as {ctx.role.value} denied, needs {[r.value for r in allowed_roles]}")
            raise Forbidden([r.value for r in allowed_roles], ctx.role.value)
        return ctx

