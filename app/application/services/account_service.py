from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from ..ports.audit_logger import AuditLogger
from ..ports.user_repo import ProfileDto, UserDto, UserRepository
from .token_service import TokenService
from ...exceptions import NotFound, ValidationFailed
from ...models import ProfileStatus
from ...utils import utcnow


@dataclass
class AccountService:
    """Administrative account and profile status changes."""

    user_repo: UserRepository
    tokens: TokenService
    audit: AuditLogger

    def _require(self, user: Optional[UserDto]) -> UserDto:
        if user is None:
            raise NotFound("User not found")
        return user

    def _log(self, action: str, actor_id: str, user: UserDto, **details) -> None:
        self.audit.log(action, phone=user.phone, user_id=user.id, details={"actor": actor_id, **details})

    def suspend(self, actor_id: str, user_id: str, reason: str) -> UserDto:
        if not reason or not reason.strip():
            raise ValidationFailed("Suspension reason is required")
        user = self._require(self.user_repo.set_suspension(user_id, True, reason.strip()))
        revoked = self.tokens.revoke_all(user.id)
        self._log("account_suspended", actor_id, user, reason=user.suspension_reason, revoked=revoked)
        return user

    def unsuspend(self, actor_id: str, user_id: str) -> UserDto:
        user = self._require(self.user_repo.set_suspension(user_id, False, None))
        self._log("account_unsuspended", actor_id, user)
        return user

    def lock(self, actor_id: str, user_id: str, minutes: int) -> UserDto:
        if minutes <= 0:
            raise ValidationFailed("Lock duration must be positive")
        user = self._require(self.user_repo.set_lock(user_id, utcnow() + timedelta(minutes=minutes)))
        self._log("account_locked", actor_id, user, lockedUntil=user.locked_until.isoformat())
        return user

    def unlock(self, actor_id: str, user_id: str) -> UserDto:
        user = self._require(self.user_repo.set_lock(user_id, None))
        self._log("account_unlocked", actor_id, user)
        return user

    def deactivate(self, actor_id: str, user_id: str) -> UserDto:
        user = self._require(self.user_repo.set_active(user_id, False))
        revoked = self.tokens.revoke_all(user.id)
        self._log("account_deactivated", actor_id, user, revoked=revoked)
        return user

    def reactivate(self, actor_id: str, user_id: str) -> UserDto:
        user = self._require(self.user_repo.set_active(user_id, True))
        self._log("account_reactivated", actor_id, user)
        return user

    def set_profile_status(self, actor_id: str, profile_id: str, status: ProfileStatus) -> ProfileDto:
        profile = self.user_repo.set_profile_status(profile_id, status)
        if profile is None:
            raise NotFound("Profile not found")
        self.audit.log("profile_status_changed", user_id=profile.user_id, role=profile.role.value,
                       details={"actor": actor_id, "status": status.value})
        return profile
