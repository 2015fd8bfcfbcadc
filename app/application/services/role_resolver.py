import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..ports.user_repo import ProfileDto, UserDto, UserRepository
from ...exceptions import (
    AccountDeactivated, AccountLocked, AccountSuspended, AuthError, Conflict,
    NoAccount, PendingApproval, ProfileRemoved, ProfileSuspended,
)
from ...models import ProfileStatus, Role
from ...utils import mask_phone, utcnow

logger = logging.getLogger(__name__)

# Lower value wins; roles not listed share DEFAULT_PRECEDENCE
ROLE_PRECEDENCE: Dict[Role, int] = {
    Role.SOCIETY_OWNER: 0,
}
DEFAULT_PRECEDENCE = 1

_PROFILE_STATUS_ERRORS = {
    ProfileStatus.SUSPENDED: ProfileSuspended,
    ProfileStatus.PENDING: PendingApproval,
    ProfileStatus.REMOVED: ProfileRemoved,
}


def role_precedence(role: Role) -> int:
    return ROLE_PRECEDENCE.get(role, DEFAULT_PRECEDENCE)


def order_by_precedence(profiles: List[ProfileDto]) -> List[ProfileDto]:
    """Sort profiles by role precedence, keeping creation order for ties.

    `profiles` is expected in creation order (as returned by the repository);
    sorted() is stable so equal-precedence roles keep that order.
    """
    return sorted(profiles, key=lambda p: role_precedence(p.role))


def current_profile(profiles: List[ProfileDto]) -> Optional[ProfileDto]:
    """The profile a user acts as when nothing else decides: first active one by precedence."""
    for profile in order_by_precedence(profiles):
        if profile.is_active:
            return profile
    return None


def profile_status_error(profile: ProfileDto) -> AuthError:
    error_cls = _PROFILE_STATUS_ERRORS.get(profile.status, ProfileRemoved)
    return error_cls(details={"role": profile.role.value, "status": profile.status.value})


def ensure_profile_active(profile: ProfileDto) -> None:
    if not profile.is_active:
        raise profile_status_error(profile)


def check_account_status(user: UserDto, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    if not user.is_active:
        raise AccountDeactivated()
    if user.is_suspended:
        raise AccountSuspended(user.suspension_reason)
    if user.is_locked(now):
        raise AccountLocked(user.locked_until)


@dataclass
class Resolution:
    """Outcome of resolving a verified phone to a role.

    `profile` is set when a single role was activated; otherwise
    `available` lists the active profiles the caller must choose from.
    """
    user: UserDto
    profile: Optional[ProfileDto] = None
    available: List[ProfileDto] = field(default_factory=list)

    @property
    def needs_selection(self) -> bool:
        return self.profile is None


@dataclass
class RoleResolver:
    user_repo: UserRepository

    def resolve_registration(self, phone: str, role: Role, full_name: Optional[str] = None) -> Resolution:
        user = self.user_repo.get_or_create(phone)
        check_account_status(user)
        if self.user_repo.get_profile(user.id, role):
            raise Conflict(f"Profile for role {role.value} already exists", details={"role": role.value})
        profile = self.user_repo.create_profile(user.id, role, full_name, ProfileStatus.ACTIVE)
        logger.info(f"Registered {role.value} profile for {mask_phone(phone)}")
        return Resolution(user=user, profile=profile)

    def resolve_login(self, phone: str, role: Optional[Role] = None) -> Resolution:
        user = self.user_repo.get_by_phone(phone)
        if not user:
            raise NoAccount()
        check_account_status(user)
        profiles = self.user_repo.list_profiles(user.id)

        if role is not None:
            profile = next((p for p in profiles if p.role == role), None)
            if profile is None:
                raise NoAccount(details={"role": role.value})
            ensure_profile_active(profile)
            return Resolution(user=user, profile=profile)

        if not profiles:
            raise NoAccount()
        active = [p for p in order_by_precedence(profiles) if p.is_active]
        if len(active) == 1:
            return Resolution(user=user, profile=active[0])
        if not active:
            raise profile_status_error(order_by_precedence(profiles)[0])
        return Resolution(user=user, available=active)

    def resolve_selection(self, user_id: str, role: Role, allowed: Optional[List[str]] = None) -> Resolution:
        """Activate `role` for an already-verified user (role selection or switch)."""
        user = self.user_repo.get_by_id(user_id)
        if not user:
            raise NoAccount()
        check_account_status(user)
        if allowed is not None and role.value not in allowed:
            raise NoAccount(details={"role": role.value})
        profile = self.user_repo.get_profile(user.id, role)
        if profile is None:
            raise NoAccount(details={"role": role.value})
        ensure_profile_active(profile)
        return Resolution(user=user, profile=profile)

    def resolve_for_refresh(self, user_id: str, preferred_role: Optional[str]) -> Resolution:
        user = self.user_repo.get_by_id(user_id)
        if not user:
            raise NoAccount()
        check_account_status(user)
        profiles = self.user_repo.list_profiles(user.id)
        if preferred_role:
            preferred = next((p for p in profiles if p.role.value == preferred_role), None)
            if preferred and preferred.is_active:
                return Resolution(user=user, profile=preferred)
        profile = current_profile(profiles)
        if profile is None:
            if not profiles:
                raise NoAccount()
            raise profile_status_error(order_by_precedence(profiles)[0])
        return Resolution(user=user, profile=profile)
