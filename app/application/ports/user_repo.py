from dataclasses import dataclass
from typing import List, Protocol, Optional
from datetime import datetime

from ...models import Role, ProfileStatus


@dataclass
class UserDto:
    id: str
    phone: str
    is_active: bool
    is_suspended: bool
    suspension_reason: Optional[str]
    locked_until: Optional[datetime]
    failed_attempts: int
    last_login_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    def is_locked(self, now: datetime) -> bool:
        return bool(self.locked_until and self.locked_until > now)


@dataclass
class ProfileDto:
    id: str
    user_id: str
    role: Role
    status: ProfileStatus
    full_name: Optional[str]
    created_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status == ProfileStatus.ACTIVE


class UserRepository(Protocol):
    def get_by_phone(self, phone: str) -> Optional[UserDto]:
        ...

    def get_by_id(self, user_id: str) -> Optional[UserDto]:
        ...

    def get_or_create(self, phone: str) -> UserDto:
        ...

    def list_profiles(self, user_id: str) -> List[ProfileDto]:
        """Profiles of a user in creation order."""
        ...

    def get_profile(self, user_id: str, role: Role) -> Optional[ProfileDto]:
        ...

    def get_profile_by_id(self, profile_id: str) -> Optional[ProfileDto]:
        ...

    def create_profile(self, user_id: str, role: Role, full_name: Optional[str], status: ProfileStatus) -> ProfileDto:
        """Raises Conflict when the (user, role) pair already exists."""
        ...

    def set_profile_status(self, profile_id: str, status: ProfileStatus) -> Optional[ProfileDto]:
        ...

    def record_failed_login(self, user_id: str, threshold: int, lock_until: datetime) -> Optional[UserDto]:
        ...

    def record_successful_login(self, user_id: str, at: datetime) -> None:
        ...

    def set_suspension(self, user_id: str, suspended: bool, reason: Optional[str]) -> Optional[UserDto]:
        ...

    def set_lock(self, user_id: str, locked_until: Optional[datetime]) -> Optional[UserDto]:
        ...

    def set_active(self, user_id: str, active: bool) -> Optional[UserDto]:
        ...
