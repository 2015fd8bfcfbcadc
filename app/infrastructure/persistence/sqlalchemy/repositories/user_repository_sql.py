from datetime import datetime
from typing import List, Optional
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .....exceptions import Conflict
from .....models import User, Profile, Role, ProfileStatus
from .....utils import utcnow
from .....application.ports.user_repo import UserRepository, UserDto, ProfileDto

class SqlUserRepository(UserRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, user: User) -> UserDto:
        return UserDto(
            id=user.id,
            phone=user.phone,
            is_active=bool(user.is_active),
            is_suspended=bool(user.is_suspended),
            suspension_reason=user.suspension_reason,
            locked_until=user.locked_until,
            failed_attempts=user.failed_attempts or 0,
            last_login_at=user.last_login_at,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )

    def _profile_to_dto(self, profile: Profile) -> ProfileDto:
        return ProfileDto(
            id=profile.id,
            user_id=profile.user_id,
            role=Role(profile.role),
            status=ProfileStatus(profile.status),
            full_name=profile.full_name,
            created_at=profile.created_at,
        )

    def _get(self, user_id: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.id == user_id)).first()

    def get_by_phone(self, phone: str) -> Optional[UserDto]:
        user = self.session.exec(select(User).where(User.phone == phone)).first()
        return self._to_dto(user) if user else None

    def get_by_id(self, user_id: str) -> Optional[UserDto]:
        user = self._get(user_id)
        return self._to_dto(user) if user else None

    def get_or_create(self, phone: str) -> UserDto:
        existing = self.get_by_phone(phone)
        if existing:
            return existing
        user = User(phone=phone)
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError:
            # Another request created the same phone first
            self.session.rollback()
            existing = self.get_by_phone(phone)
            if existing is None:
                raise
            return existing
        self.session.refresh(user)
        return self._to_dto(user)

    def list_profiles(self, user_id: str) -> List[ProfileDto]:
        rows = self.session.exec(
            select(Profile).where(Profile.user_id == user_id).order_by(Profile.created_at, Profile.id)
        ).all()
        return [self._profile_to_dto(p) for p in rows]

    def get_profile(self, user_id: str, role: Role) -> Optional[ProfileDto]:
        profile = self.session.exec(
            select(Profile).where(Profile.user_id == user_id, Profile.role == role.value)
        ).first()
        return self._profile_to_dto(profile) if profile else None

    def get_profile_by_id(self, profile_id: str) -> Optional[ProfileDto]:
        profile = self.session.exec(select(Profile).where(Profile.id == profile_id)).first()
        return self._profile_to_dto(profile) if profile else None

    def create_profile(self, user_id: str, role: Role, full_name: Optional[str], status: ProfileStatus) -> ProfileDto:
        profile = Profile(user_id=user_id, role=role.value, status=status.value, full_name=full_name)
        self.session.add(profile)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise Conflict(f"Profile for role {role.value} already exists", details={"role": role.value})
        self.session.refresh(profile)
        return self._profile_to_dto(profile)

    def set_profile_status(self, profile_id: str, status: ProfileStatus) -> Optional[ProfileDto]:
        profile = self.session.exec(select(Profile).where(Profile.id == profile_id)).first()
        if not profile:
            return None
        profile.status = status.value
        profile.updated_at = utcnow()
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)
        return self._profile_to_dto(profile)

    def record_failed_login(self, user_id: str, threshold: int, lock_until: datetime) -> Optional[UserDto]:
        # Increment in the database, not in Python, so concurrent failures all count
        self.session.exec(
            update(User)
            .where(User.id == user_id)
            .values(failed_attempts=User.failed_attempts + 1, updated_at=utcnow())
        )
        self.session.exec(
            update(User)
            .where(User.id == user_id, User.failed_attempts >= threshold)
            .values(locked_until=lock_until, failed_attempts=0)
        )
        self.session.commit()
        return self.get_by_id(user_id)

    def record_successful_login(self, user_id: str, at: datetime) -> None:
        self.session.exec(
            update(User)
            .where(User.id == user_id)
            .values(failed_attempts=0, last_login_at=at, updated_at=at)
        )
        self.session.commit()

    def set_suspension(self, user_id: str, suspended: bool, reason: Optional[str]) -> Optional[UserDto]:
        user = self._get(user_id)
        if not user:
            return None
        user.is_suspended = suspended
        user.suspension_reason = reason if suspended else None
        user.updated_at = utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return self._to_dto(user)

    def set_lock(self, user_id: str, locked_until: Optional[datetime]) -> Optional[UserDto]:
        user = self._get(user_id)
        if not user:
            return None
        user.locked_until = locked_until
        if locked_until is None:
            user.failed_attempts = 0
        user.updated_at = utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return self._to_dto(user)

    def set_active(self, user_id: str, active: bool) -> Optional[UserDto]:
        user = self._get(user_id)
        if not user:
            return None
        user.is_active = active
        user.updated_at = utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return self._to_dto(user)
