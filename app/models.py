# app/models.py
from enum import Enum
from typing import Optional, List
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, timezone
import uuid
from sqlalchemy import Column, DateTime, Index, UniqueConstraint, text
from sqlalchemy.types import TypeDecorator

from .utils import utcnow


class Role(str, Enum):
    BUYER_SELLER = "buyer_seller"
    BROKER = "broker"
    DEVELOPER = "developer"
    SOCIETY_OWNER = "society_owner"
    SOCIETY_MEMBER = "society_member"
    ADMIN = "admin"


class ProfileStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"
    REMOVED = "removed"


class OtpPurpose(str, Enum):
    REGISTRATION = "registration"
    LOGIN = "login"


class OtpStatus(str, Enum):
    ISSUED = "issued"
    VERIFIED = "verified"
    EXHAUSTED = "exhausted"
    SUPERSEDED = "superseded"


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    ROLE_SELECTION = "role_selection"


# Stored in otp_codes.role for login codes not bound to a role
ANY_ROLE = "any"


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    SQLite keeps no offset, so values are written as UTC wall time there and
    tagged as UTC again on load. Naive values are taken to be UTC.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utc_column(nullable: bool = False, index: bool = False) -> Column:
    return Column(UTCDateTime(timezone=True), nullable=nullable, index=index)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    phone: str = Field(max_length=20, unique=True, index=True)
    is_active: bool = Field(default=True)
    is_suspended: bool = Field(default=False)
    suspension_reason: Optional[str] = Field(max_length=255, default=None)
    locked_until: Optional[datetime] = Field(default=None, sa_column=utc_column(nullable=True))
    failed_attempts: int = Field(default=0)
    last_login_at: Optional[datetime] = Field(default=None, sa_column=utc_column(nullable=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())

    # Relationships
    profiles: List["Profile"] = Relationship(back_populates="user")


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_profiles_user_role"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    role: str = Field(max_length=20, index=True)
    status: str = Field(max_length=20, default=ProfileStatus.ACTIVE.value)
    full_name: Optional[str] = Field(max_length=100, default=None)
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())

    user: Optional[User] = Relationship(back_populates="profiles")


class OTPCode(SQLModel, table=True):
    __tablename__ = "otp_codes"
    # At most one live code per (phone, role, purpose)
    __table_args__ = (
        Index(
            "uq_otp_codes_live",
            "phone",
            "role",
            "purpose",
            unique=True,
            sqlite_where=text("status = 'issued'"),
            postgresql_where=text("status = 'issued'"),
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    phone: str = Field(max_length=20, index=True)
    role: str = Field(max_length=20)
    purpose: str = Field(max_length=20)
    code_hash: str = Field(max_length=64)
    salt: str = Field(max_length=32)
    status: str = Field(max_length=20, default=OtpStatus.ISSUED.value)
    attempts_remaining: int
    issued_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    expires_at: datetime = Field(sa_column=utc_column(index=True))
    consumed_at: Optional[datetime] = Field(default=None, sa_column=utc_column(nullable=True))


class AuthToken(SQLModel, table=True):
    """Revocation bookkeeping for refresh and role-selection tokens."""
    __tablename__ = "auth_tokens"

    jti: str = Field(primary_key=True, max_length=64)
    user_id: str = Field(foreign_key="users.id", index=True)
    kind: str = Field(max_length=20)
    active_role: Optional[str] = Field(max_length=20, default=None)
    issued_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    expires_at: datetime = Field(sa_column=utc_column(index=True))
    revoked_at: Optional[datetime] = Field(default=None, sa_column=utc_column(nullable=True))
    replaced_by: Optional[str] = Field(max_length=64, default=None)
