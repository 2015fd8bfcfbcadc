import hashlib
import hmac
import logging
import math
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from ..ports.otp_store import OtpStore
from ..ports.sms_gateway import SmsGateway
from ..ports.user_repo import UserRepository
from .abuse_guard import AbuseGuard
from ...exceptions import (
    CodeExpired, DeliveryFailed, InvalidCode, NoAccount, RateLimited,
    RoleAlreadyExists, TooManyAttempts, ValidationFailed,
)
from ...models import ANY_ROLE, OtpPurpose, OtpStatus, Role
from ...utils import mask_phone, normalize_phone, utcnow

logger = logging.getLogger(__name__)


def generate_numeric_code(length: int) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def hash_code(secret: str, salt: str, phone: str, role_key: str, purpose: str, code: str) -> str:
    msg = "|".join([phone, role_key, purpose, salt, code]).encode()
    return hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class OtpDispatch:
    phone: str
    role: Optional[Role]
    purpose: OtpPurpose
    expires_in: int
    resend_after: int


@dataclass(frozen=True)
class VerifiedOtp:
    """Proof that a code was verified; handed straight to the RoleResolver."""
    phone: str
    role: Optional[Role]
    purpose: OtpPurpose
    record_id: str


@dataclass
class OtpEngine:
    store: OtpStore
    sms: SmsGateway
    guard: AbuseGuard
    user_repo: UserRepository
    hash_secret: str
    code_length: int = 6
    ttl_seconds: int = 600
    max_attempts: int = 5
    delivery_grace_seconds: int = 120
    resend_interval_seconds: int = 30
    message_template: str = "Your verification code is {code}. It expires in {minutes} minutes."
    code_generator: Callable[[int], str] = field(default=generate_numeric_code)

    @staticmethod
    def role_key(role: Optional[Role]) -> str:
        return role.value if role else ANY_ROLE

    def _check_scope(self, role: Optional[Role], purpose: OtpPurpose) -> None:
        if purpose == OtpPurpose.REGISTRATION and role is None:
            raise ValidationFailed("Role is required for registration")

    def _check_eligibility(self, phone: str, role: Optional[Role], purpose: OtpPurpose) -> None:
        user = self.user_repo.get_by_phone(phone)
        if purpose == OtpPurpose.REGISTRATION:
            if user and self.user_repo.get_profile(user.id, role):
                raise RoleAlreadyExists(details={"role": role.value})
            return
        if not user:
            raise NoAccount()
        if role is not None and not self.user_repo.get_profile(user.id, role):
            raise NoAccount(f"You are not registered as a {role.value.replace('_', ' ')}.", details={"role": role.value})

    def request(self, phone: str, role: Optional[Role], purpose: OtpPurpose,
                ip_address: Optional[str] = None) -> OtpDispatch:
        phone = normalize_phone(phone)
        self._check_scope(role, purpose)
        self.guard.check_otp_request(phone, ip_address)
        self._check_eligibility(phone, role, purpose)
        return self._issue(phone, role, purpose)

    def resend(self, phone: str, role: Optional[Role], purpose: OtpPurpose,
               ip_address: Optional[str] = None) -> OtpDispatch:
        phone = normalize_phone(phone)
        self._check_scope(role, purpose)
        current = self.store.get_current(phone, self.role_key(role), purpose.value)
        if current and current.status == OtpStatus.ISSUED:
            elapsed = (utcnow() - current.issued_at).total_seconds()
            if elapsed < self.resend_interval_seconds:
                raise RateLimited(
                    "Please wait before requesting another code.",
                    retry_after=math.ceil(self.resend_interval_seconds - elapsed),
                )
        self.guard.check_otp_resend(phone, ip_address)
        self._check_eligibility(phone, role, purpose)
        return self._issue(phone, role, purpose)

    def _issue(self, phone: str, role: Optional[Role], purpose: OtpPurpose) -> OtpDispatch:
        code = self.code_generator(self.code_length)
        salt = secrets.token_hex(16)
        role_key = self.role_key(role)
        now = utcnow()
        record = self.store.replace(
            phone=phone,
            role=role_key,
            purpose=purpose.value,
            code_hash=hash_code(self.hash_secret, salt, phone, role_key, purpose.value, code),
            salt=salt,
            issued_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
            attempts=self.max_attempts,
        )
        message = self.message_template.format(code=code, minutes=max(self.ttl_seconds // 60, 1))
        try:
            self.sms.send(phone, message)
        except DeliveryFailed:
            # Keep the record for a short while; the client is expected to resend
            self.store.shorten_expiry(record.id, utcnow() + timedelta(seconds=self.delivery_grace_seconds))
            logger.error(f"OTP delivery failed for {mask_phone(phone)} ({role_key}/{purpose.value})")
            raise
        logger.info(f"OTP issued for {mask_phone(phone)} ({role_key}/{purpose.value})")
        return OtpDispatch(
            phone=phone,
            role=role,
            purpose=purpose,
            expires_in=self.ttl_seconds,
            resend_after=self.resend_interval_seconds,
        )

    def verify(self, phone: str, role: Optional[Role], purpose: OtpPurpose, code: str,
               ip_address: Optional[str] = None) -> VerifiedOtp:
        phone = normalize_phone(phone)
        self._check_scope(role, purpose)
        if not code or not code.isdigit() or len(code) != self.code_length:
            raise ValidationFailed(f"OTP must be exactly {self.code_length} digits")
        self.guard.check_otp_verify(phone, ip_address)

        role_key = self.role_key(role)
        record = self.store.get_current(phone, role_key, purpose.value)
        if record is None:
            raise InvalidCode("No pending code for this phone. Please request a new one.")
        if record.status == OtpStatus.VERIFIED:
            raise InvalidCode("This code has already been used. Please request a new one.")
        if record.status == OtpStatus.EXHAUSTED or record.attempts_remaining <= 0:
            raise TooManyAttempts()
        if record.expires_at <= utcnow():
            raise CodeExpired()

        expected = hash_code(self.hash_secret, record.salt, phone, role_key, purpose.value, code)
        if not hmac.compare_digest(expected, record.code_hash):
            remaining = self.store.register_failure(record.id)
            logger.warning(f"Invalid OTP for {mask_phone(phone)} ({role_key}/{purpose.value}), {remaining} attempts left")
            raise InvalidCode(details={"attemptsRemaining": remaining or 0})

        if not self.store.consume(record.id, utcnow()):
            # Lost the race against a concurrent verify, or expired in between
            raise InvalidCode("This code has already been used. Please request a new one.")
        logger.info(f"OTP verified for {mask_phone(phone)} ({role_key}/{purpose.value})")
        return VerifiedOtp(phone=phone, role=role, purpose=purpose, record_id=record.id)
