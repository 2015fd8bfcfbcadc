import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..ports.rate_limiter import RateLimiter
from ...exceptions import RateLimited
from ...utils import mask_phone

logger = logging.getLogger(__name__)


@dataclass
class RateLimitPolicy:
    max_requests: int
    window_seconds: int


@dataclass
class AbusePolicies:
    otp_request_phone: RateLimitPolicy
    otp_request_ip: RateLimitPolicy
    otp_resend_phone: RateLimitPolicy
    otp_verify_phone: RateLimitPolicy
    otp_verify_ip: RateLimitPolicy
    auth_ip: RateLimitPolicy

    @classmethod
    def from_settings(cls, settings) -> "AbusePolicies":
        return cls(
            otp_request_phone=RateLimitPolicy(settings.OTP_REQUEST_RATE_LIMIT, settings.OTP_REQUEST_RATE_WINDOW),
            otp_request_ip=RateLimitPolicy(settings.IP_OTP_REQUEST_RATE_LIMIT, settings.OTP_REQUEST_RATE_WINDOW),
            otp_resend_phone=RateLimitPolicy(settings.OTP_RESEND_RATE_LIMIT, settings.OTP_REQUEST_RATE_WINDOW),
            otp_verify_phone=RateLimitPolicy(settings.OTP_VERIFY_RATE_LIMIT, settings.OTP_VERIFY_RATE_WINDOW),
            otp_verify_ip=RateLimitPolicy(settings.IP_OTP_VERIFY_RATE_LIMIT, settings.OTP_VERIFY_RATE_WINDOW),
            auth_ip=RateLimitPolicy(settings.AUTH_RATE_LIMIT, settings.AUTH_RATE_WINDOW),
        )


@dataclass
class AbuseGuard:
    """Rate limits for OTP traffic, keyed per phone and per client IP.

    Pure counting: no knowledge of users or roles. Every denial raises
    RateLimited with the number of seconds until a slot frees up.
    """

    limiter: RateLimiter
    policies: AbusePolicies

    def _enforce(self, checks: List[Tuple[str, RateLimitPolicy]], what: str) -> None:
        for key, policy in checks:
            result = self.limiter.hit(key, policy.max_requests, policy.window_seconds)
            if not result.allowed:
                logger.warning(f"Rate limit exceeded for {what}, retry after {result.retry_after}s")
                raise RateLimited(retry_after=result.retry_after)

    def check_otp_request(self, phone: str, ip_address: Optional[str] = None) -> None:
        checks = [(f"otp:req:phone:{phone}", self.policies.otp_request_phone)]
        if ip_address:
            checks.append((f"otp:req:ip:{ip_address}", self.policies.otp_request_ip))
        self._enforce(checks, f"OTP request {mask_phone(phone)}")

    def check_otp_resend(self, phone: str, ip_address: Optional[str] = None) -> None:
        self._enforce([(f"otp:resend:phone:{phone}", self.policies.otp_resend_phone)], f"OTP resend {mask_phone(phone)}")
        self.check_otp_request(phone, ip_address)

    def check_otp_verify(self, phone: str, ip_address: Optional[str] = None) -> None:
        checks = [(f"otp:verify:phone:{phone}", self.policies.otp_verify_phone)]
        if ip_address:
            checks.append((f"otp:verify:ip:{ip_address}", self.policies.otp_verify_ip))
        self._enforce(checks, f"OTP verify {mask_phone(phone)}")

    def check_auth(self, ip_address: Optional[str]) -> None:
        if not ip_address:
            return
        self._enforce([(f"auth:ip:{ip_address}", self.policies.auth_ip)], "auth traffic")
