import logging
from functools import lru_cache
from typing import Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from ..application.ports.audit_logger import AuditLogger
from ..application.ports.rate_limiter import RateLimiter
from ..application.ports.sms_gateway import SmsGateway
from ..application.services.abuse_guard import AbuseGuard, AbusePolicies
from ..application.services.account_service import AccountService
from ..application.services.auth_service import AuthService
from ..application.services.authorization_service import AuthContext, AuthorizationService
from ..application.services.otp_engine import OtpEngine
from ..application.services.role_resolver import RoleResolver
from ..application.services.token_service import TokenService
from ..config import settings
from ..database import get_session
from ..infrastructure.audit.std_logger import StdAuditLogger
from ..infrastructure.persistence.sqlalchemy.repositories.otp_repository_sql import SqlOtpStore
from ..infrastructure.persistence.sqlalchemy.repositories.token_repository_sql import SqlTokenStore
from ..infrastructure.persistence.sqlalchemy.repositories.user_repository_sql import SqlUserRepository
from ..models import Role

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_client_info(request: Request) -> Dict[str, Optional[str]]:
    """Extract client information for rate limiting and audit.

    X-Forwarded-For is only read when the direct peer is a trusted proxy; the
    client address is then the right-most hop that is not itself trusted.
    """
    ip_address = request.client.host if request.client else None
    trusted = settings.trusted_proxies_list
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and ip_address in trusted:
        for hop in reversed([h.strip() for h in forwarded.split(",") if h.strip()]):
            ip_address = hop
            if hop not in trusted:
                break
    return {
        "ip_address": ip_address,
        "request_id": getattr(request.state, "request_id", None) or request.headers.get("x-request-id"),
    }


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    if settings.REDIS_URL:
        from ..infrastructure.rate_limit.redis_rate_limiter import RedisRateLimiter
        logger.info("Using Redis rate limiter")
        return RedisRateLimiter(settings.REDIS_URL)
    from ..infrastructure.rate_limit.memory_rate_limiter import InMemoryRateLimiter
    logger.warning("REDIS_URL not set, rate limits are per process")
    return InMemoryRateLimiter()


@lru_cache()
def get_sms_gateway() -> SmsGateway:
    if settings.twilio_configured:
        from ..infrastructure.sms.twilio_gateway import TwilioSmsGateway
        return TwilioSmsGateway()
    from ..infrastructure.sms.console_gateway import ConsoleSmsGateway
    logger.warning("Twilio not configured, OTP messages will only be logged")
    return ConsoleSmsGateway()


@lru_cache()
def get_audit_logger() -> AuditLogger:
    return StdAuditLogger()


def get_abuse_guard(limiter: RateLimiter = Depends(get_rate_limiter)) -> AbuseGuard:
    return AbuseGuard(limiter=limiter, policies=AbusePolicies.from_settings(settings))


def get_user_repo(session: Session = Depends(get_session)) -> SqlUserRepository:
    return SqlUserRepository(session)


def get_token_service(session: Session = Depends(get_session)) -> TokenService:
    return TokenService(
        token_store=SqlTokenStore(session),
        secret=settings.TOKEN_SIGNING_SECRET,
        algorithm=settings.TOKEN_ALGORITHM,
        issuer=settings.TOKEN_ISSUER,
        access_ttl_seconds=settings.ACCESS_TOKEN_TTL,
        refresh_ttl_seconds=settings.REFRESH_TOKEN_TTL,
        selection_ttl_seconds=settings.ROLE_SELECTION_TTL,
    )


def get_otp_engine(
    session: Session = Depends(get_session),
    sms: SmsGateway = Depends(get_sms_gateway),
    guard: AbuseGuard = Depends(get_abuse_guard),
    user_repo: SqlUserRepository = Depends(get_user_repo),
) -> OtpEngine:
    return OtpEngine(
        store=SqlOtpStore(session),
        sms=sms,
        guard=guard,
        user_repo=user_repo,
        hash_secret=settings.otp_hash_secret,
        code_length=settings.OTP_LENGTH,
        ttl_seconds=settings.OTP_TTL,
        max_attempts=settings.OTP_MAX_ATTEMPTS,
        delivery_grace_seconds=settings.OTP_DELIVERY_GRACE,
        resend_interval_seconds=settings.OTP_RESEND_INTERVAL,
        message_template=settings.OTP_MESSAGE_TEMPLATE,
    )


def get_auth_service(
    otp: OtpEngine = Depends(get_otp_engine),
    tokens: TokenService = Depends(get_token_service),
    user_repo: SqlUserRepository = Depends(get_user_repo),
    guard: AbuseGuard = Depends(get_abuse_guard),
    audit: AuditLogger = Depends(get_audit_logger),
) -> AuthService:
    return AuthService(
        otp=otp,
        resolver=RoleResolver(user_repo),
        tokens=tokens,
        user_repo=user_repo,
        guard=guard,
        audit=audit,
        lock_threshold=settings.ACCOUNT_LOCK_THRESHOLD,
        lock_duration_seconds=settings.ACCOUNT_LOCK_DURATION,
    )


def get_account_service(
    user_repo: SqlUserRepository = Depends(get_user_repo),
    tokens: TokenService = Depends(get_token_service),
    audit: AuditLogger = Depends(get_audit_logger),
) -> AccountService:
    return AccountService(user_repo=user_repo, tokens=tokens, audit=audit)


def get_authorization_service(
    tokens: TokenService = Depends(get_token_service),
    user_repo: SqlUserRepository = Depends(get_user_repo),
) -> AuthorizationService:
    return AuthorizationService(tokens=tokens, user_repo=user_repo)


def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    authz: AuthorizationService = Depends(get_authorization_service),
) -> AuthContext:
    token = credentials.credentials if credentials else None
    return authz.authenticate(token)


def require_roles(*roles: Role):
    """Dependency factory: the caller's active role must be one of `roles`."""

    def _dependency(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        return AuthorizationService.authorize(ctx, *roles)

    return _dependency
