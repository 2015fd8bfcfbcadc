from typing import List, Tuple

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from app import models  # noqa: F401  registers the tables
from app.application.services.abuse_guard import AbuseGuard, AbusePolicies, RateLimitPolicy
from app.application.services.otp_engine import OtpEngine
from app.application.services.token_service import TokenService
from app.exceptions import DeliveryFailed
from app.infrastructure.persistence.sqlalchemy.repositories.otp_repository_sql import SqlOtpStore
from app.infrastructure.persistence.sqlalchemy.repositories.token_repository_sql import SqlTokenStore
from app.infrastructure.persistence.sqlalchemy.repositories.user_repository_sql import SqlUserRepository
from app.infrastructure.rate_limit.memory_rate_limiter import InMemoryRateLimiter

TEST_SECRET = "test-signing-secret"
FIXED_CODE = "123456"


def fixed_code(length: int) -> str:
    return FIXED_CODE[:length]


class FakeSms:
    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self.fail = False

    def send(self, phone: str, message: str) -> str:
        if self.fail:
            raise DeliveryFailed()
        self.sent.append((phone, message))
        return f"fake-{len(self.sent)}"


class FakeAudit:
    def __init__(self):
        self.entries = []

    def log(self, action, phone=None, user_id=None, role=None, ip_address=None,
            request_id=None, success=True, details=None):
        self.entries.append({"action": action, "user_id": user_id, "role": role,
                             "success": success, "details": details or {}})

    def actions(self):
        return [e["action"] for e in self.entries]


def generous_policies() -> AbusePolicies:
    p = RateLimitPolicy(1000, 3600)
    return AbusePolicies(p, p, p, p, p, p)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def sms():
    return FakeSms()


@pytest.fixture
def audit():
    return FakeAudit()


@pytest.fixture
def users(session):
    return SqlUserRepository(session)


@pytest.fixture
def guard():
    return AbuseGuard(limiter=InMemoryRateLimiter(), policies=generous_policies())


def build_otp_engine(session, sms, guard, **overrides) -> OtpEngine:
    kwargs = dict(
        store=SqlOtpStore(session),
        sms=sms,
        guard=guard,
        user_repo=SqlUserRepository(session),
        hash_secret=TEST_SECRET,
        resend_interval_seconds=0,
        code_generator=fixed_code,
    )
    kwargs.update(overrides)
    return OtpEngine(**kwargs)


def build_token_service(session, **overrides) -> TokenService:
    kwargs = dict(token_store=SqlTokenStore(session), secret=TEST_SECRET, issuer="test")
    kwargs.update(overrides)
    return TokenService(**kwargs)


@pytest.fixture
def otp_engine(session, sms, guard):
    return build_otp_engine(session, sms, guard)


@pytest.fixture
def tokens(session):
    return build_token_service(session)


@pytest.fixture
def client(engine, sms):
    from app.main import app
    from app.routers import deps

    def _get_session():
        with Session(engine) as session:
            yield session

    limiter = InMemoryRateLimiter()

    def _get_otp_engine(
        session: Session = Depends(deps.get_session),
        guard: AbuseGuard = Depends(deps.get_abuse_guard),
        user_repo=Depends(deps.get_user_repo),
    ):
        engine_ = deps.get_otp_engine(session=session, sms=sms, guard=guard, user_repo=user_repo)
        engine_.code_generator = fixed_code
        engine_.resend_interval_seconds = 0
        return engine_

    app.dependency_overrides[deps.get_session] = _get_session
    app.dependency_overrides[deps.get_rate_limiter] = lambda: limiter
    app.dependency_overrides[deps.get_sms_gateway] = lambda: sms
    app.dependency_overrides[deps.get_otp_engine] = _get_otp_engine
    yield TestClient(app)
    app.dependency_overrides.clear()
