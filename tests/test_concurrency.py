from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlmodel import Session, select

from app.application.services.abuse_guard import AbuseGuard
from app.database import build_engine, create_db_and_tables
from app.exceptions import InvalidCode, TokenInvalid, TooManyAttempts
from app.infrastructure.rate_limit.memory_rate_limiter import InMemoryRateLimiter
from app.models import OTPCode, OtpPurpose, OtpStatus, Role

from conftest import FIXED_CODE, FakeSms, build_otp_engine, build_token_service, generous_policies

PHONE = "+14155550123"
WORKERS = 8


@pytest.fixture
def file_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'concurrency.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


def test_concurrent_verifies_single_winner(file_engine):
    guard = AbuseGuard(InMemoryRateLimiter(), generous_policies())
    sms = FakeSms()
    with Session(file_engine) as session:
        build_otp_engine(session, sms, guard).request(PHONE, Role.BROKER, OtpPurpose.REGISTRATION)

    def attempt(_):
        with Session(file_engine) as session:
            engine = build_otp_engine(session, sms, guard)
            try:
                engine.verify(PHONE, Role.BROKER, OtpPurpose.REGISTRATION, FIXED_CODE)
                return "ok"
            except InvalidCode:
                return "rejected"

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(pool.map(attempt, range(WORKERS)))

    assert results.count("ok") == 1
    assert results.count("rejected") == WORKERS - 1


def test_concurrent_refresh_single_winner(file_engine):
    with Session(file_engine) as session:
        pair = build_token_service(session).issue("user-1", "broker")

    def attempt(_):
        with Session(file_engine) as session:
            tokens = build_token_service(session)
            try:
                tokens.rotate(pair.refresh_token)
                return "ok"
            except TokenInvalid:
                return "rejected"

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(pool.map(attempt, range(WORKERS)))

    assert results.count("ok") == 1


def _wrong_code_storm(file_engine, max_attempts):
    guard = AbuseGuard(InMemoryRateLimiter(), generous_policies())
    sms = FakeSms()
    with Session(file_engine) as session:
        build_otp_engine(session, sms, guard, max_attempts=max_attempts).request(
            PHONE, Role.BROKER, OtpPurpose.REGISTRATION)

    def attempt(_):
        with Session(file_engine) as session:
            engine = build_otp_engine(session, sms, guard, max_attempts=max_attempts)
            try:
                engine.verify(PHONE, Role.BROKER, OtpPurpose.REGISTRATION, "000000")
            except InvalidCode:
                return "invalid"
            except TooManyAttempts:
                return "exhausted"
            return "ok"

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(pool.map(attempt, range(WORKERS)))
    with Session(file_engine) as session:
        record = session.exec(select(OTPCode)).one()
    return results, record, sms, guard


def test_concurrent_wrong_codes_each_cost_one_attempt(file_engine):
    results, record, _, _ = _wrong_code_storm(file_engine, max_attempts=WORKERS + 4)
    assert results == ["invalid"] * WORKERS
    assert record.attempts_remaining == 4
    assert record.status == OtpStatus.ISSUED.value


def test_concurrent_wrong_codes_exhaust_at_limit(file_engine):
    results, record, sms, guard = _wrong_code_storm(file_engine, max_attempts=WORKERS)
    assert results == ["invalid"] * WORKERS
    assert record.attempts_remaining == 0
    assert record.status == OtpStatus.EXHAUSTED.value

    with Session(file_engine) as session:
        engine = build_otp_engine(session, sms, guard, max_attempts=WORKERS)
        with pytest.raises(TooManyAttempts):
            engine.verify(PHONE, Role.BROKER, OtpPurpose.REGISTRATION, FIXED_CODE)
