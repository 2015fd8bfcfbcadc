from datetime import datetime, timedelta, timezone

from sqlmodel import Session, select

from app.models import AuthToken, User, UTCDateTime
from app.utils import utcnow


def test_timestamps_round_trip_as_aware_utc(engine):
    issued = utcnow()
    with Session(engine) as session:
        session.add(User(id="u1", phone="+14155550123"))
        session.add(AuthToken(jti="j1", user_id="u1", kind="refresh", expires_at=issued + timedelta(days=1)))
        session.commit()

    with Session(engine) as session:
        token = session.exec(select(AuthToken)).one()
        user = session.get(User, "u1")
    assert token.expires_at.tzinfo is not None
    assert token.expires_at - issued == timedelta(days=1)
    assert user.created_at.utcoffset() == timedelta(0)
    assert token.revoked_at is None


def test_offset_timestamps_are_normalized_to_utc(engine):
    ist = timezone(timedelta(hours=5, minutes=30))
    with Session(engine) as session:
        session.add(User(id="u1", phone="+14155550123",
                         locked_until=datetime(2030, 1, 1, 5, 30, tzinfo=ist)))
        session.commit()

    with Session(engine) as session:
        user = session.get(User, "u1")
    assert user.locked_until == datetime(2030, 1, 1, tzinfo=timezone.utc)


def test_naive_values_are_read_as_utc():
    column_type = UTCDateTime(timezone=True)
    sqlite = type("Dialect", (), {"name": "sqlite"})()
    stored = column_type.process_bind_param(datetime(2030, 1, 1, 12), sqlite)
    assert stored == datetime(2030, 1, 1, 12)
    assert column_type.process_result_value(stored, sqlite).tzinfo == timezone.utc
