from sqlmodel import SQLModel, create_engine, Session
from .config import settings


def engine_options(url: str) -> dict:
    """Connection options per backend.

    SQLite waits on the busy timeout so that the conditional UPDATEs used for
    OTP consumption and refresh rotation serialize instead of failing.
    """
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": 5,
        "max_overflow": 10,
    }


def build_engine(url: str, echo: bool = False):
    return create_engine(url, echo=echo, **engine_options(url))


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)


def create_db_and_tables(bind=None):
    # Tables register on the metadata at import
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session
