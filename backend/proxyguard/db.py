from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from proxyguard.core.settings import get_settings


class Base(DeclarativeBase):
    pass


SQLALCHEMY_DATABASE_URL = get_settings().database_url


def _connect_args(url: str) -> dict:
    # check_same_thread=False is required for SQLite when using threads (Uvicorn reload)
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args=_connect_args(SQLALCHEMY_DATABASE_URL),
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None) -> None:
    # Register the mapped tables before creating them.
    from proxyguard import db_models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
