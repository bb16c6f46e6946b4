"""Engine, session factory and declarative base for the booking store.

Bookings, payment transactions and availability all live in one database.
Booking creation and reschedule read the provider's bookings and then write;
both start by bumping the provider's ``calendar_version``, which takes the
row lock on PostgreSQL and the database write lock on SQLite until commit
(see ``crud_availability.lock_provider``).
"""

import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.core.config import settings

if os.getenv("PYTEST_RUN") == "1":
    SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
else:
    SQLALCHEMY_DATABASE_URL = settings.SQLALCHEMY_DATABASE_URL

is_sqlite = SQLALCHEMY_DATABASE_URL.startswith("sqlite")


def engine_options(url: str) -> dict:
    """Keyword arguments for ``create_engine`` given the backend in ``url``."""
    options: dict = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False, "timeout": 15}
        return options
    options.update(
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_timeout=settings.DB_POOL_TIMEOUT,
    )
    return options


engine = create_engine(SQLALCHEMY_DATABASE_URL, **engine_options(SQLALCHEMY_DATABASE_URL))


def apply_sqlite_pragmas(target_engine: Engine) -> None:
    """WAL journal, relaxed fsync and a busy timeout on each new connection."""

    @event.listens_for(target_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute(f"PRAGMA busy_timeout={int(settings.SQLITE_BUSY_TIMEOUT_MS)};")
        finally:
            cursor.close()


# WAL is meaningless for in-memory databases
if is_sqlite and ":memory:" not in SQLALCHEMY_DATABASE_URL:
    apply_sqlite_pragmas(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


# Dependency
def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session(session_factory=None) -> Iterator[Session]:
    """Short-lived session for reconciliation jobs and scripts."""
    factory = session_factory or SessionLocal
    db = factory()
    try:
        yield db
    finally:
        db.close()
