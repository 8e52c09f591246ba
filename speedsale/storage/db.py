"""Database connectivity helpers."""

from __future__ import annotations

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from speedsale.logging_config import get_logger

from .models_sql import Base

LOGGER = get_logger(__name__)


def _apply_sqlite_pragmas(engine: Engine, timeout_value: float) -> None:
    """Enable WAL mode so alert reads do not block while a scrape writes."""

    busy_ms = int(timeout_value * 1000)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:  # pragma: no cover - driver hook
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout = {busy_ms}")
        finally:
            cursor.close()

    try:
        with engine.connect() as connection:
            connection.execute(text("PRAGMA journal_mode=WAL"))
            connection.execute(text("PRAGMA synchronous=NORMAL"))
    except SQLAlchemyError as exc:  # pragma: no cover - best-effort tuning
        LOGGER.warning("Unable to configure SQLite pragmas: %s", exc)


def get_engine(url: str, *, busy_timeout: int | float | None = None) -> Engine:
    """Create a SQLAlchemy engine for *url* (SQLite gets WAL + busy timeout)."""

    timeout_value = float(busy_timeout) if busy_timeout is not None else 30.0

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            future=True,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False, "timeout": timeout_value},
        )
        if ":memory:" not in url:
            _apply_sqlite_pragmas(engine, timeout_value)
        return engine

    return create_engine(url, future=True, pool_pre_ping=True)


def make_session(engine: Engine) -> sessionmaker[Session]:
    """Create a configured session factory bound to *engine*."""

    return sessionmaker(engine, expire_on_commit=False, future=True)


def init_db_safe(engine: Engine) -> None:
    """Initialise database schema, creating only missing tables."""

    Base.metadata.create_all(engine, checkfirst=True)


def ping(engine: Engine) -> bool:
    """Return True when the store answers a trivial query."""

    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        LOGGER.warning("Database ping failed: %s", exc)
        return False
    return True


init_db = init_db_safe
