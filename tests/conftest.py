from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from speedsale.storage.db import init_db, make_session


@pytest.fixture(autouse=True)
def _no_waits(monkeypatch) -> None:
    monkeypatch.setenv("SPEEDSALE_WAIT_MULTIPLIER", "0")


@pytest.fixture()
def engine():
    # StaticPool keeps one connection so worker threads see the same in-memory DB.
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session(engine)


@pytest.fixture()
def db_session(session_factory):
    with session_factory() as session:
        yield session
