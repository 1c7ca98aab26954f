from __future__ import annotations

from collections.abc import Callable

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gdzs.database import Base
from gdzs.models import ActiveWorkSession
from gdzs.services import work_session as transitions
from gdzs.services.persistence import BackgroundSessionStore, SqlSessionStore


@pytest.fixture
def session_factory() -> Callable[[], Session]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


def _started_session(make_context, clock):
    session = transitions.open_work_session(make_context(300, 310), clock.now(), 600)
    clock.advance(600)
    transitions.find_source(session, clock.now())
    transitions.start_work_at_source(session, 220, clock.now())
    return session


def test_sql_store_round_trip_is_lossless(session_factory, make_context, clock) -> None:
    store = SqlSessionStore(session_factory)
    sessions = [
        _started_session(make_context, clock),
        transitions.open_work_session(make_context(280, 290), clock.now(), 600),
    ]

    store.save(sessions)

    assert store.load() == sessions


def test_sql_store_save_replaces_previous_set(session_factory, make_context, clock) -> None:
    store = SqlSessionStore(session_factory)
    first = transitions.open_work_session(make_context(), clock.now(), 600)
    second = transitions.open_work_session(make_context(), clock.now(), 600)

    store.save([first, second])
    store.save([second])

    assert [session.id for session in store.load()] == [second.id]
    with session_factory() as db:
        rows = db.execute(select(ActiveWorkSession)).scalars().all()
    assert len(rows) == 1
    assert rows[0].team_name == second.team_name


def test_sql_store_skips_unreadable_rows(session_factory, make_context, clock) -> None:
    store = SqlSessionStore(session_factory)
    session = transitions.open_work_session(make_context(), clock.now(), 600)
    store.save([session])
    with session_factory() as db:
        row = db.execute(select(ActiveWorkSession)).scalars().one()
        row.payload = {"unexpected": True}
        db.commit()

    assert store.load() == []


def test_background_store_writes_in_order(session_factory, make_context, clock) -> None:
    store = BackgroundSessionStore(SqlSessionStore(session_factory))
    session = transitions.open_work_session(make_context(), clock.now(), 600)
    try:
        for step in range(5):
            session.timers.communication_timer = 600 - step
            store.save([session])
        store.flush(timeout=5)

        loaded = store.load()
    finally:
        store.close()

    assert loaded[0].timers.communication_timer == 596


def test_background_store_snapshots_before_queueing(make_context, clock, session_store) -> None:
    store = BackgroundSessionStore(session_store)
    session = transitions.open_work_session(make_context(), clock.now(), 600)
    try:
        store.save([session])
        session.timers.communication_timer = 1
        store.flush(timeout=5)
    finally:
        store.close()

    assert session_store.load()[0].timers.communication_timer == 600


def test_background_store_logs_failures(caplog: pytest.LogCaptureFixture, make_context, clock) -> None:
    class BrokenStore:
        def save(self, sessions) -> None:
            raise OSError("database is locked")

        def load(self):
            return []

    store = BackgroundSessionStore(BrokenStore())
    try:
        store.save([transitions.open_work_session(make_context(), clock.now(), 600)])
        store.flush(timeout=5)
    finally:
        store.close()

    assert "Background save of active sessions failed" in caplog.text
