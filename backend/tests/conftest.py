from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Iterator, Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="gdzs-tests-"))

os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DB_DIR / 'gdzs-test.db'}")
os.environ.setdefault("GDZS_STRICT_INVARIANTS", "1")
os.environ.setdefault("PERSISTENCE_ENABLED", "1")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("ROSTER_PATH", None)

from gdzs.device_catalog import get_device_profile  # noqa: E402
from gdzs.enums import AlertKind, DeviceType, WorkMode  # noqa: E402
from gdzs.schemas import (  # noqa: E402
    DeviceProfile,
    JournalRecord,
    OperationContext,
    TeamMember,
    WorkSession,
)
from gdzs.services.session_registry import SessionRegistry  # noqa: E402

BASE_TIME = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class RecordingAlertScheduler:
    def __init__(self) -> None:
        self.scheduled: list[tuple[AlertKind, float, UUID]] = []
        self.cancelled: list[tuple[AlertKind, UUID]] = []

    def schedule_alert(self, kind: AlertKind, after_seconds: float, session_id: UUID) -> None:
        self.scheduled.append((kind, after_seconds, session_id))

    def cancel_alert(self, kind: AlertKind, session_id: UUID) -> None:
        self.cancelled.append((kind, session_id))


class MemorySessionStore:
    def __init__(self, initial: Sequence[WorkSession] = ()) -> None:
        self.saved: list[list[WorkSession]] = []
        self._stored = [session.model_copy(deep=True) for session in initial]

    def save(self, sessions: Sequence[WorkSession]) -> None:
        self._stored = [session.model_copy(deep=True) for session in sessions]
        self.saved.append(list(self._stored))

    def load(self) -> list[WorkSession]:
        return [session.model_copy(deep=True) for session in self._stored]


class RecordingJournalSink:
    def __init__(self) -> None:
        self.records: list[JournalRecord] = []

    def export(self, record: JournalRecord) -> None:
        self.records.append(record)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def alert_scheduler() -> RecordingAlertScheduler:
    return RecordingAlertScheduler()


@pytest.fixture
def session_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def journal_sink() -> RecordingJournalSink:
    return RecordingJournalSink()


@pytest.fixture
def registry(
    clock: FakeClock,
    alert_scheduler: RecordingAlertScheduler,
    session_store: MemorySessionStore,
    journal_sink: RecordingJournalSink,
) -> SessionRegistry:
    return SessionRegistry(
        clock=clock,
        alert_scheduler=alert_scheduler,
        store=session_store,
        journal_sink=journal_sink,
        communication_interval_sec=600,
    )


@pytest.fixture
def make_registry(clock: FakeClock) -> Callable[..., SessionRegistry]:
    def _make(**overrides) -> SessionRegistry:
        kwargs = {
            "clock": clock,
            "alert_scheduler": RecordingAlertScheduler(),
            "store": MemorySessionStore(),
            "journal_sink": RecordingJournalSink(),
            "communication_interval_sec": 600,
        }
        kwargs.update(overrides)
        return SessionRegistry(**kwargs)

    return _make


@pytest.fixture
def drager() -> DeviceProfile:
    return get_device_profile(DeviceType.DRAGER_PSS3000)


@pytest.fixture
def asp2() -> DeviceProfile:
    return get_device_profile(DeviceType.ASP2)


@pytest.fixture
def make_members() -> Callable[..., list[TeamMember]]:
    def _make(*pressures: int | None) -> list[TeamMember]:
        return [
            TeamMember(full_name=f"Firefighter {index + 1}", pressure=pressure)
            for index, pressure in enumerate(pressures)
        ]

    return _make


@pytest.fixture
def make_context(
    clock: FakeClock,
    drager: DeviceProfile,
    make_members: Callable[..., list[TeamMember]],
) -> Callable[..., OperationContext]:
    counter = {"value": 0}

    def _make(
        *pressures: int,
        device: DeviceProfile | None = None,
        team_name: str | None = None,
        work_mode: WorkMode = WorkMode.AVERAGE,
    ) -> OperationContext:
        counter["value"] += 1
        return OperationContext(
            entry_time=clock.now(),
            device=device or drager,
            members=make_members(*(pressures or (300, 310))),
            work_mode=work_mode,
            team_name=team_name or f"Ланка {counter['value']}",
        )

    return _make


@pytest.fixture
def client() -> Iterator[TestClient]:
    from gdzs.main import app

    with TestClient(app) as test_client:
        yield test_client
