from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..models import ActiveWorkSession
from ..schemas import WorkSession

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def save(self, sessions: Sequence[WorkSession]) -> None: ...

    def load(self) -> list[WorkSession]: ...


class SqlSessionStore:
    """Stores the active session set as JSON rows, replacing the set on every save."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def save(self, sessions: Sequence[WorkSession]) -> None:
        with self._session_factory() as db:
            db.execute(delete(ActiveWorkSession))
            for position, work_session in enumerate(sessions):
                db.add(
                    ActiveWorkSession(
                        id=work_session.id,
                        team_name=work_session.team_name,
                        phase=work_session.phase,
                        position=position,
                        payload=work_session.model_dump(mode="json"),
                    )
                )
            db.commit()

    def load(self) -> list[WorkSession]:
        with self._session_factory() as db:
            rows = (
                db.execute(select(ActiveWorkSession).order_by(ActiveWorkSession.position.asc()))
                .scalars()
                .all()
            )
            sessions: list[WorkSession] = []
            for row in rows:
                try:
                    sessions.append(WorkSession.model_validate(row.payload))
                except ValueError as exc:
                    logger.warning("Skipping unreadable stored session %s: %s", row.id, exc)
            return sessions


class BackgroundSessionStore:
    """Fire-and-forget wrapper: saves run on one worker thread, in submission order."""

    def __init__(self, store: SessionStore) -> None:
        self._store = store
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gdzs-persist")
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    def save(self, sessions: Sequence[WorkSession]) -> None:
        snapshot = [work_session.model_copy(deep=True) for work_session in sessions]
        future = self._executor.submit(self._store.save, snapshot)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)

    def _on_done(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.warning("Background save of active sessions failed: %s", exc)

    def load(self) -> list[WorkSession]:
        return self._store.load()

    def flush(self, timeout: float | None = None) -> None:
        with self._pending_lock:
            pending = list(self._pending)
        for future in pending:
            try:
                future.result(timeout=timeout)
            except Exception:  # already logged by _on_done
                continue

    def close(self) -> None:
        self.flush()
        self._executor.shutdown(wait=True)
