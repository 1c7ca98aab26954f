from __future__ import annotations

from uuid import UUID

from ..schemas import JournalRecord, ValidationFailure, WorkSession
from .session_registry import SessionRegistry


class SessionController:
    """Per-screen handle on one work session.

    Holds a read-through snapshot only; every action is submitted to the
    registry and the snapshot is refreshed from it afterwards.
    """

    def __init__(self, registry: SessionRegistry, session_id: UUID) -> None:
        self._registry = registry
        self._session_id = session_id
        self._view: WorkSession | None = None
        self.refresh()

    @property
    def session_id(self) -> UUID:
        return self._session_id

    @property
    def view(self) -> WorkSession | None:
        """Last snapshot; None once the session has left the registry."""
        return self._view

    @property
    def is_active(self) -> bool:
        return self._view is not None

    def refresh(self) -> WorkSession | None:
        snapshot = {session.id: session for session in self._registry.snapshot()}
        self._view = snapshot.get(self._session_id)
        return self._view

    def find_source(self) -> WorkSession | None:
        self._registry.find_source(self._session_id)
        return self.refresh()

    def start_work_at_source(self, pressure_at_source: int) -> ValidationFailure | None:
        """Returns the rejection, if any, reporting it once."""
        self._registry.start_work_at_source(self._session_id, pressure_at_source)
        failure = self._registry.acknowledge_validation_error(self._session_id)
        self.refresh()
        return failure

    def start_egress(self) -> WorkSession | None:
        self._registry.start_egress(self._session_id)
        return self.refresh()

    def journal(self, address: str) -> JournalRecord | None:
        record = self._registry.journal(self._session_id, address)
        self.refresh()
        return record

    def make_current(self) -> None:
        self._registry.switch_current(self._session_id)
        self.refresh()
