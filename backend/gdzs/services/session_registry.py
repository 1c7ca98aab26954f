"""
Authoritative store of every active work session.

The registry is the only writer of WorkSession state. Ticks, background
reconciliation and phase transitions are serialized by one re-entrant lock;
readers always receive deep copies, so a caller can never observe or mutate
a session mid-transition.

Change listeners run under a separate dispatch lock and each snapshot carries
a revision number; a snapshot older than the last one delivered is dropped,
so listeners never see the registry go back in time.

Collaborator calls (persistence, alert scheduling, journal export, listeners)
are fire-and-forget: a failure is logged and never rolls back a transition.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from .. import config
from .. import physics_config as PhysicsCfg
from ..enums import SESSION_PHASE_ORDER, AppLifecycleState, SessionPhase
from ..errors import (
    DuplicateTeamError,
    PhaseTransitionError,
    RegistryNotSuspendedError,
    SessionNotFoundError,
    report_invariant_violation,
)
from ..schemas import (
    JournalRecord,
    OperationContext,
    TimerExpired,
    ValidationFailure,
    WorkSession,
)
from . import work_session as transitions
from .collaborators import AlertScheduler, Clock, JournalSink
from .persistence import SessionStore

logger = logging.getLogger(__name__)

TimerExpiredListener = Callable[[TimerExpired], None]
ChangeListener = Callable[[list[WorkSession]], None]
Change = tuple[int, list[WorkSession]]


class SessionRegistry:
    def __init__(
        self,
        clock: Clock,
        alert_scheduler: AlertScheduler,
        store: SessionStore | None = None,
        journal_sink: JournalSink | None = None,
        communication_interval_sec: float | None = None,
    ) -> None:
        self._clock = clock
        self._alert_scheduler = alert_scheduler
        self._store = store
        self._journal_sink = journal_sink
        self._communication_interval_sec = (
            communication_interval_sec
            if communication_interval_sec is not None
            else config.COMMUNICATION_INTERVAL_SEC
        )

        self._lock = threading.RLock()
        self._sessions: dict[UUID, WorkSession] = {}
        self._current_id: UUID | None = None
        self._suspended_at: datetime | None = None
        self._expiry_listeners: list[TimerExpiredListener] = []
        self._change_listeners: list[ChangeListener] = []
        self._revision = 0
        self._dispatch_lock = threading.RLock()
        self._delivered_revision = 0

    # ── Listeners ────────────────────────────────────────────────────────────

    def on_timer_expired(self, listener: TimerExpiredListener) -> None:
        if listener not in self._expiry_listeners:
            self._expiry_listeners.append(listener)

    def on_change(self, listener: ChangeListener) -> None:
        if listener not in self._change_listeners:
            self._change_listeners.append(listener)

    # ── Reads ────────────────────────────────────────────────────────────────

    @property
    def current_id(self) -> UUID | None:
        with self._lock:
            return self._current_id

    @property
    def is_suspended(self) -> bool:
        with self._lock:
            return self._suspended_at is not None

    def snapshot(self) -> list[WorkSession]:
        with self._lock:
            return self._snapshot_locked()

    def get(self, session_id: UUID) -> WorkSession:
        with self._lock:
            return self._require_locked(session_id).model_copy(deep=True)

    def current(self) -> WorkSession | None:
        with self._lock:
            if self._current_id is None:
                return None
            return self._sessions[self._current_id].model_copy(deep=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ── Structural mutations ─────────────────────────────────────────────────

    def open_session(self, context: OperationContext) -> WorkSession:
        session = transitions.open_work_session(
            context,
            self._clock.now(),
            communication_interval_sec=self._communication_interval_sec,
        )
        return self.add_session(session)

    def add_session(self, session: WorkSession) -> WorkSession:
        with self._lock:
            if session.phase == SessionPhase.JOURNALED:
                report_invariant_violation(f"journaled session {session.id} cannot become active")
                return session.model_copy(deep=True)
            if session.id in self._sessions:
                report_invariant_violation(f"session {session.id} is already active")
                return self._sessions[session.id].model_copy(deep=True)
            self._ensure_team_free_locked(session)

            self._sessions[session.id] = session.model_copy(deep=True)
            if self._current_id is None:
                self._current_id = session.id
            logger.info(
                "Added work session %s (team %r), %s active",
                session.id,
                session.team_name,
                len(self._sessions),
            )
            change = self._commit_locked()
            result = self._sessions[session.id].model_copy(deep=True)
        self._notify_change(change)
        return result

    def remove_session(self, session_id: UUID) -> WorkSession:
        with self._lock:
            removed = self._remove_locked(session_id)
            change = self._commit_locked()
        self._notify_change(change)
        return removed

    def update_session(self, session: WorkSession) -> WorkSession:
        """Replace the stored session with the same id; fields are never merged.

        The phase may not move backwards. ``scheduled_alerts`` is owned by the
        registry and keeps the stored value.
        """
        with self._lock:
            stored = self._require_locked(session.id)
            if session.phase == SessionPhase.JOURNALED:
                report_invariant_violation(
                    f"session {session.id} must be journaled through the registry"
                )
                return stored.model_copy(deep=True)
            if SESSION_PHASE_ORDER.index(session.phase) < SESSION_PHASE_ORDER.index(stored.phase):
                raise PhaseTransitionError("update_session", stored.phase.value)
            self._ensure_team_free_locked(session)
            replacement = session.model_copy(deep=True)
            replacement.scheduled_alerts = list(stored.scheduled_alerts)
            self._sessions[session.id] = replacement
            change = self._commit_locked()
            result = replacement.model_copy(deep=True)
        self._notify_change(change)
        return result

    def switch_current(self, session_id: UUID) -> None:
        with self._lock:
            self._require_locked(session_id)
            self._current_id = session_id
            change = self._changed_locked()
        self._notify_change(change)

    def discard_stale_sessions(self) -> int:
        """Drop whatever the store kept from a previous process run."""
        if self._store is None:
            return 0
        try:
            stale = self._store.load()
        except Exception as exc:
            logger.warning("Could not load stored active sessions: %s", exc)
            stale = []
        if stale:
            logger.info("Discarding %s active sessions left from a previous run", len(stale))
        with self._lock:
            self._commit_locked()
        return len(stale)

    # ── Clock ────────────────────────────────────────────────────────────────

    def tick(self) -> list[TimerExpired]:
        with self._lock:
            if self._suspended_at is not None or not self._sessions:
                return []
            events = self._advance_locked(PhysicsCfg.TICK_STEP_SEC)
            change = self._commit_locked()
        self._notify_expired(events)
        self._notify_change(change)
        return events

    def advance(self, seconds: float) -> list[TimerExpired]:
        """Apply several seconds of foreground time at once; a no-op while suspended."""
        with self._lock:
            if self._suspended_at is not None or not self._sessions:
                return []
            events, change = self._reconcile_locked(float(seconds))
        self._notify_expired(events)
        self._notify_change(change)
        return events

    def reconcile_background(
        self, elapsed: timedelta | float, *, require_suspended: bool = False
    ) -> list[TimerExpired]:
        """Subtract ``elapsed`` from every timer in one step.

        A pending suspension is consumed, so a later ``resume()`` does not
        subtract the same interval again. With ``require_suspended`` the call
        is refused unless the registry is suspended.
        """
        seconds = elapsed.total_seconds() if isinstance(elapsed, timedelta) else float(elapsed)
        if seconds < 0:
            report_invariant_violation(f"negative background interval {seconds}s")
            seconds = 0.0
        with self._lock:
            if self._suspended_at is None:
                if require_suspended:
                    raise RegistryNotSuspendedError()
            else:
                logger.info("Suspension since %s reconciled explicitly", self._suspended_at.isoformat())
                self._suspended_at = None
            events, change = self._reconcile_locked(seconds)
        self._notify_expired(events)
        self._notify_change(change)
        return events

    def suspend(self) -> None:
        with self._lock:
            if self._suspended_at is None:
                self._suspended_at = self._clock.now()
                logger.info("Registry suspended at %s", self._suspended_at.isoformat())

    def resume(self) -> list[TimerExpired]:
        with self._lock:
            suspended_at = self._suspended_at
            if suspended_at is None:
                return []
            self._suspended_at = None
            seconds = (self._clock.now() - suspended_at).total_seconds()
            if seconds < 0:
                report_invariant_violation(f"clock went backwards by {-seconds}s while suspended")
                seconds = 0.0
            events, change = self._reconcile_locked(seconds)
        self._notify_expired(events)
        self._notify_change(change)
        return events

    def handle_lifecycle_change(self, state: AppLifecycleState) -> list[TimerExpired]:
        if state == AppLifecycleState.BACKGROUND:
            self.suspend()
            return []
        if state == AppLifecycleState.ACTIVE:
            return self.resume()
        return []

    # ── Phase transitions ────────────────────────────────────────────────────

    def find_source(self, session_id: UUID) -> WorkSession:
        return self._apply(session_id, lambda session, now: transitions.find_source(session, now))

    def start_work_at_source(self, session_id: UUID, pressure_at_source: int) -> WorkSession:
        return self._apply(
            session_id,
            lambda session, now: transitions.start_work_at_source(session, pressure_at_source, now),
        )

    def start_egress(self, session_id: UUID) -> WorkSession:
        return self._apply(session_id, lambda session, now: transitions.start_egress(session, now))

    def acknowledge_validation_error(self, session_id: UUID) -> ValidationFailure | None:
        with self._lock:
            session = self._require_locked(session_id)
            failure = transitions.acknowledge_validation_error(session)
            change = self._commit_locked() if failure is not None else None
        if change is not None:
            self._notify_change(change)
        return failure

    def journal(self, session_id: UUID, address: str) -> JournalRecord | None:
        with self._lock:
            working = self._require_locked(session_id).model_copy(deep=True)
            outcome = transitions.journal(working, address, self._clock.now())
            if not outcome.applied:
                return None
            record = transitions.build_journal_record(working)
            self._sessions[session_id] = working
            self._remove_locked(session_id)
            change = self._commit_locked()
            if self._journal_sink is not None:
                self._safe_call("journal export", self._journal_sink.export, record)
        logger.info("Session %s journaled at %r", session_id, record.work_address)
        self._notify_change(change)
        return record

    # ── Internals ────────────────────────────────────────────────────────────

    def _apply(
        self,
        session_id: UUID,
        transition: Callable[[WorkSession, datetime], transitions.TransitionOutcome],
    ) -> WorkSession:
        with self._lock:
            # Work on a copy so a failed transition leaves the stored session untouched.
            working = self._require_locked(session_id).model_copy(deep=True)
            outcome = transition(working, self._clock.now())
            if outcome.applied or outcome.validation_error is not None:
                for request in outcome.alerts_to_schedule:
                    self._schedule_alert_locked(working, request)
                self._sessions[session_id] = working
                change = self._commit_locked()
            else:
                change = None
            result = self._sessions[session_id].model_copy(deep=True)
        if change is not None:
            self._notify_change(change)
        return result

    def _schedule_alert_locked(self, session: WorkSession, request: transitions.AlertRequest) -> None:
        if request.kind in session.scheduled_alerts:
            self._safe_call("alert cancel", self._alert_scheduler.cancel_alert, request.kind, session.id)
            session.scheduled_alerts.remove(request.kind)
        self._safe_call(
            "alert schedule",
            self._alert_scheduler.schedule_alert,
            request.kind,
            request.after_seconds,
            session.id,
        )
        session.scheduled_alerts.append(request.kind)

    def _remove_locked(self, session_id: UUID) -> WorkSession:
        session = self._require_locked(session_id)
        for kind in list(session.scheduled_alerts):
            self._safe_call("alert cancel", self._alert_scheduler.cancel_alert, kind, session_id)
        del self._sessions[session_id]
        if self._current_id == session_id:
            self._current_id = next(iter(self._sessions), None)
        logger.info("Removed work session %s, %s active", session_id, len(self._sessions))
        return session

    def _advance_locked(self, seconds: float) -> list[TimerExpired]:
        now = self._clock.now()
        events: list[TimerExpired] = []
        for session in self._sessions.values():
            for kind in transitions.decrement_timers(session, seconds):
                events.append(TimerExpired(session_id=session.id, kind=kind, expired_at=now))
        for event in events:
            logger.warning("Timer %s expired for session %s", event.kind.value, event.session_id)
        return events

    def _reconcile_locked(self, seconds: float) -> tuple[list[TimerExpired], Change]:
        events = self._advance_locked(seconds)
        change = self._commit_locked()
        if seconds:
            logger.info(
                "Applied %.0fs at once across %s sessions",
                seconds,
                len(self._sessions),
            )
        return events, change

    def _require_locked(self, session_id: UUID) -> WorkSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _ensure_team_free_locked(self, session: WorkSession) -> None:
        team_name = session.team_name
        if not team_name:
            return
        for other in self._sessions.values():
            if other.id != session.id and other.team_name == team_name:
                raise DuplicateTeamError(team_name)

    def _snapshot_locked(self) -> list[WorkSession]:
        return [session.model_copy(deep=True) for session in self._sessions.values()]

    def _changed_locked(self) -> Change:
        self._revision += 1
        return self._revision, self._snapshot_locked()

    def _commit_locked(self) -> Change:
        change = self._changed_locked()
        if self._store is not None:
            self._safe_call("session persistence", self._store.save, change[1])
        return change

    def _notify_expired(self, events: Sequence[TimerExpired]) -> None:
        for event in events:
            for listener in list(self._expiry_listeners):
                self._safe_call("timer expiry listener", listener, event)

    def _notify_change(self, change: Change) -> None:
        revision, snapshot = change
        with self._dispatch_lock:
            if revision <= self._delivered_revision:
                logger.debug(
                    "Dropping registry snapshot r%s, r%s already delivered",
                    revision,
                    self._delivered_revision,
                )
                return
            self._delivered_revision = revision
            for listener in list(self._change_listeners):
                self._safe_call("change listener", listener, snapshot)

    @staticmethod
    def _safe_call(description: str, func: Callable[..., Any], *args: Any) -> None:
        try:
            func(*args)
        except Exception as exc:
            logger.warning("%s failed: %s", description, exc)
