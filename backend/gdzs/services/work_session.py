from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from .. import config
from .. import physics_config as PhysicsCfg
from ..enums import AlertKind, SessionPhase, ValidationErrorKind, WarningKind
from ..errors import MissingWorkAddressError, PhaseTransitionError, report_invariant_violation
from ..schemas import (
    JournalRecord,
    OperationalWarning,
    OperationContext,
    SessionTimers,
    ValidationFailure,
    WorkSession,
)
from . import air_budget

logger = logging.getLogger(__name__)

TIMER_FIELDS: dict[AlertKind, str] = {
    AlertKind.EXIT_TIMER_EXPIRED: "exit_timer",
    AlertKind.REMAINING_TIMER_EXPIRED: "remaining_timer",
    AlertKind.COMMUNICATION_DUE: "communication_timer",
}


@dataclass(frozen=True)
class AlertRequest:
    kind: AlertKind
    after_seconds: float


@dataclass
class TransitionOutcome:
    session: WorkSession
    alerts_to_schedule: list[AlertRequest] = field(default_factory=list)
    validation_error: ValidationFailure | None = None
    applied: bool = True


def _minutes_between(start: datetime, end: datetime) -> float:
    return max(0.0, (end - start).total_seconds() / PhysicsCfg.SECONDS_PER_MINUTE)


def _search_started_at(session: WorkSession) -> datetime:
    return session.context.entry_time or session.created_at


def _add_warning(session: WorkSession, kind: WarningKind, detail: str, now: datetime) -> None:
    session.warnings.append(OperationalWarning(kind=kind, detail=detail, raised_at=now))
    logger.warning("Session %s: %s (%s)", session.id, kind.value, detail)


def _ensure_phase(session: WorkSession, trigger: str, expected: SessionPhase) -> bool:
    if session.phase == SessionPhase.JOURNALED:
        report_invariant_violation(f"'{trigger}' attempted on journaled session {session.id}")
        return False
    if session.phase != expected:
        raise PhaseTransitionError(trigger, session.phase.value)
    return True


def open_work_session(
    context: OperationContext,
    now: datetime,
    communication_interval_sec: float | None = None,
) -> WorkSession:
    if communication_interval_sec is None:
        communication_interval_sec = config.COMMUNICATION_INTERVAL_SEC

    min_pressure = air_budget.team_min_pressure(context.members)
    summary = air_budget.build_budget_summary(min_pressure, context.device, context.work_mode)
    session = WorkSession(
        created_at=now,
        context=context,
        min_pressure=min_pressure,
        initial_min_pressure=min_pressure,
        protection_time=summary.protection_time,
        critical_pressure=summary.critical_pressure,
        hood_pressure=summary.hood_pressure,
        evacuation_time_with_victim=summary.evacuation_time_with_victim,
        timers=SessionTimers(
            exit_timer=float(summary.exit_timer_seconds),
            remaining_timer=float(summary.protection_time * PhysicsCfg.SECONDS_PER_MINUTE),
            communication_timer=float(communication_interval_sec),
        ),
    )
    logger.info(
        "Opened work session %s for team %r: min pressure %s bar, protection time %s min",
        session.id,
        context.team_name,
        min_pressure,
        summary.protection_time,
    )
    return session


def find_source(session: WorkSession, now: datetime) -> TransitionOutcome:
    if not _ensure_phase(session, "find_source", SessionPhase.ENTERED):
        return TransitionOutcome(session=session, applied=False)

    session.phase = SessionPhase.SEARCHING_FOR_SOURCE
    session.fire_source_found_time = now
    session.search_time = air_budget.truncate_minutes(
        _minutes_between(_search_started_at(session), now)
    )
    return TransitionOutcome(session=session)


def _check_pressure_at_source(
    pressure_at_source: int,
    team_min: int,
    device_minimum: float,
) -> ValidationFailure | None:
    if pressure_at_source > team_min:
        return ValidationFailure(
            kind=ValidationErrorKind.PRESSURE_ABOVE_TEAM_MINIMUM,
            pressure_at_source=pressure_at_source,
            limit=float(team_min),
        )
    if pressure_at_source < device_minimum:
        return ValidationFailure(
            kind=ValidationErrorKind.PRESSURE_BELOW_DEVICE_MINIMUM,
            pressure_at_source=pressure_at_source,
            limit=float(device_minimum),
        )
    return None


def start_work_at_source(
    session: WorkSession,
    pressure_at_source: int,
    now: datetime,
) -> TransitionOutcome:
    """Validate the pressure read at the fire source and switch to work.

    A rejected reading leaves the session searching and is stored as
    ``pending_validation_error`` until acknowledged or corrected.
    """
    if not _ensure_phase(session, "start_work_at_source", SessionPhase.SEARCHING_FOR_SOURCE):
        return TransitionOutcome(session=session, applied=False)

    device = session.context.device
    team_min = air_budget.team_min_pressure(session.context.members)
    failure = _check_pressure_at_source(
        pressure_at_source, team_min, device.minimum_working_pressure
    )
    if failure is not None:
        session.pending_validation_error = failure
        logger.info(
            "Session %s: pressure at source %s bar rejected (%s, limit %s)",
            session.id,
            pressure_at_source,
            failure.kind.value,
            failure.limit,
        )
        return TransitionOutcome(session=session, validation_error=failure, applied=False)

    session.pending_validation_error = None
    session.pressure_at_source = pressure_at_source
    session.initial_min_pressure = team_min
    session.min_pressure = pressure_at_source

    search_minutes = _minutes_between(
        _search_started_at(session), session.fire_source_found_time or now
    )
    estimate = air_budget.actual_air_consumption(team_min, pressure_at_source, search_minutes, device)
    session.actual_air_consumption = estimate.rate
    if estimate.anomaly:
        _add_warning(
            session,
            WarningKind.CONSUMPTION_ANOMALY,
            f"measured {estimate.raw_rate:.1f} l/min, nominal {device.nominal_air_consumption:.1f} l/min",
            now,
        )

    session.pressure_on_path = air_budget.truncate_pressure(team_min - pressure_at_source)
    session.exit_start_pressure = air_budget.exit_start_pressure(team_min, pressure_at_source, device)

    pressure_difference = pressure_at_source - session.exit_start_pressure
    if pressure_difference > 0:
        session.work_time_at_source = air_budget.truncate_minutes(
            air_budget.work_time_minutes(
                device.cylinder_count,
                device.cylinder_volume,
                pressure_difference,
                estimate.rate,
            )
        )
    else:
        session.work_time_at_source = 0
        _add_warning(
            session,
            WarningKind.PAST_EXIT_PRESSURE,
            f"pressure {pressure_at_source} bar is at or below exit pressure {session.exit_start_pressure} bar",
            now,
        )

    remaining_pressure = pressure_at_source - device.reserve_pressure
    if remaining_pressure <= 0:
        remaining_minutes = 0
        _add_warning(
            session,
            WarningKind.IMMEDIATE_EGRESS,
            f"pressure {pressure_at_source} bar is at or below reserve {device.reserve_pressure:g} bar",
            now,
        )
    else:
        remaining_minutes = air_budget.truncate_minutes(
            air_budget.work_time_minutes(
                device.cylinder_count,
                device.cylinder_volume,
                remaining_pressure,
                estimate.rate,
            )
        )

    session.timers.exit_timer = float(session.work_time_at_source * PhysicsCfg.SECONDS_PER_MINUTE)
    session.timers.remaining_timer = float(remaining_minutes * PhysicsCfg.SECONDS_PER_MINUTE)
    session.phase = SessionPhase.WORKING_AT_SOURCE
    session.work_started_time = now

    alerts = [
        AlertRequest(kind=kind, after_seconds=getattr(session.timers, field_name))
        for kind, field_name in TIMER_FIELDS.items()
        if getattr(session.timers, field_name) > 0
    ]
    return TransitionOutcome(session=session, alerts_to_schedule=alerts)


def acknowledge_validation_error(session: WorkSession) -> ValidationFailure | None:
    failure = session.pending_validation_error
    session.pending_validation_error = None
    return failure


def start_egress(session: WorkSession, now: datetime) -> TransitionOutcome:
    if not _ensure_phase(session, "start_egress", SessionPhase.WORKING_AT_SOURCE):
        return TransitionOutcome(session=session, applied=False)

    session.phase = SessionPhase.EXITING_ZONE
    session.exit_started_time = now
    return TransitionOutcome(session=session)


def journal(session: WorkSession, address: str, now: datetime) -> TransitionOutcome:
    if not _ensure_phase(session, "journal", SessionPhase.EXITING_ZONE):
        return TransitionOutcome(session=session, applied=False)

    normalized_address = (address or "").strip()
    if not normalized_address:
        raise MissingWorkAddressError()

    session.work_address = normalized_address
    session.journaled_time = now
    session.phase = SessionPhase.JOURNALED
    return TransitionOutcome(session=session)


def build_journal_record(session: WorkSession) -> JournalRecord:
    context = session.context
    return JournalRecord(
        session_id=session.id,
        team_name=context.team_name,
        operation_type=context.operation_type,
        device_type=context.device.device_type,
        work_mode=context.work_mode,
        members=[member.model_copy() for member in context.active_members],
        work_address=session.work_address,
        entry_time=context.entry_time,
        fire_source_found_time=session.fire_source_found_time,
        work_started_time=session.work_started_time,
        exit_started_time=session.exit_started_time,
        journaled_time=session.journaled_time or session.created_at,
        min_pressure=session.min_pressure,
        initial_min_pressure=session.initial_min_pressure,
        pressure_at_source=session.pressure_at_source,
        actual_air_consumption=session.actual_air_consumption,
        protection_time=session.protection_time,
        critical_pressure=session.critical_pressure,
        hood_pressure=session.hood_pressure,
        evacuation_time_with_victim=session.evacuation_time_with_victim,
        pressure_on_path=session.pressure_on_path,
        work_time_at_source=session.work_time_at_source,
        exit_start_pressure=session.exit_start_pressure,
        search_time=session.search_time,
        warnings=[warning.model_copy() for warning in session.warnings],
    )


def decrement_timers(session: WorkSession, seconds: float) -> list[AlertKind]:
    """Subtract ``seconds`` from every timer, floored at zero.

    Returns the kinds whose timer crossed from positive to zero in this step.
    """
    if seconds < 0:
        report_invariant_violation(f"negative timer step {seconds} for session {session.id}")
        seconds = 0.0

    expired: list[AlertKind] = []
    for kind, field_name in TIMER_FIELDS.items():
        current = getattr(session.timers, field_name)
        if current < 0:
            report_invariant_violation(
                f"negative {field_name}={current} on session {session.id}"
            )
            current = 0.0
        updated = max(0.0, current - seconds)
        if current > 0 and updated == 0:
            expired.append(kind)
        setattr(session.timers, field_name, updated)
    return expired
