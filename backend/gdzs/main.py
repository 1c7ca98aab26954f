from __future__ import annotations

import asyncio
import logging
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .database import Base, SessionLocal, engine
from .device_catalog import get_device_profile, list_device_profiles
from .enums import (
    DEVICE_TYPE_LABELS,
    OPERATION_TYPE_LABELS,
    SESSION_PHASE_ORDER,
    TEAM_MEMBER_ROLE_LABELS,
)
from .errors import (
    DuplicateTeamError,
    GdzsError,
    InvariantViolation,
    MissingWorkAddressError,
    PhaseTransitionError,
    RegistryNotSuspendedError,
    SessionNotFoundError,
)
from .runtime import TickLoop
from .schemas import (
    BudgetSummaryRead,
    CalculatorRequest,
    DeviceProfile,
    JournalRecord,
    JournalRequest,
    LabeledOption,
    LifecycleUpdate,
    OperationContext,
    ReconcileRequest,
    ReferenceDataRead,
    RegistryStateRead,
    RuntimeHealthRead,
    StartWorkRequest,
    TimerExpired,
    ValidationFailure,
    WorkSessionCreate,
    WorkSessionRead,
    validate_team_members,
)
from .services import air_budget
from .services.collaborators import (
    LoggingAlertScheduler,
    LoggingJournalSink,
    RosterSource,
    StaticRosterSource,
    SystemClock,
    load_roster_file,
    utcnow,
)
from .services.persistence import BackgroundSessionStore, SqlSessionStore
from .services.session_registry import SessionRegistry
from .ws import RegistryBroadcaster, build_registry_state, ws_connections, ws_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="GDZS Air Budget", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_origin_regex=config.ALLOWED_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)
app.include_router(ws_router)

ERROR_STATUS_CODES: dict[type[GdzsError], int] = {
    SessionNotFoundError: 404,
    DuplicateTeamError: 409,
    PhaseTransitionError: 409,
    RegistryNotSuspendedError: 409,
    MissingWorkAddressError: 422,
    InvariantViolation: 500,
}


@app.exception_handler(GdzsError)
async def domain_error_handler(request: Request, exc: GdzsError) -> JSONResponse:
    status_code = 400
    for error_type, mapped_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            status_code = mapped_code
            break
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def build_registry(store=None) -> SessionRegistry:
    return SessionRegistry(
        clock=SystemClock(),
        alert_scheduler=LoggingAlertScheduler(),
        store=store,
        journal_sink=LoggingJournalSink(),
        communication_interval_sec=config.COMMUNICATION_INTERVAL_SEC,
    )


def build_roster() -> StaticRosterSource:
    if not config.ROSTER_PATH:
        return StaticRosterSource()
    return load_roster_file(config.ROSTER_PATH)


@app.on_event("startup")
async def on_startup() -> None:
    store = None
    if config.PERSISTENCE_ENABLED:
        Base.metadata.create_all(bind=engine)
        store = BackgroundSessionStore(SqlSessionStore(SessionLocal))

    registry = build_registry(store)
    discarded = registry.discard_stale_sessions()
    if discarded:
        logger.warning("Dropped %s active sessions that did not survive the restart", discarded)

    broadcaster = RegistryBroadcaster(registry, ws_connections)
    broadcaster.attach(asyncio.get_running_loop())

    tick_loop = TickLoop(registry)
    tick_loop.start()

    app.state.session_store = store
    app.state.registry = registry
    app.state.roster = build_roster()
    app.state.tick_loop = tick_loop


@app.on_event("shutdown")
async def on_shutdown() -> None:
    tick_loop: TickLoop | None = getattr(app.state, "tick_loop", None)
    if tick_loop is not None:
        await tick_loop.stop()
    store: BackgroundSessionStore | None = getattr(app.state, "session_store", None)
    if store is not None:
        store.close()


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_roster(request: Request) -> RosterSource:
    return request.app.state.roster


def get_tick_loop(request: Request) -> TickLoop:
    return request.app.state.tick_loop


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/devices", response_model=list[DeviceProfile])
def list_devices() -> list[DeviceProfile]:
    return list_device_profiles()


@app.get("/api/reference", response_model=ReferenceDataRead)
def get_reference_data() -> ReferenceDataRead:
    return ReferenceDataRead(
        device_types=[
            LabeledOption(value=device_type.value, label=label)
            for device_type, label in DEVICE_TYPE_LABELS.items()
        ],
        operation_types=[
            LabeledOption(value=operation_type.value, label=label)
            for operation_type, label in OPERATION_TYPE_LABELS.items()
        ],
        member_roles=[
            LabeledOption(value=role.value, label=label)
            for role, label in TEAM_MEMBER_ROLE_LABELS.items()
        ],
        session_phases=list(SESSION_PHASE_ORDER),
    )


@app.post("/api/calculator", response_model=BudgetSummaryRead)
def calculate_budget(payload: CalculatorRequest) -> BudgetSummaryRead:
    device = get_device_profile(payload.device_type)
    summary = air_budget.build_budget_summary(min(payload.pressures), device, payload.work_mode)
    return BudgetSummaryRead(
        device_type=device.device_type,
        work_mode=payload.work_mode,
        min_pressure=summary.min_pressure,
        protection_time=summary.protection_time,
        critical_pressure=summary.critical_pressure,
        hood_pressure=summary.hood_pressure,
        evacuation_time_with_victim=summary.evacuation_time_with_victim,
        exit_timer_seconds=summary.exit_timer_seconds,
    )


@app.get("/api/work-sessions", response_model=RegistryStateRead)
def get_registry_state(registry: SessionRegistry = Depends(get_registry)) -> RegistryStateRead:
    return build_registry_state(registry)


@app.post(
    "/api/work-sessions",
    response_model=WorkSessionRead,
    status_code=status.HTTP_201_CREATED,
)
def create_work_session(
    payload: WorkSessionCreate,
    registry: SessionRegistry = Depends(get_registry),
    roster: RosterSource = Depends(get_roster),
) -> WorkSessionRead:
    members = payload.members
    if members is None:
        members = roster.get_members(payload.team_name or "")
        if members is None:
            raise HTTPException(status_code=404, detail="Team not found in roster")
        try:
            validate_team_members(members)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    context = OperationContext(
        entry_time=payload.entry_time or utcnow(),
        device=get_device_profile(payload.device_type),
        members=members,
        work_mode=payload.work_mode,
        operation_type=payload.operation_type,
        team_name=payload.team_name,
    )
    session = registry.open_session(context)
    return WorkSessionRead.from_session(session)


@app.get("/api/work-sessions/{session_id}", response_model=WorkSessionRead)
def get_work_session(
    session_id: UUID, registry: SessionRegistry = Depends(get_registry)
) -> WorkSessionRead:
    return WorkSessionRead.from_session(registry.get(session_id))


@app.delete("/api/work-sessions/{session_id}", response_model=WorkSessionRead)
def delete_work_session(
    session_id: UUID, registry: SessionRegistry = Depends(get_registry)
) -> WorkSessionRead:
    return WorkSessionRead.from_session(registry.remove_session(session_id))


@app.post("/api/work-sessions/{session_id}/find-source", response_model=WorkSessionRead)
def find_fire_source(
    session_id: UUID, registry: SessionRegistry = Depends(get_registry)
) -> WorkSessionRead:
    return WorkSessionRead.from_session(registry.find_source(session_id))


@app.post("/api/work-sessions/{session_id}/start-work", response_model=WorkSessionRead)
def start_work(
    session_id: UUID,
    payload: StartWorkRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> WorkSessionRead:
    """A rejected reading comes back as ``pending_validation_error`` with the phase unchanged."""
    session = registry.start_work_at_source(session_id, payload.pressure_at_source)
    return WorkSessionRead.from_session(session)


@app.post(
    "/api/work-sessions/{session_id}/validation-error/ack",
    response_model=ValidationFailure | None,
)
def acknowledge_validation_error(
    session_id: UUID, registry: SessionRegistry = Depends(get_registry)
) -> ValidationFailure | None:
    return registry.acknowledge_validation_error(session_id)


@app.post("/api/work-sessions/{session_id}/start-egress", response_model=WorkSessionRead)
def start_egress(
    session_id: UUID, registry: SessionRegistry = Depends(get_registry)
) -> WorkSessionRead:
    return WorkSessionRead.from_session(registry.start_egress(session_id))


@app.post("/api/work-sessions/{session_id}/journal", response_model=JournalRecord)
def journal_work_session(
    session_id: UUID,
    payload: JournalRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> JournalRecord:
    record = registry.journal(session_id, payload.address)
    if record is None:
        raise HTTPException(status_code=409, detail="Session is already journaled")
    return record


@app.post("/api/work-sessions/{session_id}/select", response_model=RegistryStateRead)
def select_work_session(
    session_id: UUID, registry: SessionRegistry = Depends(get_registry)
) -> RegistryStateRead:
    registry.switch_current(session_id)
    return build_registry_state(registry)


@app.post("/api/runtime/lifecycle", response_model=list[TimerExpired])
def update_lifecycle(
    payload: LifecycleUpdate, registry: SessionRegistry = Depends(get_registry)
) -> list[TimerExpired]:
    return registry.handle_lifecycle_change(payload.state)


@app.post("/api/runtime/reconcile", response_model=list[TimerExpired])
def reconcile_runtime(
    payload: ReconcileRequest, registry: SessionRegistry = Depends(get_registry)
) -> list[TimerExpired]:
    """Consumes a suspension started by a BACKGROUND lifecycle update."""
    return registry.reconcile_background(payload.elapsed_seconds, require_suspended=True)


@app.get("/api/runtime/health", response_model=RuntimeHealthRead)
def runtime_health(tick_loop: TickLoop = Depends(get_tick_loop)) -> RuntimeHealthRead:
    return tick_loop.health()
