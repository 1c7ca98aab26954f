from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from . import physics_config as PhysicsCfg
from .enums import (
    DEVICE_TYPE_ALIASES_TO_CANONICAL,
    DEVICE_TYPE_LABELS,
    AlertKind,
    AppLifecycleState,
    DeviceType,
    OperationType,
    SessionPhase,
    TeamMemberRole,
    ValidationErrorKind,
    WarningKind,
    WorkMode,
)

MAX_GAUGE_PRESSURE_BAR = 400
MIN_TEAM_SIZE = 2


def normalize_device_type(value: Any) -> Any:
    if isinstance(value, DeviceType):
        return value
    if isinstance(value, str):
        canonical = DEVICE_TYPE_ALIASES_TO_CANONICAL.get(value.strip().upper())
        if canonical is None:
            canonical = DEVICE_TYPE_ALIASES_TO_CANONICAL.get(value.strip())
        if canonical is not None:
            return canonical
    return value


class DeviceProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    device_type: DeviceType
    display_name: str = ""
    cylinder_count: int = Field(gt=0)
    cylinder_volume: float = Field(gt=0)
    reserve_pressure: float = Field(gt=0)
    nominal_air_consumption: float = Field(gt=0)
    minimum_working_pressure: float = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def fill_catalog_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        device_type = normalize_device_type(data.get("device_type"))
        data["device_type"] = device_type
        if not data.get("display_name") and isinstance(device_type, DeviceType):
            data["display_name"] = DEVICE_TYPE_LABELS[device_type]
        if not data.get("minimum_working_pressure"):
            cylinder_count = data.get("cylinder_count") or 1
            data["minimum_working_pressure"] = (
                PhysicsCfg.MIN_WORKING_PRESSURE_TWO_CYLINDER_BAR
                if int(cylinder_count) >= 2
                else PhysicsCfg.MIN_WORKING_PRESSURE_SINGLE_CYLINDER_BAR
            )
        return data


class TeamMember(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    full_name: str = Field(default="", max_length=255)
    pressure: int | None = None
    is_active: bool = True
    role: TeamMemberRole = TeamMemberRole.FIREFIGHTER

    @field_validator("pressure", mode="before")
    @classmethod
    def parse_gauge_reading(cls, value: Any) -> Any:
        # Gauge readings arrive as free text from the roster; junk means "no reading".
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            try:
                value = int(value)
            except ValueError:
                return None
        if isinstance(value, float):
            value = int(value)
        if isinstance(value, int) and value < 0:
            return None
        return value


class OperationContext(BaseModel):
    entry_time: datetime | None = None
    device: DeviceProfile
    members: list[TeamMember] = Field(default_factory=list)
    work_mode: WorkMode = WorkMode.AVERAGE
    operation_type: OperationType = OperationType.FIRE
    team_name: str | None = None

    @property
    def active_members(self) -> list[TeamMember]:
        return [member for member in self.members if member.is_active]


class SessionTimers(BaseModel):
    exit_timer: float = 0.0
    remaining_timer: float = 0.0
    communication_timer: float = float(PhysicsCfg.COMMUNICATION_INTERVAL_DEFAULT_SEC)


class ValidationFailure(BaseModel):
    kind: ValidationErrorKind
    pressure_at_source: int
    limit: float


class OperationalWarning(BaseModel):
    kind: WarningKind
    detail: str
    raised_at: datetime


class WorkSession(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    created_at: datetime
    context: OperationContext
    phase: SessionPhase = SessionPhase.ENTERED
    timers: SessionTimers = Field(default_factory=SessionTimers)

    min_pressure: int = 0
    initial_min_pressure: int = 0
    pressure_at_source: int | None = None
    actual_air_consumption: float = 0.0

    protection_time: int = 0
    critical_pressure: int = 0
    hood_pressure: int = 0
    evacuation_time_with_victim: int = 0
    pressure_on_path: int = 0
    work_time_at_source: int = 0
    exit_start_pressure: int | None = None
    search_time: int = 0

    fire_source_found_time: datetime | None = None
    work_started_time: datetime | None = None
    exit_started_time: datetime | None = None
    journaled_time: datetime | None = None
    work_address: str = ""

    pending_validation_error: ValidationFailure | None = None
    warnings: list[OperationalWarning] = Field(default_factory=list)
    scheduled_alerts: list[AlertKind] = Field(default_factory=list)

    @property
    def team_name(self) -> str | None:
        return self.context.team_name


class WorkSessionRead(WorkSession):
    @computed_field  # type: ignore[prop-decorator]
    @property
    def expected_exit_time(self) -> datetime | None:
        entry_time = self.context.entry_time
        if entry_time is None:
            return None
        return entry_time + timedelta(seconds=self.timers.remaining_timer)

    @classmethod
    def from_session(cls, session: WorkSession) -> "WorkSessionRead":
        return cls.model_validate(session.model_dump())


class RegistryStateRead(BaseModel):
    current_session_id: UUID | None
    suspended: bool
    sessions: list[WorkSessionRead]


class JournalRecord(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    session_id: UUID
    team_name: str | None
    operation_type: OperationType
    device_type: DeviceType
    work_mode: WorkMode
    members: list[TeamMember]
    work_address: str

    entry_time: datetime | None
    fire_source_found_time: datetime | None
    work_started_time: datetime | None
    exit_started_time: datetime | None
    journaled_time: datetime

    min_pressure: int
    initial_min_pressure: int
    pressure_at_source: int | None
    actual_air_consumption: float
    protection_time: int
    critical_pressure: int
    hood_pressure: int
    evacuation_time_with_victim: int
    pressure_on_path: int
    work_time_at_source: int
    exit_start_pressure: int | None
    search_time: int
    warnings: list[OperationalWarning]


class TimerExpired(BaseModel):
    session_id: UUID
    kind: AlertKind
    expired_at: datetime


class WorkSessionCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    team_name: str | None = Field(default=None, max_length=255)
    device_type: DeviceType = DeviceType.DRAGER_PSS3000
    members: list[TeamMember] | None = Field(default=None, max_length=12)
    entry_time: datetime | None = None
    work_mode: WorkMode = WorkMode.AVERAGE
    operation_type: OperationType = OperationType.FIRE

    @field_validator("device_type", mode="before")
    @classmethod
    def normalize_device(cls, value: Any) -> Any:
        return normalize_device_type(value)

    @field_validator("team_name")
    @classmethod
    def blank_team_name_is_none(cls, value: str | None) -> str | None:
        if value is not None and not value:
            return None
        return value

    @model_validator(mode="after")
    def validate_team(self) -> "WorkSessionCreate":
        if self.members is None:
            if self.team_name is None:
                raise ValueError("Either members or a saved team_name is required")
            return self
        validate_team_members(self.members)
        return self


def validate_team_members(members: list[TeamMember]) -> None:
    active_members = [member for member in members if member.is_active]
    if len(active_members) < MIN_TEAM_SIZE:
        raise ValueError(f"A team needs at least {MIN_TEAM_SIZE} active members")
    if not all(member.full_name for member in active_members):
        raise ValueError("Every active member needs a full name")


class StartWorkRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pressure_at_source: int = Field(ge=0, le=MAX_GAUGE_PRESSURE_BAR)


class JournalRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    address: str = Field(min_length=1, max_length=500)


class LifecycleUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    state: AppLifecycleState


class ReconcileRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    elapsed_seconds: float = Field(ge=0)


class CalculatorRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    device_type: DeviceType
    pressures: list[int] = Field(min_length=1, max_length=12)
    work_mode: WorkMode = WorkMode.AVERAGE

    @field_validator("device_type", mode="before")
    @classmethod
    def normalize_device(cls, value: Any) -> Any:
        return normalize_device_type(value)

    @field_validator("pressures")
    @classmethod
    def validate_pressures(cls, value: list[int]) -> list[int]:
        if any(pressure < 0 or pressure > MAX_GAUGE_PRESSURE_BAR for pressure in value):
            raise ValueError(f"Pressures must be within 0..{MAX_GAUGE_PRESSURE_BAR} bar")
        return value


class BudgetSummaryRead(BaseModel):
    device_type: DeviceType
    work_mode: WorkMode
    min_pressure: int
    protection_time: int
    critical_pressure: int
    hood_pressure: int
    evacuation_time_with_victim: int
    exit_timer_seconds: int


class LabeledOption(BaseModel):
    value: str
    label: str


class ReferenceDataRead(BaseModel):
    device_types: list[LabeledOption]
    operation_types: list[LabeledOption]
    member_roles: list[LabeledOption]
    session_phases: list[SessionPhase]


class RuntimeHealthRead(BaseModel):
    ticks_total: int
    dropped_ticks_total: int
    dropped_ticks_last: int
    tick_lag_sec: float
    last_tick_at: datetime | None
    loop_interval_sec: float
