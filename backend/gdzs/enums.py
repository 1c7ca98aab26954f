from enum import Enum


class DeviceType(str, Enum):
    DRAGER_PSS3000 = "DRAGER_PSS3000"
    DRAGER_PSS4000 = "DRAGER_PSS4000"
    MSA = "MSA"
    ASP2 = "ASP2"


DEVICE_TYPE_LABELS: dict[DeviceType, str] = {
    DeviceType.DRAGER_PSS3000: "Drager PSS3000",
    DeviceType.DRAGER_PSS4000: "Drager PSS4000",
    DeviceType.MSA: "MSA",
    DeviceType.ASP2: "АСП-2",
}

# Saved rosters and older journal exports use display names.
DEVICE_TYPE_ALIASES_TO_CANONICAL: dict[str, DeviceType] = {
    DeviceType.DRAGER_PSS3000.value: DeviceType.DRAGER_PSS3000,
    DeviceType.DRAGER_PSS4000.value: DeviceType.DRAGER_PSS4000,
    DeviceType.MSA.value: DeviceType.MSA,
    DeviceType.ASP2.value: DeviceType.ASP2,
    "DRAGER PSS3000": DeviceType.DRAGER_PSS3000,
    "PSS3000": DeviceType.DRAGER_PSS3000,
    "DRAGER PSS4000": DeviceType.DRAGER_PSS4000,
    "PSS4000": DeviceType.DRAGER_PSS4000,
    "АСП-2": DeviceType.ASP2,
    "АСП2": DeviceType.ASP2,
    "ASP-2": DeviceType.ASP2,
}


class WorkMode(str, Enum):
    AVERAGE = "AVERAGE"
    HEAVY = "HEAVY"


class OperationType(str, Enum):
    FIRE = "FIRE"
    ACCIDENT = "ACCIDENT"
    TRAINING = "TRAINING"
    EXERCISE = "EXERCISE"


OPERATION_TYPE_LABELS: dict[OperationType, str] = {
    OperationType.FIRE: "Пожежа",
    OperationType.ACCIDENT: "Аварія",
    OperationType.TRAINING: "Заняття",
    OperationType.EXERCISE: "Навчання",
}


class TeamMemberRole(str, Enum):
    FIREFIGHTER = "FIREFIGHTER"
    SQUAD_LEADER = "SQUAD_LEADER"
    SAFETY_POST = "SAFETY_POST"


TEAM_MEMBER_ROLE_LABELS: dict[TeamMemberRole, str] = {
    TeamMemberRole.FIREFIGHTER: "Пожежний",
    TeamMemberRole.SQUAD_LEADER: "Командир ланки",
    TeamMemberRole.SAFETY_POST: "Пост безпеки",
}


class SessionPhase(str, Enum):
    ENTERED = "ENTERED"
    SEARCHING_FOR_SOURCE = "SEARCHING_FOR_SOURCE"
    WORKING_AT_SOURCE = "WORKING_AT_SOURCE"
    EXITING_ZONE = "EXITING_ZONE"
    JOURNALED = "JOURNALED"


# Phases only advance; the index is the position in the lifecycle.
SESSION_PHASE_ORDER: tuple[SessionPhase, ...] = (
    SessionPhase.ENTERED,
    SessionPhase.SEARCHING_FOR_SOURCE,
    SessionPhase.WORKING_AT_SOURCE,
    SessionPhase.EXITING_ZONE,
    SessionPhase.JOURNALED,
)


class AlertKind(str, Enum):
    EXIT_TIMER_EXPIRED = "EXIT_TIMER_EXPIRED"
    REMAINING_TIMER_EXPIRED = "REMAINING_TIMER_EXPIRED"
    COMMUNICATION_DUE = "COMMUNICATION_DUE"


class ValidationErrorKind(str, Enum):
    PRESSURE_ABOVE_TEAM_MINIMUM = "PRESSURE_ABOVE_TEAM_MINIMUM"
    PRESSURE_BELOW_DEVICE_MINIMUM = "PRESSURE_BELOW_DEVICE_MINIMUM"


class WarningKind(str, Enum):
    CONSUMPTION_ANOMALY = "CONSUMPTION_ANOMALY"
    PAST_EXIT_PRESSURE = "PAST_EXIT_PRESSURE"
    IMMEDIATE_EGRESS = "IMMEDIATE_EGRESS"


class AppLifecycleState(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    BACKGROUND = "BACKGROUND"
