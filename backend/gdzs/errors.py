from __future__ import annotations

import logging
from uuid import UUID

from . import config

logger = logging.getLogger(__name__)


class GdzsError(Exception):
    """Base class for domain errors raised by the work-session core."""


class SessionNotFoundError(GdzsError):
    def __init__(self, session_id: UUID) -> None:
        super().__init__(f"Work session {session_id} is not active")
        self.session_id = session_id


class DuplicateTeamError(GdzsError):
    def __init__(self, team_name: str) -> None:
        super().__init__(f"Team '{team_name}' already has an active work session")
        self.team_name = team_name


class PhaseTransitionError(GdzsError):
    def __init__(self, trigger: str, phase: str) -> None:
        super().__init__(f"'{trigger}' is not allowed in phase {phase}")
        self.trigger = trigger
        self.phase = phase


class RegistryNotSuspendedError(GdzsError):
    def __init__(self) -> None:
        super().__init__("Background time can only be reconciled while the registry is suspended")


class MissingWorkAddressError(GdzsError):
    def __init__(self) -> None:
        super().__init__("Work address is required to journal a session")


class InvariantViolation(GdzsError):
    """A programming error: negative time, bad device constants, use after journaling."""


def report_invariant_violation(message: str, *, strict: bool | None = None) -> None:
    """Raise in strict mode, otherwise log; the caller clamps and carries on."""
    if strict is None:
        strict = config.STRICT_INVARIANTS
    if strict:
        raise InvariantViolation(message)
    logger.error("Invariant violation: %s", message)
