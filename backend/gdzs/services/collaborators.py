from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol
from uuid import UUID

from pydantic import TypeAdapter, ValidationError

from ..enums import AlertKind
from ..schemas import JournalRecord, TeamMember

logger = logging.getLogger(__name__)

TEAM_MEMBERS_ADAPTER = TypeAdapter(list[TeamMember])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return utcnow()


class AlertScheduler(Protocol):
    def schedule_alert(self, kind: AlertKind, after_seconds: float, session_id: UUID) -> None: ...

    def cancel_alert(self, kind: AlertKind, session_id: UUID) -> None: ...


class LoggingAlertScheduler:
    """Hands alert requests to the log; delivery belongs to the device side."""

    def schedule_alert(self, kind: AlertKind, after_seconds: float, session_id: UUID) -> None:
        logger.info("Alert %s scheduled in %.0fs for session %s", kind.value, after_seconds, session_id)

    def cancel_alert(self, kind: AlertKind, session_id: UUID) -> None:
        logger.info("Alert %s cancelled for session %s", kind.value, session_id)


class JournalSink(Protocol):
    def export(self, record: JournalRecord) -> None: ...


class LoggingJournalSink:
    def export(self, record: JournalRecord) -> None:
        logger.info(
            "Journal record %s exported for team %r at %s",
            record.id,
            record.team_name,
            record.work_address,
        )


class RosterSource(Protocol):
    def get_members(self, team_name: str) -> list[TeamMember] | None: ...


class StaticRosterSource:
    def __init__(self, teams: Mapping[str, list[TeamMember]] | None = None) -> None:
        self._teams: dict[str, list[TeamMember]] = {
            name.strip(): [member.model_copy(deep=True) for member in members]
            for name, members in (teams or {}).items()
        }

    def get_members(self, team_name: str) -> list[TeamMember] | None:
        members = self._teams.get(team_name.strip())
        if members is None:
            return None
        # Callers get copies; the saved roster is never mutated by a session.
        return [member.model_copy(deep=True) for member in members]

    def team_names(self) -> list[str]:
        return sorted(self._teams)


def load_roster_file(path: str | Path) -> StaticRosterSource:
    roster_path = Path(path)
    try:
        raw = json.loads(roster_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Could not read roster file %s: %s", roster_path, exc)
        return StaticRosterSource()

    teams_raw = raw.get("teams") if isinstance(raw, dict) else None
    if not isinstance(teams_raw, dict):
        logger.warning("Roster file %s has no 'teams' object", roster_path)
        return StaticRosterSource()

    teams: dict[str, list[TeamMember]] = {}
    for team_name, members_raw in teams_raw.items():
        try:
            teams[str(team_name)] = TEAM_MEMBERS_ADAPTER.validate_python(members_raw)
        except ValidationError as exc:
            logger.warning(
                "Skipping team %r in roster file %s: %s", team_name, roster_path, exc.errors()
            )
    logger.info("Loaded %s saved teams from %s", len(teams), roster_path)
    return StaticRosterSource(teams)
