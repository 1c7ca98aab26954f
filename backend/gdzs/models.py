from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, Enum, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .enums import SessionPhase


class ActiveWorkSession(Base):
    __tablename__ = "active_work_sessions"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    team_name: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    phase: Mapped[SessionPhase] = mapped_column(
        Enum(SessionPhase, name="work_session_phase"),
        nullable=False,
        default=SessionPhase.ENTERED,
    )
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __str__(self) -> str:
        return f"{self.team_name or 'team'} ({self.id})"
