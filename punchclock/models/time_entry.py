import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class TimeEntrySource(str, enum.Enum):
    manual = "manual"
    timer = "timer"
    autoStop = "autoStop"
    overrun = "overrun"
    pomodoroBreak = "pomodoroBreak"


OVERRUN_PLACEHOLDER_NOTE = "Overrun placeholder - merge if you were still working"


class TimeEntry(Base):
    __tablename__ = "time_entries"
    __table_args__ = (
        Index("ix_time_entries_tenant_user_started", "tenant_id", "user_id", "started_at"),
        Index("ix_time_entries_project", "project_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id"), nullable=False
    )

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Open entry while both are null
    stopped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    source: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Informational placeholder for time after a missed acknowledgment
    is_overrun: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @property
    def is_open(self) -> bool:
        return self.stopped_at is None and not self.is_overrun
