"""Running timer model.

At most one row per (tenant, user), enforced by a unique constraint. Writers
are the timer state machine in services/timer.py and the deferred tasks
built on its helpers (interrupt checks, Pomodoro transitions, sweeps).
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PomodoroPhase(str, enum.Enum):
    work = "work"
    break_ = "break"


class BudgetWarningType(str, enum.Enum):
    time = "time"
    amount = "amount"


class RunningTimer(Base):
    __tablename__ = "running_timers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_running_timers_tenant_user"),
        Index("ix_running_timers_awaiting_ack", "awaiting_ack", "ack_shown_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id"), nullable=False
    )

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_heartbeat_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    # Interrupt / acknowledgment protocol
    awaiting_ack: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ack_shown_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    next_interrupt_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Last-alert markers (resend throttling)
    budget_warning_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    budget_warning_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    overrun_alert_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_nudge_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Pomodoro sub-state
    pomodoro_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pomodoro_phase: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    pomodoro_transition_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    pomodoro_work_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pomodoro_break_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pomodoro_current_cycle: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pomodoro_completed_cycles: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    @property
    def is_break(self) -> bool:
        return self.pomodoro_phase == PomodoroPhase.break_.value
