"""Timer state machine: one running timer per user and its open time entry.

States: Idle (no row) -> Running -> AwaitingAck -> Running | Idle.

Design notes:
- Every operation re-reads the RunningTimer with SELECT ... FOR UPDATE in the
  transaction that writes it. A missing row is a valid terminal state, not an
  error: stale scheduled jobs and repeated client calls land there.
- The (tenant_id, user_id) unique constraint is the backstop for racing
  starts. The loser's transaction is rolled back and retried once, and the
  retry supersedes the winner like any other double start.
- Deferred work (interrupt checks, auto-stop, alerts) is scheduled after
  commit through schedule_safely. A scheduling failure is logged and never
  undoes the state change. Jobs are never cancelled; each one re-reads state
  and becomes a no-op when the timer moved on.
- Alert markers (budget warning, overrun, nudge) are claimed and committed
  before the alert is enqueued, so no row lock is held across a Redis call.
  A failed enqueue puts the previous marker values back.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from punchclock.config import settings
from punchclock.errors import InvalidState, NotFound
from punchclock.identity import Identity
from punchclock.metrics import timer_transitions
from punchclock.models.project import BudgetType, Project
from punchclock.models.running_timer import BudgetWarningType, PomodoroPhase, RunningTimer
from punchclock.models.time_entry import OVERRUN_PLACEHOLDER_NOTE, TimeEntry, TimeEntrySource
from punchclock.models.user_settings import UserSettings
from punchclock.scheduler import Scheduler, TaskName, schedule_safely
from punchclock.services.alerts import Alert, AlertCategory, AlertData, enqueue_alert
from punchclock.services.budget import (
    BudgetState,
    BudgetThresholds,
    evaluate_budget,
    format_remaining,
    should_resend_overrun,
    should_resend_warning,
)
from punchclock.timeutil import as_utc, elapsed_seconds, utcnow

log = structlog.get_logger(__name__)

# Time the user has to answer an interrupt prompt before the timer auto-stops
ACK_GRACE_SECONDS = 60
DEFAULT_INTERRUPT_INTERVAL_MINUTES = 60
DEFAULT_BUDGET_WARNING_THRESHOLD_HOURS = 1.0
DEFAULT_BUDGET_WARNING_THRESHOLD_AMOUNT = 50.0

# Long-running timer reminders
NUDGE_AFTER = timedelta(minutes=90)
NUDGE_INTERVAL = timedelta(minutes=30)


@dataclass(frozen=True)
class TimerSettings:
    """Per-user timer preferences with the product defaults."""

    interrupt_interval_minutes: float = DEFAULT_INTERRUPT_INTERVAL_MINUTES
    interrupt_enabled: bool = True
    budget_warning_enabled: bool = True
    budget_warning_threshold_hours: Optional[float] = DEFAULT_BUDGET_WARNING_THRESHOLD_HOURS
    budget_warning_threshold_amount: Optional[float] = DEFAULT_BUDGET_WARNING_THRESHOLD_AMOUNT
    pomodoro_enabled: bool = False
    pomodoro_work_minutes: float = 25.0
    pomodoro_break_minutes: float = 5.0

    @classmethod
    def from_row(cls, row: Optional[UserSettings]) -> "TimerSettings":
        if row is None:
            return cls()
        return cls(
            interrupt_interval_minutes=row.interrupt_interval_minutes or DEFAULT_INTERRUPT_INTERVAL_MINUTES,
            interrupt_enabled=row.interrupt_enabled,
            budget_warning_enabled=row.budget_warning_enabled,
            budget_warning_threshold_hours=row.budget_warning_threshold_hours,
            budget_warning_threshold_amount=row.budget_warning_threshold_amount,
            pomodoro_enabled=row.pomodoro_enabled,
            pomodoro_work_minutes=row.pomodoro_work_minutes,
            pomodoro_break_minutes=row.pomodoro_break_minutes,
        )

    @property
    def thresholds(self) -> BudgetThresholds:
        return BudgetThresholds(
            warnings_enabled=self.budget_warning_enabled,
            threshold_hours=self.budget_warning_threshold_hours,
            threshold_amount=self.budget_warning_threshold_amount,
        )

    def next_interrupt_at(self, now: datetime) -> Optional[datetime]:
        if not self.interrupt_enabled:
            return None
        return now + timedelta(minutes=self.interrupt_interval_minutes)


@dataclass
class StartResult:
    success: bool
    timer_id: uuid.UUID
    next_interrupt_at: Optional[datetime] = None
    pomodoro_transition_at: Optional[datetime] = None


@dataclass
class StopResult:
    success: bool
    message: Optional[str] = None
    entry_id: Optional[uuid.UUID] = None
    seconds: Optional[int] = None


@dataclass
class InterruptResult:
    should_show_interrupt: bool
    timer_id: Optional[uuid.UUID] = None
    ack_deadline: Optional[datetime] = None


@dataclass
class AckResult:
    success: bool
    action: str  # "continued" | "stopped" | "already_acked"
    next_interrupt_at: Optional[datetime] = None


@dataclass
class AutoStopResult:
    action: str  # "auto_stopped" | "not_awaiting" | "too_early" | "no_timer"
    entry_id: Optional[uuid.UUID] = None
    overrun_id: Optional[uuid.UUID] = None


@dataclass
class MergeResult:
    merged_seconds: int
    total_seconds: int
    entry_id: uuid.UUID


@dataclass
class RunningTimerView:
    """Running timer joined with project/client display data and budget stats."""

    timer: RunningTimer
    project_name: Optional[str]
    client_name: Optional[str]
    budget_type: Optional[str]
    total_seconds: int
    budget_remaining: Optional[float]
    budget_remaining_formatted: str


# ---------------------------------------------------------------------------
# Row helpers shared with the deferred tasks and sweeps
# ---------------------------------------------------------------------------


async def load_timer_settings(
    db: AsyncSession, tenant_id: uuid.UUID, user_id: uuid.UUID
) -> TimerSettings:
    result = await db.execute(
        select(UserSettings).where(
            UserSettings.tenant_id == tenant_id,
            UserSettings.user_id == user_id,
        )
    )
    return TimerSettings.from_row(result.scalar_one_or_none())


async def lock_timer(
    db: AsyncSession, tenant_id: uuid.UUID, user_id: uuid.UUID
) -> Optional[RunningTimer]:
    """Re-read the user's running timer with a row lock held until commit."""
    result = await db.execute(
        select(RunningTimer)
        .where(RunningTimer.tenant_id == tenant_id, RunningTimer.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_timer_by_id(db: AsyncSession, timer_id: uuid.UUID) -> Optional[RunningTimer]:
    result = await db.execute(
        select(RunningTimer)
        .where(RunningTimer.id == timer_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_open_entry(db: AsyncSession, timer: RunningTimer) -> Optional[TimeEntry]:
    result = await db.execute(
        select(TimeEntry)
        .where(
            TimeEntry.tenant_id == timer.tenant_id,
            TimeEntry.user_id == timer.user_id,
            TimeEntry.project_id == timer.project_id,
            TimeEntry.stopped_at.is_(None),
            TimeEntry.is_overrun.is_(False),
        )
        .order_by(TimeEntry.started_at.desc())
        .limit(1)
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def close_open_entry(
    db: AsyncSession, timer: RunningTimer, source: TimeEntrySource, now: datetime
) -> Optional[TimeEntry]:
    """Close the timer's open entry with floor(now - started_at) seconds."""
    entry = await find_open_entry(db, timer)
    if entry is not None:
        entry.stopped_at = now
        entry.seconds = elapsed_seconds(entry.started_at, now)
        entry.source = source.value
    return entry


async def stop_locked(
    db: AsyncSession, timer: RunningTimer, source: TimeEntrySource, now: datetime
) -> Optional[TimeEntry]:
    """Close the open entry and delete the timer. Caller holds the row lock and commits."""
    entry = await close_open_entry(db, timer, source, now)
    await db.delete(timer)
    return entry


def insert_overrun_placeholder(db: AsyncSession, timer: RunningTimer, now: datetime) -> TimeEntry:
    placeholder = TimeEntry(
        tenant_id=timer.tenant_id,
        user_id=timer.user_id,
        project_id=timer.project_id,
        started_at=now,
        source=TimeEntrySource.overrun.value,
        note=OVERRUN_PLACEHOLDER_NOTE,
        is_overrun=True,
    )
    db.add(placeholder)
    return placeholder


async def tracked_project_seconds(
    db: AsyncSession, tenant_id: uuid.UUID, project_id: uuid.UUID
) -> int:
    """Sum of closed, non-overrun entries for a project (all users of the tenant)."""
    result = await db.execute(
        select(func.coalesce(func.sum(TimeEntry.seconds), 0)).where(
            TimeEntry.tenant_id == tenant_id,
            TimeEntry.project_id == project_id,
            TimeEntry.stopped_at.is_not(None),
            TimeEntry.is_overrun.is_(False),
        )
    )
    return int(result.scalar_one() or 0)


async def get_project(
    db: AsyncSession, tenant_id: uuid.UUID, project_id: uuid.UUID
) -> Optional[Project]:
    result = await db.execute(
        select(Project).where(Project.id == project_id, Project.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


def project_names(project: Optional[Project]) -> tuple[Optional[str], Optional[str]]:
    if project is None:
        return None, None
    return project.name, project.client.name if project.client else None


class TimerService:
    """Request-scoped timer operations.

    Args:
        db: Session owned by the caller; the service commits its own
            transactions.
        scheduler: Deferred-task scheduler used after commit.
    """

    def __init__(self, db: AsyncSession, scheduler: Scheduler) -> None:
        self.db = db
        self.scheduler = scheduler

    # -- start / stop ------------------------------------------------------

    async def start(
        self,
        identity: Identity,
        project_id: uuid.UUID,
        pomodoro: Optional[bool] = None,
    ) -> StartResult:
        """Start a timer, superseding any timer the user already has running.

        Raises:
            NotFound: Project does not exist in the caller's tenant.
            InvalidState: Project is archived.
        """
        project = await get_project(self.db, identity.tenant_id, project_id)
        if project is None:
            raise NotFound("Project not found")
        if project.archived:
            raise InvalidState("Cannot start a timer for an archived project")

        timer_settings = await load_timer_settings(self.db, identity.tenant_id, identity.user_id)
        use_pomodoro = pomodoro if pomodoro is not None else timer_settings.pomodoro_enabled

        for attempt in (1, 2):
            try:
                timer = await self._start_once(identity, project_id, timer_settings, use_pomodoro)
                break
            except IntegrityError:
                await self.db.rollback()
                if attempt == 2:
                    raise
                log.warning("timer_start_conflict_retrying", user_id=str(identity.user_id))

        result = StartResult(
            success=True,
            timer_id=timer.id,
            next_interrupt_at=timer.next_interrupt_at,
            pomodoro_transition_at=timer.pomodoro_transition_at,
        )
        timer_transitions.labels(operation="start", outcome="started").inc()
        log.info(
            "timer_started",
            timer_id=str(timer.id),
            project_id=str(project_id),
            pomodoro=use_pomodoro,
            next_interrupt_at=result.next_interrupt_at.isoformat() if result.next_interrupt_at else None,
        )

        if use_pomodoro:
            await schedule_safely(
                self.scheduler,
                TaskName.pomodoro_transition,
                {"timer_id": str(timer.id)},
                at=result.pomodoro_transition_at,
            )
        elif result.next_interrupt_at is not None:
            await self._schedule_interrupt_check(identity, timer.id, result.next_interrupt_at)
        return result

    async def _start_once(
        self,
        identity: Identity,
        project_id: uuid.UUID,
        timer_settings: TimerSettings,
        use_pomodoro: bool,
    ) -> RunningTimer:
        now = utcnow()
        existing = await lock_timer(self.db, identity.tenant_id, identity.user_id)
        if existing is not None:
            await stop_locked(self.db, existing, TimeEntrySource.timer, now)
            # The old row must be gone before the new insert hits the unique constraint
            await self.db.flush()
            log.info("timer_superseded", timer_id=str(existing.id))

        timer = RunningTimer(
            tenant_id=identity.tenant_id,
            user_id=identity.user_id,
            project_id=project_id,
            started_at=now,
            last_heartbeat_at=now,
            awaiting_ack=False,
            pomodoro_enabled=use_pomodoro,
        )
        if use_pomodoro:
            # Pomodoro mode replaces interrupts entirely
            timer.next_interrupt_at = None
            timer.pomodoro_phase = PomodoroPhase.work.value
            timer.pomodoro_transition_at = now + timedelta(minutes=timer_settings.pomodoro_work_minutes)
            timer.pomodoro_work_minutes = timer_settings.pomodoro_work_minutes
            timer.pomodoro_break_minutes = timer_settings.pomodoro_break_minutes
            timer.pomodoro_current_cycle = 1
            timer.pomodoro_completed_cycles = 0
        else:
            timer.next_interrupt_at = timer_settings.next_interrupt_at(now)

        self.db.add(timer)
        self.db.add(
            TimeEntry(
                tenant_id=identity.tenant_id,
                user_id=identity.user_id,
                project_id=project_id,
                started_at=now,
                source=TimeEntrySource.timer.value,
                is_overrun=False,
            )
        )
        await self.db.commit()
        return timer

    async def stop(
        self, identity: Identity, source: TimeEntrySource = TimeEntrySource.timer
    ) -> StopResult:
        """Stop the running timer. Idempotent: no timer is a normal outcome."""
        now = utcnow()
        timer = await lock_timer(self.db, identity.tenant_id, identity.user_id)
        if timer is None:
            await self.db.rollback()
            timer_transitions.labels(operation="stop", outcome="no_timer").inc()
            return StopResult(success=False, message="No running timer")

        timer_id = timer.id
        entry = await stop_locked(self.db, timer, source, now)
        await self.db.commit()

        timer_transitions.labels(operation="stop", outcome=source.value).inc()
        log.info(
            "timer_stopped",
            timer_id=str(timer_id),
            source=source.value,
            seconds=entry.seconds if entry else None,
        )
        if entry is None:
            return StopResult(success=True)
        return StopResult(success=True, entry_id=entry.id, seconds=entry.seconds)

    # -- heartbeat + budget alerts ------------------------------------------

    async def heartbeat(self, identity: Identity) -> bool:
        """Record client liveness, then run the budget check.

        Returns False when there is no running timer. Budget and alert
        failures are logged and never fail the heartbeat.
        """
        now = utcnow()
        timer = await lock_timer(self.db, identity.tenant_id, identity.user_id)
        if timer is None:
            await self.db.rollback()
            return False
        timer.last_heartbeat_at = now
        timer_id = timer.id
        await self.db.commit()

        try:
            await self._maybe_send_budget_alerts(identity, timer_id, now)
        except Exception:
            await self.db.rollback()
            log.error("budget_check_failed", timer_id=str(timer_id), exc_info=True)
        return True

    async def _maybe_send_budget_alerts(
        self, identity: Identity, timer_id: uuid.UUID, now: datetime
    ) -> None:
        timer = await lock_timer(self.db, identity.tenant_id, identity.user_id)
        if timer is None or timer.id != timer_id or timer.is_break:
            await self.db.rollback()
            return

        project = await get_project(self.db, identity.tenant_id, timer.project_id)
        if project is None:
            await self.db.rollback()
            return

        timer_settings = await load_timer_settings(self.db, identity.tenant_id, identity.user_id)
        tracked = await tracked_project_seconds(self.db, identity.tenant_id, project.id)
        status = evaluate_budget(
            budget_type=project.budget_type,
            budget_hours=project.budget_hours,
            budget_amount=project.budget_amount,
            hourly_rate=project.hourly_rate,
            tracked_seconds=tracked,
            running_seconds=elapsed_seconds(timer.started_at, now),
            thresholds=timer_settings.thresholds,
        )
        if not status.needs_alert:
            await self.db.rollback()
            return

        project_name, client_name = project_names(project)
        data = AlertData(project_id=project.id, timer_id=timer.id)

        if status.state == BudgetState.over_budget:
            if not should_resend_overrun(timer.overrun_alert_sent_at, now):
                await self.db.rollback()
                return
            if project.budget_type == BudgetType.hours:
                body = f"You've exceeded the {project.budget_hours:g}h time budget for {project.name}."
            else:
                body = f"You've exceeded the ${project.budget_amount:.2f} budget for {project.name}."
            alert = Alert(
                tenant_id=identity.tenant_id,
                user_id=identity.user_id,
                title="Budget exceeded",
                body=body,
                category=AlertCategory.overrun,
                project_name=project_name,
                client_name=client_name,
                data=data,
            )
            marker = "overrun_alert_sent_at"
            previous = {marker: timer.overrun_alert_sent_at}
            timer.overrun_alert_sent_at = now
            event, fields = "budget_overrun_alert", {"total_seconds": status.total_seconds}
        else:
            warning_type = status.warning_type or BudgetWarningType.time
            if not should_resend_warning(
                timer.budget_warning_sent_at, timer.budget_warning_type, warning_type, now
            ):
                await self.db.rollback()
                return
            remaining = format_remaining(project.budget_type, status.remaining)
            alert = Alert(
                tenant_id=identity.tenant_id,
                user_id=identity.user_id,
                title="Budget warning",
                body=f"{project.name} has {remaining} remaining.",
                category=AlertCategory.budget_warning,
                project_name=project_name,
                client_name=client_name,
                data=data.model_copy(update={"warning_type": warning_type.value}),
            )
            marker = "budget_warning_sent_at"
            previous = {
                marker: timer.budget_warning_sent_at,
                "budget_warning_type": timer.budget_warning_type,
            }
            timer.budget_warning_sent_at = now
            timer.budget_warning_type = warning_type.value
            event, fields = "budget_warning_alert", {"warning_type": warning_type.value}

        # Claim the marker and release the row lock before touching the queue
        await self.db.commit()
        if await enqueue_alert(self.scheduler, alert):
            log.info(event, timer_id=str(timer_id), **fields)
            return
        await self._release_alert_marker(timer_id, marker, now, previous)

    async def _release_alert_marker(
        self, timer_id: uuid.UUID, marker: str, claimed_at: datetime, previous: dict
    ) -> None:
        """Put back the marker values when the claimed alert never got enqueued.

        Leaves the row alone if the timer is gone or a later claim replaced
        the marker.
        """
        timer = await lock_timer_by_id(self.db, timer_id)
        current = as_utc(getattr(timer, marker)) if timer is not None else None
        if current != claimed_at:
            await self.db.rollback()
            return
        for field, value in previous.items():
            setattr(timer, field, value)
        await self.db.commit()
        log.warning("alert_marker_released", timer_id=str(timer_id), marker=marker)

    # -- interrupt / acknowledgment -----------------------------------------

    async def request_interrupt(
        self, identity: Identity, timer_id: Optional[uuid.UUID] = None
    ) -> InterruptResult:
        """Put the timer into AwaitingAck and arm the missed-ack auto-stop.

        With ``timer_id`` set, only that timer is interrupted; a newer timer
        for the same user is left alone.
        """
        now = utcnow()
        timer = await lock_timer(self.db, identity.tenant_id, identity.user_id)
        if timer is None or (timer_id is not None and timer.id != timer_id):
            await self.db.rollback()
            return InterruptResult(should_show_interrupt=False)

        timer.awaiting_ack = True
        timer.ack_shown_at = now
        current_id = timer.id
        await self.db.commit()

        timer_transitions.labels(operation="interrupt", outcome="awaiting_ack").inc()
        log.info("timer_interrupt_requested", timer_id=str(current_id))
        await schedule_safely(
            self.scheduler,
            TaskName.auto_stop_for_missed_ack,
            {"tenant_id": str(identity.tenant_id), "user_id": str(identity.user_id)},
            delay_seconds=ACK_GRACE_SECONDS,
        )
        return InterruptResult(
            should_show_interrupt=True,
            timer_id=current_id,
            ack_deadline=now + timedelta(seconds=ACK_GRACE_SECONDS),
        )

    async def ack_interrupt(self, identity: Identity, continue_: bool) -> AckResult:
        """Answer an interrupt prompt.

        A prompt that was already answered, or a timer that is gone, yields
        ``already_acked`` without touching anything.
        """
        now = utcnow()
        timer = await lock_timer(self.db, identity.tenant_id, identity.user_id)
        if timer is None or not timer.awaiting_ack:
            await self.db.rollback()
            timer_transitions.labels(operation="ack", outcome="already_acked").inc()
            return AckResult(success=False, action="already_acked")

        if continue_:
            timer_settings = await load_timer_settings(self.db, identity.tenant_id, identity.user_id)
            next_at = None if timer.pomodoro_enabled else timer_settings.next_interrupt_at(now)
            timer.awaiting_ack = False
            timer.ack_shown_at = None
            timer.next_interrupt_at = next_at
            current_id = timer.id
            await self.db.commit()

            timer_transitions.labels(operation="ack", outcome="continued").inc()
            log.info(
                "timer_interrupt_continued",
                timer_id=str(current_id),
                next_interrupt_at=next_at.isoformat() if next_at else None,
            )
            if next_at is not None:
                await self._schedule_interrupt_check(identity, current_id, next_at)
            return AckResult(success=True, action="continued", next_interrupt_at=next_at)

        project_id = timer.project_id
        await stop_locked(self.db, timer, TimeEntrySource.timer, now)
        await self.db.commit()
        timer_transitions.labels(operation="ack", outcome="stopped").inc()
        log.info("timer_interrupt_stopped", project_id=str(project_id))

        try:
            await self._send_break_reminder(identity, project_id)
        except Exception:
            log.error("break_reminder_failed", user_id=str(identity.user_id), exc_info=True)
        return AckResult(success=True, action="stopped")

    async def _send_break_reminder(self, identity: Identity, project_id: uuid.UUID) -> None:
        project = await get_project(self.db, identity.tenant_id, project_id)
        project_name, client_name = project_names(project)
        alert = Alert(
            tenant_id=identity.tenant_id,
            user_id=identity.user_id,
            title="Break time",
            body=f"Take a short break before jumping back into {project_name or 'your next task'}.",
            category=AlertCategory.break_reminder,
            project_name=project_name,
            client_name=client_name,
            data=AlertData(project_id=project_id),
        )
        await enqueue_alert(self.scheduler, alert)

    async def auto_stop_for_missed_ack(
        self, tenant_id: uuid.UUID, user_id: uuid.UUID
    ) -> AutoStopResult:
        """Force-stop a timer whose interrupt prompt went unanswered.

        Runs from the scheduled job armed by request_interrupt and from the
        missed-ack sweep. Stops only once ACK_GRACE_SECONDS have passed since
        the prompt, and leaves an overrun placeholder behind for the user to
        merge if they were in fact still working.
        """
        now = utcnow()
        timer = await lock_timer(self.db, tenant_id, user_id)
        if timer is None:
            await self.db.rollback()
            return AutoStopResult(action="no_timer")
        if not timer.awaiting_ack or timer.ack_shown_at is None:
            await self.db.rollback()
            return AutoStopResult(action="not_awaiting")
        if elapsed_seconds(timer.ack_shown_at, now) < ACK_GRACE_SECONDS:
            await self.db.rollback()
            return AutoStopResult(action="too_early")

        timer_id = timer.id
        entry = await stop_locked(self.db, timer, TimeEntrySource.autoStop, now)
        placeholder = insert_overrun_placeholder(self.db, timer, now)
        await self.db.commit()

        timer_transitions.labels(operation="auto_stop", outcome="missed_ack").inc()
        log.info(
            "timer_auto_stopped_missed_ack",
            timer_id=str(timer_id),
            seconds=entry.seconds if entry else None,
            overrun_id=str(placeholder.id),
        )
        return AutoStopResult(
            action="auto_stopped",
            entry_id=entry.id if entry else None,
            overrun_id=placeholder.id,
        )

    async def auto_stop_abandoned(
        self,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        timer_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """Close a timer whose client stopped sending heartbeats.

        Re-checks staleness under the row lock; returns True when stopped.
        """
        now = utcnow()
        timer = await lock_timer(self.db, tenant_id, user_id)
        if timer is None or (timer_id is not None and timer.id != timer_id):
            await self.db.rollback()
            return False
        cutoff = now - timedelta(minutes=settings.stale_heartbeat_minutes)
        if as_utc(timer.last_heartbeat_at) >= cutoff:
            await self.db.rollback()
            return False

        stopped_id = timer.id
        await stop_locked(self.db, timer, TimeEntrySource.autoStop, now)
        await self.db.commit()
        timer_transitions.labels(operation="auto_stop", outcome="abandoned").inc()
        log.info("timer_auto_stopped_abandoned", timer_id=str(stopped_id))
        return True

    async def nudge_if_due(self, timer_id: uuid.UUID) -> bool:
        """Send a "still running" reminder for a long working session.

        Due when the timer has run longer than NUDGE_AFTER and no nudge went
        out within NUDGE_INTERVAL. The marker is committed before the alert
        is enqueued and put back if enqueueing fails.
        """
        now = utcnow()
        timer = await lock_timer_by_id(self.db, timer_id)
        if timer is None or timer.is_break:
            await self.db.rollback()
            return False
        if now - as_utc(timer.started_at) < NUDGE_AFTER:
            await self.db.rollback()
            return False
        if timer.last_nudge_sent_at and now - as_utc(timer.last_nudge_sent_at) < NUDGE_INTERVAL:
            await self.db.rollback()
            return False

        project = await get_project(self.db, timer.tenant_id, timer.project_id)
        project_name, client_name = project_names(project)
        hours = elapsed_seconds(timer.started_at, now) / 3600
        alert = Alert(
            tenant_id=timer.tenant_id,
            user_id=timer.user_id,
            title="Timer still running",
            body=f"Your timer for {project_name or 'this project'} has been running for {hours:.1f} hours.",
            category=AlertCategory.nudge,
            project_name=project_name,
            client_name=client_name,
            data=AlertData(
                project_id=timer.project_id,
                timer_id=timer.id,
                elapsed_seconds=elapsed_seconds(timer.started_at, now),
            ),
        )
        previous = {"last_nudge_sent_at": timer.last_nudge_sent_at}
        timer.last_nudge_sent_at = now
        await self.db.commit()
        if not await enqueue_alert(self.scheduler, alert):
            await self._release_alert_marker(timer_id, "last_nudge_sent_at", now, previous)
            return False
        log.info("timer_nudged", timer_id=str(timer_id))
        return True

    # -- reads / corrections -------------------------------------------------

    async def get_running_timer(self, identity: Identity) -> Optional[RunningTimerView]:
        result = await self.db.execute(
            select(RunningTimer).where(
                RunningTimer.tenant_id == identity.tenant_id,
                RunningTimer.user_id == identity.user_id,
            )
        )
        timer = result.scalar_one_or_none()
        if timer is None:
            return None

        project = await get_project(self.db, identity.tenant_id, timer.project_id)
        if project is None:
            return RunningTimerView(
                timer=timer,
                project_name=None,
                client_name=None,
                budget_type=None,
                total_seconds=0,
                budget_remaining=None,
                budget_remaining_formatted=format_remaining(BudgetType.hours, None),
            )

        tracked = await tracked_project_seconds(self.db, identity.tenant_id, project.id)
        running = 0 if timer.is_break else elapsed_seconds(timer.started_at, utcnow())
        status = evaluate_budget(
            budget_type=project.budget_type,
            budget_hours=project.budget_hours,
            budget_amount=project.budget_amount,
            hourly_rate=project.hourly_rate,
            tracked_seconds=tracked,
            running_seconds=running,
            thresholds=BudgetThresholds(warnings_enabled=False),
        )
        project_name, client_name = project_names(project)
        return RunningTimerView(
            timer=timer,
            project_name=project_name,
            client_name=client_name,
            budget_type=project.budget_type,
            total_seconds=status.total_seconds,
            budget_remaining=status.remaining,
            budget_remaining_formatted=format_remaining(project.budget_type, status.remaining),
        )

    async def merge_overrun(
        self, identity: Identity, overrun_id: uuid.UUID, target_id: uuid.UUID
    ) -> MergeResult:
        """Fold an overrun placeholder's elapsed time into a finished entry.

        Raises:
            NotFound: Either entry is missing or belongs to someone else.
            InvalidState: Source is not an overrun placeholder, or the target
                is itself an overrun or still open.
        """
        now = utcnow()
        overrun = await self._owned_entry(identity, overrun_id)
        target = await self._owned_entry(identity, target_id)

        if not overrun.is_overrun or overrun.source != TimeEntrySource.overrun.value:
            raise InvalidState("Source entry is not an overrun")
        if target.is_overrun:
            raise InvalidState("Cannot merge into an overrun entry")
        if target.stopped_at is None or target.seconds is None:
            raise InvalidState("Target entry is not completed")

        overrun_seconds = elapsed_seconds(overrun.started_at, now)
        total = target.seconds + overrun_seconds
        target.stopped_at = now
        target.seconds = total
        if target.note:
            target.note = f"{target.note} (merged with {overrun_seconds}s overrun)"
        else:
            target.note = f"Merged with {overrun_seconds}s overrun"
        await self.db.delete(overrun)
        await self.db.commit()

        log.info("overrun_merged", entry_id=str(target_id), merged_seconds=overrun_seconds)
        return MergeResult(merged_seconds=overrun_seconds, total_seconds=total, entry_id=target_id)

    async def _owned_entry(self, identity: Identity, entry_id: uuid.UUID) -> TimeEntry:
        result = await self.db.execute(
            select(TimeEntry)
            .where(
                TimeEntry.id == entry_id,
                TimeEntry.tenant_id == identity.tenant_id,
                TimeEntry.user_id == identity.user_id,
            )
            .with_for_update()
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFound("Entry not found")
        return entry

    async def _schedule_interrupt_check(
        self, identity: Identity, timer_id: uuid.UUID, at: datetime
    ) -> None:
        await schedule_safely(
            self.scheduler,
            TaskName.interrupt_check,
            {
                "tenant_id": str(identity.tenant_id),
                "user_id": str(identity.user_id),
                "timer_id": str(timer_id),
            },
            at=at,
        )
