"""Pomodoro phase transitions for timers started in Pomodoro mode.

A Pomodoro timer alternates work and break phases instead of using
interrupt prompts:

  work  -> break: the open entry is closed as ``pomodoroBreak`` and the
                  timer row flips to the break phase (every 4th cycle gets
                  a long break, 3x the configured length)
  break -> done:  completed cycles is bumped and the timer is deleted; the
                  user restarts the next cycle explicitly

Each transition is scheduled at ``pomodoro_transition_at`` and re-checks
that deadline, so stale or duplicated jobs are no-ops.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from punchclock.metrics import timer_transitions
from punchclock.models.running_timer import PomodoroPhase
from punchclock.models.time_entry import TimeEntrySource
from punchclock.scheduler import Scheduler, TaskName, schedule_safely
from punchclock.services.alerts import Alert, AlertCategory, AlertData, enqueue_alert
from punchclock.services.timer import close_open_entry, get_project, lock_timer_by_id, project_names
from punchclock.timeutil import as_utc, utcnow

log = structlog.get_logger(__name__)

CYCLES_PER_SET = 4
LONG_BREAK_MULTIPLIER = 3
DEFAULT_BREAK_MINUTES = 5.0


@dataclass
class TransitionResult:
    action: str  # "break_started" | "cycle_finished" | "no_timer" | "not_pomodoro" | "not_due"
    next_transition_at: Optional[datetime] = None


def break_length(break_minutes: float, cycle: int) -> float:
    """Minutes of break after work cycle ``cycle`` (1-based)."""
    if cycle % CYCLES_PER_SET == 0:
        return break_minutes * LONG_BREAK_MULTIPLIER
    return break_minutes


async def run_pomodoro_transition(
    db: AsyncSession, scheduler: Scheduler, payload: dict
) -> TransitionResult:
    now = utcnow()
    timer = await lock_timer_by_id(db, uuid.UUID(payload["timer_id"]))
    if timer is None:
        await db.rollback()
        return TransitionResult(action="no_timer")
    if not timer.pomodoro_enabled:
        await db.rollback()
        return TransitionResult(action="not_pomodoro")
    if timer.pomodoro_transition_at and now < as_utc(timer.pomodoro_transition_at):
        await db.rollback()
        return TransitionResult(action="not_due")

    project = await get_project(db, timer.tenant_id, timer.project_id)
    project_name, client_name = project_names(project)
    timer_id = timer.id

    if timer.is_break:
        completed = (timer.pomodoro_completed_cycles or 0) + 1
        full_set = completed % CYCLES_PER_SET == 0
        await db.delete(timer)
        await db.commit()

        if full_set:
            sets = completed // CYCLES_PER_SET
            title = "Pomodoro cycle complete!"
            body = (
                f"Congratulations! You've completed {sets} full Pomodoro "
                f"cycle{'s' if sets > 1 else ''}. Ready for the next cycle?"
            )
        else:
            title = "Break complete"
            body = f"Ready to get back to {project_name or 'work'}? Click to resume tracking."
        alert = Alert(
            tenant_id=timer.tenant_id,
            user_id=timer.user_id,
            title=title,
            body=body,
            category=AlertCategory.break_complete,
            project_name=project_name,
            client_name=client_name,
            data=AlertData(
                project_id=timer.project_id,
                timer_id=timer_id,
                pomodoro_phase=PomodoroPhase.work.value,
                completed_cycles=completed,
            ),
        )
        await enqueue_alert(scheduler, alert)
        timer_transitions.labels(operation="pomodoro", outcome="cycle_finished").inc()
        log.info("pomodoro_cycle_finished", timer_id=str(timer_id), completed_cycles=completed)
        return TransitionResult(action="cycle_finished")

    cycle = timer.pomodoro_current_cycle or 1
    configured_break = timer.pomodoro_break_minutes or DEFAULT_BREAK_MINUTES
    minutes = break_length(configured_break, cycle)
    long_break = cycle % CYCLES_PER_SET == 0
    break_ends_at = now + timedelta(minutes=minutes)

    await close_open_entry(db, timer, TimeEntrySource.pomodoroBreak, now)
    timer.pomodoro_phase = PomodoroPhase.break_.value
    timer.pomodoro_transition_at = break_ends_at
    timer.pomodoro_current_cycle = cycle
    await db.commit()

    await schedule_safely(
        scheduler, TaskName.pomodoro_transition, {"timer_id": str(timer_id)}, at=break_ends_at
    )
    if long_break:
        title = "Long break time!"
        body = (
            f"Excellent work! You've completed {cycle} work sessions. "
            f"Take {minutes:g} minutes for a well-deserved long break."
        )
    else:
        title = "Break time!"
        body = (
            f"Great focus! Take {minutes:g} minutes to recharge. "
            "Step away from your screen, stretch, or grab some water."
        )
    alert = Alert(
        tenant_id=timer.tenant_id,
        user_id=timer.user_id,
        title=title,
        body=body,
        category=AlertCategory.break_start,
        project_name=project_name,
        client_name=client_name,
        data=AlertData(
            project_id=timer.project_id,
            timer_id=timer_id,
            pomodoro_phase=PomodoroPhase.break_.value,
            break_minutes=minutes,
            current_cycle=cycle,
        ),
    )
    await enqueue_alert(scheduler, alert)
    timer_transitions.labels(operation="pomodoro", outcome="break_started").inc()
    log.info("pomodoro_break_started", timer_id=str(timer_id), cycle=cycle, break_minutes=minutes)
    return TransitionResult(action="break_started", next_transition_at=break_ends_at)
