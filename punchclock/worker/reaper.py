"""Stale-timer reaper: periodic sweeps over running timers.

Sweeps:
1. Missed acknowledgments: interrupt prompts left unanswered past the
   grace period are auto-stopped with an overrun placeholder. Backstop for
   the per-prompt job armed by request_interrupt.
2. Abandoned timers: no heartbeat for ``stale_heartbeat_minutes`` means
   the client is gone; the timer is closed as autoStop.
3. Nudges: long working sessions get a "Timer still running" reminder.

Candidates are found with a plain read; each one is then re-read under a
row lock in its own transaction by TimerService, so a timer acknowledged
or stopped in the meantime is left alone.
"""

import asyncio
from datetime import timedelta

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from punchclock.config import settings
from punchclock.metrics import reaper_actions
from punchclock.models.running_timer import PomodoroPhase, RunningTimer
from punchclock.scheduler import Scheduler
from punchclock.services.timer import ACK_GRACE_SECONDS, NUDGE_AFTER, NUDGE_INTERVAL, TimerService
from punchclock.timeutil import utcnow

log = structlog.get_logger(__name__)


async def sweep_missed_acks(
    session_factory: async_sessionmaker[AsyncSession], scheduler: Scheduler
) -> int:
    cutoff = utcnow() - timedelta(seconds=ACK_GRACE_SECONDS)
    async with session_factory() as db:
        result = await db.execute(
            select(RunningTimer.tenant_id, RunningTimer.user_id).where(
                RunningTimer.awaiting_ack.is_(True),
                RunningTimer.ack_shown_at.is_not(None),
                RunningTimer.ack_shown_at <= cutoff,
            )
        )
        candidates = result.all()

    stopped = 0
    for tenant_id, user_id in candidates:
        try:
            async with session_factory() as db:
                outcome = await TimerService(db, scheduler).auto_stop_for_missed_ack(tenant_id, user_id)
        except Exception:
            log.error("missed_ack_sweep_item_failed", user_id=str(user_id), exc_info=True)
            continue
        if outcome.action == "auto_stopped":
            stopped += 1
            reaper_actions.labels(sweep="missed_ack").inc()
    return stopped


async def sweep_abandoned(
    session_factory: async_sessionmaker[AsyncSession], scheduler: Scheduler
) -> int:
    cutoff = utcnow() - timedelta(minutes=settings.stale_heartbeat_minutes)
    async with session_factory() as db:
        result = await db.execute(
            select(RunningTimer.id, RunningTimer.tenant_id, RunningTimer.user_id).where(
                RunningTimer.last_heartbeat_at < cutoff
            )
        )
        candidates = result.all()

    stopped = 0
    for timer_id, tenant_id, user_id in candidates:
        try:
            async with session_factory() as db:
                done = await TimerService(db, scheduler).auto_stop_abandoned(tenant_id, user_id, timer_id)
        except Exception:
            log.error("abandoned_sweep_item_failed", timer_id=str(timer_id), exc_info=True)
            continue
        if done:
            stopped += 1
            reaper_actions.labels(sweep="abandoned").inc()
    return stopped


async def sweep_nudges(
    session_factory: async_sessionmaker[AsyncSession], scheduler: Scheduler
) -> int:
    now = utcnow()
    async with session_factory() as db:
        result = await db.execute(
            select(RunningTimer.id).where(
                RunningTimer.started_at <= now - NUDGE_AFTER,
                or_(
                    RunningTimer.pomodoro_phase.is_(None),
                    RunningTimer.pomodoro_phase != PomodoroPhase.break_.value,
                ),
                or_(
                    RunningTimer.last_nudge_sent_at.is_(None),
                    RunningTimer.last_nudge_sent_at <= now - NUDGE_INTERVAL,
                ),
            )
        )
        timer_ids = result.scalars().all()

    nudged = 0
    for timer_id in timer_ids:
        try:
            async with session_factory() as db:
                sent = await TimerService(db, scheduler).nudge_if_due(timer_id)
        except Exception:
            log.error("nudge_sweep_item_failed", timer_id=str(timer_id), exc_info=True)
            continue
        if sent:
            nudged += 1
            reaper_actions.labels(sweep="nudge").inc()
    return nudged


async def run_stale_timer_sweep(
    session_factory: async_sessionmaker[AsyncSession], scheduler: Scheduler
) -> dict:
    """Missed-ack and abandoned sweeps; each runs even if the other fails."""
    stats = {}
    for name, sweep in (("missed_ack", sweep_missed_acks), ("abandoned", sweep_abandoned)):
        try:
            stats[name] = await sweep(session_factory, scheduler)
        except Exception:
            log.error("reaper_sweep_failed", sweep=name, exc_info=True)
            stats[name] = "error"
    if any(stats.values()):
        log.info("reaper_sweep_completed", **stats)
    return stats


async def stale_timer_loop(
    session_factory: async_sessionmaker[AsyncSession], scheduler: Scheduler
) -> None:
    interval = settings.missed_ack_sweep_interval
    log.info("stale_timer_reaper_started", interval_seconds=interval)
    while True:
        try:
            await run_stale_timer_sweep(session_factory, scheduler)
        except Exception:
            log.error("stale_timer_reaper_error", exc_info=True)
        await asyncio.sleep(interval)


async def nudge_loop(
    session_factory: async_sessionmaker[AsyncSession], scheduler: Scheduler
) -> None:
    interval = settings.nudge_sweep_interval
    log.info("nudge_sweeper_started", interval_seconds=interval)
    while True:
        try:
            count = await sweep_nudges(session_factory, scheduler)
            if count:
                log.info("nudges_sent", count=count)
        except Exception:
            log.error("nudge_sweeper_error", exc_info=True)
        await asyncio.sleep(interval)
