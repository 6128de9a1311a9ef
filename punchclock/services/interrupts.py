"""Interrupt check: the deferred task that prompts "still working?".

Scheduled by TimerService at ``next_interrupt_at`` for a specific timer.
The job is never cancelled, so it first re-reads the timer and bails out
when the timer is gone, was replaced, is already waiting for an answer,
or had its deadline moved.
"""

import enum
import uuid
from datetime import timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from punchclock.config import settings
from punchclock.identity import Identity
from punchclock.models.running_timer import RunningTimer
from punchclock.scheduler import Scheduler
from punchclock.services.alerts import Alert, AlertCategory, AlertData, enqueue_alert
from punchclock.services.timer import TimerService, get_project, project_names
from punchclock.timeutil import as_utc, utcnow

log = structlog.get_logger(__name__)


class InterruptOutcome(str, enum.Enum):
    no_timer = "no_timer"
    stale_job = "stale_job"
    skipped = "skipped"
    not_due = "not_due"
    stale_stopped = "stale_stopped"
    prompted = "prompted"


async def run_interrupt_check(
    db: AsyncSession, scheduler: Scheduler, payload: dict
) -> InterruptOutcome:
    identity = Identity(
        tenant_id=uuid.UUID(payload["tenant_id"]),
        user_id=uuid.UUID(payload["user_id"]),
    )
    expected_id = uuid.UUID(payload["timer_id"]) if payload.get("timer_id") else None
    now = utcnow()

    result = await db.execute(
        select(RunningTimer).where(
            RunningTimer.tenant_id == identity.tenant_id,
            RunningTimer.user_id == identity.user_id,
        )
    )
    timer = result.scalar_one_or_none()
    if timer is None:
        return InterruptOutcome.no_timer
    if expected_id is not None and timer.id != expected_id:
        return InterruptOutcome.stale_job
    if timer.awaiting_ack:
        return InterruptOutcome.skipped
    if timer.next_interrupt_at is None or now < as_utc(timer.next_interrupt_at):
        return InterruptOutcome.not_due

    svc = TimerService(db, scheduler)
    heartbeat_cutoff = now - timedelta(minutes=settings.stale_heartbeat_minutes)
    if as_utc(timer.last_heartbeat_at) < heartbeat_cutoff:
        # Nobody is watching this timer; prompting would only end in an autostop
        if await svc.auto_stop_abandoned(identity.tenant_id, identity.user_id, timer.id):
            return InterruptOutcome.stale_stopped
        return InterruptOutcome.skipped

    timer_id = timer.id
    project_id = timer.project_id
    prompt = await svc.request_interrupt(identity, timer_id=timer_id)
    if not prompt.should_show_interrupt:
        return InterruptOutcome.stale_job

    project = await get_project(db, identity.tenant_id, project_id)
    project_name, client_name = project_names(project)
    alert = Alert(
        tenant_id=identity.tenant_id,
        user_id=identity.user_id,
        title="Timer Interruption",
        body=f"Are you still working on {project_name or 'this project'}?",
        category=AlertCategory.interrupt,
        project_name=project_name,
        client_name=client_name,
        data=AlertData(project_id=project_id, timer_id=timer_id),
    )
    if not await enqueue_alert(scheduler, alert):
        log.warning("interrupt_alert_not_enqueued", timer_id=str(timer_id))
    log.info("interrupt_prompted", timer_id=str(timer_id))
    return InterruptOutcome.prompted
