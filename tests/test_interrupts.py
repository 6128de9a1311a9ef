"""Tests for the deferred interrupt check."""

import uuid
from datetime import timedelta

from sqlalchemy import select

from punchclock.models import RunningTimer
from punchclock.scheduler import TaskName
from punchclock.services.alerts import AlertCategory
from punchclock.services.interrupts import InterruptOutcome, run_interrupt_check
from punchclock.services.timer import TimerService
from punchclock.timeutil import utcnow


async def _started(db, scheduler, identity, project):
    svc = TimerService(db, scheduler)
    await svc.start(identity, project.id)
    payload = scheduler.of(TaskName.interrupt_check)[0].payload
    timer = (await db.execute(select(RunningTimer))).scalar_one()
    return svc, timer, payload


async def _make_due(db, timer, **extra):
    timer.next_interrupt_at = utcnow() - timedelta(seconds=1)
    for key, value in extra.items():
        setattr(timer, key, value)
    await db.commit()


async def test_due_check_prompts_and_sends_alert(db, scheduler, identity, project):
    _, timer, payload = await _started(db, scheduler, identity, project)
    await _make_due(db, timer)

    outcome = await run_interrupt_check(db, scheduler, payload)

    assert outcome == InterruptOutcome.prompted
    refreshed = (await db.execute(select(RunningTimer))).scalar_one()
    assert refreshed.awaiting_ack is True
    assert len(scheduler.of(TaskName.auto_stop_for_missed_ack)) == 1
    alerts = scheduler.alerts()
    assert len(alerts) == 1
    assert alerts[0].category == AlertCategory.interrupt
    assert alerts[0].title == "Timer Interruption"
    assert alerts[0].body == "Are you still working on Website Redesign?"
    assert alerts[0].data.timer_id == timer.id


async def test_check_before_deadline_is_noop(db, scheduler, identity, project):
    _, _, payload = await _started(db, scheduler, identity, project)

    outcome = await run_interrupt_check(db, scheduler, payload)

    assert outcome == InterruptOutcome.not_due
    assert scheduler.alerts() == []


async def test_check_after_stop_is_noop(db, scheduler, identity, project):
    svc, _, payload = await _started(db, scheduler, identity, project)
    await svc.stop(identity)

    outcome = await run_interrupt_check(db, scheduler, payload)

    assert outcome == InterruptOutcome.no_timer
    assert scheduler.alerts() == []


async def test_check_for_replaced_timer_is_stale(db, scheduler, identity, project):
    svc, _, payload = await _started(db, scheduler, identity, project)
    await svc.start(identity, project.id)
    timer = (await db.execute(select(RunningTimer))).scalar_one()
    await _make_due(db, timer)

    outcome = await run_interrupt_check(db, scheduler, payload)

    assert outcome == InterruptOutcome.stale_job
    assert timer.awaiting_ack is False


async def test_check_while_awaiting_ack_is_skipped(db, scheduler, identity, project):
    svc, timer, payload = await _started(db, scheduler, identity, project)
    await svc.request_interrupt(identity)
    await _make_due(db, timer)

    outcome = await run_interrupt_check(db, scheduler, payload)

    assert outcome == InterruptOutcome.skipped
    assert scheduler.alerts() == []


async def test_stale_heartbeat_stops_instead_of_prompting(db, scheduler, identity, project):
    _, timer, payload = await _started(db, scheduler, identity, project)
    await _make_due(db, timer, last_heartbeat_at=utcnow() - timedelta(minutes=30))

    outcome = await run_interrupt_check(db, scheduler, payload)

    assert outcome == InterruptOutcome.stale_stopped
    assert (await db.execute(select(RunningTimer))).scalar_one_or_none() is None
    assert scheduler.alerts() == []


async def test_check_without_timer_id_still_runs(db, scheduler, identity, project):
    _, timer, payload = await _started(db, scheduler, identity, project)
    await _make_due(db, timer)
    legacy = {"tenant_id": payload["tenant_id"], "user_id": payload["user_id"]}

    outcome = await run_interrupt_check(db, scheduler, legacy)

    assert outcome == InterruptOutcome.prompted


async def test_check_for_unknown_user(db, scheduler, identity):
    payload = {
        "tenant_id": str(identity.tenant_id),
        "user_id": str(uuid.uuid4()),
        "timer_id": str(uuid.uuid4()),
    }
    assert await run_interrupt_check(db, scheduler, payload) == InterruptOutcome.no_timer
