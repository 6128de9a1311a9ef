"""Deferred task bodies, keyed by TaskName.

Every handler takes the worker context and the job payload, opens its own
session when it needs one, and re-reads state before acting; the queue is
at-least-once and jobs are never cancelled.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from punchclock.scheduler import Scheduler, TaskName
from punchclock.services.alerts import Alert
from punchclock.services.dispatcher import NotificationDispatcher
from punchclock.services.fallback import FallbackDispatcher
from punchclock.services.interrupts import run_interrupt_check
from punchclock.services.pomodoro import run_pomodoro_transition
from punchclock.services.timer import TimerService


@dataclass
class WorkerContext:
    session_factory: async_sessionmaker[AsyncSession]
    scheduler: Scheduler
    dispatcher: NotificationDispatcher
    fallback: FallbackDispatcher


TaskHandler = Callable[[WorkerContext, dict], Awaitable[Any]]


async def interrupt_check(ctx: WorkerContext, payload: dict):
    async with ctx.session_factory() as db:
        return await run_interrupt_check(db, ctx.scheduler, payload)


async def auto_stop_for_missed_ack(ctx: WorkerContext, payload: dict):
    async with ctx.session_factory() as db:
        svc = TimerService(db, ctx.scheduler)
        return await svc.auto_stop_for_missed_ack(
            uuid.UUID(payload["tenant_id"]), uuid.UUID(payload["user_id"])
        )


async def pomodoro_transition(ctx: WorkerContext, payload: dict):
    async with ctx.session_factory() as db:
        return await run_pomodoro_transition(db, ctx.scheduler, payload)


async def send_alert(ctx: WorkerContext, payload: dict):
    alert = Alert.model_validate(payload["alert"])
    return await ctx.dispatcher.send_timer_alert(alert)


async def escalate(ctx: WorkerContext, payload: dict):
    alert = Alert.model_validate(payload["alert"])
    return await ctx.fallback.escalate_if_still_relevant(alert, alert.data.timer_id)


TASKS: dict[str, TaskHandler] = {
    TaskName.interrupt_check.value: interrupt_check,
    TaskName.auto_stop_for_missed_ack.value: auto_stop_for_missed_ack,
    TaskName.pomodoro_transition.value: pomodoro_transition,
    TaskName.send_alert.value: send_alert,
    TaskName.escalate.value: escalate,
}
