"""Deferred-task scheduler.

Jobs are kept in Redis: a sorted set scored by due time (epoch seconds) and
a hash holding each job's JSON envelope. Workers claim due jobs with ZREM,
so when several workers poll the same queue exactly one of them wins each
job. A job lost between claim and execution (process restart) is not
retried; every task body re-reads current state and the periodic sweeps
cover what a lost job would have done.

There is no cancellation API. A task that is no longer wanted (timer
stopped before its interrupt deadline, say) still fires and becomes a
no-op because it re-reads state before acting.
"""

import enum
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

import structlog

from punchclock.config import settings
from punchclock.metrics import scheduled_tasks
from punchclock.timeutil import as_utc, utcnow

log = structlog.get_logger(__name__)


class TaskName(str, enum.Enum):
    interrupt_check = "interrupts.check"
    auto_stop_for_missed_ack = "timer.auto_stop_for_missed_ack"
    pomodoro_transition = "timer.pomodoro_transition"
    send_alert = "notifications.send_alert"
    escalate = "notifications.escalate"


@dataclass
class Job:
    id: str
    task: str
    payload: dict
    run_at: datetime


class Scheduler(Protocol):
    async def run_at(self, when: datetime, task: TaskName, payload: dict) -> str: ...

    async def run_after(self, delay_seconds: float, task: TaskName, payload: dict) -> str: ...


class RedisScheduler:
    """Scheduler backed by a Redis sorted set.

    Args:
        redis: A ``redis.asyncio.Redis`` client created with decode_responses=True.
        prefix: Key namespace for the queue and payload hash.
    """

    def __init__(self, redis: Any, prefix: str = settings.scheduler_key_prefix) -> None:
        self.redis = redis
        self.queue_key = f"{prefix}:due"
        self.jobs_key = f"{prefix}:jobs"

    async def run_at(self, when: datetime, task: TaskName, payload: dict) -> str:
        job_id = uuid.uuid4().hex
        when = as_utc(when)
        envelope = json.dumps(
            {"task": TaskName(task).value, "payload": payload, "run_at": when.isoformat()}
        )
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self.jobs_key, job_id, envelope)
            pipe.zadd(self.queue_key, {job_id: when.timestamp()})
            await pipe.execute()
        scheduled_tasks.labels(task=TaskName(task).value, event="enqueued").inc()
        log.debug("task_scheduled", task=TaskName(task).value, job_id=job_id, run_at=when.isoformat())
        return job_id

    async def run_after(self, delay_seconds: float, task: TaskName, payload: dict) -> str:
        return await self.run_at(utcnow() + timedelta(seconds=max(0.0, delay_seconds)), task, payload)

    async def claim_due(self, now: datetime, limit: int = 50) -> list[Job]:
        """Claim up to ``limit`` jobs whose due time has passed.

        ZREM returns 1 only for the worker that actually removed the member,
        which makes the claim safe across competing workers.
        """
        job_ids = await self.redis.zrangebyscore(
            self.queue_key, "-inf", as_utc(now).timestamp(), start=0, num=limit
        )
        jobs: list[Job] = []
        for job_id in job_ids:
            if not await self.redis.zrem(self.queue_key, job_id):
                continue  # another worker got it
            raw = await self.redis.hget(self.jobs_key, job_id)
            await self.redis.hdel(self.jobs_key, job_id)
            if raw is None:
                log.warning("task_payload_missing", job_id=job_id)
                continue
            try:
                envelope = json.loads(raw)
                jobs.append(
                    Job(
                        id=job_id,
                        task=envelope["task"],
                        payload=envelope.get("payload") or {},
                        run_at=datetime.fromisoformat(envelope["run_at"]),
                    )
                )
            except (ValueError, KeyError):
                log.error("task_envelope_invalid", job_id=job_id, exc_info=True)
        return jobs

    async def pending_count(self) -> int:
        return await self.redis.zcard(self.queue_key)


async def schedule_safely(
    scheduler: Scheduler,
    task: TaskName,
    payload: dict,
    *,
    at: datetime | None = None,
    delay_seconds: float | None = None,
) -> bool:
    """Fire-and-forget scheduling: failures are logged, never raised.

    Returns True when the job was enqueued.
    """
    try:
        if at is not None:
            await scheduler.run_at(at, task, payload)
        else:
            await scheduler.run_after(delay_seconds or 0.0, task, payload)
        return True
    except Exception:
        scheduled_tasks.labels(task=TaskName(task).value, event="schedule_failed").inc()
        log.error("task_schedule_failed", task=TaskName(task).value, exc_info=True)
        return False
