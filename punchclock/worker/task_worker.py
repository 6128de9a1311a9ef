"""Task worker: claims due jobs from the scheduler queue and runs them.

Claiming goes through RedisScheduler.claim_due (ZREM wins the race), so
multiple worker instances can poll the same queue without running a job
twice. A failing job is logged and dropped; task bodies are idempotent and
the periodic sweeps cover anything a lost job would have done.
"""

import asyncio

import structlog

from punchclock.config import settings
from punchclock.metrics import scheduled_tasks
from punchclock.scheduler import Job, RedisScheduler
from punchclock.tasks import TASKS, WorkerContext
from punchclock.timeutil import utcnow

log = structlog.get_logger(__name__)


async def run_job(ctx: WorkerContext, job: Job) -> None:
    handler = TASKS.get(job.task)
    if handler is None:
        log.error("task_unknown", task=job.task, job_id=job.id)
        scheduled_tasks.labels(task=job.task, event="unknown").inc()
        return
    try:
        result = await handler(ctx, job.payload)
    except Exception:
        log.error("task_failed", task=job.task, job_id=job.id, exc_info=True)
        scheduled_tasks.labels(task=job.task, event="failed").inc()
        return
    scheduled_tasks.labels(task=job.task, event="completed").inc()
    log.info("task_completed", task=job.task, job_id=job.id, result=str(result))


async def process_due_jobs(ctx: WorkerContext, scheduler: RedisScheduler) -> int:
    """Claim one batch of due jobs and run them concurrently.

    Returns:
        Number of jobs claimed in this batch.
    """
    jobs = await scheduler.claim_due(utcnow(), limit=settings.scheduler_batch_size)
    if not jobs:
        return 0
    await asyncio.gather(*(run_job(ctx, job) for job in jobs))
    return len(jobs)


async def task_worker_loop(ctx: WorkerContext, scheduler: RedisScheduler) -> None:
    """Main polling loop; keeps draining while full batches come back."""
    log.info(
        "task_worker_started",
        poll_interval=settings.scheduler_poll_interval,
        batch_size=settings.scheduler_batch_size,
    )
    while True:
        count = 0
        try:
            count = await process_due_jobs(ctx, scheduler)
            if count > 0:
                log.debug("task_batch_processed", count=count)
        except Exception:
            log.error("task_worker_error", exc_info=True)

        if count < settings.scheduler_batch_size:
            await asyncio.sleep(settings.scheduler_poll_interval)
