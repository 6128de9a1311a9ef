"""Prometheus metrics for the timer and alerting pipeline."""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

timer_transitions = Counter(
    "punchclock_timer_transitions_total",
    "Timer state machine transitions",
    ["operation", "outcome"],
)

alert_dispatches = Counter(
    "punchclock_alert_dispatches_total",
    "Alert dispatch results by category",
    ["category", "outcome"],
)

channel_deliveries = Counter(
    "punchclock_channel_deliveries_total",
    "Per-target delivery attempts",
    ["channel", "outcome"],
)

reaper_actions = Counter(
    "punchclock_reaper_actions_total",
    "Timers closed or nudged by the periodic sweeps",
    ["sweep"],
)

scheduled_tasks = Counter(
    "punchclock_scheduled_tasks_total",
    "Deferred tasks enqueued and executed",
    ["task", "event"],
)


async def metrics_endpoint() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
