"""Alert payloads shared by the timer core and the notification pipeline.

Alerts cross the deferred-task queue as JSON, so they are pydantic models
with an explicit category enum and a typed data block instead of free-form
dicts. Action affordances per category are presentation metadata for the
service worker; clients match on the action ids.
"""

import enum
import uuid
from typing import Optional
from urllib.parse import urlencode

from pydantic import BaseModel, Field

from punchclock.config import settings
from punchclock.scheduler import Scheduler, TaskName, schedule_safely


class AlertCategory(str, enum.Enum):
    interrupt = "interrupt"
    overrun = "overrun"
    budget_warning = "budget_warning"
    break_reminder = "break_reminder"
    nudge = "nudge"
    break_start = "break_start"
    break_complete = "break_complete"


class AlertAction(BaseModel):
    action: str
    title: str
    icon: str


class AlertData(BaseModel):
    """Structured context attached to an alert."""

    project_id: Optional[uuid.UUID] = None
    timer_id: Optional[uuid.UUID] = None
    warning_type: Optional[str] = None
    elapsed_seconds: Optional[int] = None
    pomodoro_phase: Optional[str] = None
    break_minutes: Optional[float] = None
    current_cycle: Optional[int] = None
    completed_cycles: Optional[int] = None


class Alert(BaseModel):
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    title: str
    body: str
    category: AlertCategory
    project_name: Optional[str] = None
    client_name: Optional[str] = None
    data: AlertData = Field(default_factory=AlertData)


_STOP = AlertAction(action="stop", title="Stop Timer", icon="/icons/stop.svg")
_SNOOZE = AlertAction(action="snooze", title="Snooze 5min", icon="/icons/snooze.svg")
_SWITCH = AlertAction(action="switch", title="Switch Project", icon="/icons/switch.svg")

ALERT_ACTIONS: dict[AlertCategory, list[AlertAction]] = {
    AlertCategory.interrupt: [_STOP, _SNOOZE, _SWITCH],
    AlertCategory.overrun: [_STOP, _SNOOZE],
    AlertCategory.nudge: [_STOP, _SNOOZE],
    AlertCategory.budget_warning: [_STOP, _SWITCH],
    AlertCategory.break_reminder: [
        AlertAction(action="stop", title="Take a Break", icon="/icons/stop.svg"),
        AlertAction(action="switch", title="Switch Focus", icon="/icons/switch.svg"),
    ],
}

DEFAULT_ACTIONS = [_STOP, _SNOOZE]


def actions_for(category: AlertCategory) -> list[AlertAction]:
    return ALERT_ACTIONS.get(category, DEFAULT_ACTIONS)


def build_notification_url(alert: Alert) -> str:
    """Deep link into the timer screen for this alert."""
    params = {"alert": alert.category.value}
    if alert.data.project_id:
        params["project"] = str(alert.data.project_id)
    if alert.data.timer_id:
        params["timer"] = str(alert.data.timer_id)
    base = settings.public_app_url.rstrip("/")
    return f"{base}/timer?{urlencode(params)}"


async def enqueue_alert(scheduler: Scheduler, alert: Alert) -> bool:
    """Hand an alert to the notification pipeline via the task queue.

    Returns True when the send task was enqueued. Delivery itself happens
    later in the task worker and may still fail.
    """
    return await schedule_safely(
        scheduler, TaskName.send_alert, {"alert": alert.model_dump(mode="json")}
    )
