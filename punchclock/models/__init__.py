from .base import Base
from .project import BudgetType, Client, Project
from .time_entry import OVERRUN_PLACEHOLDER_NOTE, TimeEntry, TimeEntrySource
from .running_timer import BudgetWarningType, PomodoroPhase, RunningTimer
from .user_settings import UserSettings
from .notification_prefs import NotificationPreferences, PushSubscription

__all__ = [
    "Base",
    "BudgetType",
    "Client",
    "Project",
    "OVERRUN_PLACEHOLDER_NOTE",
    "TimeEntry",
    "TimeEntrySource",
    "BudgetWarningType",
    "PomodoroPhase",
    "RunningTimer",
    "UserSettings",
    "NotificationPreferences",
    "PushSubscription",
]
