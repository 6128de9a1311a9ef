"""Budget threshold evaluation for running timers.

Pure computation, no I/O: the caller (TimerService.heartbeat) gathers the
project, the already-tracked seconds and the running timer's elapsed time,
and decides whether to send based on the resend policy helpers below.

Decision table:
  - hours budget:  remaining = budget_hours * 3600 - total_seconds
  - amount budget: remaining = budget_amount - total_seconds / 3600 * hourly_rate
  - remaining <= 0                          -> over_budget
  - warnings on and remaining <= threshold  -> warning (time | amount)
  - no budget value                         -> no alert
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from punchclock.models.project import BudgetType
from punchclock.models.running_timer import BudgetWarningType
from punchclock.timeutil import as_utc

# Hardcoded in the product so far; candidates for per-tenant configuration.
BUDGET_OVERRUN_RESEND_INTERVAL = timedelta(minutes=60)
BUDGET_WARNING_RESEND_INTERVAL = timedelta(minutes=30)


class BudgetState(str, enum.Enum):
    ok = "ok"
    warning = "warning"
    over_budget = "over_budget"


@dataclass(frozen=True)
class BudgetThresholds:
    warnings_enabled: bool = True
    threshold_hours: Optional[float] = None
    threshold_amount: Optional[float] = None


@dataclass(frozen=True)
class BudgetStatus:
    state: BudgetState
    total_seconds: int
    total_amount: float
    remaining: Optional[float] = None
    warning_type: Optional[BudgetWarningType] = None

    @property
    def needs_alert(self) -> bool:
        return self.state != BudgetState.ok


def evaluate_budget(
    budget_type: str,
    budget_hours: Optional[float],
    budget_amount: Optional[float],
    hourly_rate: float,
    tracked_seconds: int,
    running_seconds: int,
    thresholds: BudgetThresholds,
) -> BudgetStatus:
    """Classify a project's budget state.

    Args:
        budget_type: "hours" or "amount".
        budget_hours: Hours budget, if any.
        budget_amount: Money budget, if any.
        hourly_rate: Project rate used to derive the tracked amount.
        tracked_seconds: Sum of closed, non-overrun entries for the project.
        running_seconds: Elapsed seconds on the current running timer.
        thresholds: The user's warning preferences.
    """
    total_seconds = max(0, tracked_seconds) + max(0, running_seconds)
    total_amount = (total_seconds / 3600) * (hourly_rate or 0.0)

    if budget_type == BudgetType.hours and budget_hours:
        remaining_seconds = budget_hours * 3600 - total_seconds
        if remaining_seconds <= 0:
            return BudgetStatus(BudgetState.over_budget, total_seconds, total_amount, remaining=0.0)
        remaining_hours = remaining_seconds / 3600
        if (
            thresholds.warnings_enabled
            and thresholds.threshold_hours
            and remaining_hours <= thresholds.threshold_hours
        ):
            return BudgetStatus(
                BudgetState.warning,
                total_seconds,
                total_amount,
                remaining=remaining_hours,
                warning_type=BudgetWarningType.time,
            )
        return BudgetStatus(BudgetState.ok, total_seconds, total_amount, remaining=remaining_hours)

    if budget_type == BudgetType.amount and budget_amount:
        remaining_amount = budget_amount - total_amount
        if remaining_amount <= 0:
            return BudgetStatus(BudgetState.over_budget, total_seconds, total_amount, remaining=0.0)
        if (
            thresholds.warnings_enabled
            and thresholds.threshold_amount
            and remaining_amount <= thresholds.threshold_amount
        ):
            return BudgetStatus(
                BudgetState.warning,
                total_seconds,
                total_amount,
                remaining=remaining_amount,
                warning_type=BudgetWarningType.amount,
            )
        return BudgetStatus(BudgetState.ok, total_seconds, total_amount, remaining=remaining_amount)

    return BudgetStatus(BudgetState.ok, total_seconds, total_amount)


def should_resend_overrun(last_sent_at: Optional[datetime], now: datetime) -> bool:
    if last_sent_at is None:
        return True
    return now - as_utc(last_sent_at) > BUDGET_OVERRUN_RESEND_INTERVAL


def should_resend_warning(
    last_sent_at: Optional[datetime],
    last_type: Optional[str],
    warning_type: BudgetWarningType,
    now: datetime,
) -> bool:
    """Warnings resend on a type change, or after the resend interval."""
    if last_sent_at is None or last_type != warning_type.value:
        return True
    return now - as_utc(last_sent_at) > BUDGET_WARNING_RESEND_INTERVAL


def format_remaining(budget_type: str, remaining: Optional[float]) -> str:
    if remaining is None:
        return "N/A"
    remaining = max(0.0, remaining)
    if budget_type == BudgetType.hours:
        return f"{remaining:.1f} hours"
    return f"${remaining:.2f}"
