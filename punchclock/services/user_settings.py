"""Per-user timer settings: interrupt cadence, budget warnings and Pomodoro.

Rows are created lazily on first read, like notification preferences. The
timer service reads them through load_timer_settings and falls back to the
same defaults when no row exists yet.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from punchclock.models.user_settings import UserSettings
from punchclock.services.timer import TimerSettings

log = structlog.get_logger(__name__)


async def get_user_settings(
    db: AsyncSession, tenant_id: uuid.UUID, user_id: uuid.UUID
) -> Optional[UserSettings]:
    result = await db.execute(
        select(UserSettings).where(
            UserSettings.tenant_id == tenant_id,
            UserSettings.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def ensure_user_settings(
    db: AsyncSession, tenant_id: uuid.UUID, user_id: uuid.UUID
) -> UserSettings:
    """Return the user's settings row, inserting the defaults if missing."""
    row = await get_user_settings(db, tenant_id, user_id)
    if row is not None:
        return row

    defaults = TimerSettings()
    row = UserSettings(
        tenant_id=tenant_id,
        user_id=user_id,
        interrupt_interval_minutes=defaults.interrupt_interval_minutes,
        interrupt_enabled=defaults.interrupt_enabled,
        budget_warning_enabled=defaults.budget_warning_enabled,
        budget_warning_threshold_hours=defaults.budget_warning_threshold_hours,
        budget_warning_threshold_amount=defaults.budget_warning_threshold_amount,
        pomodoro_enabled=defaults.pomodoro_enabled,
        pomodoro_work_minutes=defaults.pomodoro_work_minutes,
        pomodoro_break_minutes=defaults.pomodoro_break_minutes,
    )
    db.add(row)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        row = await get_user_settings(db, tenant_id, user_id)
        if row is None:
            raise
    else:
        log.info("user_settings_created", user_id=str(user_id))
    return row
