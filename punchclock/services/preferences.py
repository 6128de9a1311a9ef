"""Notification preference helpers.

Preferences are created lazily with defaults the first time anything reads
them. Channel configuration is exposed as an explicit mapping of
NotificationChannel -> address so the dispatchers never poke at loose
attributes.
"""

import enum
import uuid
from datetime import datetime, time, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from punchclock.models.notification_prefs import NotificationPreferences, PushSubscription

log = structlog.get_logger(__name__)

DEFAULT_ESCALATION_DELAY_MINUTES = 2


class NotificationChannel(str, enum.Enum):
    push = "push"
    email = "email"
    sms = "sms"
    webhook = "webhook"


FALLBACK_CHANNELS = (NotificationChannel.email, NotificationChannel.sms, NotificationChannel.webhook)


async def get_preferences(
    db: AsyncSession, tenant_id: uuid.UUID, user_id: uuid.UUID
) -> Optional[NotificationPreferences]:
    result = await db.execute(
        select(NotificationPreferences).where(
            NotificationPreferences.tenant_id == tenant_id,
            NotificationPreferences.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def ensure_preferences(
    db: AsyncSession, tenant_id: uuid.UUID, user_id: uuid.UUID
) -> NotificationPreferences:
    """Return the user's preferences, inserting the defaults if missing.

    Commits the insert. A concurrent creator wins via the unique constraint
    and we re-read its row.
    """
    prefs = await get_preferences(db, tenant_id, user_id)
    if prefs is not None:
        return prefs

    prefs = NotificationPreferences(
        tenant_id=tenant_id,
        user_id=user_id,
        push_enabled=True,
        email_enabled=False,
        sms_enabled=False,
        webhook_enabled=False,
        escalation_delay_minutes=DEFAULT_ESCALATION_DELAY_MINUTES,
        do_not_disturb=False,
    )
    db.add(prefs)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        prefs = await get_preferences(db, tenant_id, user_id)
        if prefs is None:
            raise
    else:
        log.info("notification_prefs_created", user_id=str(user_id))
    return prefs


async def get_active_subscriptions(
    db: AsyncSession, tenant_id: uuid.UUID, user_id: uuid.UUID
) -> list[PushSubscription]:
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.tenant_id == tenant_id,
            PushSubscription.user_id == user_id,
            PushSubscription.is_active.is_(True),
        )
    )
    return list(result.scalars().all())


def fallback_targets(prefs: Optional[NotificationPreferences]) -> dict[NotificationChannel, str]:
    """Enabled fallback channels that also have an address configured."""
    if prefs is None:
        return {}
    targets: dict[NotificationChannel, str] = {}
    if prefs.email_enabled and prefs.fallback_email:
        targets[NotificationChannel.email] = prefs.fallback_email
    if prefs.sms_enabled and prefs.sms_number:
        targets[NotificationChannel.sms] = prefs.sms_number
    if prefs.webhook_enabled and prefs.webhook_url:
        targets[NotificationChannel.webhook] = prefs.webhook_url
    return targets


def has_fallback_channel(prefs: Optional[NotificationPreferences]) -> bool:
    return bool(fallback_targets(prefs))


def parse_time_of_day(value: str) -> time:
    """Parse "HH:MM" into a time; raises ValueError on malformed input."""
    hours, minutes = value.split(":")
    return time(hour=int(hours), minute=int(minutes))


def is_in_quiet_hours(current: time, start: time, end: time) -> bool:
    """Inclusive window check; start > end means the window wraps midnight."""
    current_minutes = current.hour * 60 + current.minute
    start_minutes = start.hour * 60 + start.minute
    end_minutes = end.hour * 60 + end.minute

    if start_minutes <= end_minutes:
        return start_minutes <= current_minutes <= end_minutes
    return current_minutes >= start_minutes or current_minutes <= end_minutes


def _user_zone(prefs: NotificationPreferences) -> tzinfo:
    if prefs.timezone:
        try:
            return ZoneInfo(prefs.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            log.warning("notification_prefs_bad_timezone", timezone=prefs.timezone)
    return timezone.utc


def in_quiet_hours(prefs: NotificationPreferences, now: datetime) -> bool:
    """Whether ``now`` falls inside the user's configured quiet hours."""
    if not prefs.quiet_hours_start or not prefs.quiet_hours_end:
        return False
    try:
        start = parse_time_of_day(prefs.quiet_hours_start)
        end = parse_time_of_day(prefs.quiet_hours_end)
    except ValueError:
        log.warning(
            "notification_prefs_bad_quiet_hours",
            start=prefs.quiet_hours_start,
            end=prefs.quiet_hours_end,
        )
        return False
    local = now.astimezone(_user_zone(prefs))
    return is_in_quiet_hours(local.time(), start, end)
