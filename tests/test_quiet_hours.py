"""Tests for quiet-hours evaluation and preference helpers."""

import uuid
from datetime import datetime, time, timezone

import pytest

from punchclock.models import NotificationPreferences
from punchclock.services.preferences import (
    NotificationChannel,
    ensure_preferences,
    fallback_targets,
    in_quiet_hours,
    is_in_quiet_hours,
    parse_time_of_day,
)


def _prefs(**fields):
    return NotificationPreferences(tenant_id=uuid.uuid4(), user_id=uuid.uuid4(), **fields)


@pytest.mark.parametrize(
    "current,expected",
    [
        (time(23, 30), True),
        (time(22, 0), True),
        (time(5, 59), True),
        (time(6, 0), True),
        (time(7, 0), False),
        (time(12, 0), False),
    ],
)
def test_overnight_window_wraps_midnight(current, expected):
    assert is_in_quiet_hours(current, time(22, 0), time(6, 0)) is expected


def test_daytime_window():
    assert is_in_quiet_hours(time(13, 0), time(12, 0), time(14, 0)) is True
    assert is_in_quiet_hours(time(14, 1), time(12, 0), time(14, 0)) is False


def test_parse_time_of_day_rejects_garbage():
    assert parse_time_of_day("07:45") == time(7, 45)
    with pytest.raises(ValueError):
        parse_time_of_day("seven")
    with pytest.raises(ValueError):
        parse_time_of_day("25:00")


def test_quiet_hours_use_user_timezone():
    prefs = _prefs(quiet_hours_start="22:00", quiet_hours_end="06:00", timezone="America/New_York")
    # 03:30 UTC in January is 22:30 the previous evening in New York
    assert in_quiet_hours(prefs, datetime(2026, 1, 15, 3, 30, tzinfo=timezone.utc)) is True
    # 12:00 UTC is 07:00 in New York
    assert in_quiet_hours(prefs, datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)) is False


def test_quiet_hours_default_to_utc():
    prefs = _prefs(quiet_hours_start="22:00", quiet_hours_end="06:00")
    assert in_quiet_hours(prefs, datetime(2026, 1, 15, 23, 30, tzinfo=timezone.utc)) is True


def test_unset_or_malformed_quiet_hours_never_suppress():
    now = datetime(2026, 1, 15, 23, 30, tzinfo=timezone.utc)
    assert in_quiet_hours(_prefs(), now) is False
    assert in_quiet_hours(_prefs(quiet_hours_start="22:00"), now) is False
    assert in_quiet_hours(_prefs(quiet_hours_start="late", quiet_hours_end="06:00"), now) is False


def test_unknown_timezone_falls_back_to_utc():
    prefs = _prefs(quiet_hours_start="22:00", quiet_hours_end="06:00", timezone="Mars/Olympus")
    assert in_quiet_hours(prefs, datetime(2026, 1, 15, 23, 30, tzinfo=timezone.utc)) is True


def test_fallback_targets_need_flag_and_address():
    prefs = _prefs(
        email_enabled=True,
        fallback_email="me@example.com",
        sms_enabled=True,
        sms_number=None,
        webhook_enabled=False,
        webhook_url="https://hooks.example.com/x",
    )
    assert fallback_targets(prefs) == {NotificationChannel.email: "me@example.com"}
    assert fallback_targets(None) == {}


async def test_ensure_preferences_creates_defaults_once(db, identity):
    first = await ensure_preferences(db, identity.tenant_id, identity.user_id)
    second = await ensure_preferences(db, identity.tenant_id, identity.user_id)

    assert first.id == second.id
    assert first.push_enabled is True
    assert first.email_enabled is False
    assert first.escalation_delay_minutes == 2
    assert first.do_not_disturb is False
