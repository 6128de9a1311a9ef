"""Tests for push dispatch, endpoint bookkeeping and escalation scheduling."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import select

from conftest import (
    FakeChannelTransport,
    FakePushTransport,
    add_preferences,
    add_subscription,
)
from punchclock.models import PushSubscription
from punchclock.scheduler import TaskName
from punchclock.services.alerts import Alert, AlertCategory, AlertData
from punchclock.services.dispatcher import NotificationDispatcher, build_push_payload
from punchclock.services.fallback import FallbackDispatcher
from punchclock.services.preferences import NotificationChannel


def _alert(identity, category=AlertCategory.interrupt, timer_id=None):
    return Alert(
        tenant_id=identity.tenant_id,
        user_id=identity.user_id,
        title="Timer Interruption",
        body="Are you still working on Website Redesign?",
        category=category,
        project_name="Website Redesign",
        client_name="Acme Corp",
        data=AlertData(project_id=uuid.uuid4(), timer_id=timer_id or uuid.uuid4()),
    )


def _dispatcher(session_factory, scheduler, push=None, email_fail=False):
    email = FakeChannelTransport(NotificationChannel.email, fail=email_fail)
    fallback = FallbackDispatcher(session_factory, {NotificationChannel.email: email})
    dispatcher = NotificationDispatcher(session_factory, push or FakePushTransport(), fallback, scheduler)
    return dispatcher, email


async def _subscriptions(session_factory):
    async with session_factory() as db:
        result = await db.execute(select(PushSubscription).order_by(PushSubscription.endpoint))
        return {s.endpoint: s for s in result.scalars().all()}


def test_push_payload_shape():
    identity_alert = Alert(
        tenant_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        title="Budget warning",
        body="Website Redesign has 0.4 hours remaining.",
        category=AlertCategory.budget_warning,
        project_name="Website Redesign",
        data=AlertData(warning_type="time"),
    )
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    payload = build_push_payload(identity_alert, now)

    assert payload["tag"] == "timer-alert"
    assert payload["requireInteraction"] is True
    assert payload["data"]["category"] == "budget_warning"
    assert payload["data"]["warning_type"] == "time"
    assert payload["data"]["timestamp"] == int(now.timestamp() * 1000)
    assert "timer_id" not in payload["data"]
    assert payload["data"]["url"].endswith("/timer?alert=budget_warning")
    assert [a["action"] for a in payload["actions"]] == ["stop", "switch"]


async def test_delivers_to_every_endpoint(db, session_factory, scheduler, identity):
    await add_subscription(db, identity, "https://push.example.com/a")
    await add_subscription(db, identity, "https://push.example.com/b")
    push = FakePushTransport()
    dispatcher, _ = _dispatcher(session_factory, scheduler, push=push)

    result = await dispatcher.send_timer_alert(_alert(identity))

    assert result.success is True
    assert result.total_subscriptions == 2
    assert sorted(t.endpoint for t, _ in push.sent) == [
        "https://push.example.com/a",
        "https://push.example.com/b",
    ]
    subs = await _subscriptions(session_factory)
    assert all(s.last_used_at is not None for s in subs.values())


async def test_gone_endpoint_is_deactivated(db, session_factory, scheduler, identity):
    await add_subscription(db, identity, "https://push.example.com/live")
    await add_subscription(db, identity, "https://push.example.com/gone")
    push = FakePushTransport({"https://push.example.com/gone": "gone"})
    dispatcher, _ = _dispatcher(session_factory, scheduler, push=push)

    result = await dispatcher.send_timer_alert(_alert(identity))

    assert result.success is True
    subs = await _subscriptions(session_factory)
    assert subs["https://push.example.com/gone"].is_active is False
    assert subs["https://push.example.com/live"].is_active is True

    # The deactivated endpoint is not tried again
    push.sent.clear()
    await dispatcher.send_timer_alert(_alert(identity))
    assert [t.endpoint for t, _ in push.sent] == ["https://push.example.com/live"]


async def test_transient_failure_keeps_endpoint_active(db, session_factory, scheduler, identity):
    await add_subscription(db, identity, "https://push.example.com/flaky")
    push = FakePushTransport({"https://push.example.com/flaky": "fail"})
    dispatcher, _ = _dispatcher(session_factory, scheduler, push=push)

    result = await dispatcher.send_timer_alert(_alert(identity))

    assert result.success is False
    assert result.results[0].gone is False
    subs = await _subscriptions(session_factory)
    assert subs["https://push.example.com/flaky"].is_active is True


async def test_no_subscriptions_falls_back_immediately(db, session_factory, scheduler, identity):
    await add_preferences(db, identity, email_enabled=True, fallback_email="me@example.com")
    dispatcher, email = _dispatcher(session_factory, scheduler)

    result = await dispatcher.send_timer_alert(_alert(identity))

    assert result.success is False
    assert result.reason == "no_subscriptions"
    assert result.fallback_sent is True
    assert [address for address, _ in email.sent] == ["me@example.com"]


async def test_push_disabled_skips_push(db, session_factory, scheduler, identity):
    await add_preferences(db, identity, push_enabled=False)
    await add_subscription(db, identity, "https://push.example.com/a")
    push = FakePushTransport()
    dispatcher, _ = _dispatcher(session_factory, scheduler, push=push)

    result = await dispatcher.send_timer_alert(_alert(identity))

    assert result.reason == "notifications_disabled"
    assert result.fallback_sent is None
    assert push.sent == []


async def test_quiet_hours_suppress_everything(db, session_factory, scheduler, identity):
    await add_preferences(
        db,
        identity,
        quiet_hours_start="00:00",
        quiet_hours_end="23:59",
        email_enabled=True,
        fallback_email="me@example.com",
    )
    await add_subscription(db, identity, "https://push.example.com/a")
    push = FakePushTransport()
    dispatcher, email = _dispatcher(session_factory, scheduler, push=push)

    result = await dispatcher.send_timer_alert(_alert(identity))

    assert result.reason == "quiet_hours"
    assert push.sent == []
    assert email.sent == []
    assert scheduler.of(TaskName.escalate) == []


async def test_delivered_push_schedules_escalation(db, session_factory, scheduler, identity):
    await add_preferences(
        db, identity, email_enabled=True, fallback_email="me@example.com", escalation_delay_minutes=3
    )
    await add_subscription(db, identity, "https://push.example.com/a")
    dispatcher, email = _dispatcher(session_factory, scheduler)
    alert = _alert(identity)

    result = await dispatcher.send_timer_alert(alert)

    assert result.escalation_scheduled is True
    assert email.sent == []
    jobs = scheduler.of(TaskName.escalate)
    assert len(jobs) == 1
    assert jobs[0].payload["alert"]["data"]["timer_id"] == str(alert.data.timer_id)


async def test_dnd_blocks_escalation(db, session_factory, scheduler, identity):
    await add_preferences(
        db, identity, email_enabled=True, fallback_email="me@example.com", do_not_disturb=True
    )
    await add_subscription(db, identity, "https://push.example.com/a")
    dispatcher, _ = _dispatcher(session_factory, scheduler)

    result = await dispatcher.send_timer_alert(_alert(identity))

    assert result.success is True
    assert result.escalation_scheduled is False
    assert scheduler.of(TaskName.escalate) == []


async def test_failed_push_uses_fallback_now(db, session_factory, scheduler, identity):
    await add_preferences(db, identity, email_enabled=True, fallback_email="me@example.com")
    await add_subscription(db, identity, "https://push.example.com/a")
    push = FakePushTransport({"https://push.example.com/a": "fail"})
    dispatcher, email = _dispatcher(session_factory, scheduler, push=push)

    result = await dispatcher.send_timer_alert(_alert(identity))

    assert result.success is False
    assert result.fallback_sent is True
    assert len(email.sent) == 1
    assert scheduler.of(TaskName.escalate) == []


async def test_first_alert_creates_default_preferences(session_factory, scheduler, identity):
    dispatcher, _ = _dispatcher(session_factory, scheduler)

    result = await dispatcher.send_timer_alert(_alert(identity))

    assert result.reason == "no_subscriptions"
    assert result.fallback_sent is None
