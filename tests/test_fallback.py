"""Tests for fallback channels and the deferred escalation check."""

import uuid

from conftest import FakeChannelTransport, add_preferences
from punchclock.errors import ConfigurationMissing
from punchclock.services.alerts import Alert, AlertCategory, AlertData
from punchclock.services.fallback import FallbackDispatcher
from punchclock.services.preferences import NotificationChannel
from punchclock.services.timer import TimerService


class UnconfiguredTransport:
    async def send(self, address, alert):
        raise ConfigurationMissing("no SMS provider credentials")


def _interrupt_alert(identity, timer_id):
    return Alert(
        tenant_id=identity.tenant_id,
        user_id=identity.user_id,
        title="Timer Interruption",
        body="Are you still working on Website Redesign?",
        category=AlertCategory.interrupt,
        data=AlertData(timer_id=timer_id),
    )


def _email_only(session_factory, fail=False):
    email = FakeChannelTransport(NotificationChannel.email, fail=fail)
    return FallbackDispatcher(session_factory, {NotificationChannel.email: email}), email


async def test_dispatch_sends_on_every_configured_channel(db, session_factory, identity):
    await add_preferences(
        db,
        identity,
        email_enabled=True,
        fallback_email="me@example.com",
        webhook_enabled=True,
        webhook_url="https://hooks.example.com/t",
    )
    email = FakeChannelTransport(NotificationChannel.email)
    webhook = FakeChannelTransport(NotificationChannel.webhook)
    fallback = FallbackDispatcher(
        session_factory,
        {NotificationChannel.email: email, NotificationChannel.webhook: webhook},
    )

    result = await fallback.dispatch(_interrupt_alert(identity, uuid.uuid4()))

    assert result.sent is True
    assert {r.channel for r in result.results} == {NotificationChannel.email, NotificationChannel.webhook}
    assert webhook.sent[0][0] == "https://hooks.example.com/t"


async def test_one_failing_channel_does_not_block_others(db, session_factory, identity):
    await add_preferences(
        db,
        identity,
        email_enabled=True,
        fallback_email="me@example.com",
        sms_enabled=True,
        sms_number="+15550100",
    )
    email = FakeChannelTransport(NotificationChannel.email, fail=True)
    fallback = FallbackDispatcher(
        session_factory,
        {NotificationChannel.email: email, NotificationChannel.sms: UnconfiguredTransport()},
    )

    result = await fallback.dispatch(_interrupt_alert(identity, uuid.uuid4()))

    assert result.sent is False
    errors = {r.channel: r.error for r in result.results}
    assert "503" in errors[NotificationChannel.email]
    assert "credentials" in errors[NotificationChannel.sms]


async def test_dispatch_without_channels(session_factory, identity):
    fallback, email = _email_only(session_factory)

    result = await fallback.dispatch(_interrupt_alert(identity, uuid.uuid4()))

    assert result.sent is False
    assert result.reason == "no_channels"
    assert email.sent == []


async def test_escalation_sent_while_prompt_unanswered(
    db, session_factory, scheduler, identity, project
):
    await add_preferences(db, identity, email_enabled=True, fallback_email="me@example.com")
    svc = TimerService(db, scheduler)
    await svc.start(identity, project.id)
    prompt = await svc.request_interrupt(identity)
    fallback, email = _email_only(session_factory)

    result = await fallback.escalate_if_still_relevant(
        _interrupt_alert(identity, prompt.timer_id), prompt.timer_id
    )

    assert result.sent is True
    assert len(email.sent) == 1


async def test_escalation_skipped_after_ack(db, session_factory, scheduler, identity, project):
    await add_preferences(db, identity, email_enabled=True, fallback_email="me@example.com")
    svc = TimerService(db, scheduler)
    await svc.start(identity, project.id)
    prompt = await svc.request_interrupt(identity)
    await svc.ack_interrupt(identity, continue_=True)
    fallback, email = _email_only(session_factory)

    result = await fallback.escalate_if_still_relevant(
        _interrupt_alert(identity, prompt.timer_id), prompt.timer_id
    )

    assert result.reason == "no_longer_relevant"
    assert email.sent == []


async def test_escalation_skipped_after_stop(db, session_factory, scheduler, identity, project):
    await add_preferences(db, identity, email_enabled=True, fallback_email="me@example.com")
    svc = TimerService(db, scheduler)
    await svc.start(identity, project.id)
    prompt = await svc.request_interrupt(identity)
    await svc.stop(identity)
    fallback, email = _email_only(session_factory)

    result = await fallback.escalate_if_still_relevant(
        _interrupt_alert(identity, prompt.timer_id), prompt.timer_id
    )

    assert result.reason == "no_longer_relevant"
    assert email.sent == []


async def test_escalation_respects_dnd(db, session_factory, identity):
    await add_preferences(
        db, identity, email_enabled=True, fallback_email="me@example.com", do_not_disturb=True
    )
    fallback, email = _email_only(session_factory)

    result = await fallback.escalate_if_still_relevant(_interrupt_alert(identity, None))

    assert result.reason == "dnd_enabled"
    assert email.sent == []


async def test_escalation_without_channels(db, session_factory, identity):
    await add_preferences(db, identity)
    fallback, _ = _email_only(session_factory)

    result = await fallback.escalate_if_still_relevant(_interrupt_alert(identity, None))

    assert result.reason == "no_channels"


async def test_non_interrupt_escalation_always_relevant(db, session_factory, identity):
    await add_preferences(db, identity, email_enabled=True, fallback_email="me@example.com")
    fallback, email = _email_only(session_factory)
    alert = Alert(
        tenant_id=identity.tenant_id,
        user_id=identity.user_id,
        title="Budget exceeded",
        body="You've exceeded the 2h time budget for Website Redesign.",
        category=AlertCategory.overrun,
    )

    result = await fallback.escalate_if_still_relevant(alert, uuid.uuid4())

    assert result.sent is True
    assert len(email.sent) == 1
