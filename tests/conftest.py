"""Shared fixtures: in-memory SQLite database, recording scheduler, fake transports."""

import os

# Settings are read at import time; keep the module-level engine off Postgres
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from punchclock.errors import PushEndpointGone, TransportFailure
from punchclock.identity import Identity
from punchclock.models import (
    Base,
    Client,
    NotificationPreferences,
    Project,
    PushSubscription,
    UserSettings,
)
from punchclock.scheduler import TaskName
from punchclock.services.alerts import Alert
from punchclock.services.preferences import NotificationChannel
from punchclock.services.transports import PushTarget
from punchclock.timeutil import utcnow


@dataclass
class ScheduledCall:
    when: datetime
    task: TaskName
    payload: dict


class RecordingScheduler:
    """In-memory Scheduler that records every enqueue."""

    def __init__(self) -> None:
        self.calls: list[ScheduledCall] = []
        self.fail = False

    async def run_at(self, when: datetime, task: TaskName, payload: dict) -> str:
        if self.fail:
            raise ConnectionError("scheduler unavailable")
        self.calls.append(ScheduledCall(when=when, task=TaskName(task), payload=payload))
        return uuid.uuid4().hex

    async def run_after(self, delay_seconds: float, task: TaskName, payload: dict) -> str:
        return await self.run_at(utcnow() + timedelta(seconds=delay_seconds), task, payload)

    def of(self, task: TaskName) -> list[ScheduledCall]:
        return [c for c in self.calls if c.task == task]

    def alerts(self) -> list[Alert]:
        return [Alert.model_validate(c.payload["alert"]) for c in self.of(TaskName.send_alert)]


class FakePushTransport:
    """Push transport whose outcome is chosen per endpoint.

    ``behaviour`` maps endpoint -> "ok" | "gone" | "fail"; unknown endpoints succeed.
    """

    def __init__(self, behaviour: Optional[dict[str, str]] = None) -> None:
        self.behaviour = behaviour or {}
        self.sent: list[tuple[PushTarget, dict]] = []

    async def send(self, target: PushTarget, payload: dict) -> None:
        outcome = self.behaviour.get(target.endpoint, "ok")
        if outcome == "gone":
            raise PushEndpointGone("push endpoint gone (410)")
        if outcome == "fail":
            raise TransportFailure("push failed (500)")
        self.sent.append((target, payload))


class FakeChannelTransport:
    def __init__(self, channel: NotificationChannel, fail: bool = False) -> None:
        self.channel = channel
        self.fail = fail
        self.sent: list[tuple[str, Alert]] = []

    async def send(self, address: str, alert: Alert) -> None:
        if self.fail:
            raise TransportFailure(f"{self.channel.value} provider returned 503")
        self.sent.append((address, alert))


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def identity():
    return Identity(tenant_id=uuid.uuid4(), user_id=uuid.uuid4())


@pytest.fixture
async def project(db, identity):
    client = Client(tenant_id=identity.tenant_id, name="Acme Corp")
    db.add(client)
    await db.flush()
    proj = Project(
        tenant_id=identity.tenant_id,
        client=client,
        name="Website Redesign",
        hourly_rate=100.0,
        budget_type="hours",
        budget_hours=None,
        archived=False,
    )
    db.add(proj)
    await db.commit()
    return proj


async def add_project(db, tenant_id, **overrides) -> Project:
    fields = dict(
        tenant_id=tenant_id,
        name="Side Project",
        hourly_rate=50.0,
        budget_type="hours",
        archived=False,
    )
    fields.update(overrides)
    if "client_id" not in fields:
        fields["client"] = None
    proj = Project(**fields)
    db.add(proj)
    await db.commit()
    return proj


async def add_user_settings(db, identity, **overrides) -> UserSettings:
    row = UserSettings(tenant_id=identity.tenant_id, user_id=identity.user_id, **overrides)
    db.add(row)
    await db.commit()
    return row


async def add_preferences(db, identity, **overrides) -> NotificationPreferences:
    fields = dict(
        push_enabled=True,
        email_enabled=False,
        sms_enabled=False,
        webhook_enabled=False,
        escalation_delay_minutes=2,
        do_not_disturb=False,
    )
    fields.update(overrides)
    prefs = NotificationPreferences(tenant_id=identity.tenant_id, user_id=identity.user_id, **fields)
    db.add(prefs)
    await db.commit()
    return prefs


async def add_subscription(db, identity, endpoint: str) -> PushSubscription:
    sub = PushSubscription(
        tenant_id=identity.tenant_id,
        user_id=identity.user_id,
        endpoint=endpoint,
        p256dh_key="p256dh-key",
        auth_key="auth-key",
        is_active=True,
    )
    db.add(sub)
    await db.commit()
    return sub
