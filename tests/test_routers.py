"""HTTP-level tests for the timer, notification and settings routers."""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from punchclock.database import get_db
from punchclock.main import app
from punchclock.scheduler import TaskName
from punchclock.timeutil import utcnow


@pytest.fixture
async def client(session_factory, scheduler):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.scheduler = scheduler
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def headers(identity):
    return {"X-Tenant-ID": str(identity.tenant_id), "X-User-ID": str(identity.user_id)}


async def test_requests_without_identity_are_rejected(client):
    response = await client.get("/api/v1/timer")

    assert response.status_code == 401
    assert response.json()["error"] == "Unauthenticated"


async def test_malformed_identity_is_rejected(client):
    response = await client.get(
        "/api/v1/timer", headers={"X-Tenant-ID": "nope", "X-User-ID": str(uuid.uuid4())}
    )
    assert response.status_code == 401


async def test_timer_lifecycle_over_http(client, headers, project, scheduler):
    assert (await client.get("/api/v1/timer", headers=headers)).json() is None

    started = await client.post(
        "/api/v1/timer/start", json={"project_id": str(project.id)}, headers=headers
    )
    assert started.status_code == 200
    assert started.json()["success"] is True
    assert started.headers["X-Request-ID"]

    running = (await client.get("/api/v1/timer", headers=headers)).json()
    assert running["project_name"] == "Website Redesign"
    assert running["client_name"] == "Acme Corp"
    assert running["awaiting_ack"] is False
    assert running["budget_remaining_formatted"] == "N/A"

    beat = await client.post("/api/v1/timer/heartbeat", headers=headers)
    assert beat.json() == {"success": True}

    stopped = await client.post("/api/v1/timer/stop", json={"source": "manual"}, headers=headers)
    assert stopped.json()["success"] is True

    again = await client.post("/api/v1/timer/stop", headers=headers)
    assert again.status_code == 200
    assert again.json() == {
        "success": False,
        "message": "No running timer",
        "entry_id": None,
        "seconds": None,
    }
    assert len(scheduler.of(TaskName.interrupt_check)) == 1


async def test_interrupt_and_ack_over_http(client, headers, project):
    await client.post("/api/v1/timer/start", json={"project_id": str(project.id)}, headers=headers)

    prompt = await client.post("/api/v1/timer/interrupt", headers=headers)
    assert prompt.json()["should_show_interrupt"] is True

    ack = await client.post("/api/v1/timer/interrupt/ack", json={"continue": True}, headers=headers)
    assert ack.json()["action"] == "continued"

    repeat = await client.post("/api/v1/timer/interrupt/ack", json={"continue": False}, headers=headers)
    assert repeat.json()["action"] == "already_acked"


async def test_start_unknown_project_returns_404(client, headers):
    response = await client.post(
        "/api/v1/timer/start", json={"project_id": str(uuid.uuid4())}, headers=headers
    )
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


async def test_merge_unknown_overrun_returns_404(client, headers):
    response = await client.post(
        f"/api/v1/timer/overruns/{uuid.uuid4()}/merge",
        json={"target_id": str(uuid.uuid4())},
        headers=headers,
    )
    assert response.status_code == 404


async def test_preferences_created_and_updated(client, headers):
    prefs = await client.get("/api/v1/notifications/preferences", headers=headers)
    assert prefs.status_code == 200
    assert prefs.json()["push_enabled"] is True
    assert prefs.json()["escalation_delay_minutes"] == 2

    updated = await client.patch(
        "/api/v1/notifications/preferences",
        json={
            "email_enabled": True,
            "fallback_email": "me@example.com",
            "quiet_hours_start": "22:00",
            "quiet_hours_end": "06:00",
            "timezone": "Europe/Berlin",
        },
        headers=headers,
    )
    assert updated.status_code == 200
    body = updated.json()
    assert body["email_enabled"] is True
    assert body["quiet_hours_start"] == "22:00"
    assert body["sms_enabled"] is False

    cleared = await client.patch(
        "/api/v1/notifications/preferences", json={"timezone": ""}, headers=headers
    )
    assert cleared.json()["timezone"] is None
    assert cleared.json()["fallback_email"] == "me@example.com"


@pytest.mark.parametrize(
    "change",
    [
        {"quiet_hours_start": "9pm"},
        {"timezone": "Nowhere/Special"},
        {"webhook_url": "http://insecure.example.com"},
        {"escalation_delay_minutes": 500},
    ],
)
async def test_invalid_preferences_rejected(client, headers, change):
    response = await client.patch("/api/v1/notifications/preferences", json=change, headers=headers)
    assert response.status_code == 422


async def test_push_subscription_register_and_remove(client, headers):
    payload = {
        "endpoint": "https://push.example.com/sub/1",
        "keys": {"p256dh": "key", "auth": "secret"},
        "user_agent": "Firefox",
    }
    created = await client.post("/api/v1/notifications/subscriptions", json=payload, headers=headers)
    assert created.status_code == 201
    assert created.json()["is_active"] is True

    # Re-registering the same endpoint updates it in place
    again = await client.post("/api/v1/notifications/subscriptions", json=payload, headers=headers)
    assert again.json()["id"] == created.json()["id"]

    removed = await client.request(
        "DELETE",
        "/api/v1/notifications/subscriptions",
        json={"endpoint": payload["endpoint"]},
        headers=headers,
    )
    assert removed.status_code == 204

    missing = await client.request(
        "DELETE",
        "/api/v1/notifications/subscriptions",
        json={"endpoint": "https://push.example.com/unknown"},
        headers=headers,
    )
    assert missing.status_code == 404


async def test_stop_rejects_internal_sources(client, headers, project):
    await client.post("/api/v1/timer/start", json={"project_id": str(project.id)}, headers=headers)

    for source in ("autoStop", "overrun", "pomodoroBreak"):
        response = await client.post("/api/v1/timer/stop", json={"source": source}, headers=headers)
        assert response.status_code == 422

    stopped = await client.post("/api/v1/timer/stop", json={"source": "manual"}, headers=headers)
    assert stopped.json()["success"] is True


async def test_settings_created_with_defaults(client, headers):
    response = await client.get("/api/v1/settings", headers=headers)

    assert response.status_code == 200
    assert response.json() == {
        "interrupt_enabled": True,
        "interrupt_interval_minutes": 60.0,
        "budget_warning_enabled": True,
        "budget_warning_threshold_hours": 1.0,
        "budget_warning_threshold_amount": 50.0,
        "pomodoro_enabled": False,
        "pomodoro_work_minutes": 25.0,
        "pomodoro_break_minutes": 5.0,
    }


async def test_settings_update_applies_to_next_start(client, headers, project, scheduler):
    updated = await client.patch(
        "/api/v1/settings",
        json={"interrupt_interval_minutes": 15, "budget_warning_threshold_hours": None},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["interrupt_interval_minutes"] == 15.0
    assert updated.json()["budget_warning_threshold_hours"] is None
    assert updated.json()["budget_warning_threshold_amount"] == 50.0

    started = await client.post(
        "/api/v1/timer/start", json={"project_id": str(project.id)}, headers=headers
    )
    assert started.status_code == 200
    check = scheduler.of(TaskName.interrupt_check)[0]
    assert 14 * 60 < (check.when - utcnow()).total_seconds() <= 15 * 60


@pytest.mark.parametrize(
    "change",
    [
        {"interrupt_interval_minutes": 0},
        {"interrupt_interval_minutes": 481},
        {"interrupt_enabled": None},
        {"pomodoro_work_minutes": 0},
        {"budget_warning_threshold_hours": -1},
    ],
)
async def test_invalid_settings_rejected(client, headers, change):
    response = await client.patch("/api/v1/settings", json=change, headers=headers)
    assert response.status_code == 422
