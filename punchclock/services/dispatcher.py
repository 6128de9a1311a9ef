"""Notification dispatcher: push first, fallbacks and escalation second.

send_timer_alert decision order:
  1. push disabled         -> fallbacks (if any), reason notifications_disabled
  2. no active endpoints   -> fallbacks (if any), reason no_subscriptions
  3. inside quiet hours    -> nothing at all, reason quiet_hours
  4. deliver to every endpoint concurrently
  5. any success           -> schedule escalation (fallbacks on, DND off)
     no success            -> fallbacks immediately

Endpoint bookkeeping (deactivating gone endpoints, stamping last_used_at)
is applied in one session after all deliveries finished, so a slow push
service never holds a database connection.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from punchclock.errors import ConfigurationMissing, PushEndpointGone, TransportFailure
from punchclock.metrics import alert_dispatches, channel_deliveries
from punchclock.models.notification_prefs import PushSubscription
from punchclock.scheduler import Scheduler, TaskName, schedule_safely
from punchclock.services.alerts import Alert, actions_for, build_notification_url
from punchclock.services.fallback import FallbackDispatcher
from punchclock.services.preferences import (
    ensure_preferences,
    get_active_subscriptions,
    has_fallback_channel,
    in_quiet_hours,
)
from punchclock.services.transports import PushTarget, PushTransport
from punchclock.timeutil import utcnow

log = structlog.get_logger(__name__)

PUSH_ICON = "/icons/timer.svg"
PUSH_BADGE = "/icons/badge.svg"
PUSH_TAG = "timer-alert"


@dataclass
class PushResult:
    subscription_id: uuid.UUID
    success: bool
    gone: bool = False
    error: Optional[str] = None


@dataclass
class DispatchResult:
    success: bool
    reason: Optional[str] = None
    results: list[PushResult] = field(default_factory=list)
    total_subscriptions: int = 0
    escalation_scheduled: bool = False
    fallback_sent: Optional[bool] = None


def build_push_payload(alert: Alert, now: datetime) -> dict:
    """Service-worker payload: display fields, deep link and action buttons."""
    data = {
        "category": alert.category.value,
        "projectName": alert.project_name,
        "clientName": alert.client_name,
        "timestamp": int(now.timestamp() * 1000),
        "url": build_notification_url(alert),
    }
    data.update(alert.data.model_dump(mode="json", exclude_none=True))
    return {
        "title": alert.title,
        "body": alert.body,
        "icon": PUSH_ICON,
        "badge": PUSH_BADGE,
        "tag": PUSH_TAG,
        "requireInteraction": True,
        "data": data,
        "actions": [a.model_dump() for a in actions_for(alert.category)],
    }


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        push: PushTransport,
        fallback: FallbackDispatcher,
        scheduler: Scheduler,
    ) -> None:
        self.session_factory = session_factory
        self.push = push
        self.fallback = fallback
        self.scheduler = scheduler

    async def send_timer_alert(self, alert: Alert) -> DispatchResult:
        now = utcnow()
        async with self.session_factory() as db:
            prefs = await ensure_preferences(db, alert.tenant_id, alert.user_id)
            subscriptions = await get_active_subscriptions(db, alert.tenant_id, alert.user_id)
            # Plain values only past this point; the session closes before delivery
            targets = [
                (s.id, PushTarget(endpoint=s.endpoint, p256dh_key=s.p256dh_key, auth_key=s.auth_key))
                for s in subscriptions
            ]
            push_enabled = prefs.push_enabled
            has_fallback = has_fallback_channel(prefs)
            quiet = in_quiet_hours(prefs, now)
            dnd = prefs.do_not_disturb
            escalation_delay = prefs.escalation_delay_minutes

        if not push_enabled:
            return await self._finish_without_push(alert, "notifications_disabled", has_fallback)
        if not targets:
            return await self._finish_without_push(alert, "no_subscriptions", has_fallback)
        if quiet:
            log.info("alert_suppressed_quiet_hours", user_id=str(alert.user_id))
            alert_dispatches.labels(category=alert.category.value, outcome="quiet_hours").inc()
            return DispatchResult(success=False, reason="quiet_hours", total_subscriptions=len(targets))

        payload = build_push_payload(alert, now)
        results = await asyncio.gather(
            *(self._push_one(sub_id, target, payload) for sub_id, target in targets)
        )
        await self._record_push_results(results, now)

        delivered = any(r.success for r in results)
        outcome = DispatchResult(
            success=delivered, results=list(results), total_subscriptions=len(targets)
        )
        if delivered:
            if has_fallback and not dnd:
                outcome.escalation_scheduled = await schedule_safely(
                    self.scheduler,
                    TaskName.escalate,
                    {"alert": alert.model_dump(mode="json")},
                    delay_seconds=(escalation_delay or 0) * 60,
                )
        elif has_fallback:
            outcome.fallback_sent = await self._run_fallback(alert)

        alert_dispatches.labels(
            category=alert.category.value, outcome="delivered" if delivered else "push_failed"
        ).inc()
        log.info(
            "alert_dispatched",
            category=alert.category.value,
            user_id=str(alert.user_id),
            delivered=sum(1 for r in results if r.success),
            total=len(results),
            escalation_scheduled=outcome.escalation_scheduled,
        )
        return outcome

    async def _finish_without_push(
        self, alert: Alert, reason: str, has_fallback: bool
    ) -> DispatchResult:
        fallback_sent = None
        if has_fallback:
            fallback_sent = await self._run_fallback(alert)
        alert_dispatches.labels(category=alert.category.value, outcome=reason).inc()
        log.info("alert_push_skipped", reason=reason, user_id=str(alert.user_id), fallback=has_fallback)
        return DispatchResult(success=False, reason=reason, fallback_sent=fallback_sent)

    async def _run_fallback(self, alert: Alert) -> bool:
        try:
            result = await self.fallback.dispatch(alert)
        except Exception:
            log.error("fallback_dispatch_failed", user_id=str(alert.user_id), exc_info=True)
            return False
        return result.sent

    async def _push_one(self, subscription_id: uuid.UUID, target: PushTarget, payload: dict) -> PushResult:
        try:
            await self.push.send(target, payload)
        except PushEndpointGone as exc:
            channel_deliveries.labels(channel="push", outcome="gone").inc()
            return PushResult(subscription_id, success=False, gone=True, error=str(exc))
        except (TransportFailure, ConfigurationMissing) as exc:
            log.warning("push_delivery_failed", subscription_id=str(subscription_id), error=str(exc))
            channel_deliveries.labels(channel="push", outcome="failed").inc()
            return PushResult(subscription_id, success=False, error=str(exc))
        except Exception as exc:
            log.error("push_delivery_error", subscription_id=str(subscription_id), exc_info=True)
            channel_deliveries.labels(channel="push", outcome="failed").inc()
            return PushResult(subscription_id, success=False, error=str(exc))
        channel_deliveries.labels(channel="push", outcome="sent").inc()
        return PushResult(subscription_id, success=True)

    async def _record_push_results(self, results: list[PushResult], now: datetime) -> None:
        gone = [r.subscription_id for r in results if r.gone]
        used = [r.subscription_id for r in results if r.success]
        if not gone and not used:
            return
        try:
            async with self.session_factory() as db:
                if gone:
                    await db.execute(
                        update(PushSubscription)
                        .where(PushSubscription.id.in_(gone))
                        .values(is_active=False)
                        .execution_options(synchronize_session=False)
                    )
                if used:
                    await db.execute(
                        update(PushSubscription)
                        .where(PushSubscription.id.in_(used))
                        .values(last_used_at=now)
                        .execution_options(synchronize_session=False)
                    )
                await db.commit()
        except Exception:
            log.error("push_subscription_update_failed", exc_info=True)
        if gone:
            log.info("push_subscriptions_deactivated", count=len(gone))
