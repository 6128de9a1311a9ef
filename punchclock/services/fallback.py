"""Fallback channels (email, SMS, webhook) and the escalation check.

The fallback dispatcher runs when push could not reach the user, and as a
delayed escalation when push did reach a device but the alert may have gone
unseen. Escalation re-validates relevance first: an interrupt that has been
answered, or whose timer is gone, is not re-sent.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from punchclock.errors import ConfigurationMissing, TransportFailure
from punchclock.metrics import channel_deliveries
from punchclock.models.running_timer import RunningTimer
from punchclock.services.alerts import Alert, AlertCategory
from punchclock.services.preferences import NotificationChannel, ensure_preferences, fallback_targets
from punchclock.services.transports import ChannelTransport

log = structlog.get_logger(__name__)


@dataclass
class ChannelResult:
    channel: NotificationChannel
    success: bool
    error: Optional[str] = None


@dataclass
class FallbackResult:
    sent: bool
    reason: Optional[str] = None
    results: list[ChannelResult] = field(default_factory=list)


class FallbackDispatcher:
    """Delivers an alert over every configured fallback channel.

    Args:
        session_factory: Opens short-lived sessions for preference reads.
        transports: Channel -> transport mapping (see default_channel_transports).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transports: dict[NotificationChannel, ChannelTransport],
    ) -> None:
        self.session_factory = session_factory
        self.transports = transports

    async def dispatch(self, alert: Alert) -> FallbackResult:
        async with self.session_factory() as db:
            prefs = await ensure_preferences(db, alert.tenant_id, alert.user_id)
            targets = fallback_targets(prefs)
        return await self._deliver(alert, targets)

    async def escalate_if_still_relevant(
        self, alert: Alert, timer_id: Optional[uuid.UUID] = None
    ) -> FallbackResult:
        """Deferred escalation: re-check preferences and relevance, then dispatch."""
        async with self.session_factory() as db:
            prefs = await ensure_preferences(db, alert.tenant_id, alert.user_id)
            if prefs.do_not_disturb:
                return FallbackResult(sent=False, reason="dnd_enabled")
            targets = fallback_targets(prefs)
            if not targets:
                return FallbackResult(sent=False, reason="no_channels")
            if not await self._still_relevant(db, alert, timer_id):
                log.info(
                    "escalation_skipped",
                    reason="no_longer_relevant",
                    category=alert.category.value,
                    timer_id=str(timer_id) if timer_id else None,
                )
                return FallbackResult(sent=False, reason="no_longer_relevant")
        return await self._deliver(alert, targets)

    async def _still_relevant(
        self, db: AsyncSession, alert: Alert, timer_id: Optional[uuid.UUID]
    ) -> bool:
        if alert.category != AlertCategory.interrupt or timer_id is None:
            return True
        result = await db.execute(
            select(RunningTimer).where(
                RunningTimer.tenant_id == alert.tenant_id,
                RunningTimer.user_id == alert.user_id,
            )
        )
        timer = result.scalar_one_or_none()
        return timer is not None and timer.id == timer_id and timer.awaiting_ack

    async def _deliver(
        self, alert: Alert, targets: dict[NotificationChannel, str]
    ) -> FallbackResult:
        if not targets:
            return FallbackResult(sent=False, reason="no_channels")

        results = await asyncio.gather(
            *(self._send_one(channel, address, alert) for channel, address in targets.items())
        )
        sent = any(r.success for r in results)
        log.info(
            "fallback_dispatched",
            category=alert.category.value,
            sent=sent,
            channels=[r.channel.value for r in results if r.success],
        )
        return FallbackResult(sent=sent, results=list(results))

    async def _send_one(
        self, channel: NotificationChannel, address: str, alert: Alert
    ) -> ChannelResult:
        transport = self.transports.get(channel)
        if transport is None:
            channel_deliveries.labels(channel=channel.value, outcome="unconfigured").inc()
            return ChannelResult(channel, success=False, error="no_transport")
        try:
            await transport.send(address, alert)
        except ConfigurationMissing as exc:
            log.warning("fallback_channel_unconfigured", channel=channel.value, error=str(exc))
            channel_deliveries.labels(channel=channel.value, outcome="unconfigured").inc()
            return ChannelResult(channel, success=False, error=str(exc))
        except TransportFailure as exc:
            log.warning("fallback_channel_failed", channel=channel.value, error=str(exc))
            channel_deliveries.labels(channel=channel.value, outcome="failed").inc()
            return ChannelResult(channel, success=False, error=str(exc))
        except Exception as exc:
            log.error("fallback_channel_error", channel=channel.value, exc_info=True)
            channel_deliveries.labels(channel=channel.value, outcome="failed").inc()
            return ChannelResult(channel, success=False, error=str(exc))
        channel_deliveries.labels(channel=channel.value, outcome="sent").inc()
        return ChannelResult(channel, success=True)
