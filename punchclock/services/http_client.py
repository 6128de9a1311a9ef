"""Outbound HTTP client for fallback notification providers.

ChannelHttpClient wraps httpx.AsyncClient with a circuit breaker per
channel and a per-request timeout, so a provider that is down fails fast
instead of tying up every dispatch for the full timeout.
"""

import asyncio
import time
from typing import Any, Optional

import httpx

from punchclock.config import settings
from punchclock.errors import TransportFailure


class CircuitOpenError(TransportFailure):
    """Raised when a channel's circuit breaker is open and requests are blocked."""


class CircuitBreaker:
    """Per-channel breaker.

    Counts consecutive provider failures. At the threshold the channel is
    blocked (CircuitOpenError) until recovery_timeout has passed, then one
    probe is let through: success closes it again, failure re-opens it.
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 30.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time = 0.0
        self.state = "closed"

    async def call(self, coro_factory, timeout: float):
        """Run ``coro_factory()`` under the breaker with a timeout.

        Network errors and timeouts count as failures and surface as
        TransportFailure.
        """
        if self.state == "open":
            if time.monotonic() - self.last_failure_time > self.recovery_timeout:
                self.state = "half-open"
            else:
                raise CircuitOpenError("Channel temporarily unavailable (circuit open)")

        try:
            result = await asyncio.wait_for(coro_factory(), timeout=timeout)
        except (httpx.HTTPError, asyncio.TimeoutError, ConnectionError, OSError) as exc:
            self.on_failure()
            raise TransportFailure(str(exc) or exc.__class__.__name__) from exc
        return result

    def on_success(self):
        self.failure_count = 0
        self.state = "closed"

    def on_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.failure_count >= self.failure_threshold:
            self.state = "open"


class ChannelHttpClient:
    """Thin wrapper around httpx.AsyncClient for provider API calls.

    Any non-2xx response is a TransportFailure carrying the response text.
    Only 5xx responses and network errors count against the breaker; a 4xx
    means our request was rejected (bad number, bad address) and says
    nothing about provider health.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.channel_timeout, connect=2.0),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        self.breakers: dict[str, CircuitBreaker] = {}

    def breaker(self, channel: str) -> CircuitBreaker:
        if channel not in self.breakers:
            self.breakers[channel] = CircuitBreaker(
                failure_threshold=settings.circuit_failure_threshold,
                recovery_timeout=settings.circuit_recovery_timeout,
            )
        return self.breakers[channel]

    async def post(
        self,
        channel: str,
        url: str,
        *,
        json: Any = None,
        data: Any = None,
        headers: Optional[dict] = None,
        auth: Optional[tuple[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """POST to a provider with circuit breaker protection.

        Raises:
            CircuitOpenError: When the channel's breaker is open
            TransportFailure: On timeout, connection error, or non-2xx response
        """
        breaker = self.breaker(channel)

        async def _request():
            return await self.client.post(url, json=json, data=data, headers=headers, auth=auth)

        resp = await breaker.call(_request, timeout=timeout or settings.channel_timeout)
        if resp.status_code >= 500:
            breaker.on_failure()
            raise TransportFailure(f"{channel} provider returned {resp.status_code}")
        breaker.on_success()
        if resp.status_code >= 400:
            raise TransportFailure(f"{channel} provider returned {resp.status_code}: {resp.text}")
        return resp

    async def close(self) -> None:
        """Close the underlying httpx client and release connections."""
        await self.client.aclose()
