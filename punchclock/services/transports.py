"""Delivery transports: web push plus the email/SMS/webhook fallbacks.

Every transport either returns normally (delivered to the provider) or
raises:
  - PushEndpointGone      push service says the endpoint no longer exists
  - ConfigurationMissing  no credentials configured for this channel
  - TransportFailure      anything else (timeouts, 4xx/5xx, circuit open)

Callers isolate these per target; nothing here swallows errors.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import urlparse

from pywebpush import WebPushException, webpush

from punchclock.config import settings
from punchclock.errors import ConfigurationMissing, PushEndpointGone, TransportFailure
from punchclock.services.alerts import Alert
from punchclock.services.formatters import (
    format_email_body,
    format_email_html,
    format_email_subject,
    format_sms_body,
    format_webhook_text,
)
from punchclock.services.http_client import ChannelHttpClient
from punchclock.services.preferences import NotificationChannel

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

# Push services answer 404/410 for unsubscribed or expired endpoints
PUSH_GONE_STATUSES = {404, 410}


@dataclass(frozen=True)
class PushTarget:
    endpoint: str
    p256dh_key: str
    auth_key: str


class PushTransport(Protocol):
    async def send(self, target: PushTarget, payload: dict) -> None: ...


class ChannelTransport(Protocol):
    channel: NotificationChannel

    async def send(self, address: str, alert: Alert) -> None: ...


class WebPushTransport:
    """VAPID web push through pywebpush.

    pywebpush is synchronous (requests under the hood), so each send runs in
    a worker thread to keep concurrent deliveries independent.
    """

    def __init__(
        self,
        private_key: Optional[str] = None,
        subject: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.private_key = private_key if private_key is not None else settings.vapid_private_key
        self.subject = subject or settings.vapid_subject
        self.timeout = timeout or settings.channel_timeout

    def _send_sync(self, target: PushTarget, body: str) -> None:
        webpush(
            subscription_info={
                "endpoint": target.endpoint,
                "keys": {"p256dh": target.p256dh_key, "auth": target.auth_key},
            },
            data=body,
            vapid_private_key=self.private_key,
            vapid_claims={"sub": self.subject},
            content_encoding="aes128gcm",
            timeout=self.timeout,
        )

    async def send(self, target: PushTarget, payload: dict) -> None:
        if not self.private_key:
            raise ConfigurationMissing("VAPID_PRIVATE_KEY not configured")
        body = json.dumps(payload)
        try:
            await asyncio.to_thread(self._send_sync, target, body)
        except WebPushException as exc:
            status = getattr(exc.response, "status_code", None)
            if status in PUSH_GONE_STATUSES:
                raise PushEndpointGone(f"push endpoint gone ({status})") from exc
            raise TransportFailure(f"push failed ({status}): {exc.message}") from exc
        except OSError as exc:
            raise TransportFailure(str(exc)) from exc


class SendGridEmailTransport:
    channel = NotificationChannel.email

    def __init__(self, http: ChannelHttpClient, api_key: Optional[str] = None) -> None:
        self.http = http
        self.api_key = api_key if api_key is not None else settings.sendgrid_api_key

    async def send(self, address: str, alert: Alert) -> None:
        if not self.api_key:
            raise ConfigurationMissing("SENDGRID_API_KEY not configured")
        payload = {
            "personalizations": [
                {"to": [{"email": address}], "subject": format_email_subject(alert)}
            ],
            "from": {"email": settings.sendgrid_from_email, "name": "Timer Alerts"},
            "content": [
                {"type": "text/plain", "value": format_email_body(alert)},
                {"type": "text/html", "value": format_email_html(alert)},
            ],
        }
        await self.http.post(
            self.channel.value,
            SENDGRID_URL,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )


class TwilioSmsTransport:
    channel = NotificationChannel.sms

    def __init__(
        self,
        http: ChannelHttpClient,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
    ) -> None:
        self.http = http
        self.account_sid = account_sid if account_sid is not None else settings.twilio_account_sid
        self.auth_token = auth_token if auth_token is not None else settings.twilio_auth_token
        self.from_number = from_number if from_number is not None else settings.twilio_from_number

    async def send(self, address: str, alert: Alert) -> None:
        if not (self.account_sid and self.auth_token and self.from_number):
            raise ConfigurationMissing("Twilio configuration missing")
        await self.http.post(
            self.channel.value,
            TWILIO_URL.format(sid=self.account_sid),
            data={"To": address, "From": self.from_number, "Body": format_sms_body(alert)},
            auth=(self.account_sid, self.auth_token),
        )


class WebhookTransport:
    """Chat webhook (Slack-compatible ``{"text": ...}`` body)."""

    channel = NotificationChannel.webhook

    def __init__(self, http: ChannelHttpClient) -> None:
        self.http = http

    async def send(self, address: str, alert: Alert) -> None:
        # One breaker per webhook host so a dead endpoint only trips itself
        breaker_key = f"{self.channel.value}:{urlparse(address).netloc}"
        await self.http.post(breaker_key, address, json={"text": format_webhook_text(alert)})


def default_channel_transports(http: ChannelHttpClient) -> dict[NotificationChannel, ChannelTransport]:
    return {
        NotificationChannel.email: SendGridEmailTransport(http),
        NotificationChannel.sms: TwilioSmsTransport(http),
        NotificationChannel.webhook: WebhookTransport(http),
    }
