"""Message formatters for the fallback channels.

Converts an Alert into the text each provider expects. All formatters
include an absolute deep link back into the timer screen.
"""

from html import escape

from punchclock.services.alerts import Alert, build_notification_url


def format_email_subject(alert: Alert) -> str:
    return f"Timer Alert: {alert.title}"


def format_email_body(alert: Alert) -> str:
    lines = [alert.body]
    if alert.project_name:
        lines.append(f"Project: {alert.project_name}")
    if alert.client_name:
        lines.append(f"Client: {alert.client_name}")
    lines.append(f"\nRespond: {build_notification_url(alert)}")
    return "\n".join(lines)


def format_email_html(alert: Alert) -> str:
    parts = [f"<p>{escape(alert.body)}</p>"]
    if alert.project_name:
        parts.append(f"<p><strong>Project:</strong> {escape(alert.project_name)}</p>")
    if alert.client_name:
        parts.append(f"<p><strong>Client:</strong> {escape(alert.client_name)}</p>")
    url = escape(build_notification_url(alert), quote=True)
    parts.append(f'<p><a href="{url}" target="_blank" rel="noopener">Open in timer</a></p>')
    return "".join(parts)


def format_sms_body(alert: Alert) -> str:
    title = f"{alert.title} ({alert.project_name})" if alert.project_name else alert.title
    return "\n".join([title, alert.body, build_notification_url(alert)])


def format_webhook_text(alert: Alert) -> str:
    """Slack-style mrkdwn; most chat webhooks accept the same {"text": ...} body."""
    details = [f"*{alert.title}*", alert.body]
    if alert.project_name:
        details.append(f"• Project: {alert.project_name}")
    if alert.client_name:
        details.append(f"• Client: {alert.client_name}")
    details.append(f"<{build_notification_url(alert)}|Open timer>")
    return "\n".join(details)
