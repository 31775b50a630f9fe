"""
Notification channels for dataset alerts.

Every notifier raises DownstreamError when a notification could not be
delivered, so the evaluator can record an undelivered event.
"""
import asyncio
import smtplib
from datetime import datetime
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Dict, Any, Optional

import aiohttp

from webhook_pipeline.core.config import settings
from webhook_pipeline.core.exceptions import DownstreamError
from webhook_pipeline.core.logging import get_logger

logger = get_logger(__name__)


class EmailNotifier:
    """Email notification sender."""

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        from_email: Optional[str] = None
    ):
        self.smtp_host = smtp_host or settings.SMTP_HOST
        self.smtp_port = smtp_port or settings.SMTP_PORT
        self.smtp_user = smtp_user or settings.SMTP_USER
        self.smtp_password = smtp_password or settings.SMTP_PASSWORD
        self.from_email = from_email or settings.SMTP_FROM_EMAIL

    def _send_sync(self, recipients: List[str], subject: str, body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "plain"))

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=settings.NOTIFICATION_TIMEOUT_SECONDS) as server:
            server.starttls()
            if self.smtp_user:
                server.login(self.smtp_user, self.smtp_password)
            server.send_message(msg)

    async def send(self, recipients: List[str], subject: str, body: str) -> None:
        """
        Send email notification.

        smtplib is blocking, so the send runs in a worker thread.

        Args:
            recipients: List of email addresses
            subject: Email subject
            body: Plain text body
        """
        if not self.smtp_host:
            raise DownstreamError("email", "SMTP is not configured")
        if not recipients:
            raise DownstreamError("email", "no recipients configured")

        try:
            await asyncio.to_thread(self._send_sync, recipients, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            raise DownstreamError("email", str(e))

        logger.info(f"Alert email sent to {len(recipients)} recipient(s)")


class WebhookNotifier:
    """Webhook notification sender."""

    async def send(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None
    ) -> None:
        """
        POST a JSON payload to a URL.

        Args:
            url: Webhook URL
            payload: Payload to send
            headers: Optional headers
        """
        if not url:
            raise DownstreamError("webhook", "no URL configured")

        timeout = aiohttp.ClientTimeout(total=settings.NOTIFICATION_TIMEOUT_SECONDS)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload, headers=headers or {}) as response:
                    if response.status >= 300:
                        raise DownstreamError("webhook", f"{url} responded with status {response.status}")
        except aiohttp.ClientError as e:
            raise DownstreamError("webhook", str(e))

        logger.info(f"Alert webhook delivered to {url}")


class SlackNotifier:
    """Slack incoming-webhook notification sender."""

    def __init__(self, webhook_notifier: Optional[WebhookNotifier] = None):
        self.webhook_notifier = webhook_notifier or WebhookNotifier()

    @staticmethod
    def build_payload(
        alert_name: str,
        condition: Dict[str, Any],
        value: Any,
        triggered_at: datetime,
        channel: Optional[str] = None,
    ) -> Dict[str, Any]:
        subject = condition.get("calculated_field") or condition.get("field")
        payload: Dict[str, Any] = {
            "text": f"Alert triggered: {alert_name}",
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": alert_name, "emoji": True},
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Field:*\n{subject}"},
                        {"type": "mrkdwn", "text": f"*Condition:*\n{condition.get('operator')} {condition.get('value')}"},
                        {"type": "mrkdwn", "text": f"*Current Value:*\n{value}"},
                        {"type": "mrkdwn", "text": f"*Triggered At:*\n{triggered_at.isoformat()}"},
                    ],
                },
            ],
        }
        if channel:
            payload["channel"] = channel
        return payload

    async def send(self, webhook_url: str, payload: Dict[str, Any]) -> None:
        if not webhook_url:
            raise DownstreamError("slack", "no Slack webhook URL configured")
        await self.webhook_notifier.send(webhook_url, payload)


class InAppNotifier:
    """In-app notification; the AlertEvent row itself is the notification."""

    async def send(self, alert_id: str, title: str, message: str) -> None:
        logger.info(f"In-app alert {alert_id}: {title} - {message}")


# Global instances
email_notifier = EmailNotifier()
webhook_notifier = WebhookNotifier()
slack_notifier = SlackNotifier(webhook_notifier)
in_app_notifier = InAppNotifier()
