"""Notification sinks for replication outcomes."""

import smtplib
from datetime import datetime, timedelta
from email.message import EmailMessage
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from zfs_replicator.config.settings import Settings
from zfs_replicator.logging_config import get_logger

logger = get_logger(__name__)

COLOR_EMOJI = {"good": "✅", "warning": "⚠️", "danger": "❌"}


def format_duration(duration: Optional[timedelta]) -> str:
    """Render a duration as e.g. ``1m23.4s``; unknown durations as ``n/a``."""
    if duration is None:
        return "n/a"
    total = duration.total_seconds()
    minutes, seconds = divmod(total, 60)
    if minutes >= 1:
        return f"{int(minutes)}m{seconds:.1f}s"
    return f"{seconds:.1f}s"


class Notifier(Protocol):
    """Fire-and-forget sink for replication outcomes."""

    def on_sync_success(
        self, snapshot: str, dataset: str, duration: Optional[timedelta]
    ) -> None: ...

    def on_sync_failure(self, snapshot: str, dataset: str, error: str) -> None: ...


class LoggingNotifier:
    """Writes every outcome to the application log."""

    def on_sync_success(self, snapshot: str, dataset: str, duration: Optional[timedelta]) -> None:
        logger.info(
            f"Replicated snapshot {snapshot} from {dataset} (duration {format_duration(duration)})"
        )

    def on_sync_failure(self, snapshot: str, dataset: str, error: str) -> None:
        logger.error(f"Failed to replicate snapshot {snapshot} from {dataset}: {error}")


class SlackNotifier:
    """Posts block-formatted messages to a Slack incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        channel: str = "",
        username: str = "",
        icon_emoji: str = "",
        alert_on_sync: bool = True,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.webhook_url = webhook_url
        self.channel = channel
        self.username = username
        self.icon_emoji = icon_emoji
        self.alert_on_sync = alert_on_sync
        self.client = client or httpx.Client(timeout=timeout)

    def format_alert(self, title: str, body: str, color: str) -> Dict[str, Any]:
        """Build the webhook payload for one alert."""
        emoji = COLOR_EMOJI.get(color, "ℹ️")
        payload: Dict[str, Any] = {
            "blocks": [
                {"type": "header", "text": {"type": "plain_text", "text": f"{emoji} {title}"}},
                {"type": "section", "text": {"type": "mrkdwn", "text": body}},
                {
                    "type": "context",
                    "elements": [
                        {
                            "type": "mrkdwn",
                            "text": f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
                        }
                    ],
                },
            ]
        }
        if self.channel:
            payload["channel"] = self.channel
        if self.username:
            payload["username"] = self.username
        if self.icon_emoji:
            payload["icon_emoji"] = self.icon_emoji
        return payload

    def send_message(self, payload: Dict[str, Any]) -> None:
        """
        Post a payload to the webhook.

        Raises:
            httpx.HTTPError: On network failure or a non-2xx response
        """
        response = self.client.post(self.webhook_url, json=payload)
        response.raise_for_status()

    def send_alert(self, subject: str, body: str) -> None:
        self.send_message(self.format_alert(subject, body, "warning"))

    def on_sync_success(self, snapshot: str, dataset: str, duration: Optional[timedelta]) -> None:
        if not self.alert_on_sync:
            return
        message = (
            f"Successfully replicated snapshot `{snapshot}` from dataset `{dataset}`\n"
            f"Duration: {format_duration(duration)}"
        )
        self.send_message(self.format_alert("ZFS Sync Completed", message, "good"))

    def on_sync_failure(self, snapshot: str, dataset: str, error: str) -> None:
        if not self.alert_on_sync:
            return
        message = (
            f"Failed to replicate snapshot `{snapshot}` from dataset `{dataset}`\nError: {error}"
        )
        self.send_message(self.format_alert("ZFS Sync Failed", message, "danger"))


class EmailNotifier:
    """Mails failures to the configured recipients. Successes are not mailed."""

    def __init__(
        self,
        smtp_host: str,
        from_address: str,
        to_addresses: Sequence[str],
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.use_tls = use_tls
        self.from_address = from_address
        self.to_addresses = list(to_addresses)
        self.timeout = timeout

    def build_message(self, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.from_address
        message["To"] = ", ".join(self.to_addresses)
        message["Subject"] = f"[ZFS Replicator] {subject}"
        message.set_content(body)
        return message

    def send_alert(self, subject: str, body: str) -> None:
        """
        Deliver one message.

        Raises:
            smtplib.SMTPException, OSError: On delivery failure
        """
        message = self.build_message(subject, body)
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.smtp_user:
                smtp.login(self.smtp_user, self.smtp_password)
            smtp.send_message(message)

    def on_sync_success(self, snapshot: str, dataset: str, duration: Optional[timedelta]) -> None:
        return None

    def on_sync_failure(self, snapshot: str, dataset: str, error: str) -> None:
        body = f"Failed to replicate snapshot {snapshot} from dataset {dataset}\nError: {error}"
        self.send_alert("ZFS Sync Failed", body)


class MultiNotifier:
    """
    Fans out to several notifiers.

    Delivery failures are logged and never raised, so a broken webhook or
    mail server cannot affect the replication run that reported.
    """

    def __init__(self, notifiers: Sequence[Notifier]):
        self.notifiers: List[Notifier] = list(notifiers)

    def on_sync_success(self, snapshot: str, dataset: str, duration: Optional[timedelta]) -> None:
        for notifier in self.notifiers:
            try:
                notifier.on_sync_success(snapshot, dataset, duration)
            except Exception as e:
                logger.error(
                    f"{type(notifier).__name__} failed to deliver success notification "
                    f"for {snapshot}: {e}"
                )

    def on_sync_failure(self, snapshot: str, dataset: str, error: str) -> None:
        for notifier in self.notifiers:
            try:
                notifier.on_sync_failure(snapshot, dataset, error)
            except Exception as e:
                logger.error(
                    f"{type(notifier).__name__} failed to deliver failure notification "
                    f"for {snapshot}: {e}"
                )


def build_notifier(settings: Settings) -> MultiNotifier:
    """Assemble the notifiers enabled in ``settings``."""
    notifiers: List[Notifier] = [LoggingNotifier()]
    if settings.slack_enabled and settings.slack_webhook_url:
        notifiers.append(
            SlackNotifier(
                webhook_url=settings.slack_webhook_url,
                channel=settings.slack_channel,
                username=settings.slack_username,
                icon_emoji=settings.slack_icon_emoji,
                alert_on_sync=settings.slack_alert_on_sync,
                timeout=settings.notification_timeout_seconds,
            )
        )
    if settings.smtp_host and settings.email_to:
        notifiers.append(
            EmailNotifier(
                smtp_host=settings.smtp_host,
                smtp_port=settings.smtp_port,
                smtp_user=settings.smtp_user,
                smtp_password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                from_address=settings.email_from,
                to_addresses=settings.email_to,
                timeout=settings.notification_timeout_seconds,
            )
        )
    logger.info(f"Notifications enabled: {', '.join(type(n).__name__ for n in notifiers)}")
    return MultiNotifier(notifiers)
