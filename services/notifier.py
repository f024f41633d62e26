"""Best-effort delivery of alert transitions to external channels.

Each configured channel is delivered on the dispatcher's worker pool so that
``NotificationDispatcher.send`` returns immediately. Failures are logged
inside the worker and never reach the caller.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from functools import lru_cache
from threading import Lock
from typing import Iterable, List, Optional, Set, Tuple

import httpx

from app.schemas import ActiveAlert, AlertVariant
from settings import EmailSettings, SmsSettings, get_settings

logger = logging.getLogger(__name__)

RESEND_ENDPOINT = "https://api.resend.com/emails"
TWILIO_ENDPOINT = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"


def format_alert_copy(alert: ActiveAlert) -> Tuple[str, str]:
    """Build the subject line and plain-text body shared by all channels."""
    label = alert.room_label or alert.device_id
    condition = "HIGH" if alert.variant is AlertVariant.high else "LOW"
    comparison = "above" if alert.variant is AlertVariant.high else "below"
    subject = f"Room alert · {label} {condition}"
    lines = [f"Room: {label}", f"Device: {alert.device_id}"]
    if alert.viewer_identity:
        lines.append(f"User: {alert.viewer_identity}")
    lines.extend(
        [
            f"Condition: {condition}",
            f"Reading: {alert.temperature_c:.1f}°C ({comparison} {alert.threshold_c:.1f}°C)",
            f"Detected: {alert.triggered_at.isoformat()}",
        ]
    )
    return subject, "\n".join(lines)


class NotificationChannel(ABC):
    """A delivery endpoint enabled by the presence of its configuration."""

    name: str = "channel"

    @abstractmethod
    def is_configured(self) -> bool:
        """Return ``False`` when the channel should be skipped."""

    @abstractmethod
    def deliver(self, client: httpx.Client, alert: ActiveAlert) -> None:
        """Send ``alert``; raise on failure."""


class EmailChannel(NotificationChannel):
    """Email through the Resend HTTP API."""

    name = "email"

    def __init__(self, config: Optional[EmailSettings], endpoint: str = RESEND_ENDPOINT) -> None:
        self.config = config
        self.endpoint = endpoint

    def is_configured(self) -> bool:
        return self.config is not None

    def deliver(self, client: httpx.Client, alert: ActiveAlert) -> None:
        if self.config is None:
            return
        subject, body = format_alert_copy(alert)
        response = client.post(
            self.endpoint,
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            json={
                "from": self.config.sender,
                "to": [self.config.recipient],
                "subject": subject,
                "text": body,
            },
        )
        response.raise_for_status()


class SmsChannel(NotificationChannel):
    """SMS through the Twilio Messages API."""

    name = "sms"

    def __init__(self, config: Optional[SmsSettings], endpoint: str = TWILIO_ENDPOINT) -> None:
        self.config = config
        self.endpoint = endpoint

    def is_configured(self) -> bool:
        return self.config is not None

    def deliver(self, client: httpx.Client, alert: ActiveAlert) -> None:
        if self.config is None:
            return
        _, body = format_alert_copy(alert)
        response = client.post(
            self.endpoint.format(account_sid=self.config.account_sid),
            auth=(self.config.account_sid, self.config.auth_token),
            data={"To": self.config.recipient, "From": self.config.sender, "Body": body},
        )
        response.raise_for_status()


class NotificationDispatcher:
    """Fans an alert out to every configured channel without blocking."""

    def __init__(
        self,
        channels: Iterable[NotificationChannel],
        client: Optional[httpx.Client] = None,
        workers: int = 4,
        timeout_s: float = 10.0,
    ) -> None:
        self.channels: List[NotificationChannel] = list(channels)
        self.client = client or httpx.Client(timeout=timeout_s)
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notifier")
        self._pending: Set[Future[None]] = set()
        self._pending_lock = Lock()

    def send(self, alert: ActiveAlert) -> None:
        for channel in self.channels:
            if not channel.is_configured():
                continue
            try:
                future = self.executor.submit(self._deliver, channel, alert)
            except RuntimeError:
                logger.warning(
                    "Dispatcher is shut down; dropping notification",
                    extra={"device_id": alert.device_id, "channel": channel.name},
                )
                continue
            with self._pending_lock:
                self._pending.add(future)
            future.add_done_callback(self._forget)

    def pending(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def shutdown(self, wait: bool = False) -> None:
        """Stop the worker pool and release the HTTP client."""
        self.executor.shutdown(wait=wait, cancel_futures=not wait)
        self.client.close()

    def _forget(self, future: Future[None]) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _deliver(self, channel: NotificationChannel, alert: ActiveAlert) -> None:
        context = {
            "device_id": alert.device_id,
            "channel": channel.name,
            "variant": alert.variant.value,
            "viewer": alert.viewer_identity,
        }
        try:
            channel.deliver(self.client, alert)
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Notification rejected by provider",
                extra={**context, "status": exc.response.status_code},
            )
        except Exception as exc:
            logger.error(
                "Failed to deliver notification", extra={**context, "reason": str(exc)}
            )
        else:
            logger.info("Notification delivered", extra=context)


@lru_cache
def build_default_dispatcher() -> NotificationDispatcher:
    settings = get_settings()
    channels = [EmailChannel(settings.email), SmsChannel(settings.sms)]
    return NotificationDispatcher(
        channels=channels,
        workers=settings.notifier_workers,
        timeout_s=settings.notifier_timeout_seconds,
    )
