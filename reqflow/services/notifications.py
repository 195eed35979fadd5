"""Notification dispatch for committed workflow transitions.

Handles:
- Status change notifications (submitted, approved, rejected, paid, cancelled)
- Step decision notifications
- Delivery to every channel in an explicit, lifecycle-scoped registry

Delivery is fire-and-forget: a failing channel is logged and skipped, and
never affects the other channels or the caller.
"""

from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import logging
import queue
import smtplib
import threading
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

import httpx
from jinja2 import Template

from reqflow.db.base import utcnow

logger = logging.getLogger(__name__)


class NotificationEventType:
    STATUS_CHANGED = "requisition.status_changed"
    STEP_APPROVED = "requisition.step_approved"
    STEP_REJECTED = "requisition.step_rejected"


# Email templates
EMAIL_TEMPLATES = {
    NotificationEventType.STATUS_CHANGED: {
        "subject": Template("[Requisitions] {{ requisition_id }} is now {{ to_status }}"),
        "body": Template("""
Requisition {{ requisition_id }} changed status:

From: {{ from_status or "N/A" }}
To: {{ to_status }}
{% if reason %}Reason: {{ reason }}
{% endif %}
At: {{ timestamp }}

---
Requisitions
"""),
    },
    NotificationEventType.STEP_APPROVED: {
        "subject": Template("[Requisitions] Step {{ sequence }} approved on {{ requisition_id }}"),
        "body": Template("""
Approval step {{ sequence }} ({{ role }}) on requisition {{ requisition_id }} was approved.

Approved By: {{ actor_id }}
At: {{ timestamp }}

---
Requisitions
"""),
    },
    NotificationEventType.STEP_REJECTED: {
        "subject": Template("[Requisitions] Step {{ sequence }} rejected on {{ requisition_id }}"),
        "body": Template("""
Approval step {{ sequence }} ({{ role }}) on requisition {{ requisition_id }} was rejected.

Rejected By: {{ actor_id }}
Comment: {{ comment or "N/A" }}
At: {{ timestamp }}

---
Requisitions
"""),
    },
}


@dataclass
class Notification:
    """A notification before any channel-specific rendering."""
    event_type: str
    requisition_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: utcnow().isoformat())

    def context(self) -> Dict[str, Any]:
        return {"requisition_id": self.requisition_id, "timestamp": self.timestamp, **self.data}

    def to_payload(self) -> Dict[str, Any]:
        return {
            "event": self.event_type,
            "timestamp": self.timestamp,
            "requisition_id": self.requisition_id,
            "data": self.data,
        }


class NotificationChannel(Protocol):
    name: str

    def send(self, notification: Notification) -> None:
        ...


class WebhookChannel:
    """POSTs a JSON payload to a URL."""

    def __init__(self, url: str, *, timeout: float = 5.0, headers: Optional[Dict[str, str]] = None,
                 client: Optional[httpx.Client] = None):
        self.name = f"webhook:{url}"
        self.url = url
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, notification: Notification) -> None:
        response = self._client.post(self.url, json=notification.to_payload(), headers=self.headers)
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


class EmailChannel:
    """Sends a Jinja2-rendered plain-text email over SMTP."""

    def __init__(self, recipients: List[str], *, host: Optional[str], port: int = 587,
                 user: Optional[str] = None, password: Optional[str] = None,
                 from_email: str = "noreply@reqflow.local", from_name: str = "Requisitions",
                 use_tls: bool = True, timeout: float = 5.0):
        self.name = "email"
        self.recipients = list(recipients)
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.use_tls = use_tls
        self.timeout = timeout

    def render(self, notification: Notification) -> tuple[str, str]:
        template = EMAIL_TEMPLATES[notification.event_type]
        context = notification.context()
        return template["subject"].render(**context), template["body"].render(**context)

    def send(self, notification: Notification) -> None:
        if not self.host:
            logger.warning("SMTP not configured, skipping email delivery")
            return
        if not self.recipients:
            return

        subject, body = self.render(notification)
        msg = MIMEMultipart()
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = ", ".join(self.recipients)
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.user:
                server.login(self.user, self.password)
            server.send_message(msg)


class InMemoryChannel:
    """Fans notifications out to in-process subscriber queues (live views, tests)."""

    def __init__(self, name: str = "memory"):
        self.name = name
        self._lock = threading.Lock()
        self._subscribers: List[queue.Queue] = []
        self.sent: List[Notification] = []

    def subscribe(self, maxsize: int = 100) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def send(self, notification: Notification) -> None:
        with self._lock:
            self.sent.append(notification)
            subscribers = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait(notification)
            except queue.Full:
                logger.warning("Dropping notification for slow subscriber on %s", self.name)


class NotificationChannelRegistry:
    """Live notification channels, owned by the dispatcher's lifecycle."""

    def __init__(self):
        self._lock = threading.Lock()
        self._channels: Dict[str, NotificationChannel] = {}

    def register(self, channel: NotificationChannel) -> None:
        with self._lock:
            self._channels[channel.name] = channel

    def unregister(self, name: str) -> Optional[NotificationChannel]:
        with self._lock:
            return self._channels.pop(name, None)

    def get(self, name: str) -> Optional[NotificationChannel]:
        with self._lock:
            return self._channels.get(name)

    def channels(self) -> List[NotificationChannel]:
        with self._lock:
            return list(self._channels.values())

    def close(self) -> None:
        for channel in self.channels():
            close = getattr(channel, "close", None)
            if close is not None:
                try:
                    close()
                except Exception:
                    logger.warning("Failed to close channel %s", channel.name, exc_info=True)
        with self._lock:
            self._channels.clear()


class NotificationDispatcher:
    """Turns committed transitions into notifications for every registered channel."""

    def __init__(self, registry: Optional[NotificationChannelRegistry] = None):
        self.registry = registry or NotificationChannelRegistry()

    def notify_status_changed(self, requisition_id: UUID, from_status: Optional[str],
                              to_status: str, reason: Optional[str] = None) -> None:
        self._dispatch(Notification(
            event_type=NotificationEventType.STATUS_CHANGED,
            requisition_id=str(requisition_id),
            data={"from_status": from_status, "to_status": to_status, "reason": reason},
        ))

    def notify_step_approved(self, requisition_id: UUID, step_id: Any, actor_id: UUID, *,
                             sequence: Optional[int] = None, role: Optional[str] = None) -> None:
        self._dispatch(Notification(
            event_type=NotificationEventType.STEP_APPROVED,
            requisition_id=str(requisition_id),
            data={"step_id": str(step_id), "actor_id": str(actor_id), "sequence": sequence, "role": role},
        ))

    def notify_step_rejected(self, requisition_id: UUID, step_id: Any, actor_id: UUID, *,
                             comment: Optional[str] = None, sequence: Optional[int] = None,
                             role: Optional[str] = None) -> None:
        self._dispatch(Notification(
            event_type=NotificationEventType.STEP_REJECTED,
            requisition_id=str(requisition_id),
            data={"step_id": str(step_id), "actor_id": str(actor_id), "sequence": sequence,
                  "role": role, "comment": comment},
        ))

    def _dispatch(self, notification: Notification) -> int:
        """Deliver to each channel; returns how many deliveries succeeded."""
        delivered = 0
        for channel in self.registry.channels():
            try:
                channel.send(notification)
                delivered += 1
            except Exception:
                logger.warning("Notification %s for requisition %s failed on channel %s",
                               notification.event_type, notification.requisition_id, channel.name,
                               exc_info=True)
        return delivered

    def close(self) -> None:
        self.registry.close()


def build_dispatcher(settings) -> NotificationDispatcher:
    """Dispatcher with the channels configured in settings."""
    registry = NotificationChannelRegistry()
    for url in settings.notification_webhook_urls_list:
        registry.register(WebhookChannel(url, timeout=settings.webhook_timeout))
    if settings.smtp_host and settings.notification_email_recipients_list:
        registry.register(EmailChannel(
            settings.notification_email_recipients_list,
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            from_email=settings.smtp_from_email,
            from_name=settings.smtp_from_name,
            use_tls=settings.smtp_use_tls,
        ))
    return NotificationDispatcher(registry)
