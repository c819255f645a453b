"""Assignee notifications for generated tasks.

Delivery is best effort: the materializer swallows any error raised here.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, Protocol

import requests

from .errors import NotificationFailure
from .http_utils import request_with_retry
from .models import TaskInstance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationMessage:
    subject: str
    text: str
    instance_id: str
    link: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "text": self.text,
            "instance_id": self.instance_id,
            "link": self.link,
        }


class Notifier(Protocol):
    def notify(self, user_id: str, message: NotificationMessage) -> None:
        ...


def build_notification(
    instance: TaskInstance, app_url: str | None = None
) -> NotificationMessage:
    """Compose the "recurring task due" message for ``instance``."""

    link = f"{app_url.rstrip('/')}/tasks/{instance.id}" if app_url else None
    lines = [
        "A recurring task has been generated and assigned to you.",
        "",
        f"Task: {instance.title}",
        "",
        f"Description: {instance.description or 'No description'}",
        "",
        f"Status: {instance.status.value}",
        f"Priority: {instance.priority.value}",
        "",
        "Please review and complete this task.",
    ]
    if link:
        lines.extend(["", link])
    return NotificationMessage(
        subject=f"Recurring Task Due: {instance.title}",
        text="\n".join(lines),
        instance_id=instance.id,
        link=link,
    )


class LogNotifier:
    """Notifier that only writes the message to the log."""

    def notify(self, user_id: str, message: NotificationMessage) -> None:
        logger.info("Notify %s: %s", user_id, message.subject)


class WebhookNotifier:
    """POST notifications as JSON to an external delivery service."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        retries: int = 3,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.retries = retries
        self.session = session

    def notify(self, user_id: str, message: NotificationMessage) -> None:
        payload = {"user_id": user_id, **message.to_dict()}
        try:
            request_with_retry(
                "POST",
                self.url,
                timeout=self.timeout,
                retries=self.retries,
                session=self.session,
                json=payload,
            )
        except requests.RequestException as exc:
            raise NotificationFailure(
                f"webhook delivery to {self.url} failed: {exc}"
            ) from exc


def create_notifier(cfg: Dict[str, Any]) -> Notifier:
    """Return the notifier configured in ``cfg``."""

    url = cfg.get("notify_webhook_url")
    if url:
        return WebhookNotifier(url, timeout=float(cfg.get("notify_timeout", 5)))
    return LogNotifier()
