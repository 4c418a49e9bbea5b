"""
Outbound notification capability (email + in-app).

Delivery is fire-and-forget: services call :func:`dispatch`, which logs and
swallows delivery failures so a business transaction never fails because a
notification could not be sent.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field

from .dates import utcnow


class Channel(str, Enum):
    EMAIL = "EMAIL"
    IN_APP = "IN_APP"


class Notification(BaseModel):
    recipient_id: UUID
    org_id: UUID
    title: str
    message: str
    attributes: dict[str, str] = Field(default_factory=dict)
    channels: list[Channel] = Field(default_factory=lambda: [Channel.EMAIL, Channel.IN_APP])
    created_at: datetime = Field(default_factory=utcnow)


class Notifier:
    def send(self, notification: Notification) -> None:
        raise NotImplementedError


class InMemoryNotifier(Notifier):
    def __init__(self):
        self.outbox: list[Notification] = []

    def send(self, notification: Notification) -> None:
        self.outbox.append(notification)

    def sent_to(self, recipient_id: UUID) -> list[Notification]:
        return [n for n in self.outbox if n.recipient_id == recipient_id]


class LoggingNotifier(Notifier):
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def send(self, notification: Notification) -> None:
        self.logger.info(
            "Notification to %s via %s: %s - %s",
            notification.recipient_id,
            ",".join(c.value for c in notification.channels),
            notification.title,
            notification.message,
        )


def dispatch(notifier: Notifier, logger: logging.Logger, notification: Notification) -> bool:
    try:
        notifier.send(notification)
        return True
    except Exception:
        logger.warning(
            "Failed to deliver notification %r to %s",
            notification.title, notification.recipient_id, exc_info=True,
        )
        return False
