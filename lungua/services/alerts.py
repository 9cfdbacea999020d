"""
User- and caregiver-facing alerting.

- ``AlertSound``: the single audio output, created lazily by the app context
- ``NotificationCenter``: transient toast messages for the dashboard
- ``CaregiverAlerter``: protocol for the escalation's final step
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal, Protocol

import structlog
from rich.console import Console

from lungua.domain.models import CaregiverContact, Location
from lungua.services.events import EventSource

logger = structlog.get_logger(__name__)

Tone = Literal["alert", "critical"]


class CaregiverAlerter(Protocol):
    """Delivers the escalation message to the caregiver."""

    async def send_alert(self, location: Location, contact: CaregiverContact) -> None: ...


class AlertSound:
    """Terminal bell based audio cue. One instance per application context."""

    def __init__(self, console: Console | None = None, muted: bool = False) -> None:
        self.console = console or Console(stderr=True)
        self.muted = muted
        self.played: list[Tone] = []

    def play(self, tone: Tone) -> None:
        self.played.append(tone)
        if self.muted:
            return
        # Critical is a double bell so it stands out from a plain anomaly cue
        self.console.bell()
        if tone == "critical":
            self.console.bell()

    def close(self) -> None:
        self.played.clear()


@dataclass
class Notification:
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class NotificationCenter:
    """Keeps the latest notifications and publishes each one as it arrives."""

    def __init__(self, max_items: int = 20) -> None:
        self.recent: deque[Notification] = deque(maxlen=max_items)
        self.published: EventSource[Notification] = EventSource("notifications")

    def notify(self, message: str) -> Notification:
        notification = Notification(message=message)
        self.recent.append(notification)
        logger.info("notification", message=message)
        self.published.publish(notification)
        return notification

    @property
    def latest(self) -> Notification | None:
        return self.recent[-1] if self.recent else None

    def close(self) -> None:
        self.published.close()
