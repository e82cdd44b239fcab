"""Notifier collaborator informing affected parties after commits."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class NotificationEvent:
    """What changed, for whom."""

    event_type: str
    therapist_ids: list[str] = field(default_factory=list)
    session_ids: list[str] = field(default_factory=list)
    payload: dict[str, Any] = field(default_factory=dict)


class Notifier(ABC):
    """Delivery is the implementation's concern; the engine never awaits it for correctness."""

    @abstractmethod
    def notify(self, event: NotificationEvent) -> None:
        pass


class LoggingNotifier(Notifier):
    """Writes events to the log. Default when no notifier is configured."""

    def notify(self, event: NotificationEvent) -> None:
        logger.info(
            f"{event.event_type}: {len(event.session_ids)} session(s) "
            f"for therapist(s) {', '.join(event.therapist_ids) or '-'}"
        )


class RecordingNotifier(Notifier):
    """Keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)
