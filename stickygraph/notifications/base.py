"""Notification channel interface and the mutation event payload."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class MutationEvent:
    """A committed change to the graph.

    ``data`` is the affected entity (or ``{"id": ...}`` for deletions) and
    ``board_id`` scopes the event for observers.
    """

    event: str
    data: Any
    board_id: str

    def to_dict(self) -> dict[str, Any]:
        """Wire form posted to observers."""
        return {"event": self.event, "data": self.data, "boardId": self.board_id}


class NotificationChannel(ABC):
    """Delivers mutation events to observers.

    Implementations are fire-and-forget: ``publish`` never raises and never
    blocks the write path on delivery.
    """

    @abstractmethod
    def publish(self, event: str, data: Any, board_id: str) -> None:
        """Deliver one event; failures are logged and swallowed."""

    def close(self) -> None:
        """Release resources. Later publishes are dropped."""


class NullNotificationChannel(NotificationChannel):
    """Discards every event."""

    def publish(self, event: str, data: Any, board_id: str) -> None:
        pass
