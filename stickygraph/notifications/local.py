"""In-process notification channel."""

from typing import Any, Callable

from stickygraph.log_config import get_logger
from stickygraph.notifications.base import MutationEvent, NotificationChannel

log = get_logger("notify.local")

EventCallback = Callable[[MutationEvent], None]


class LocalNotificationChannel(NotificationChannel):
    """Calls registered callbacks directly, in registration order."""

    def __init__(self, callbacks: list[EventCallback] | None = None):
        self._callbacks: list[EventCallback] = list(callbacks or [])
        self._closed = False

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def publish(self, event: str, data: Any, board_id: str) -> None:
        if self._closed:
            log.debug(f"Channel closed, dropping {event}")
            return
        message = MutationEvent(event, data, board_id)
        for callback in list(self._callbacks):
            try:
                callback(message)
            except Exception as e:
                log.warning(f"Notification callback failed for {event}: {e}")

    def close(self) -> None:
        self._closed = True
        self._callbacks.clear()
