"""HTTP notification channel.

POSTs each event as JSON to ``{base_url}/notify`` from a background worker
so writes never wait on the observer. Every delivery failure is logged at
debug level and dropped: the observer may simply not be running. The
backlog is bounded, and closing the channel discards whatever is still
queued.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

import httpx

from stickygraph.log_config import get_logger
from stickygraph.notifications.base import MutationEvent, NotificationChannel

log = get_logger("notify.http")

DEFAULT_NOTIFY_URL = "http://localhost:8080"


class HttpNotificationChannel(NotificationChannel):
    """Fire-and-forget HTTP notifier.

    Args:
        base_url: Relay base URL
        timeout: Per-request timeout in seconds
        max_workers: Concurrent deliveries
        max_pending: Deliveries queued or in flight before new events are dropped
    """

    def __init__(
        self,
        base_url: str = DEFAULT_NOTIFY_URL,
        timeout: float = 5.0,
        max_workers: int = 2,
        max_pending: int = 100,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout),
        )
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stickygraph-notify")
        self._max_pending = max_pending
        self._pending = 0
        self._pending_lock = threading.Lock()
        self._closed = False

    def publish(self, event: str, data: Any, board_id: str) -> Future | None:
        """Queue a delivery; returns its future, or None if it was dropped."""
        if self._closed:
            log.debug(f"Channel closed, dropping {event}")
            return None
        with self._pending_lock:
            if self._pending >= self._max_pending:
                log.warning(f"Notification backlog full ({self._max_pending}), dropping {event}")
                return None
            self._pending += 1
        payload = MutationEvent(event, data, board_id).to_dict()
        try:
            future = self._executor.submit(self._deliver, payload)
        except RuntimeError as e:
            # Executor shut down between the check and the submit
            log.debug(f"Dropping {event}: {e}")
            self._finished()
            return None
        return future

    def _finished(self) -> None:
        with self._pending_lock:
            self._pending -= 1

    def _deliver(self, payload: dict[str, Any]) -> None:
        try:
            self._post(payload)
        finally:
            self._finished()

    def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = self._client.post("/notify", json=payload)
        except httpx.HTTPError as e:
            log.debug(f"Notification {payload['event']} not delivered: {e}")
            return
        except Exception as e:
            log.debug(f"Notification {payload['event']} failed: {e}")
            return
        if response.is_error:
            log.debug(f"Notification {payload['event']} rejected: HTTP {response.status_code}")
        else:
            log.trace(f"Notification {payload['event']} delivered")

    def close(self) -> None:
        """Drop queued deliveries and close the HTTP client without waiting."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._client.close()
        log.debug("HTTP notification channel closed")
