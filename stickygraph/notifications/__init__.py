"""Mutation notification channels.

The channel is chosen by configuration: ``http`` posts to a relay,
``local`` calls in-process callbacks, ``none`` drops events.
"""

from stickygraph.config import NOTIFY_CHANNELS, Config
from stickygraph.exceptions import ConfigError
from stickygraph.notifications.base import MutationEvent, NotificationChannel, NullNotificationChannel
from stickygraph.notifications.http import HttpNotificationChannel
from stickygraph.notifications.local import LocalNotificationChannel


def create_channel(config: Config) -> NotificationChannel:
    """Build the notification channel named by ``config.notify_channel``."""
    if config.notify_channel == "http":
        return HttpNotificationChannel(config.notify_url, timeout=config.notify_timeout)
    if config.notify_channel == "local":
        return LocalNotificationChannel()
    if config.notify_channel == "none":
        return NullNotificationChannel()
    raise ConfigError(
        f"Unknown notification channel: {config.notify_channel}. "
        f"Must be one of: {', '.join(NOTIFY_CHANNELS)}"
    )


__all__ = [
    "MutationEvent",
    "NotificationChannel",
    "NullNotificationChannel",
    "LocalNotificationChannel",
    "HttpNotificationChannel",
    "create_channel",
]
