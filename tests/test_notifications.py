"""Tests for mutation notification channels."""

import json
import threading

import httpx
import pytest
import respx
from httpx import Response

from stickygraph.config import Config
from stickygraph.exceptions import ConfigError
from stickygraph.notifications import (
    HttpNotificationChannel,
    LocalNotificationChannel,
    MutationEvent,
    NullNotificationChannel,
    create_channel,
)

NOTIFY_URL = "http://relay.test:8080/notify"


class TestMutationEvent:

    def test_wire_form(self):
        event = MutationEvent("node_created", {"id": "n1"}, "b1")
        assert event.to_dict() == {"event": "node_created", "data": {"id": "n1"}, "boardId": "b1"}


class TestHttpChannel:
    """Fire-and-forget HTTP delivery."""

    @respx.mock
    def test_posts_event_json(self):
        route = respx.post(NOTIFY_URL).mock(return_value=Response(202, json={"accepted": True}))
        channel = HttpNotificationChannel("http://relay.test:8080/")

        channel.publish("node_created", {"id": "n1"}, "default").result(timeout=5)
        channel.close()

        assert route.call_count == 1
        body = json.loads(route.calls.last.request.content)
        assert body == {"event": "node_created", "data": {"id": "n1"}, "boardId": "default"}

    @respx.mock
    def test_connection_error_swallowed(self):
        respx.post(NOTIFY_URL).mock(side_effect=httpx.ConnectError("refused"))
        channel = HttpNotificationChannel("http://relay.test:8080")

        future = channel.publish("node_deleted", {"id": "n1"}, "default")

        assert future.exception(timeout=5) is None
        channel.close()

    @respx.mock
    def test_timeout_swallowed(self):
        respx.post(NOTIFY_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        channel = HttpNotificationChannel("http://relay.test:8080", timeout=0.1)

        future = channel.publish("node_updated", {"id": "n1"}, "default")

        assert future.exception(timeout=5) is None
        channel.close()

    @respx.mock
    def test_server_error_swallowed(self):
        route = respx.post(NOTIFY_URL).mock(return_value=Response(500))
        channel = HttpNotificationChannel("http://relay.test:8080")

        future = channel.publish("edge_created", {"id": "e1"}, "b1")

        assert future.exception(timeout=5) is None
        assert route.called
        channel.close()

    @respx.mock
    def test_publish_after_close_dropped(self):
        route = respx.post(NOTIFY_URL).mock(return_value=Response(202))
        channel = HttpNotificationChannel("http://relay.test:8080")
        channel.close()

        assert channel.publish("node_created", {"id": "n1"}, "default") is None
        assert not route.called
        # Closing twice is harmless
        channel.close()

    @respx.mock
    def test_close_discards_queued_deliveries(self):
        release = threading.Event()
        started = threading.Event()

        def slow(request):
            started.set()
            release.wait(5)
            return Response(202)

        respx.post(NOTIFY_URL).mock(side_effect=slow)
        channel = HttpNotificationChannel("http://relay.test:8080", max_workers=1)
        in_flight = channel.publish("node_created", {"id": "n1"}, "default")
        queued = channel.publish("node_created", {"id": "n2"}, "default")
        assert started.wait(5)

        channel.close()

        assert queued.cancelled()
        release.set()
        assert in_flight.exception(timeout=5) is None

    @respx.mock
    def test_backlog_bounded(self):
        release = threading.Event()

        def slow(request):
            release.wait(5)
            return Response(202)

        respx.post(NOTIFY_URL).mock(side_effect=slow)
        channel = HttpNotificationChannel("http://relay.test:8080", max_workers=1, max_pending=2)
        try:
            accepted = [channel.publish("node_created", {"id": i}, "default") for i in range(2)]
            assert channel.publish("node_created", {"id": 2}, "default") is None

            release.set()
            for future in accepted:
                future.result(timeout=5)
            assert channel.publish("node_created", {"id": 3}, "default") is not None
        finally:
            release.set()
            channel.close()


class TestLocalChannel:
    """In-process callbacks."""

    def test_callbacks_receive_events(self):
        received = []
        channel = LocalNotificationChannel()
        channel.subscribe(received.append)

        channel.publish("board_created", {"id": "b1"}, "b1")

        assert received == [MutationEvent("board_created", {"id": "b1"}, "b1")]

    def test_failing_callback_swallowed(self):
        received = []

        def broken(event):
            raise ValueError("boom")

        channel = LocalNotificationChannel([broken, received.append])
        channel.publish("node_created", {"id": "n1"}, "default")

        assert len(received) == 1

    def test_unsubscribe_and_close(self):
        received = []
        channel = LocalNotificationChannel()
        unsubscribe = channel.subscribe(received.append)
        unsubscribe()
        channel.publish("node_created", {}, "default")
        channel.subscribe(received.append)
        channel.close()
        channel.publish("node_created", {}, "default")
        assert received == []


class TestCreateChannel:
    """Channel selection by configuration."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("http", HttpNotificationChannel),
            ("local", LocalNotificationChannel),
            ("none", NullNotificationChannel),
        ],
    )
    def test_selects_implementation(self, tmp_path, name, expected):
        channel = create_channel(Config(data_dir=tmp_path, notify_channel=name))
        try:
            assert isinstance(channel, expected)
        finally:
            channel.close()

    def test_http_channel_uses_configured_url(self, tmp_path):
        config = Config(
            data_dir=tmp_path, notify_channel="http", notify_url="http://elsewhere:9000", notify_timeout=1.5
        )
        channel = create_channel(config)
        try:
            assert channel.base_url == "http://elsewhere:9000"
            assert channel.timeout == 1.5
        finally:
            channel.close()

    def test_unknown_channel(self, tmp_path):
        with pytest.raises(ConfigError):
            create_channel(Config(data_dir=tmp_path, notify_channel="pigeon"))
