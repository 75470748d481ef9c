"""
Shared fixtures: in-memory stand-ins for the timekpr D-Bus service and the
paho MQTT client, both writing into one ordered call log.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import paho.mqtt.client as mqtt
import pytest

from screentime_collector import ConnectivityError, ObservationPublisher


GOOD_BAG = {
    "TIME_LEFT_DAY": 3600,
    "TIME_SPENT_BALANCE": 0,
    "TIME_SPENT_MONTH": 18000,
    "TIME_SPENT_WEEK": 7200,
    "TIME_SPENT_DAY": 3600,
}


class CallLog(list):
    def names(self) -> List[str]:
        return [entry[0] for entry in self]


class FakeMessageInfo:
    def __init__(self, rc=mqtt.MQTT_ERR_SUCCESS, published: bool = True, raise_on_wait=None):
        self.rc = rc
        self._published = published
        self._raise_on_wait = raise_on_wait
        self.waited_with: Optional[float] = None

    def wait_for_publish(self, timeout=None):
        self.waited_with = timeout
        if self._raise_on_wait is not None:
            raise self._raise_on_wait

    def is_published(self) -> bool:
        return self._published


class FakeMqttClient:
    """Records publish calls; per-topic behaviour is configured up front."""

    def __init__(self, log: CallLog):
        self.log = log
        self.published: List[Tuple[str, bytes, int, bool]] = []
        self.rc_for: Dict[str, int] = {}
        self.unconfirmed: set = set()
        self.raise_for: Dict[str, Exception] = {}
        self.connected = True
        self.loop_stopped = False
        self.disconnected = False

    def publish(self, topic, payload=None, qos=0, retain=False):
        self.log.append(("publish", topic))
        if topic in self.raise_for:
            raise self.raise_for[topic]
        self.published.append((topic, payload, qos, retain))
        return FakeMessageInfo(
            rc=self.rc_for.get(topic, mqtt.MQTT_ERR_SUCCESS),
            published=topic not in self.unconfirmed,
        )

    def is_connected(self):
        return self.connected

    def loop_stop(self):
        self.loop_stopped = True

    def disconnect(self):
        self.disconnected = True


class FakeTimekpr:
    """Answers queries from a fixed table; a ConnectivityError entry is raised.

    `on_query`, when set, is called with the username before answering.
    """

    def __init__(self, log: CallLog, replies: Dict[str, object]):
        self.log = log
        self.replies = replies
        self.on_query = None
        self.closed = False

    def query(self, username: str):
        self.log.append(("query", username))
        if self.on_query is not None:
            self.on_query(username)
        reply = self.replies[username]
        if isinstance(reply, Exception):
            raise reply
        return dict(reply)

    def close(self):
        self.closed = True


class RecordingPublisher(ObservationPublisher):
    """Real publisher whose flush is also written to the call log."""

    def __init__(self, client: FakeMqttClient, **kwargs):
        super().__init__(client, **kwargs)
        self.log = client.log

    def flush(self) -> None:
        self.log.append(("flush", None))
        super().flush()


@pytest.fixture
def call_log():
    return CallLog()


@pytest.fixture
def mqtt_client(call_log):
    return FakeMqttClient(call_log)


@pytest.fixture
def publisher(mqtt_client):
    return RecordingPublisher(mqtt_client, flush_timeout=0.1)


@pytest.fixture
def good_bag():
    return dict(GOOD_BAG)


@pytest.fixture
def unreachable():
    return ConnectivityError("bob", "org.freedesktop.DBus.Error.NoReply")


@pytest.fixture
def make_timekpr(call_log):
    def _make(replies):
        return FakeTimekpr(call_log, replies)

    return _make


@pytest.fixture
def make_info():
    return FakeMessageInfo
