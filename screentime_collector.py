#!/usr/bin/env python3
"""
timekpr Screen Time Collector
=============================

A small, locally running collector that:
1. Asks the timekpr-nExT service over D-Bus for each configured user's
   screen-time counters.
2. Validates the returned property bag into a typed observation.
3. Publishes every observation as JSON to `time.obs.<hostname>.<user>` on an
   MQTT broker, then flushes once per cycle.

A user whose data is unreachable or malformed is skipped for that cycle only;
the remaining users are still published and the next cycle starts fresh.
"""

from __future__ import annotations

import argparse
import enum
import json
import logging
import os
import platform
import signal
import sys
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import unquote, urlsplit

import paho.mqtt.client as mqtt
from jeepney import DBusErrorResponse, MessageGenerator, new_method_call
from jeepney.io.blocking import Proxy, open_dbus_connection

VERSION = "0.3.0"
LOGGER_NAME = "screentime-collector"
CONFIG_ENV_VAR = "SCREENTIME_COLLECTOR_CONFIG"
DEFAULT_BROKER_URL = "mqtt://localhost:1883"
DEFAULT_SAMPLE_INTERVAL = 5
TOPIC_PREFIX = "time.obs"

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

# Canonical timekpr property names, in the order problems are reported.
OBSERVATION_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("TIME_LEFT_DAY", "left_day"),
    ("TIME_SPENT_BALANCE", "spent_balance"),
    ("TIME_SPENT_MONTH", "spent_month"),
    ("TIME_SPENT_WEEK", "spent_week"),
    ("TIME_SPENT_DAY", "spent_day"),
)

# Topic delimiter plus MQTT wildcards and separators.
_FORBIDDEN_NAME_CHARS = frozenset("./+#")

PropertyBag = Mapping[str, Any]

logger = logging.getLogger(LOGGER_NAME)


# ---------------------------------------------------------------- ERRORS --


class CollectorError(Exception):
    """Base class for every non-fatal error raised while sampling."""


class ConnectivityError(CollectorError):
    """The timekpr query could not be completed."""

    def __init__(self, username: str, reason: str):
        self.username = username
        self.reason = reason
        super().__init__(f"timekpr query for {username!r} failed: {reason}")


@dataclass(frozen=True)
class MissingField:
    name: str

    def describe(self) -> str:
        return f"{self.name}: missing"


@dataclass(frozen=True)
class TypeMismatch:
    name: str
    expected: str
    actual: str

    def describe(self) -> str:
        return f"{self.name}: expected {self.expected}, got {self.actual}"


FieldProblem = Union[MissingField, TypeMismatch]


class MalformedDataError(CollectorError):
    """The property bag does not satisfy the observation schema.

    Carries every problem found, in canonical field order.
    """

    def __init__(self, problems: Sequence[FieldProblem]):
        self.problems: List[FieldProblem] = list(problems)
        details = "; ".join(problem.describe() for problem in self.problems)
        super().__init__(f"malformed property bag ({details})")

    @property
    def missing_fields(self) -> List[str]:
        return [p.name for p in self.problems if isinstance(p, MissingField)]

    @property
    def mismatched_fields(self) -> List[str]:
        return [p.name for p in self.problems if isinstance(p, TypeMismatch)]


class PublishError(CollectorError):
    def __init__(self, topic: str, reason: str, rc: Optional[int] = None):
        self.topic = topic
        self.reason = reason
        self.rc = rc
        super().__init__(f"publish to {topic} failed: {reason}")


class FlushError(CollectorError):
    def __init__(self, topics: Sequence[str], reason: str):
        self.topics = list(topics)
        self.reason = reason
        super().__init__(f"flush failed for {len(self.topics)} message(s): {reason}")


# ----------------------------------------------------------- OBSERVATION --


@dataclass(frozen=True)
class Observation:
    left_day: int
    spent_balance: int
    spent_month: int
    spent_week: int
    spent_day: int

    def to_payload(self) -> bytes:
        return json.dumps(asdict(self), separators=(",", ":")).encode("utf-8")


def _is_int32(value: Any) -> bool:
    # bool is an int subclass but a distinct D-Bus type.
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return INT32_MIN <= value <= INT32_MAX


def _describe_type(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return f"int out of int32 range ({value})"
    return type(value).__name__


def extract_observation(bag: PropertyBag) -> Observation:
    """Build an Observation from a timekpr property bag.

    All five counters are checked before failing, so a single
    MalformedDataError reports every missing or mistyped field at once.
    Keys the observation does not use are ignored.
    """
    values: Dict[str, int] = {}
    problems: List[FieldProblem] = []
    for key, attr in OBSERVATION_FIELDS:
        if key not in bag:
            problems.append(MissingField(key))
            continue
        value = bag[key]
        if not _is_int32(value):
            problems.append(TypeMismatch(key, "int32", _describe_type(value)))
            continue
        values[attr] = value
    if problems:
        raise MalformedDataError(problems)
    return Observation(**values)


def observation_topic(hostname: str, username: str) -> str:
    return f"{TOPIC_PREFIX}.{hostname}.{username}"


# ---------------------------------------------------------------- TIMEKPR --


class TimekprUserAdmin(MessageGenerator):
    interface = "com.timekpr.server.user.admin"

    def __init__(
        self,
        object_path: str = "/com/timekpr/server",
        bus_name: str = "com.timekpr.server",
    ):
        super().__init__(object_path=object_path, bus_name=bus_name)

    def getUserInformation(self, username: str, flags: str):
        return new_method_call(self, "getUserInformation", "ss", (username, flags))


def unwrap_variants(properties: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn jeepney's `(signature, value)` variant pairs into plain values."""
    bag: Dict[str, Any] = {}
    for key, value in properties.items():
        if isinstance(value, tuple) and len(value) == 2 and isinstance(value[0], str):
            value = value[1]
        bag[key] = value
    return bag


class TimekprClient:
    """Blocking client for the timekpr admin interface.

    `proxy` is anything exposing `getUserInformation(username, flags)` and
    returning the unwrapped reply body, normally a jeepney `Proxy`.
    """

    def __init__(self, proxy: Any, flags: str = "", connection: Any = None):
        self._proxy = proxy
        self._connection = connection
        self.flags = flags

    @classmethod
    def connect(cls, bus: str = "SESSION", flags: str = "", timeout: float = 2.0) -> "TimekprClient":
        connection = open_dbus_connection(bus=bus.upper())
        proxy = Proxy(TimekprUserAdmin(), connection, timeout=timeout)
        return cls(proxy, flags=flags, connection=connection)

    def query(self, username: str) -> Dict[str, Any]:
        try:
            result, message, properties = self._proxy.getUserInformation(username, self.flags)
        except DBusErrorResponse as exc:
            raise ConnectivityError(username, f"D-Bus error {exc.name}: {exc.data}") from exc
        except OSError as exc:
            # socket failures and timeouts
            raise ConnectivityError(username, str(exc) or type(exc).__name__) from exc
        logger.debug("timekpr reply for %s: result=%s message=%r", username, result, message)
        if result != 0:
            raise ConnectivityError(username, f"timekpr result {result}: {message or 'no message'}")
        return unwrap_variants(properties)

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None


# -------------------------------------------------------------- PUBLISHER --


class ObservationPublisher:
    """Publishes observations through a paho client and confirms them on flush.

    paho keeps QoS 1/2 messages for resending after a reconnect, so nothing is
    handed to it while `is_connected()` is false.
    """

    def __init__(
        self,
        client: mqtt.Client,
        qos: int = 1,
        flush_timeout: float = 2.0,
        is_connected: Optional[Callable[[], bool]] = None,
    ):
        self._client = client
        self.qos = qos
        self.flush_timeout = flush_timeout
        self._is_connected = is_connected or client.is_connected
        self._pending: List[Tuple[str, mqtt.MQTTMessageInfo]] = []

    def publish(self, topic: str, observation: Observation) -> None:
        if not self._is_connected():
            raise PublishError(topic, "not connected to broker", rc=mqtt.MQTT_ERR_NO_CONN)
        payload = observation.to_payload()
        try:
            info = self._client.publish(topic, payload=payload, qos=self.qos, retain=False)
        except (OSError, ValueError) as exc:
            raise PublishError(topic, str(exc)) from exc
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(topic, mqtt.error_string(info.rc), rc=info.rc)
        self._pending.append((topic, info))

    def flush(self) -> None:
        pending, self._pending = self._pending, []
        unconfirmed: List[str] = []
        deadline = time.monotonic() + self.flush_timeout
        for topic, info in pending:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                info.wait_for_publish(timeout=remaining)
            except (RuntimeError, ValueError) as exc:
                logger.debug("Publish to %s was not queued: %s", topic, exc)
                unconfirmed.append(topic)
                continue
            if not info.is_published():
                unconfirmed.append(topic)
        if unconfirmed:
            raise FlushError(
                unconfirmed, f"not confirmed within {self.flush_timeout:g}s"
            )


# ---------------------------------------------------------------- SAMPLER --


class OutcomeStatus(str, enum.Enum):
    PUBLISHED = "published"
    QUERY_FAILED = "query_failed"
    MALFORMED = "malformed"
    PUBLISH_FAILED = "publish_failed"


@dataclass
class UserOutcome:
    username: str
    status: OutcomeStatus
    topic: Optional[str] = None
    error: Optional[CollectorError] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.PUBLISHED


@dataclass
class CycleReport:
    outcomes: List[UserOutcome] = field(default_factory=list)
    flushed: bool = False
    flush_error: Optional[FlushError] = None

    @property
    def published(self) -> List[str]:
        return [o.username for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[str]:
        return [o.username for o in self.outcomes if not o.ok]


class Sampler:
    def __init__(
        self,
        hostname: str,
        users: Sequence[str],
        client: Any,
        publisher: ObservationPublisher,
    ):
        self.hostname = hostname
        self.users = tuple(users)
        self._client = client
        self._publisher = publisher

    def run_cycle(self, users: Optional[Iterable[str]] = None) -> CycleReport:
        report = CycleReport()
        for username in self.users if users is None else users:
            report.outcomes.append(self._sample_user(username))

        try:
            self._publisher.flush()
        except FlushError as exc:
            logger.warning("Flush failed: %s", exc)
            report.flush_error = exc
        else:
            report.flushed = True
            logger.debug("Flush successful.")
        return report

    def _sample_user(self, username: str) -> UserOutcome:
        try:
            bag = self._client.query(username)
        except ConnectivityError as exc:
            logger.warning("Skipping %s this cycle: %s", username, exc)
            return UserOutcome(username, OutcomeStatus.QUERY_FAILED, error=exc)

        try:
            observation = extract_observation(bag)
        except MalformedDataError as exc:
            logger.error("Discarding sample for %s: %s", username, exc)
            return UserOutcome(username, OutcomeStatus.MALFORMED, error=exc)

        topic = observation_topic(self.hostname, username)
        try:
            self._publisher.publish(topic, observation)
        except PublishError as exc:
            logger.error("Publish failed for %s: %s", username, exc)
            return UserOutcome(username, OutcomeStatus.PUBLISH_FAILED, topic=topic, error=exc)

        logger.debug("Published for user: %s", username)
        return UserOutcome(username, OutcomeStatus.PUBLISHED, topic=topic)


# ----------------------------------------------------------------- CONFIG --


def _default_hostname() -> str:
    return (platform.node() or "localhost").split(".")[0] or "localhost"


def _check_name(kind: str, value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"Config `{kind}` must not be empty.")
    bad = sorted({ch for ch in value if ch in _FORBIDDEN_NAME_CHARS or ch.isspace()})
    if bad:
        raise ValueError(
            f"Config `{kind}` value {value!r} contains forbidden characters {bad!r}."
        )
    return value


def _parse_users(raw: Any) -> List[str]:
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise ValueError("`users` must be a list of user names or a comma-separated string.")
    users: List[str] = []
    for item in raw:
        if not item.strip():
            continue
        name = _check_name("users", item)
        if name not in users:
            users.append(name)
    if not users:
        raise ValueError("Config `users` is required.")
    return users


@dataclass
class BrokerEndpoint:
    host: str
    port: int
    tls: bool = False
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def parse(cls, url: str) -> "BrokerEndpoint":
        parts = urlsplit(url.strip())
        scheme = parts.scheme.lower()
        if scheme not in {"mqtt", "tcp", "mqtts", "ssl"}:
            raise ValueError(f"Unsupported broker URL scheme in {url!r} (use mqtt:// or mqtts://).")
        if not parts.hostname:
            raise ValueError(f"Broker URL {url!r} has no host.")
        tls = scheme in {"mqtts", "ssl"}
        try:
            port = parts.port or (8883 if tls else 1883)
        except ValueError as exc:
            raise ValueError(f"Broker URL {url!r} has an invalid port.") from exc
        return cls(
            host=parts.hostname,
            port=port,
            tls=tls,
            username=unquote(parts.username) if parts.username else None,
            password=unquote(parts.password) if parts.password else None,
        )


@dataclass
class CollectorConfig:
    users: List[str]
    hostname: str
    broker: BrokerEndpoint
    sample_interval_seconds: int = DEFAULT_SAMPLE_INTERVAL
    dbus_bus: str = "session"  # session | system
    dbus_flags: str = ""
    dbus_timeout_seconds: float = 2.0
    mqtt_qos: int = 1
    flush_timeout_seconds: float = 2.0
    mqtt_client_id: Optional[str] = None
    log_file: Optional[str] = None
    err_log_file: Optional[str] = None
    log_level: str = "INFO"
    debug_mqtt: bool = False

    @classmethod
    def load(
        cls, path: Optional[Path] = None, overrides: Optional[Mapping[str, Any]] = None
    ) -> "CollectorConfig":
        data: Dict[str, Any] = {}
        if path is not None:
            if not path.exists():
                raise FileNotFoundError(f"Config file missing at {path}.")
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            if not isinstance(data, dict):
                raise ValueError("Config file must contain a JSON object.")
        for key, value in (overrides or {}).items():
            if value is not None:
                data[key] = value
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CollectorConfig":
        if "users" not in data:
            raise ValueError("Config `users` is required.")
        users = _parse_users(data["users"])

        hostname = _check_name("hostname", str(data.get("hostname") or _default_hostname()))
        broker = BrokerEndpoint.parse(str(data.get("broker_url", DEFAULT_BROKER_URL)))

        interval = int(data.get("sample_interval_seconds", DEFAULT_SAMPLE_INTERVAL))
        if not (1 <= interval <= 3600):
            raise ValueError("`sample_interval_seconds` must be between 1 and 3600.")

        dbus_bus = str(data.get("dbus_bus", "session")).lower()
        if dbus_bus not in {"session", "system"}:
            raise ValueError("`dbus_bus` must be session or system.")

        dbus_timeout = float(data.get("dbus_timeout_seconds", 2.0))
        flush_timeout = float(data.get("flush_timeout_seconds", 2.0))
        if dbus_timeout <= 0 or flush_timeout <= 0:
            raise ValueError("Timeouts must be positive.")

        qos = int(data.get("mqtt_qos", 1))
        if qos not in (0, 1, 2):
            raise ValueError("`mqtt_qos` must be 0, 1 or 2.")

        log_level = str(data.get("log_level", "INFO")).upper()
        if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError("`log_level` must be DEBUG, INFO, WARNING or ERROR.")

        return cls(
            users=users,
            hostname=hostname,
            broker=broker,
            sample_interval_seconds=interval,
            dbus_bus=dbus_bus,
            dbus_flags=str(data.get("dbus_flags", "")),
            dbus_timeout_seconds=dbus_timeout,
            mqtt_qos=qos,
            flush_timeout_seconds=flush_timeout,
            mqtt_client_id=data.get("mqtt_client_id"),
            log_file=data.get("log_file"),
            err_log_file=data.get("err_log_file"),
            log_level=log_level,
            debug_mqtt=bool(data.get("debug_mqtt", False)),
        )

    @property
    def client_id(self) -> str:
        return self.mqtt_client_id or f"{LOGGER_NAME}-{self.hostname}"


# ------------------------------------------------------------------ AGENT --


class CollectorAgent:
    def __init__(
        self,
        config: CollectorConfig,
        timekpr: Any,
        mqtt_client: Optional[mqtt.Client] = None,
    ):
        self.config = config
        self.logger = logger
        self._timekpr = timekpr
        self._mqtt_client = mqtt_client or self._build_mqtt_client()
        self._mqtt_connected = False
        self._running = True
        self.publisher = ObservationPublisher(
            self._mqtt_client,
            qos=config.mqtt_qos,
            flush_timeout=config.flush_timeout_seconds,
            is_connected=self.is_connected,
        )
        self.sampler = Sampler(config.hostname, config.users, timekpr, self.publisher)

    # ------------------------------------------------------------------ MQTT --

    @staticmethod
    def _mqtt_rc_reason(rc: int) -> str:
        rc_map = {
            0: "success",
            1: "incorrect protocol version",
            2: "invalid client identifier",
            3: "server unavailable",
            4: "bad username or password",
            5: "not authorized",
        }
        return rc_map.get(rc, "unknown")

    def _build_mqtt_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id,
            protocol=mqtt.MQTTv311,
            clean_session=True,
        )
        broker = self.config.broker
        if broker.username:
            client.username_pw_set(broker.username, password=broker.password or None)
        if broker.tls:
            client.tls_set()
        # at most one cycle's worth of unconfirmed messages
        client.max_queued_messages_set(len(self.config.users))
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        if self.config.debug_mqtt:
            mqtt_logger = logging.getLogger(f"{LOGGER_NAME}.mqtt")
            client.enable_logger(mqtt_logger)
        return client

    @staticmethod
    def _reason_code_int(reason_code: Any) -> int:
        rc = getattr(reason_code, "value", reason_code)
        try:
            return int(rc)
        except (TypeError, ValueError):
            return -1

    def is_connected(self) -> bool:
        return self._mqtt_connected

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        rc = self._reason_code_int(reason_code)
        if rc == 0:
            self.logger.info("Connected to MQTT broker (rc=0: success).")
            self._mqtt_connected = True
        else:
            self.logger.error("MQTT connection failed (rc=%s: %s)", rc, self._mqtt_rc_reason(rc))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        rc = self._reason_code_int(reason_code)
        self._mqtt_connected = False
        if rc != 0:
            self.logger.warning("Unexpected MQTT disconnect (rc=%s: %s)", rc, self._mqtt_rc_reason(rc))

    def _connect_mqtt(self) -> None:
        broker = self.config.broker
        self.logger.info("Connecting to MQTT %s:%s", broker.host, broker.port)
        try:
            self._mqtt_client.connect_async(broker.host, broker.port, keepalive=60)
        except (OSError, ValueError) as exc:
            self.logger.error(
                "Failed to start MQTT connection to %s:%s: %s", broker.host, broker.port, exc
            )
            return
        self._mqtt_client.loop_start()

    # ------------------------------------------------------------- MAIN LOOP --

    def start(self) -> None:
        self.logger.info(
            "Starting screen time collector v%s for %s on %s",
            VERSION,
            ", ".join(self.config.users),
            self.config.hostname,
        )
        self._connect_mqtt()
        self._main_loop()

    def stop(self) -> None:
        self._running = False

    def run_once(self) -> CycleReport:
        report = self.sampler.run_cycle()
        if report.failed:
            self.logger.info(
                "Cycle done: %d published, %d skipped (%s)",
                len(report.published),
                len(report.failed),
                ", ".join(report.failed),
            )
        return report

    def _main_loop(self) -> None:
        interval = float(self.config.sample_interval_seconds)
        next_tick = time.monotonic()
        try:
            while self._running:
                now = time.monotonic()
                if now < next_tick:
                    # nap in slices so stop() is seen between cycles
                    time.sleep(min(next_tick - now, 0.5))
                    continue
                self.run_once()
                next_tick += interval
                now = time.monotonic()
                if next_tick <= now:
                    self.logger.warning("Cycle overran the %.0fs interval.", interval)
                    next_tick = now
        except KeyboardInterrupt:
            self.logger.info("Stopping collector (SIGINT).")
        finally:
            self._shutdown()

    # --------------------------------------------------------------- SHUTDOWN --

    def _shutdown(self) -> None:
        self._running = False
        try:
            self._mqtt_client.loop_stop()
            self._mqtt_client.disconnect()
        except (OSError, RuntimeError):
            self.logger.warning("Error while shutting down MQTT.", exc_info=True)
        close = getattr(self._timekpr, "close", None)
        if close is not None:
            try:
                close()
            except OSError:
                self.logger.warning("Error while closing the D-Bus connection.", exc_info=True)


# -------------------------------------------------------------------- CLI --


def _setup_logging(cfg: CollectorConfig) -> None:
    fmt = "%(asctime)s %(levelname)s %(message)s"
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if cfg.log_file:
        log_path = Path(cfg.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler_file = logging.FileHandler(log_path)
        handler_file.setFormatter(logging.Formatter(fmt))
        handlers.append(handler_file)
    if cfg.err_log_file:
        err_path = Path(cfg.err_log_file).expanduser()
        err_path.parent.mkdir(parents=True, exist_ok=True)
        handler_err = logging.FileHandler(err_path)
        handler_err.setLevel(logging.ERROR)
        handler_err.setFormatter(logging.Formatter(fmt))
        handlers.append(handler_err)

    logging.basicConfig(
        level=getattr(logging, cfg.log_level),
        format=fmt,
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=LOGGER_NAME,
        description="Publish timekpr screen-time counters to an MQTT broker.",
    )
    parser.add_argument("--config", type=Path, help=f"JSON config file (or ${CONFIG_ENV_VAR})")
    parser.add_argument("-b", "--broker-url", help=f"MQTT broker URL (default {DEFAULT_BROKER_URL})")
    parser.add_argument("-u", "--users", help="comma-separated list of users to sample")
    parser.add_argument("--hostname", help="host label used in topics")
    parser.add_argument(
        "--interval", type=int, dest="sample_interval_seconds", help="seconds between cycles"
    )
    parser.add_argument(
        "--system-bus",
        action="store_const",
        const="system",
        dest="dbus_bus",
        help="query timekpr on the system bus instead of the session bus",
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    config_path = args.config
    if config_path is None and os.environ.get(CONFIG_ENV_VAR):
        config_path = Path(os.environ[CONFIG_ENV_VAR])
    overrides = {
        "broker_url": args.broker_url,
        "users": args.users,
        "hostname": args.hostname,
        "sample_interval_seconds": args.sample_interval_seconds,
        "dbus_bus": args.dbus_bus,
        "log_level": args.log_level,
    }
    try:
        cfg = CollectorConfig.load(
            config_path.expanduser() if config_path else None, overrides
        )
    except (OSError, ValueError) as exc:
        print(f"Failed to load config: {exc}", file=sys.stderr)
        sys.exit(2)

    _setup_logging(cfg)
    try:
        timekpr = TimekprClient.connect(
            bus=cfg.dbus_bus, flags=cfg.dbus_flags, timeout=cfg.dbus_timeout_seconds
        )
    except (OSError, KeyError, ValueError) as exc:
        # KeyError: no DBUS_SESSION_BUS_ADDRESS; ValueError: authentication refused
        logger.error("Unable to connect to the %s D-Bus: %s", cfg.dbus_bus, exc)
        sys.exit(1)

    agent = CollectorAgent(cfg, timekpr)

    def handle_signal(signum, frame):
        agent.logger.info("Received signal %s, shutting down.", signum)
        agent.stop()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    agent.start()


if __name__ == "__main__":
    main()
