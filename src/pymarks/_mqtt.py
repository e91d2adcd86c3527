"""MQTT change feed transport.

The backing store publishes one JSON message per row change::

    {"type": "INSERT", "table": "bookmarks", "record": {...}}
    {"type": "DELETE", "table": "bookmarks", "old_record": {"id": ...}}

on ``<topic_prefix>/<table>/<owner_id>``. Each subscription handle owns its
own threaded paho-mqtt client; callbacks are marshalled onto the asyncio loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, cast
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from pymarks._redact import redact_for_log
from pymarks.config import MarksConfig
from pymarks.exceptions import MarksConfigError, MarksError
from pymarks.session import Session
from pymarks.state.events import FeedStatus

RowCallback = Callable[[dict[str, Any]], None]
StatusCallback = Callable[[FeedStatus, str], None]


@dataclass(frozen=True, eq=False)
class FeedHandle:
    """An open change feed subscription.

    Handles compare by identity: every subscribe call yields a new handle,
    even for the same name.
    """

    name: str
    topic: str
    channel: Any = field(default=None, repr=False)


class ChangeFeed(Protocol):
    """Structural interface of the change feed primitive."""

    def subscribe_changes(
        self,
        table: str,
        *,
        owner_id: str,
        name: str,
        on_insert: RowCallback,
        on_delete: RowCallback,
        on_status: StatusCallback,
    ) -> FeedHandle: ...

    def unsubscribe(self, handle: FeedHandle) -> None: ...


@dataclass(frozen=True)
class ChangeMessage:
    """Decoded row change."""

    type: str
    table: str
    record: dict[str, Any]
    old_record: dict[str, Any]


@dataclass(frozen=True)
class FeedBootstrap:
    """Broker connection data for one subscription handle."""

    broker_host: str
    broker_port: int
    topic: str
    client_id: str
    username: str | None
    password: str | None
    tls: bool


def decode_change_payload(payload: bytes) -> ChangeMessage:
    """Parse MQTT payload bytes into a :class:`ChangeMessage`."""
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise MarksError("Change feed payload is not a JSON object")

    record = parsed.get("record") or parsed.get("new") or {}
    old_record = parsed.get("old_record") or parsed.get("old") or {}
    if not isinstance(record, dict) or not isinstance(old_record, dict):
        raise MarksError("Change feed payload rows must be JSON objects")

    return ChangeMessage(
        type=str(parsed.get("type") or parsed.get("eventType") or "").upper(),
        table=str(parsed.get("table") or ""),
        record=record,
        old_record=old_record,
    )


def build_topic(config: MarksConfig, table: str, owner_id: str) -> str:
    scope = owner_id if config.feed_filter_by_owner else "+"
    return f"{config.topic_prefix}/{table}/{scope}"


def build_bootstrap(
    config: MarksConfig,
    session: Session | None,
    *,
    table: str,
    owner_id: str,
    name: str,
) -> FeedBootstrap:
    """Resolve broker details for a new handle."""
    host = config.mqtt_host or urlsplit(config.base_url).hostname
    if not host:
        raise MarksConfigError("No MQTT host configured and base_url has no host")

    username = config.mqtt_username or (session.user_id if session is not None else None)
    password = config.mqtt_password or (session.access_token if session is not None else None)
    return FeedBootstrap(
        broker_host=host,
        broker_port=config.mqtt_port,
        topic=build_topic(config, table, owner_id),
        client_id=f"pymarks-{name}-{secrets.token_hex(4)}",
        username=username,
        password=password,
        tls=config.mqtt_tls,
    )


class MqttChannel:
    """Threaded paho-mqtt client for one subscription handle."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[ChangeMessage], None],
        on_status: StatusCallback,
        keepalive: int = 60,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._on_status = on_status
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None
        self._stopping: asyncio.Future[None] | None = None

    @property
    def is_running(self) -> bool:
        """Whether the MQTT network loop is active."""
        return self._running

    def _post(self, callback: Callable[..., None], *args: Any) -> None:
        if not self._running:
            return
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Event loop already closed.
            self._logger.debug("Dropping MQTT callback, event loop closed")

    def start(self, bootstrap: FeedBootstrap) -> None:
        """Begin connecting; progress is reported through ``on_status``."""
        self.stop()
        self._logger.debug(
            "MQTT channel start requested host=%s port=%s topic=%s client_id=%s",
            bootstrap.broker_host,
            bootstrap.broker_port,
            bootstrap.topic,
            bootstrap.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=bootstrap.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if bootstrap.username:
            client.username_pw_set(bootstrap.username, bootstrap.password)
        if bootstrap.tls:
            client.tls_set()

        self._topic = bootstrap.topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                self._post(self._on_status, FeedStatus.CHANNEL_ERROR, str(reason_code))
                return
            self._logger.debug("MQTT connected reason=%s", reason_code)
            if self._topic:
                c.subscribe(self._topic, qos=1)

        def on_subscribe(
            _c: mqtt.Client,
            _userdata: Any,
            _mid: int,
            reason_code_list: list[Any],
            _properties: Any,
        ) -> None:
            failures = [rc for rc in reason_code_list if rc.is_failure]
            if failures:
                self._logger.warning("MQTT subscribe rejected topic=%s reason=%s", self._topic, failures[0])
                self._post(self._on_status, FeedStatus.CHANNEL_ERROR, str(failures[0]))
                return
            self._logger.debug("MQTT subscribed topic=%s", self._topic)
            self._post(self._on_status, FeedStatus.SUBSCRIBED, "")

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                message = decode_change_payload(msg.payload)
            except Exception:
                self._logger.debug("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            self._logger.debug(
                "Received change topic=%s type=%s record=%s",
                msg.topic,
                message.type,
                redact_for_log(message.record or message.old_record),
            )
            self._post(self._on_message, message)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)
                self._post(self._on_status, FeedStatus.CHANNEL_ERROR, str(reason_code))

        def on_connect_fail(_client: mqtt.Client, _userdata: Any) -> None:
            self._logger.debug("MQTT connection attempt failed host=%s", bootstrap.broker_host)
            self._post(self._on_status, FeedStatus.TIMED_OUT, "connect failed")

        client.on_connect = on_connect
        client.on_subscribe = on_subscribe
        client.on_message = on_message
        client.on_disconnect = on_disconnect
        client.on_connect_fail = on_connect_fail

        self._client = client
        self._running = True
        client.connect_async(bootstrap.broker_host, bootstrap.broker_port, keepalive=self._keepalive)
        client.loop_start()
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect the client if running.

        The network thread is joined in the default executor, so this
        returns without waiting for it. Callbacks are dropped from here on.
        """
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            try:
                self._stopping = self._loop.run_in_executor(None, self._join_network_loop, client)
            except RuntimeError:
                # Event loop already closed.
                self._join_network_loop(client)
            else:
                self._stopping.add_done_callback(self._on_stopped)

    def _join_network_loop(self, client: mqtt.Client) -> None:
        client.loop_stop()
        self._logger.debug("MQTT network loop stopped")

    def _on_stopped(self, future: asyncio.Future[None]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._logger.debug("MQTT network loop stop failed", exc_info=exc)

    async def wait_stopped(self) -> None:
        """Wait until the network thread of the last :meth:`stop` has exited."""
        stopping = self._stopping
        if stopping is not None:
            await asyncio.shield(stopping)


class MqttChangeFeed:
    """:class:`ChangeFeed` over an MQTT broker."""

    def __init__(
        self,
        config: MarksConfig,
        *,
        loop: asyncio.AbstractEventLoop,
        session: Callable[[], Session | None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._loop = loop
        self._session = session
        self._logger = logger or logging.getLogger(__name__)

    def subscribe_changes(
        self,
        table: str,
        *,
        owner_id: str,
        name: str,
        on_insert: RowCallback,
        on_delete: RowCallback,
        on_status: StatusCallback,
    ) -> FeedHandle:
        bootstrap = build_bootstrap(
            self._config,
            self._session(),
            table=table,
            owner_id=owner_id,
            name=name,
        )

        def _dispatch(message: ChangeMessage) -> None:
            if message.table and message.table != table:
                return
            if message.type == "INSERT":
                on_insert(message.record)
            elif message.type == "DELETE":
                on_delete(message.old_record)
            else:
                self._logger.debug("Ignoring %s change on %s", message.type or "untyped", table)

        channel = MqttChannel(
            loop=self._loop,
            on_message=_dispatch,
            on_status=on_status,
            keepalive=self._config.mqtt_keepalive,
            logger=self._logger,
        )
        channel.start(bootstrap)
        return FeedHandle(name=name, topic=bootstrap.topic, channel=channel)

    def unsubscribe(self, handle: FeedHandle) -> None:
        channel = handle.channel
        if isinstance(channel, MqttChannel):
            channel.stop()
