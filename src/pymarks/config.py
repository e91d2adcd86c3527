"""Client configuration for pymarks."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pymarks.exceptions import MarksConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise MarksConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class MarksConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Backing store base URL. REST calls go to ``<base_url>/rest/v1``.
    api_key : str
        Public API key sent as the ``apikey`` header on every REST call.
    table : str
        Table holding bookmark rows.
    mqtt_host : str or None
        Change feed broker host. Defaults to the host of ``base_url``.
    mqtt_port : int
        Change feed broker port.
    mqtt_username : str or None
        Broker username. Defaults to the session user id.
    mqtt_password : str or None
        Broker password. Defaults to the session access token.
    mqtt_tls : bool
        Connect to the broker over TLS.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    topic_prefix : str
        Topic prefix under which the backing store publishes row changes.
    feed_filter_by_owner : bool
        Subscribe to the owner-filtered topic instead of the whole table.
        Client-side scope filtering applies either way.
    realtime_enabled : bool
        Open a live change feed subscription. When disabled the list is
        only refreshed through :meth:`BookmarkClient.refresh`.
    max_retries : int
        Reconnect attempts after a feed connection error before live sync
        is reported unavailable.
    retry_backoff_step : float
        Seconds per attempt in the linear reconnect backoff
        (retry ``N`` waits ``N * retry_backoff_step``).
    """

    base_url: str = "http://localhost:54321"
    api_key: str = ""
    table: str = "bookmarks"
    mqtt_host: str | None = None
    mqtt_port: int = 8883
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = True
    mqtt_keepalive: int = 60
    topic_prefix: str = "realtime"
    feed_filter_by_owner: bool = True
    realtime_enabled: bool = True
    max_retries: int = 3
    retry_backoff_step: float = 2.0

    def __post_init__(self) -> None:
        if not self.table.strip():
            raise MarksConfigError("table must be non-empty")
        if self.max_retries < 0:
            raise MarksConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_backoff_step < 0:
            raise MarksConfigError(f"retry_backoff_step must be >= 0, got {self.retry_backoff_step}")

    @property
    def rest_url(self) -> str:
        """Base URL of the REST interface."""
        return f"{self.base_url.rstrip('/')}/rest/v1"

    @classmethod
    def from_env(cls, **overrides: Any) -> MarksConfig:
        """Create configuration from environment variables.

        Reads optional ``MARKS_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        MarksConfig
            Populated configuration.

        Raises
        ------
        MarksConfigError
            If a numeric variable cannot be parsed.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "MARKS_BASE_URL": "base_url",
            "MARKS_API_KEY": "api_key",
            "MARKS_TABLE": "table",
            "MARKS_MQTT_HOST": "mqtt_host",
            "MARKS_MQTT_USERNAME": "mqtt_username",
            "MARKS_MQTT_PASSWORD": "mqtt_password",
            "MARKS_TOPIC_PREFIX": "topic_prefix",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "MARKS_MQTT_PORT": ("mqtt_port", int),
            "MARKS_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "MARKS_MAX_RETRIES": ("max_retries", int),
            "MARKS_RETRY_BACKOFF_STEP": ("retry_backoff_step", float),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, cast)

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("MARKS_MQTT_TLS"), True)

        if "feed_filter_by_owner" not in overrides:
            config_kwargs["feed_filter_by_owner"] = _env_bool(env.get("MARKS_FEED_FILTER_BY_OWNER"), True)

        if "realtime_enabled" not in overrides:
            config_kwargs["realtime_enabled"] = _env_bool(env.get("MARKS_REALTIME_ENABLED"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
