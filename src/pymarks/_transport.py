"""REST transport for bookmark rows."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

import aiohttp

from pymarks._redact import redact_for_log
from pymarks.config import MarksConfig
from pymarks.exceptions import MarksTransportError

_logger = logging.getLogger(__name__)


class RecordBackend(Protocol):
    """Structural interface for the one-shot backing store calls.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`RestBackend`) concrete.
    """

    async def fetch_records(self, owner_id: str) -> list[dict[str, Any]]: ...

    async def insert_record(self, fields: Mapping[str, Any]) -> None: ...

    async def delete_record(self, record_id: str) -> None: ...


def _error_message(text: str) -> str:
    """Best-effort extraction of the server's error message."""
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return text[:200]
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return text[:200]


class RestBackend:
    """aiohttp client for a PostgREST-style table interface."""

    def __init__(
        self,
        config: MarksConfig,
        http_session: aiohttp.ClientSession,
        *,
        access_token: Callable[[], str | None],
    ) -> None:
        self._config = config
        self._http = http_session
        self._access_token = access_token

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/json",
            "content-type": "application/json",
        }
        if self._config.api_key:
            headers["apikey"] = self._config.api_key
        token = self._access_token() or self._config.api_key
        if token:
            headers["authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        *,
        params: Mapping[str, str] | None = None,
        payload: Any = None,
        extra_headers: Mapping[str, str] | None = None,
    ) -> Any:
        endpoint = f"/{self._config.table}"
        url = f"{self._config.rest_url}{endpoint}"
        headers = self._headers()
        if extra_headers:
            headers.update(extra_headers)

        _logger.debug("%s %s params=%s body=%s", method, url, params, redact_for_log(payload))

        try:
            async with self._http.request(method, url, params=params, json=payload, headers=headers) as resp:
                text = await resp.text()
                if resp.status >= 300:
                    raise MarksTransportError(
                        _error_message(text),
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except MarksTransportError:
            raise
        except aiohttp.ClientError as exc:
            raise MarksTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc
        except TimeoutError as exc:
            # aiohttp's total request timeout is not a ClientError.
            raise MarksTransportError(
                f"Request to {endpoint} timed out",
                endpoint=endpoint,
            ) from exc

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise MarksTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

    async def fetch_records(self, owner_id: str) -> list[dict[str, Any]]:
        """Fetch every row owned by *owner_id*, newest first."""
        body = await self._request(
            "GET",
            params={
                "select": "*",
                "user_id": f"eq.{owner_id}",
                "order": "created_at.desc",
            },
        )
        if body is None:
            return []
        if not isinstance(body, list) or not all(isinstance(row, dict) for row in body):
            raise MarksTransportError(
                f"Expected a list of rows from /{self._config.table}",
                endpoint=f"/{self._config.table}",
            )
        return body

    async def insert_record(self, fields: Mapping[str, Any]) -> None:
        await self._request(
            "POST",
            payload=[dict(fields)],
            extra_headers={"prefer": "return=minimal"},
        )

    async def delete_record(self, record_id: str) -> None:
        await self._request("DELETE", params={"id": f"eq.{record_id}"})
