from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from pymarks._transport import RestBackend
from pymarks.config import MarksConfig
from pymarks.exceptions import MarksTransportError


class _Recorder:
    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.status = 200
        self.body = "[]"


async def _serve(recorder: _Recorder) -> TestServer:
    async def handler(request: web.Request) -> web.Response:
        text = await request.text()
        recorder.requests.append(
            {
                "method": request.method,
                "path": request.path,
                "query": dict(request.query),
                "headers": request.headers,
                "body": text,
            }
        )
        return web.Response(status=recorder.status, text=recorder.body, content_type="application/json")

    app = web.Application()
    app.router.add_route("*", "/rest/v1/bookmarks", handler)
    server = TestServer(app)
    await server.start_server()
    return server


@pytest_asyncio.fixture
async def rest() -> AsyncIterator[tuple[RestBackend, _Recorder]]:
    recorder = _Recorder()
    server = await _serve(recorder)
    config = MarksConfig(base_url=str(server.make_url("/")), api_key="anon")
    async with aiohttp.ClientSession() as http:
        yield RestBackend(config, http, access_token=lambda: "user-token"), recorder
    await server.close()


@pytest.mark.asyncio
async def test_fetch_records_queries_owner_newest_first(rest: tuple[RestBackend, _Recorder]) -> None:
    backend, recorder = rest
    recorder.body = '[{"id": "1", "user_id": "user-1"}]'

    rows = await backend.fetch_records("user-1")

    assert rows == [{"id": "1", "user_id": "user-1"}]
    request = recorder.requests[0]
    assert request["method"] == "GET"
    assert request["query"] == {"select": "*", "user_id": "eq.user-1", "order": "created_at.desc"}
    assert request["headers"]["apikey"] == "anon"
    assert request["headers"]["Authorization"] == "Bearer user-token"


@pytest.mark.asyncio
async def test_insert_record_posts_minimal(rest: tuple[RestBackend, _Recorder]) -> None:
    backend, recorder = rest
    recorder.status = 201
    recorder.body = ""

    await backend.insert_record({"user_id": "user-1", "title": "Docs", "url": "https://docs.python.org"})

    request = recorder.requests[0]
    assert request["method"] == "POST"
    assert request["headers"]["Prefer"] == "return=minimal"
    assert '"title": "Docs"' in request["body"]


@pytest.mark.asyncio
async def test_delete_record_filters_by_id(rest: tuple[RestBackend, _Recorder]) -> None:
    backend, recorder = rest
    recorder.status = 204
    recorder.body = ""

    await backend.delete_record("42")

    request = recorder.requests[0]
    assert request["method"] == "DELETE"
    assert request["query"] == {"id": "eq.42"}


@pytest.mark.asyncio
async def test_error_status_carries_server_message(rest: tuple[RestBackend, _Recorder]) -> None:
    backend, recorder = rest
    recorder.status = 401
    recorder.body = '{"message": "JWT expired"}'

    with pytest.raises(MarksTransportError) as excinfo:
        await backend.fetch_records("user-1")

    assert str(excinfo.value) == "JWT expired"
    assert excinfo.value.status_code == 401
    assert excinfo.value.endpoint == "/bookmarks"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", ["{not json", '{"id": "1"}', "[1, 2]"])
async def test_unexpected_body_is_transport_error(rest: tuple[RestBackend, _Recorder], body: str) -> None:
    backend, recorder = rest
    recorder.body = body

    with pytest.raises(MarksTransportError):
        await backend.fetch_records("user-1")


@pytest.mark.asyncio
async def test_connection_failure_is_transport_error() -> None:
    config = MarksConfig(base_url="http://127.0.0.1:9", api_key="anon")
    async with aiohttp.ClientSession() as http:
        backend = RestBackend(config, http, access_token=lambda: None)
        with pytest.raises(MarksTransportError) as excinfo:
            await backend.delete_record("1")

    assert excinfo.value.status_code is None


async def _serve_slow(delay: float) -> TestServer:
    async def handler(request: web.Request) -> web.Response:
        await asyncio.sleep(delay)
        return web.Response(text="[]", content_type="application/json")

    app = web.Application()
    app.router.add_route("*", "/rest/v1/bookmarks", handler)
    server = TestServer(app)
    await server.start_server()
    return server


@pytest.mark.asyncio
async def test_request_timeout_is_transport_error() -> None:
    server = await _serve_slow(2.0)
    config = MarksConfig(base_url=str(server.make_url("/")), api_key="anon")
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=0.2)) as http:
            backend = RestBackend(config, http, access_token=lambda: None)
            with pytest.raises(MarksTransportError, match="timed out") as excinfo:
                await backend.fetch_records("user-1")
    finally:
        await server.close()

    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.__cause__, TimeoutError)
