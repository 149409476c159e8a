"""Tests for listener orchestration."""

from __future__ import annotations

import asyncio
import ssl

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from lnurlpay.domain.errors import ListenerError
from lnurlpay.server import (
    ReadDeadlineProtocol,
    RequestDeadlineMiddleware,
    ServerLimits,
    bind_socket,
    first_to_finish,
    make_server,
)


async def run_forever() -> None:
    await asyncio.Event().wait()


async def fail_after(delay: float, message: str) -> None:
    await asyncio.sleep(delay)
    raise OSError(message)


async def stop_after(delay: float) -> None:
    await asyncio.sleep(delay)


@pytest.mark.asyncio
async def test_first_failure_wins() -> None:
    with pytest.raises(ListenerError, match=":443.*certificate load failed"):
        await first_to_finish(
            {":80": run_forever(), ":443": fail_after(0.01, "certificate load failed")}
        )


@pytest.mark.asyncio
async def test_listener_error_passes_through() -> None:
    async def raise_listener_error() -> None:
        raise ListenerError("failed to listen on :80")

    with pytest.raises(ListenerError, match="failed to listen on :80"):
        await first_to_finish({":80": raise_listener_error(), ":443": run_forever()})


@pytest.mark.asyncio
async def test_graceful_stop_returns() -> None:
    await first_to_finish({":80": stop_after(0.01), ":443": run_forever()})


@pytest.mark.asyncio
async def test_survivor_is_not_cancelled() -> None:
    survivor_finished = asyncio.Event()

    async def slow_survivor() -> None:
        await asyncio.sleep(0.05)
        survivor_finished.set()

    with pytest.raises(ListenerError):
        await first_to_finish({":80": fail_after(0, "boom"), ":443": slow_survivor()})

    await asyncio.wait_for(survivor_finished.wait(), timeout=1)


def test_bind_conflict_raises_listener_error() -> None:
    first = bind_socket("127.0.0.1", 0)
    try:
        first.listen()
        port = first.getsockname()[1]
        with pytest.raises(ListenerError, match=f"failed to listen on 127.0.0.1:{port}"):
            bind_socket("127.0.0.1", port)
    finally:
        first.close()


def test_make_server_applies_limits() -> None:
    limits = ServerLimits(read_timeout=7, write_timeout=9, max_header_bytes=4096)
    server = make_server(FastAPI(), limits)

    assert server.config.timeout_keep_alive == 7
    assert server.config.h11_max_incomplete_event_size == 4096
    assert server.config.http_protocol_class.func is ReadDeadlineProtocol
    assert server.config.http_protocol_class.keywords == {"read_timeout": 7}
    assert isinstance(server.config.app, RequestDeadlineMiddleware)
    assert server.config.app.timeout == 9
    assert server.config.ssl is None


def test_make_server_uses_given_ssl_context() -> None:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    server = make_server(FastAPI(), ServerLimits(), ssl_context=context)
    assert server.config.ssl is context


def make_slow_app() -> FastAPI:
    app = FastAPI()

    @app.get("/slow")
    async def slow() -> dict:
        await asyncio.sleep(1)
        return {"ok": True}

    @app.get("/fast")
    async def fast() -> dict:
        return {"ok": True}

    return app


def test_deadline_middleware_times_out() -> None:
    client = TestClient(RequestDeadlineMiddleware(make_slow_app(), timeout=0.05))

    response = client.get("/slow")

    assert response.status_code == 503
    assert response.text == "request timed out"


def test_deadline_middleware_passes_fast_requests() -> None:
    client = TestClient(RequestDeadlineMiddleware(make_slow_app(), timeout=1))

    response = client.get("/fast")

    assert response.status_code == 200
    assert response.json() == {"ok": True}
