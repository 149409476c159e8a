"""Listener orchestration for the three TLS strategies.

Plaintext and static-certificate modes run a single uvicorn server on the
configured bind address. Automatic mode runs two: port 80 answers ACME
HTTP-01 challenges and redirects everything else to HTTPS, port 443 serves
the LNURL-pay app with certificates from the certificate manager.

The two automatic-mode listeners are a fan-in: whichever finishes first
decides the outcome and the other task is abandoned, not cancelled. Process
exit (`asyncio.run` tearing down the loop) is what reclaims it.
"""

from __future__ import annotations

import asyncio
import errno
import functools
import logging
import socket
import ssl
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

import h11
import uvicorn
from uvicorn.protocols.http.h11_impl import H11Protocol

from .api.acme_app import create_acme_app
from .domain.errors import ListenerError
from .env import TlsStrategy, WebserverSettings, parse_bind_address
from .infrastructure.tls.cache import DirCache
from .infrastructure.tls.manager import CertificateManager

logger = logging.getLogger(__name__)

ASGIApp = Callable[..., Awaitable[None]]

HTTP_PORT = 80
HTTPS_PORT = 443


@dataclass(frozen=True)
class ServerLimits:
    """Operational ceilings applied to every listener."""

    read_timeout: float = 10.0
    write_timeout: float = 10.0
    max_header_bytes: int = 1 << 20


class RequestDeadlineMiddleware:
    """Bounds the time from the start of a request to the end of its response."""

    def __init__(self, app: ASGIApp, timeout: float) -> None:
        self.app = app
        self.timeout = timeout

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: dict) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await asyncio.wait_for(
                self.app(scope, receive, send_wrapper), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "%s %s exceeded %.0fs deadline",
                scope.get("method"),
                scope.get("path"),
                self.timeout,
            )
            if response_started:
                raise
            await send(
                {
                    "type": "http.response.start",
                    "status": 503,
                    "headers": [(b"content-type", b"text/plain; charset=utf-8")],
                }
            )
            await send({"type": "http.response.body", "body": b"request timed out"})


class ReadDeadlineProtocol(H11Protocol):
    """h11 protocol that drops connections whose request is not read in time.

    The deadline starts when the connection is accepted, and again when the
    first bytes of each following request arrive. It is cleared once the
    request, body included, has been fully received. Idle keep-alive
    connections are bounded separately by `timeout_keep_alive`.
    """

    def __init__(self, *args: Any, read_timeout: float, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.read_timeout = read_timeout
        self.read_deadline: Optional[asyncio.TimerHandle] = None

    def connection_made(self, transport: asyncio.Transport) -> None:  # type: ignore[override]
        super().connection_made(transport)
        self._arm_read_deadline()

    def data_received(self, data: bytes) -> None:
        if self.read_deadline is None and self.conn.their_state is h11.IDLE:
            self._arm_read_deadline()
        super().data_received(data)
        if self.conn.their_state not in (h11.IDLE, h11.SEND_BODY):
            self._clear_read_deadline()

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._clear_read_deadline()
        super().connection_lost(exc)

    def _arm_read_deadline(self) -> None:
        self._clear_read_deadline()
        self.read_deadline = self.loop.call_later(
            self.read_timeout, self._read_deadline_expired
        )

    def _clear_read_deadline(self) -> None:
        if self.read_deadline is not None:
            self.read_deadline.cancel()
            self.read_deadline = None

    def _read_deadline_expired(self) -> None:
        self.read_deadline = None
        if not self.transport.is_closing():
            logger.debug(
                "Closing connection from %s: request not read within %.0fs",
                self.client,
                self.read_timeout,
            )
            self.transport.close()


def _bind(
    family: socket.AddressFamily,
    address: tuple,
    label: str,
    v6only: Optional[bool] = None,
) -> socket.socket:
    try:
        sock = socket.socket(family, socket.SOCK_STREAM)
    except OSError as e:
        raise ListenerError(f"failed to listen on {label}: {e}") from e
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if v6only is not None:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, int(v6only))
        sock.bind(address)
    except OSError as e:
        sock.close()
        raise ListenerError(f"failed to listen on {label}: {e}") from e
    sock.set_inheritable(True)
    return sock


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a TCP socket up front so bind failures surface as ListenerError."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    return _bind(family, (host, port), f"{host}:{port}")


def bind_all_interfaces(port: int) -> socket.socket:
    """Bind `port` on every IPv4 and IPv6 address.

    Uses one dual-stack IPv6 socket. Hosts without IPv6 get an IPv4 socket.
    """
    if socket.has_ipv6:
        try:
            return _bind(socket.AF_INET6, ("::", port), f":{port}", v6only=False)
        except ListenerError as e:
            cause = e.__cause__
            if not isinstance(cause, OSError) or cause.errno not in (
                errno.EAFNOSUPPORT,
                errno.EADDRNOTAVAIL,
            ):
                raise
            logger.warning("IPv6 unavailable, listening on IPv4 only for :%d", port)
    return bind_socket("", port)


def make_server(
    app: ASGIApp,
    limits: ServerLimits,
    ssl_context: Optional[ssl.SSLContext] = None,
    **config_kwargs: Any,
) -> uvicorn.Server:
    """Build a uvicorn server with the limits applied and an optional TLS context."""
    config = uvicorn.Config(
        RequestDeadlineMiddleware(app, limits.write_timeout),
        http=functools.partial(ReadDeadlineProtocol, read_timeout=limits.read_timeout),
        lifespan="off",
        log_level="info",
        timeout_keep_alive=max(1, int(limits.read_timeout)),
        h11_max_incomplete_event_size=limits.max_header_bytes,
        **config_kwargs,
    )
    config.load()
    if ssl_context is not None:
        config.ssl = ssl_context
    elif config.ssl is not None:
        config.ssl.minimum_version = ssl.TLSVersion.TLSv1_2
    return uvicorn.Server(config)


async def serve_listener(name: str, server: uvicorn.Server, sock: socket.socket) -> None:
    """Serve on `sock`, reporting any failure as ListenerError."""
    try:
        await server.serve(sockets=[sock])
    except ListenerError:
        raise
    except Exception as e:
        raise ListenerError(f"listener on {name} failed: {e}") from e


async def first_to_finish(listeners: Mapping[str, Awaitable[None]]) -> None:
    """Run listeners concurrently; the first one to finish decides the outcome.

    A listener that raises makes this raise ListenerError. A listener that
    returns (graceful shutdown) makes this return. Listeners still running
    are left alone.
    """
    tasks = {
        asyncio.ensure_future(awaitable): name for name, awaitable in listeners.items()
    }
    done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    task = next(iter(done))
    name = tasks[task]
    exc = task.exception()
    if exc is not None:
        if isinstance(exc, ListenerError):
            raise exc
        raise ListenerError(f"listener on {name} failed: {exc}") from exc
    logger.info("Listener on %s stopped", name)


async def serve_single(
    app: ASGIApp,
    webserver: WebserverSettings,
    limits: ServerLimits = ServerLimits(),
) -> None:
    """Serve `app` on the bind address, over TLS when a certificate is set."""
    host, port = parse_bind_address(webserver.bind_address)
    sock = bind_socket(host, port)
    if webserver.tls_strategy is TlsStrategy.STATIC:
        logger.info("Starting server on %s with TLS", webserver.bind_address)
        try:
            server = make_server(
                app,
                limits,
                ssl_certfile=webserver.tls_cert_file,
                ssl_keyfile=webserver.tls_key_file,
            )
        except (OSError, ssl.SSLError) as e:
            sock.close()
            raise ListenerError(f"failed to load TLS certificate: {e}") from e
    else:
        logger.info("Starting server on %s", webserver.bind_address)
        server = make_server(app, limits)
    await serve_listener(webserver.bind_address, server, sock)


def build_certificate_manager(webserver: WebserverSettings) -> CertificateManager:
    return CertificateManager(
        domains=webserver.autocert_domains,
        cache=DirCache(webserver.autocert_dir),
        directory_url=webserver.autocert_directory_url,
        email=webserver.autocert_email,
    )


async def _renew_once_serving(manager: CertificateManager, http_server: uvicorn.Server) -> None:
    # HTTP-01 validation needs the port 80 listener up before ordering.
    while not http_server.started:
        await asyncio.sleep(0.1)
    await manager.run_renewal_loop()


async def serve_autocert(
    app: ASGIApp,
    webserver: WebserverSettings,
    limits: ServerLimits = ServerLimits(),
    manager: Optional[CertificateManager] = None,
    http_port: int = HTTP_PORT,
    https_port: int = HTTPS_PORT,
) -> None:
    """Serve `app` on :443 with managed certificates and ACME/redirects on :80."""
    logger.info(
        "Starting server on ports %d and %d, using autocert domains %s.",
        https_port,
        http_port,
        webserver.autocert_domains,
    )
    manager = manager or build_certificate_manager(webserver)
    cached = manager.load_cached()
    if cached:
        logger.info("Loaded cached certificates for %s", ", ".join(cached))

    tls_sock = bind_all_interfaces(https_port)
    try:
        http_sock = bind_all_interfaces(http_port)
    except ListenerError:
        tls_sock.close()
        raise

    http_server = make_server(create_acme_app(manager), limits)
    tls_server = make_server(app, limits, ssl_context=manager.ssl_context())

    renewal = asyncio.ensure_future(_renew_once_serving(manager, http_server))
    try:
        await first_to_finish(
            {
                f":{http_port}": serve_listener(f":{http_port}", http_server, http_sock),
                f":{https_port}": serve_listener(f":{https_port}", tls_server, tls_sock),
            }
        )
    finally:
        renewal.cancel()


async def run_server(
    app: ASGIApp,
    webserver: WebserverSettings,
    limits: ServerLimits = ServerLimits(),
) -> None:
    """Run the listeners for the configured TLS strategy until one stops."""
    if webserver.tls_strategy is TlsStrategy.AUTOMATIC:
        await serve_autocert(app, webserver, limits)
    else:
        await serve_single(app, webserver, limits)
