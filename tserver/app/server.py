from __future__ import annotations

"""
Server lifecycle on top of the standard library (`http.server.ThreadingHTTPServer`).

CREATED -> RUNNING on start(), RUNNING -> SHUTTING_DOWN when the shutdown signal
fires, SHUTTING_DOWN -> STOPPED once the listener is closed, whether or not the
in-flight requests finished within the grace period.
"""

import socket
import threading
import time
from http.server import ThreadingHTTPServer
from typing import Any, Callable, Optional, Set, Tuple

from ..adapters.logs import get_logger
from ..domain.brokers import BrokerRegistry
from ..domain.errors import ServerStartError, ShutdownTimeoutError
from ..domain.models import ServerConfig, ServerState
from ..ports.signals import InterruptSignal, ShutdownSignal
from .handlers import build_handler
from .router import Router

logger = get_logger(__name__)

SHUTDOWN_GRACE_PERIOD = 20.0


class Listener(ThreadingHTTPServer):
    """ThreadingHTTPServer that knows which connections are in flight so shutdown can drain them."""

    # allow quick restarts without TIME_WAIT issues
    allow_reuse_address = True
    daemon_threads = True
    block_on_close = False

    def __init__(self, server_address, handler_cls):
        self._conn_lock = threading.Condition()
        self._connections: Set[socket.socket] = set()
        self._idle: Set[socket.socket] = set()
        self.draining = False
        super().__init__(server_address, handler_cls)

    def process_request(self, request, client_address):
        # idle until its first request line is parsed
        with self._conn_lock:
            self._connections.add(request)
            self._idle.add(request)
        try:
            super().process_request(request, client_address)
        except Exception:
            self._forget(request)
            raise

    def process_request_thread(self, request, client_address):
        try:
            super().process_request_thread(request, client_address)
        finally:
            self._forget(request)

    def _forget(self, request) -> None:
        with self._conn_lock:
            self._connections.discard(request)
            self._idle.discard(request)
            self._conn_lock.notify_all()

    def connection_idle(self, conn) -> bool:
        """Called between keep-alive requests; False means stop serving this connection."""
        with self._conn_lock:
            if self.draining:
                return False
            self._idle.add(conn)
            return True

    def connection_busy(self, conn) -> None:
        with self._conn_lock:
            self._idle.discard(conn)

    def drain(self) -> None:
        """Stop keep-alive: idle connections are closed, busy ones finish their request."""
        with self._conn_lock:
            self.draining = True
            idle = list(self._idle)
        for conn in idle:
            _shutdown_socket(conn, socket.SHUT_RD)

    def wait_idle(self, timeout: float) -> int:
        """Blocks until no connection is open or `timeout` elapses; returns how many are left."""
        deadline = time.monotonic() + timeout
        with self._conn_lock:
            while self._connections:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._conn_lock.wait(remaining)
            return len(self._connections)

    @property
    def open_connections(self) -> int:
        with self._conn_lock:
            return len(self._connections)

    def abort(self) -> None:
        with self._conn_lock:
            conns = list(self._connections)
        for conn in conns:
            _shutdown_socket(conn, socket.SHUT_RDWR)


class Listener6(Listener):
    address_family = socket.AF_INET6


def _shutdown_socket(conn, how) -> None:
    try:
        conn.shutdown(how)
    except OSError:
        pass  # already closed by the peer


class ServerControl:
    """
    Owns the listener, the router and the broker registry of one HTTP endpoint.

    Registration callbacks passed to start() receive the controller and attach
    their handlers to `router`; they may also use `config` and the brokers.
    """

    def __init__(
        self,
        config: ServerConfig,
        registry: Optional[BrokerRegistry] = None,
        signal_factory: Callable[[], ShutdownSignal] = InterruptSignal,
        grace_period: float = SHUTDOWN_GRACE_PERIOD,
    ):
        self._config = config
        self._router = Router()
        self._brokers = registry if registry is not None else BrokerRegistry()
        self._signal_factory = signal_factory
        self._grace_period = grace_period
        self._handler_cls = build_handler(self._router, config)
        self._listener: Optional[Listener] = None
        self._thread: Optional[threading.Thread] = None
        self._serve_error: Optional[BaseException] = None
        self._state = ServerState.CREATED
        self._state_lock = threading.Lock()
        self._running = threading.Event()
        self._stopped = threading.Event()

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def router(self) -> Router:
        return self._router

    @property
    def brokers(self) -> BrokerRegistry:
        return self._brokers

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def address(self) -> Tuple[str, int]:
        if self._listener is None:
            raise RuntimeError("server is not listening")
        return tuple(self._listener.server_address[:2])

    def add_broker(self, key: Any, value: Any) -> None:
        self._brokers.add(key, value)

    def get_broker(self, key: Any) -> Any:
        return self._brokers.get(key)

    def wait_until_running(self, timeout: Optional[float] = None) -> bool:
        return self._running.wait(timeout)

    def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)

    def start(self, *registrations: Callable[["ServerControl"], None]) -> None:
        """
        Runs the server until the shutdown signal fires, then drains it.

        Blocks the calling thread. A listener that cannot bind, or whose accept
        loop dies, raises ServerStartError.
        """
        with self._state_lock:
            if self._state is not ServerState.CREATED:
                raise RuntimeError(f"server cannot start from state {self._state.value}")
            self._state = ServerState.RUNNING

        shutdown_signal = self._signal_factory()
        try:
            for register in registrations:
                register(self)
            self._listen()
            while not shutdown_signal.wait(0.25):
                if not self._thread.is_alive():
                    break
        finally:
            shutdown_signal.close()
            self.shutdown()

        if self._serve_error is not None:
            raise ServerStartError(f"accept loop failed: {self._serve_error}") from self._serve_error

    def _listen(self) -> None:
        host, port = self._config.host_port()
        listener_cls = Listener6 if ":" in host else Listener
        try:
            self._listener = listener_cls((host, port), self._handler_cls)
        except OSError as e:
            logger.error("listen failed", extra={"addr": self._config.addr, "error": str(e)})
            raise ServerStartError(f"cannot listen on {self._config.addr}: {e}") from e

        self._thread = threading.Thread(target=self._serve, name="tserver-accept", daemon=True)
        self._thread.start()
        bound_host, bound_port = self.address
        logger.info("listening", extra={"host": bound_host or "0.0.0.0", "port": bound_port})
        self._running.set()

    def _serve(self) -> None:
        try:
            self._listener.serve_forever(poll_interval=0.25)
        except Exception as e:  # noqa: BLE001 - reported by start()
            self._serve_error = e
            logger.exception("accept loop failed")

    def shutdown(self, grace_period: Optional[float] = None) -> None:
        """Stops accepting, waits up to the grace period for open requests, closes the listener."""
        with self._state_lock:
            if self._state in (ServerState.SHUTTING_DOWN, ServerState.STOPPED):
                return
            if self._state is ServerState.CREATED:
                self._state = ServerState.STOPPED
                self._stopped.set()
                return
            self._state = ServerState.SHUTTING_DOWN

        grace = self._grace_period if grace_period is None else grace_period
        listener = self._listener
        try:
            if listener is not None:
                logger.info(
                    "shutting down",
                    extra={"grace_period": grace, "connections": listener.open_connections},
                )
                if self._thread is not None and self._thread.is_alive():
                    # shutdown() waits for serve_forever to notice, so only while it runs
                    listener.shutdown()
                listener.drain()
                pending = listener.wait_idle(grace)
                if pending:
                    err = ShutdownTimeoutError(pending, grace)
                    logger.warning("server shutdown incomplete: %s", err)
                    listener.abort()
                listener.server_close()
                if self._thread is not None:
                    self._thread.join(timeout=grace)
        finally:
            with self._state_lock:
                self._state = ServerState.STOPPED
            self._running.clear()
            self._stopped.set()
            logger.info("server exiting")
