from __future__ import annotations

from http import HTTPStatus
from typing import Any


class HTTPError(Exception):
    """An HTTP status line plus message that a handler can answer with."""

    def __init__(self, code: int, msg: str = ""):
        self.code = int(code)
        if not msg:
            try:
                msg = HTTPStatus(self.code).phrase
            except ValueError:
                msg = f"status {self.code}"
        self.msg = msg
        super().__init__(f"{self.code} {self.msg}")

    def respond(self, handler) -> None:
        body = (self.msg + "\n").encode()
        handler.send_response(self.code)
        handler.send_header("Content-Type", "text/plain; charset=utf-8")
        handler.send_header("X-Content-Type-Options", "nosniff")
        handler.send_header("Content-Length", str(len(body)))
        handler.end_headers()
        if handler.command != "HEAD":
            handler.wfile.write(body)


class BrokerError(KeyError):
    def __init__(self, key: Any, msg: str):
        self.key = key
        self.msg = msg
        super().__init__(key)

    def __str__(self) -> str:
        return self.msg


class DuplicateBrokerError(BrokerError):
    def __init__(self, key: Any):
        super().__init__(key, f"a broker with key {key!r} already exists, use a different key")


class BrokerNotFoundError(BrokerError):
    def __init__(self, key: Any):
        super().__init__(key, f"broker with key {key!r} not found")


class ServerStartError(RuntimeError):
    """The listener could not be bound or its accept loop died."""


class ShutdownTimeoutError(TimeoutError):
    def __init__(self, pending: int, grace_period: float):
        self.pending = pending
        self.grace_period = grace_period
        super().__init__(
            f"{pending} request(s) still in flight after {grace_period:g}s grace period"
        )


class ResponseWriteError(OSError):
    """Writing a response body to the client failed."""
