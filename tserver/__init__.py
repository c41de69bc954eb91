"""Helpers over the standard library HTTP server: lifecycle, routing, static files and JSON."""

from .app.respond import encode_json, get_request_body, read_body, respond
from .app.router import Router
from .app.server import SHUTDOWN_GRACE_PERIOD, ServerControl
from .app.static import default_handlers
from .domain.brokers import BrokerRegistry
from .domain.errors import (
    BrokerError,
    BrokerNotFoundError,
    DuplicateBrokerError,
    HTTPError,
    ResponseWriteError,
    ServerStartError,
    ShutdownTimeoutError,
)
from .domain.models import ServerConfig, ServerState
from .ports.signals import InterruptSignal, ManualSignal

__all__ = [
    "BrokerError",
    "BrokerNotFoundError",
    "BrokerRegistry",
    "DuplicateBrokerError",
    "HTTPError",
    "InterruptSignal",
    "ManualSignal",
    "ResponseWriteError",
    "Router",
    "SHUTDOWN_GRACE_PERIOD",
    "ServerConfig",
    "ServerControl",
    "ServerStartError",
    "ServerState",
    "ShutdownTimeoutError",
    "default_handlers",
    "encode_json",
    "get_request_body",
    "read_body",
    "respond",
]

__version__ = "0.1.0"
