from __future__ import annotations

import socket
import time
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler
from urllib.parse import urlsplit

from ..adapters.logs import elapsed_ms, get_logger
from ..domain.errors import HTTPError, ResponseWriteError
from ..domain.models import ServerConfig
from .respond import redirect
from .router import Router
from .static import HiddenDotFiles

logger = get_logger(__name__)
access_logger = get_logger("access")


def build_handler(router: Router, config: ServerConfig):
    read_timeout = ServerConfig.timeout(config.read_timeout)
    write_timeout = ServerConfig.timeout(config.write_timeout)
    idle_timeout = ServerConfig.timeout(config.idle_timeout)

    class Handler(HiddenDotFiles, SimpleHTTPRequestHandler):
        server_version = "tserver/1.0"
        protocol_version = "HTTP/1.1"
        timeout = read_timeout

        def __init__(self, *args, **kwargs):
            super().__init__(*args, directory=config.static_dir, **kwargs)

        def handle(self):
            self.close_connection = True
            self.handle_one_request()
            while not self.close_connection:
                # waiting for the next keep-alive request
                if not self.server.connection_idle(self.connection):
                    break
                self.connection.settimeout(idle_timeout)
                self.handle_one_request()

        def handle_one_request(self):
            try:
                super().handle_one_request()
            except socket.timeout:
                self.close_connection = True

        def parse_request(self):
            self.server.connection_busy(self.connection)
            self.connection.settimeout(read_timeout)
            return super().parse_request()

        def send_response(self, code, message=None):
            self._resp_code = int(code)
            self.connection.settimeout(write_timeout)
            super().send_response(code, message)

        @property
        def route_path(self) -> str:
            return urlsplit(self.path).path or "/"

        def _not_found(self):
            HTTPError(HTTPStatus.NOT_FOUND, "404 page not found").respond(self)

        def _log(self, start: float, code: int):
            access_logger.info(
                "request",
                extra={
                    "method": self.command,
                    "path": self.path,
                    "status": int(code),
                    "ms": elapsed_ms(start),
                    "remote": self.client_address[0] if self.client_address else None,
                },
            )

        def _dispatch(self):
            start = time.monotonic()
            self._resp_code = None
            self._body_read = False
            try:
                path = self.route_path
                target = router.redirect_for(path)
                if target is not None:
                    redirect(self, target)
                    return
                handler = router.match(path)
                if handler is None:
                    self._not_found()
                    return
                handler(self)
            except HTTPError as e:
                if self._resp_code is None:
                    try:
                        e.respond(self)
                    except OSError:
                        self.close_connection = True
                else:
                    logger.info("handler returned error", extra={"path": self.path, "error": str(e)})
            except ResponseWriteError:
                self.close_connection = True
            except Exception:  # noqa: BLE001
                logger.exception("handler failed", extra={"method": self.command, "path": self.path})
                if self._resp_code is None:
                    try:
                        HTTPError(HTTPStatus.INTERNAL_SERVER_ERROR).respond(self)
                    except OSError:
                        self.close_connection = True
                else:
                    self.close_connection = True
            finally:
                if self._has_unread_body():
                    self.close_connection = True
                self._log(start, self._resp_code or HTTPStatus.INTERNAL_SERVER_ERROR)

        def _has_unread_body(self) -> bool:
            if self._body_read:
                return False
            length = self.headers.get("Content-Length")
            return bool(length and length.strip() not in ("", "0")) or "Transfer-Encoding" in self.headers

        do_GET = _dispatch  # noqa: N815
        do_HEAD = _dispatch  # noqa: N815
        do_POST = _dispatch  # noqa: N815
        do_PUT = _dispatch  # noqa: N815
        do_PATCH = _dispatch  # noqa: N815
        do_DELETE = _dispatch  # noqa: N815
        do_OPTIONS = _dispatch  # noqa: N815

        # Quiet default logging; every request goes through _log
        def log_message(self, format, *args):  # noqa: A003 - http.server API
            return

    return Handler
