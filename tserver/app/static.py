from __future__ import annotations

import html
import mimetypes
import os
from http import HTTPStatus
from io import BytesIO
from urllib.parse import quote, unquote, urlsplit

from ..adapters.logs import get_logger
from ..adapters.sniff import SNIFF_LEN, detect_content_type
from ..domain.errors import HTTPError
from .respond import redirect, respond

logger = get_logger(__name__)

INDEX = "index.html"
APP_PREFIX = "/app/"


def is_hidden(url_path: str) -> bool:
    """True when any path segment starts with a dot ("/.git/config", "/a/.env", "/../x")."""
    return any(part.startswith(".") for part in unquote(url_path).split("/"))


class HiddenDotFiles:
    """
    File serving hooks for SimpleHTTPRequestHandler that treat dot-prefixed
    files and directories as missing, both when served and when listed.
    """

    def list_directory(self, path):
        try:
            names = [n for n in os.listdir(path) if not n.startswith(".")]
        except OSError:
            self.send_error(HTTPStatus.NOT_FOUND, "No permission to list directory")
            return None
        names.sort(key=lambda n: n.lower())
        lines = ["<!doctype html>", '<meta name="viewport" content="width=device-width">', "<pre>"]
        for name in names:
            display = name + "/" if os.path.isdir(os.path.join(path, name)) else name
            lines.append(f'<a href="{quote(display)}">{html.escape(display, quote=False)}</a>')
        lines.append("</pre>")
        body = ("\n".join(lines) + "\n").encode("utf-8", "surrogateescape")
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        return BytesIO(body)

    def send_error(self, code, message=None, explain=None):
        # same plain-text body as router and handler errors instead of the stdlib HTML page
        if code < 400:
            super().send_error(code, message, explain)
            return
        if code == HTTPStatus.NOT_FOUND:
            message = "404 page not found"
        else:
            # request parsing failures leave the connection in an unknown state
            self.close_connection = True
        HTTPError(code, message or "").respond(self)

    def guess_type(self, path):
        ctype, _ = mimetypes.guess_type(path)
        if ctype:
            return ctype
        # unknown extension: look at the first bytes instead
        try:
            with open(path, "rb") as f:
                return detect_content_type(f.read(SNIFF_LEN))
        except OSError:
            return "application/octet-stream"


def serve_files(handler) -> None:
    if handler.command not in ("GET", "HEAD"):
        raise HTTPError(HTTPStatus.METHOD_NOT_ALLOWED, "method not allowed")
    path = urlsplit(handler.path).path
    if is_hidden(path):
        raise HTTPError(HTTPStatus.NOT_FOUND, "404 page not found")
    if not path.endswith("/") and os.path.isdir(handler.translate_path(path)):
        redirect(handler, path + "/")
        return
    f = handler.send_head()
    if f is None:
        return
    try:
        if handler.command == "GET":
            handler.copyfile(f, handler.wfile)
    finally:
        f.close()


def app_index(static_dir: str):
    """Every path under /app/ gets the same index document, so the client-side app can route."""
    index_path = os.path.join(static_dir, INDEX)

    def serve_index(handler) -> None:
        try:
            with open(index_path, "rb") as f:
                body = f.read()
        except OSError as e:
            logger.warning("index document unavailable", extra={"path": index_path, "error": str(e)})
            raise HTTPError(HTTPStatus.NOT_FOUND, "404 page not found") from None
        respond(handler, body)

    return serve_index


def default_handlers(server) -> None:
    """Registration callback: static files at "/" and the app index under "/app/"."""
    static_dir = server.config.static_dir
    if not os.path.isdir(static_dir):
        logger.warning("static directory not found", extra={"static_dir": static_dir})
    server.router.handle("/", serve_files)
    server.router.handle(APP_PREFIX, app_index(static_dir))
