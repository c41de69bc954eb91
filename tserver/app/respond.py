"""
Response and request-body helpers for handlers registered on a Router.

Handlers receive the `BaseHTTPRequestHandler` instance serving the request;
it is both the request (command, headers, rfile) and the response sink.
"""

from __future__ import annotations

import dataclasses
import json
from http import HTTPStatus
from typing import Any, Callable, TypeVar, Union
from urllib.parse import urlsplit

from ..adapters.logs import get_logger
from ..adapters.sniff import detect_content_type
from ..domain.errors import HTTPError, ResponseWriteError

logger = get_logger(__name__)

T = TypeVar("T")

RAW_TYPES = (bytes, bytearray, memoryview)
JSON_TYPES = (dict, list, str, int, float, bool)
JSON_NAMES = {dict: "object", list: "array", str: "string", int: "integer", float: "number", bool: "boolean"}

# longest chunk-size or trailer line accepted in a chunked body
MAX_LINE = 65536


def _default(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serializable")


def encode_json(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), allow_nan=False, default=_default).encode()


def respond(handler, value: Any, status: int = HTTPStatus.OK) -> None:
    """
    Writes `value` as the response.
    - HTTPError -> its own plain-text error reply
    - bytes     -> written unchanged
    - anything else -> compact JSON
    Content-Type is sniffed from the bytes written. An encoding failure becomes
    a 500 reply; a failed write raises ResponseWriteError.
    """
    if isinstance(value, HTTPError):
        value.respond(handler)
        return

    if isinstance(value, RAW_TYPES):
        body = bytes(value)
    else:
        try:
            body = encode_json(value)
        except (TypeError, ValueError) as e:
            logger.error("response encoding failed", extra={"path": handler.path, "error": str(e)})
            HTTPError(HTTPStatus.INTERNAL_SERVER_ERROR, f"failed to encode response - {e}").respond(handler)
            return

    try:
        handler.send_response(int(status))
        handler.send_header("Content-Type", detect_content_type(body))
        handler.send_header("Content-Length", str(len(body)))
        handler.end_headers()
        if handler.command != "HEAD":
            handler.wfile.write(body)
    except OSError as e:
        logger.warning("response write failed", extra={"path": handler.path, "error": str(e)})
        handler.close_connection = True
        raise ResponseWriteError(f"failed to write response - {e}") from e


def _read_chunked(rfile) -> bytes:
    chunks = []
    while True:
        line = rfile.readline(MAX_LINE + 1)
        if len(line) > MAX_LINE or not line.endswith(b"\n"):
            raise HTTPError(HTTPStatus.BAD_REQUEST, "invalid chunked body - bad chunk size line")
        size_field = line.split(b";", 1)[0].strip()
        try:
            size = int(size_field, 16)
        except ValueError:
            raise HTTPError(HTTPStatus.BAD_REQUEST, f"invalid chunked body - bad chunk size {size_field!r}") from None
        if size < 0:
            raise HTTPError(HTTPStatus.BAD_REQUEST, f"invalid chunked body - bad chunk size {size_field!r}")
        if size == 0:
            break
        data = rfile.read(size)
        if len(data) < size or rfile.readline(MAX_LINE + 1).strip():
            raise HTTPError(HTTPStatus.BAD_REQUEST, "invalid chunked body - truncated chunk")
        chunks.append(data)
    # trailer fields are read and dropped
    while True:
        line = rfile.readline(MAX_LINE + 1)
        if not line.strip():
            break
        if len(line) > MAX_LINE:
            raise HTTPError(HTTPStatus.BAD_REQUEST, "invalid chunked body - trailer line too long")
    return b"".join(chunks)


def read_body(handler) -> bytes:
    """
    Reads the request body once; later calls return b"".
    Chunked transfer coding takes precedence over Content-Length.
    """
    if getattr(handler, "_body_read", False):
        return b""
    encoding = handler.headers.get("Transfer-Encoding")
    if encoding:
        codings = [c.strip().lower() for c in encoding.split(",")]
        if codings != ["chunked"]:
            raise HTTPError(HTTPStatus.NOT_IMPLEMENTED, f"unsupported transfer encoding {encoding!r}")
        handler._body_read = True
        try:
            return _read_chunked(handler.rfile)
        except HTTPError:
            # the rest of the body is still on the socket
            handler.close_connection = True
            raise
    raw_length = handler.headers.get("Content-Length") or "0"
    try:
        length = int(raw_length)
    except ValueError:
        raise HTTPError(HTTPStatus.BAD_REQUEST, f"invalid Content-Length {raw_length!r}") from None
    if length < 0:
        raise HTTPError(HTTPStatus.BAD_REQUEST, f"invalid Content-Length {raw_length!r}")
    handler._body_read = True
    return handler.rfile.read(length) if length else b""


def _check_json_type(target: type, data: Any) -> Any:
    """The decoded value must already be of the built-in target type; it is never converted."""
    base = next(t for t in (bool, dict, list, str, int, float) if issubclass(target, t))
    if base is float:
        ok = isinstance(data, (int, float)) and not isinstance(data, bool)
    elif base is int:
        ok = isinstance(data, int) and not isinstance(data, bool)
    else:
        ok = isinstance(data, base)
    if not ok:
        raise TypeError(f"cannot decode {_json_name(data)} into {JSON_NAMES[base]}")
    return target(data)


def _json_name(data: Any) -> str:
    if data is None:
        return "null"
    return JSON_NAMES.get(type(data), type(data).__name__)


def _build(target: Union[Callable[..., T], type], data: Any) -> T:
    if isinstance(target, type) and issubclass(target, JSON_TYPES):
        return _check_json_type(target, data)
    if isinstance(data, dict) and (dataclasses.is_dataclass(target) or isinstance(target, type)):
        return target(**data)
    return target(data)


def get_request_body(handler, target: Any = dict) -> Any:
    """
    Decodes the JSON request body into `target` and returns the result.

    `target` is either a dict/list instance, updated in place, or a type or
    callable that builds the value (`Point` -> `Point(**body)`).
    Only POST is accepted. On failure the error reply is written here and the
    same HTTPError is raised so the caller can log or stop.
    """
    if handler.command != "POST":
        err = HTTPError(HTTPStatus.METHOD_NOT_ALLOWED, "method not allowed")
        handler.close_connection = True  # body left unread on the socket
        err.respond(handler)
        raise err

    try:
        raw = read_body(handler)
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise HTTPError(HTTPStatus.BAD_REQUEST, f"invalid request body - {e}") from e

        if isinstance(target, dict):
            if not isinstance(data, dict):
                raise HTTPError(HTTPStatus.BAD_REQUEST, f"invalid request body - cannot decode {_json_name(data)} into object")
            target.update(data)
            return target
        if isinstance(target, list):
            if not isinstance(data, list):
                raise HTTPError(HTTPStatus.BAD_REQUEST, f"invalid request body - cannot decode {_json_name(data)} into array")
            target[:] = data
            return target
        try:
            return _build(target, data)
        except (TypeError, ValueError) as e:
            raise HTTPError(HTTPStatus.BAD_REQUEST, f"invalid request body - {e}") from e
    except HTTPError as err:
        err.respond(handler)
        raise


def redirect(handler, location: str, status: int = HTTPStatus.MOVED_PERMANENTLY) -> None:
    """Redirects to `location`, keeping the query string of the current request."""
    query = urlsplit(handler.path).query
    if query and "?" not in location:
        location = f"{location}?{query}"
    handler.send_response(int(status))
    handler.send_header("Location", location)
    handler.send_header("Content-Length", "0")
    handler.end_headers()
