import http.client
import io
import json
import threading
from email.message import Message

import pytest

from tserver import ManualSignal, ServerConfig, ServerControl


class FakeHandler:
    """Stands in for the request handler: records the status, headers and body written."""

    def __init__(self, method="POST", body=b"", path="/", headers=None):
        self.command = method
        self.path = path
        self.headers = Message()
        if body:
            self.headers["Content-Length"] = str(len(body))
        for k, v in (headers or {}).items():
            del self.headers[k]
            self.headers[k] = v
        self.rfile = io.BytesIO(body)
        self.wfile = io.BytesIO()
        self.status = None
        self.sent_headers = {}
        self.close_connection = False

    def send_response(self, code, message=None):
        self.status = int(code)

    def send_header(self, key, value):
        self.sent_headers[key] = value

    def end_headers(self):
        pass

    @property
    def body(self) -> bytes:
        return self.wfile.getvalue()


class BrokenPipeHandler(FakeHandler):
    def end_headers(self):
        raise BrokenPipeError("client went away")


@pytest.fixture
def fake_handler():
    return FakeHandler


@pytest.fixture
def static_dir(tmp_path):
    root = tmp_path / "static"
    root.mkdir()
    (root / "index.html").write_text("<!DOCTYPE html><html><body>app</body></html>")
    (root / "hello.txt").write_text("hello world\n")
    (root / "blob").write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 16)
    (root / ".secret").write_text("do not serve")
    (root / ".hidden").mkdir()
    (root / ".hidden" / "inside.txt").write_text("nope")
    (root / "sub").mkdir()
    (root / "sub" / "data.json").write_text('{"a":1}')
    (root / "sub" / ".env").write_text("TOKEN=x")
    return root


class RunningServer:
    def __init__(self, server, signal, thread, errors):
        self.server = server
        self.signal = signal
        self.thread = thread
        self.errors = errors

    @property
    def port(self) -> int:
        return self.server.address[1]

    def request(self, method, path, body=None, headers=None, timeout=5):
        conn = http.client.HTTPConnection("127.0.0.1", self.port, timeout=timeout)
        try:
            conn.request(method, path, body=body, headers=headers or {})
            resp = conn.getresponse()
            return resp.status, resp.headers, resp.read()
        finally:
            conn.close()

    def get_json(self, path):
        status, _, body = self.request("GET", path)
        return status, json.loads(body)

    def stop(self, timeout=30):
        self.signal.trigger()
        self.thread.join(timeout)
        return not self.thread.is_alive()


@pytest.fixture
def run_server(static_dir):
    running = []

    def _run(*registrations, grace_period=20.0, **overrides):
        options = {"addr": "127.0.0.1:0", "static_dir": str(static_dir)}
        options.update(overrides)
        signal = ManualSignal()
        server = ServerControl(ServerConfig(**options), signal_factory=lambda: signal, grace_period=grace_period)
        errors = []

        def target():
            try:
                server.start(*registrations)
            except Exception as e:  # surfaced to the test through .errors
                errors.append(e)

        thread = threading.Thread(target=target, daemon=True)
        thread.start()
        assert server.wait_until_running(5), errors
        rs = RunningServer(server, signal, thread, errors)
        running.append(rs)
        return rs

    yield _run
    for rs in running:
        rs.stop()


@pytest.fixture
def broken_handler():
    return BrokenPipeHandler
