import http.client
import logging
import os
import signal
import socket
import threading
import time

import pytest

from tserver import (
    HTTPError,
    ManualSignal,
    ServerConfig,
    ServerControl,
    ServerStartError,
    ServerState,
    get_request_body,
    respond,
)
from tserver.app import server as server_module


def echo_handlers(server):
    def echo(h):
        body = get_request_body(h, {})
        respond(h, {"echo": body})

    def boom(h):
        raise RuntimeError("handler bug")

    def teapot(h):
        raise HTTPError(418, "short and stout")

    server.router.handle("/echo", echo)
    server.router.handle("/boom", boom)
    server.router.handle("/teapot", teapot)


def test_new_server_does_not_listen():
    server = ServerControl(ServerConfig(addr="127.0.0.1:0"), signal_factory=ManualSignal)
    assert server.state is ServerState.CREATED
    with pytest.raises(RuntimeError):
        server.address


def test_state_transitions(run_server):
    srv = run_server()
    assert srv.server.state is ServerState.RUNNING
    assert srv.stop()
    assert srv.server.state is ServerState.STOPPED
    assert srv.errors == []


def test_registrations_run_in_order_with_controller(run_server):
    calls = []

    def first(server):
        calls.append(("first", server))
        server.add_broker("counter", [])

    def second(server):
        calls.append(("second", server))
        server.get_broker("counter").append("seen")

    srv = run_server(first, second)
    assert [name for name, _ in calls] == ["first", "second"]
    assert all(s is srv.server for _, s in calls)
    assert srv.server.get_broker("counter") == ["seen"]


def test_json_round_trip(run_server):
    srv = run_server(echo_handlers)
    status, headers, body = srv.request(
        "POST", "/echo", body=b'{"a":1}', headers={"Content-Type": "application/json"}
    )
    assert status == 200
    assert body == b'{"echo":{"a":1}}'
    assert headers["Content-Type"] == "text/plain; charset=utf-8"


def test_body_decoder_rejects_get(run_server):
    srv = run_server(echo_handlers)
    status, _, body = srv.request("GET", "/echo")
    assert status == 405
    assert body == b"method not allowed\n"


def test_body_decoder_rejects_malformed_json(run_server):
    srv = run_server(echo_handlers)
    status, _, body = srv.request("POST", "/echo", body=b"{nope")
    assert status == 400
    assert body.startswith(b"invalid request body - ")


def test_handler_exception_is_500_and_server_survives(run_server, caplog):
    srv = run_server(echo_handlers)
    with caplog.at_level(logging.ERROR, logger="tserver"):
        status, _, _ = srv.request("GET", "/boom")
    assert status == 500
    assert any(r.getMessage() == "handler failed" for r in caplog.records)
    status, _, _ = srv.request("POST", "/echo", body=b"{}")
    assert status == 200


def test_http_error_from_handler(run_server):
    srv = run_server(echo_handlers)
    status, _, body = srv.request("GET", "/teapot")
    assert status == 418
    assert body == b"short and stout\n"


def test_unmatched_path(run_server):
    srv = run_server(echo_handlers)
    status, _, body = srv.request("GET", "/missing")
    assert status == 404
    assert body == b"404 page not found\n"


def test_access_log(run_server, caplog):
    srv = run_server(echo_handlers)
    with caplog.at_level(logging.INFO, logger="tserver.access"):
        srv.request("GET", "/missing?q=1")
        # the record is written once the response has gone out
        deadline = time.monotonic() + 5
        records = []
        while not records and time.monotonic() < deadline:
            records = [r for r in caplog.records if r.name == "tserver.access"]
            time.sleep(0.01)
    assert records
    assert records[-1].status == 404
    assert records[-1].method == "GET"
    assert records[-1].path == "/missing?q=1"


def test_keep_alive_serves_several_requests(run_server):
    srv = run_server(echo_handlers)
    conn = http.client.HTTPConnection("127.0.0.1", srv.port, timeout=5)
    try:
        for i in range(3):
            conn.request("POST", "/echo", body=('{"i":%d}' % i).encode())
            resp = conn.getresponse()
            assert resp.status == 200
            assert resp.read() == b'{"echo":{"i":%d}}' % i
    finally:
        conn.close()


def test_start_twice_is_rejected(run_server):
    srv = run_server()
    with pytest.raises(RuntimeError):
        srv.server.start()


def test_bind_failure_is_fatal(run_server):
    taken = run_server()
    port = taken.port
    server = ServerControl(ServerConfig(addr=f"127.0.0.1:{port}"), signal_factory=ManualSignal)
    with pytest.raises(ServerStartError):
        server.start()
    assert server.state is ServerState.STOPPED


def test_registration_error_propagates():
    def broken(server):
        raise ValueError("bad registration")

    server = ServerControl(ServerConfig(addr="127.0.0.1:0"), signal_factory=ManualSignal)
    with pytest.raises(ValueError):
        server.start(broken)
    assert server.state is ServerState.STOPPED


def test_accept_loop_failure_is_fatal(monkeypatch):
    def crash(self, poll_interval=0.5):
        raise RuntimeError("accept loop died")

    monkeypatch.setattr(server_module.Listener, "serve_forever", crash)
    server = ServerControl(ServerConfig(addr="127.0.0.1:0"), signal_factory=ManualSignal)
    with pytest.raises(ServerStartError):
        server.start()
    assert server.state is ServerState.STOPPED


def test_in_flight_request_finishes_during_grace_period(run_server):
    entered = threading.Event()

    def slow_handlers(server):
        def slow(h):
            entered.set()
            time.sleep(0.5)
            respond(h, {"done": True})

        server.router.handle("/slow", slow)

    srv = run_server(slow_handlers)
    result = {}

    def client():
        result["response"] = srv.request("GET", "/slow", timeout=10)

    t = threading.Thread(target=client)
    t.start()
    assert entered.wait(5)
    srv.signal.trigger()
    t.join(10)
    status, _, body = result["response"]
    assert status == 200
    assert body == b'{"done":true}'
    srv.thread.join(10)
    assert srv.server.state is ServerState.STOPPED


def test_grace_period_elapses(run_server, caplog):
    entered = threading.Event()
    release = threading.Event()

    def stuck_handlers(server):
        def stuck(h):
            entered.set()
            release.wait(10)
            respond(h, {"late": True})

        server.router.handle("/stuck", stuck)

    srv = run_server(stuck_handlers, grace_period=0.3)
    errors = []

    def client():
        try:
            srv.request("GET", "/stuck", timeout=10)
        except (OSError, http.client.HTTPException) as e:
            errors.append(e)

    t = threading.Thread(target=client)
    t.start()
    try:
        assert entered.wait(5)
        with caplog.at_level(logging.WARNING, logger="tserver"):
            started = time.monotonic()
            assert srv.stop(timeout=10)
            assert time.monotonic() - started < 5
        assert srv.server.state is ServerState.STOPPED
        assert srv.errors == []
        assert any("still in flight" in r.getMessage() for r in caplog.records)
        t.join(5)
        assert errors
    finally:
        release.set()


def test_idle_keep_alive_connection_does_not_block_shutdown(run_server):
    srv = run_server(echo_handlers)
    conn = http.client.HTTPConnection("127.0.0.1", srv.port, timeout=5)
    try:
        conn.request("POST", "/echo", body=b"{}")
        assert conn.getresponse().read() == b'{"echo":{}}'
        started = time.monotonic()
        assert srv.stop(timeout=10)
        assert time.monotonic() - started < 5
    finally:
        conn.close()


def test_silent_connection_does_not_block_shutdown(run_server, caplog):
    srv = run_server(echo_handlers)
    listener = srv.server._listener
    sock = socket.create_connection(("127.0.0.1", srv.port), timeout=5)
    try:
        # accepted but no request line sent yet
        deadline = time.monotonic() + 5
        while listener.open_connections == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert listener.open_connections == 1
        with caplog.at_level(logging.WARNING, logger="tserver"):
            started = time.monotonic()
            assert srv.stop(timeout=30)
            assert time.monotonic() - started < 5
        assert not any("still in flight" in r.getMessage() for r in caplog.records)
        assert sock.recv(1) == b""
    finally:
        sock.close()


def test_chunked_request_body(run_server):
    srv = run_server(echo_handlers)
    status, _, body = srv.request("POST", "/echo", body=iter([b'{"a":', b"1}"]))
    assert status == 200
    assert body == b'{"echo":{"a":1}}'


def test_shutdown_from_another_thread(run_server):
    srv = run_server()
    srv.server.shutdown()
    assert srv.server.wait_until_stopped(10)
    srv.thread.join(10)
    assert not srv.thread.is_alive()
    assert srv.server.state is ServerState.STOPPED
    assert srv.errors == []


def test_shutdown_before_start_is_noop():
    server = ServerControl(ServerConfig(addr="127.0.0.1:0"), signal_factory=ManualSignal)
    server.shutdown()
    assert server.state is ServerState.STOPPED


@pytest.mark.skipif(not hasattr(signal, "SIGINT") or os.name == "nt", reason="needs POSIX signals")
def test_interrupt_signal_stops_server(static_dir):
    if threading.current_thread() is not threading.main_thread():
        pytest.skip("signal handlers need the main thread")
    previous = signal.getsignal(signal.SIGINT)
    server = ServerControl(ServerConfig(addr="127.0.0.1:0", static_dir=str(static_dir)))

    def interrupt():
        if server.wait_until_running(5):
            os.kill(os.getpid(), signal.SIGINT)

    killer = threading.Thread(target=interrupt)
    killer.start()
    server.start()
    killer.join(5)
    assert server.state is ServerState.STOPPED
    assert signal.getsignal(signal.SIGINT) is previous
