from __future__ import annotations

import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from conftest import free_port, requires_sctp, wait_for
from netexec.net import dialers as mod
from netexec.net.listeners import SctpCommandListener, UdpCommandListener
from netexec.net.readiness import ReadinessFlag
from netexec.types import Address, Failure, Success


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, format, *args):
        pass

    def _send(self, status, body, headers=()):
        self.send_response(status)
        for key, value in headers:
            self.send_header(key, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        if self.path == "/moved":
            self._send(301, b"moved", [("Location", "/hostname")])
        elif self.path == "/hostname":
            self._send(200, b"pod-abc")
        elif self.path == "/slow":
            self.send_response(200)
            self.send_header("Content-Length", "6")
            self.end_headers()
            try:
                for ch in b"abcdef":
                    self.wfile.write(bytes([ch]))
                    self.wfile.flush()
                    time.sleep(0.6)
            except (BrokenPipeError, ConnectionResetError):
                pass
        else:
            self._send(404, b"404 page not found")


@pytest.fixture
def http_server():
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    th = threading.Thread(target=srv.serve_forever, daemon=True)
    th.start()
    try:
        yield srv.server_address
    finally:
        srv.shutdown()
        srv.server_close()


def _http_addr(server_address):
    host, port = server_address
    return mod.resolve_tcp_addr(host, str(port))


def _udp_listener():
    lst = UdpCommandListener(0, "127.0.0.1", readiness=ReadinessFlag())
    lst.bind()
    lst.start()
    return lst


def test_udp_dial_echo():
    lst = _udp_listener()
    try:
        host, port = lst.address
        addr = mod.resolve_udp_addr(host, str(port))
        assert mod.dial_udp("echo hello", addr, timeout=2.0) == Success("hello")
    finally:
        lst.stop()


def test_udp_empty_reply_is_a_failure():
    lst = _udp_listener()
    try:
        host, port = lst.address
        res = mod.dial_udp("echo", mod.resolve_udp_addr(host, str(port)), timeout=2.0)
        assert isinstance(res, Failure)
        assert res.message.startswith("reading from udp connection failed")
    finally:
        lst.stop()


def test_udp_silent_peer_times_out():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as silent:
        silent.bind(("127.0.0.1", 0))
        port = silent.getsockname()[1]
        res = mod.dial_udp("hostname", mod.resolve_udp_addr("127.0.0.1", str(port)), timeout=0.2)
    assert isinstance(res, Failure)
    assert "reading from udp connection failed" in res.message


def test_http_refused_connection_is_a_failure():
    port = free_port()
    res = mod.dial_http("hostname", mod.resolve_tcp_addr("127.0.0.1", str(port)), timeout=1.0)
    assert isinstance(res, Failure)
    assert res.message.startswith(f'Get "http://127.0.0.1:{port}/hostname"')


def test_http_200_body_is_the_response(http_server):
    res = mod.dial_http("hostname", _http_addr(http_server), timeout=2.0)
    assert res == Success("pod-abc")


def test_http_error_status_still_counts_as_response(http_server):
    res = mod.dial_http("missing", _http_addr(http_server), timeout=2.0)
    assert res == Success("404 page not found")


def test_http_follows_redirects(http_server):
    res = mod.dial_http("moved", _http_addr(http_server), timeout=2.0)
    assert res == Success("pod-abc")


def test_http_slow_body_is_cut_off_at_the_deadline(http_server):
    started = time.monotonic()
    res = mod.dial_http("slow", _http_addr(http_server), timeout=1.0)
    elapsed = time.monotonic() - started
    assert isinstance(res, Failure)
    assert "context deadline exceeded" in res.message
    assert elapsed < 2.0


def test_ipv6_address_is_bracketed():
    addr = Address(host="::1", port="80", sockaddr=("::1", 80, 0, 0), family=socket.AF_INET6)
    assert str(addr) == "[::1]:80"


def test_transport_table_covers_every_protocol():
    assert set(mod.TRANSPORTS) == {"http", "udp", "sctp"}
    assert set(mod.PROTOCOL_ALIASES.values()) == {"http", "udp", "sctp"}


@requires_sctp
def test_sctp_dial_echo():
    lst = SctpCommandListener(0, "127.0.0.1")
    try:
        lst.bind()
    except OSError:
        pytest.skip("cannot bind an SCTP socket here")
    lst.start()
    try:
        assert wait_for(lambda: lst._thread is not None and lst._thread.is_alive())
        host, port = lst.address
        addr = mod.resolve_sctp_addr(host, str(port))
        assert mod.dial_sctp("echo over sctp", addr, timeout=2.0) == Success("over sctp")
    finally:
        lst.stop()
