from __future__ import annotations

import logging
import os
import socket
import threading
from typing import List, Optional, Tuple

from ..types import SockAddr, format_sockaddr
from .dialers import IPPROTO_SCTP
from .host import get_host_name
from .readiness import SERVER_READY, ReadinessFlag

log = logging.getLogger(__name__)

UDP_BUFFER_SIZE = 2048
SCTP_BUFFER_SIZE = 1024
# how often a blocked receive wakes up to notice stop()
POLL_INTERVAL_SEC = 0.5


def handle_command(text: str, client_address: str, proto: str = "udp") -> Optional[str]:
    """Answer one command from a listener.

    ``text`` must already be case-folded and trimmed. Returns the payload to
    send back, or None when nothing should be sent.
    """
    if text == "hostname":
        log.info("Sending %s hostName response", proto)
        return get_host_name()
    if text == "echo" or text.startswith("echo "):
        parts = text.split(" ", 1)
        resp = parts[1] if len(parts) == 2 else ""
        log.info("Echoing %s", resp)
        return resp
    if text == "clientip":
        log.info("Sending back clientip to %s", client_address)
        return client_address
    if text:
        log.info("Unknown %s command received: %s", proto, text)
    return None


def _normalize(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").strip().lower()


def _sockaddr_str(sockaddr: SockAddr) -> str:
    return format_sockaddr(str(sockaddr[0]), int(sockaddr[1]))


class CommandListener:
    """Base loop shared by the UDP and SCTP listeners.

    Socket errors inside the loop are fatal to the whole process unless
    stop() was called first.
    """

    proto = ""
    display = ""

    def __init__(self, port: int, host: str = "", readiness: Optional[ReadinessFlag] = None):
        self.host = host
        self.port = port
        self.readiness = readiness
        self._sock: socket.socket | None = None
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> Tuple[str, int]:
        if self._sock is None:
            raise RuntimeError(f"{self.display} listener is not bound")
        name = self._sock.getsockname()
        return name[0], name[1]

    def _families(self) -> List[int]:
        if self.host:
            return [socket.AF_INET6 if ":" in self.host else socket.AF_INET]
        # no host: dual-stack IPv6 first, plain IPv4 where IPv6 is missing
        return [socket.AF_INET6, socket.AF_INET] if socket.has_ipv6 else [socket.AF_INET]

    def _bind_socket(self, socktype: int, proto: int = 0, reuse: bool = False) -> socket.socket:
        err: Optional[OSError] = None
        for family in self._families():
            try:
                sock = socket.socket(family, socktype, proto)
            except OSError as e:
                err = e
                continue
            host = self.host
            try:
                if reuse:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                if family == socket.AF_INET6 and not host:
                    sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
                    host = "::"
                sock.bind((host, self.port))
            except OSError as e:
                sock.close()
                err = e
                continue
            return sock
        assert err is not None
        raise err

    def _open_socket(self) -> socket.socket:
        raise NotImplementedError

    def _serve_once(self, sock: socket.socket) -> None:
        raise NotImplementedError

    def bind(self) -> None:
        sock = self._open_socket()
        sock.settimeout(POLL_INTERVAL_SEC)
        self._sock = sock

    def serve_forever(self) -> None:
        if self._sock is None:
            try:
                self.bind()
            except OSError as e:
                self._fatal(e)
                return
        sock = self._sock
        assert sock is not None

        log.info("Started %s server on %s", self.display, _sockaddr_str(sock.getsockname()))
        if self.readiness is not None:
            self.readiness.set(True)
        try:
            while not self._stopping.is_set():
                try:
                    self._serve_once(sock)
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._stopping.is_set():
                        break
                    self._fatal(e)
                    break
        finally:
            log.info("%s server exited", self.display)
            if self.readiness is not None:
                self.readiness.set(False)
            sock.close()

    def start(self) -> threading.Thread:
        th = threading.Thread(target=self.serve_forever, name=f"{self.proto}-listener", daemon=True)
        th.start()
        self._thread = th
        return th

    def stop(self, timeout: float = 5.0) -> None:
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _fatal(self, err: BaseException) -> None:
        log.critical("Error occurred. error: %s", err, exc_info=err)
        os._exit(1)


class UdpCommandListener(CommandListener):
    proto = "udp"
    display = "UDP"

    def __init__(self, port: int, host: str = "", readiness: Optional[ReadinessFlag] = SERVER_READY):
        super().__init__(port, host, readiness)

    def _open_socket(self) -> socket.socket:
        return self._bind_socket(socket.SOCK_DGRAM)

    def _serve_once(self, sock: socket.socket) -> None:
        data, client = sock.recvfrom(UDP_BUFFER_SIZE)
        resp = handle_command(_normalize(data), _sockaddr_str(client), self.proto)
        if resp is not None:
            sock.sendto(resp.encode("utf-8"), client)


class SctpCommandListener(CommandListener):
    """One request/response per accepted association, then the connection is closed."""

    proto = "sctp"
    display = "SCTP"

    def _open_socket(self) -> socket.socket:
        sock = self._bind_socket(socket.SOCK_STREAM, IPPROTO_SCTP, reuse=True)
        try:
            sock.listen(16)
        except OSError:
            sock.close()
            raise
        return sock

    def _serve_once(self, sock: socket.socket) -> None:
        conn, client = sock.accept()
        with conn:
            conn.settimeout(None)
            data = conn.recv(SCTP_BUFFER_SIZE)
            resp = handle_command(_normalize(data), _sockaddr_str(client), self.proto)
            if resp is not None:
                conn.sendall(resp.encode("utf-8"))
