from __future__ import annotations

import logging
import socket
import time
from typing import Callable, Dict, NamedTuple

import httpx

from ..types import Address, DialAttemptResult, Failure, Success, join_host_port

log = logging.getLogger(__name__)

DIAL_TIMEOUT_SEC = 5.0
MAX_REDIRECTS = 10
UDP_RESPONSE_SIZE = 2048
SCTP_RESPONSE_SIZE = 1024
IPPROTO_SCTP = getattr(socket, "IPPROTO_SCTP", 132)

Resolver = Callable[[str, str], Address]
Dialer = Callable[[str, Address, float], DialAttemptResult]


def _resolve(host: str, port: str, socktype: int) -> Address:
    """Resolve host/port the way the chosen transport would.

    Raises OSError (socket.gaierror) or ValueError when the pair is unusable.
    """
    infos = socket.getaddrinfo(host or None, port or "0", 0, socktype)
    if not infos:
        raise OSError(f"no addresses for {join_host_port(host, port)}")
    family, _, _, _, sockaddr = infos[0]
    return Address(host=host, port=port, sockaddr=sockaddr, family=family)


def resolve_tcp_addr(host: str, port: str) -> Address:
    return _resolve(host, port, socket.SOCK_STREAM)


def resolve_udp_addr(host: str, port: str) -> Address:
    return _resolve(host, port, socket.SOCK_DGRAM)


def resolve_sctp_addr(host: str, port: str) -> Address:
    # SCTP uses the same name/port space as TCP
    return _resolve(host, port, socket.SOCK_STREAM)


def dial_http(request: str, addr: Address, timeout: float = DIAL_TIMEOUT_SEC) -> DialAttemptResult:
    """GET http://<addr>/<request>, following redirects, within one total deadline.

    The deadline covers every redirect hop and the body read.
    """
    url = f"http://{addr}/{request}"
    deadline = time.monotonic() + timeout

    def _remaining() -> float:
        return max(deadline - time.monotonic(), 0.001)

    def _clamp(req: httpx.Request) -> None:
        # each hop may only wait for what is left of the attempt
        req.extensions["timeout"] = httpx.Timeout(_remaining()).as_dict()

    def _expired(stage: str) -> Failure:
        return Failure(f'Get "{url}": context deadline exceeded (Client.Timeout exceeded while {stage})')

    # a fresh client per attempt; leaving the block drops its idle connections
    try:
        with httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            event_hooks={"request": [_clamp]},
        ) as client:
            with client.stream("GET", url) as resp:
                if time.monotonic() > deadline:
                    return _expired("awaiting headers")
                body = bytearray()
                for chunk in resp.iter_bytes():
                    body += chunk
                    if time.monotonic() > deadline:
                        return _expired("reading body")
                return Success(bytes(body).decode("utf-8", errors="replace"))
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        return Failure(f'Get "{url}": {str(e) or type(e).__name__}')


def _exchange(
    name: str,
    socktype: int,
    proto: int,
    request: str,
    addr: Address,
    bufsize: int,
    timeout: float,
) -> DialAttemptResult:
    try:
        sock = socket.socket(addr.family, socktype, proto)
    except OSError as e:
        return Failure(f"{name} dial failed. err:{e}")

    with sock:
        sock.settimeout(timeout)
        try:
            sock.connect(addr.sockaddr)
        except OSError as e:
            return Failure(f"{name} dial failed. err:{e}")

        try:
            sock.sendall(request.encode("utf-8"))
        except OSError as e:
            return Failure(f"{name} connection write failed. err:{e}")

        err: OSError | None = None
        data = b""
        try:
            data = sock.recv(bufsize)
        except OSError as e:
            err = e
        # an empty read counts as a failed attempt, not an empty answer
        if err is not None or not data:
            return Failure(f"reading from {name} connection failed. err:'{err or 'empty response'}'")
        return Success(data.decode("utf-8", errors="replace"))


def dial_udp(request: str, addr: Address, timeout: float = DIAL_TIMEOUT_SEC) -> DialAttemptResult:
    return _exchange("udp", socket.SOCK_DGRAM, 0, request, addr, UDP_RESPONSE_SIZE, timeout)


def dial_sctp(request: str, addr: Address, timeout: float = DIAL_TIMEOUT_SEC) -> DialAttemptResult:
    return _exchange("sctp", socket.SOCK_STREAM, IPPROTO_SCTP, request, addr, SCTP_RESPONSE_SIZE, timeout)


class Transport(NamedTuple):
    resolve: Resolver
    dial: Dialer


TRANSPORTS: Dict[str, Transport] = {
    "http": Transport(resolve_tcp_addr, dial_http),
    "udp": Transport(resolve_udp_addr, dial_udp),
    "sctp": Transport(resolve_sctp_addr, dial_sctp),
}

PROTOCOL_ALIASES: Dict[str, str] = {"": "http", "http": "http", "udp": "udp", "sctp": "sctp"}
