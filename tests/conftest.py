from __future__ import annotations

import socket
import time

import pytest

from netexec.net.dialers import IPPROTO_SCTP
from netexec.net.host import ipv6_available


def free_port(kind: int = socket.SOCK_STREAM) -> int:
    with socket.socket(socket.AF_INET, kind) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def sctp_available() -> bool:
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_STREAM, IPPROTO_SCTP)
    except OSError:
        return False
    s.close()
    return True


requires_sctp = pytest.mark.skipif(not sctp_available(), reason="kernel has no SCTP support")


requires_ipv6 = pytest.mark.skipif(not ipv6_available(), reason="no IPv6 loopback")
