from __future__ import annotations

import logging
import os
import socket

log = logging.getLogger(__name__)


def get_host_name() -> str:
    try:
        return socket.gethostname()
    except OSError:
        log.critical("Error occurred. error: cannot read host name", exc_info=True)
        os._exit(1)


def ipv6_available() -> bool:
    """True when an IPv6 socket can be bound on this host."""
    if not socket.has_ipv6:
        return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as s:
            s.bind(("::1", 0))
    except OSError:
        return False
    return True
