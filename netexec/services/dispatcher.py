from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from ..net.dialers import DIAL_TIMEOUT_SEC, PROTOCOL_ALIASES, TRANSPORTS, Transport
from ..types import Address, DialOutcome, Protocol

log = logging.getLogger(__name__)

_INT_RE = re.compile(r"[+-]?[0-9]+")


class DialParamError(ValueError):
    """Malformed /dial input; reported to the caller as 400."""


@dataclass
class DialRequest:
    host: str
    port: str
    request: str
    protocol: Protocol
    tries: int = 1


def parse_dial_params(params: Mapping[str, str]) -> DialRequest:
    host = params.get("host", "")
    port = params.get("port", "")
    request = params.get("request", "")
    protocol = params.get("protocol", "")
    try_param = params.get("tries", "")

    tries = 1
    if try_param:
        if not _INT_RE.fullmatch(try_param):
            raise DialParamError(f"tries parameter is invalid. parsing {try_param!r}: invalid syntax")
        tries = int(try_param)
    if not request:
        raise DialParamError("request parameter not specified.")

    proto = PROTOCOL_ALIASES.get(protocol.lower())
    if proto is None:
        raise DialParamError(f"unsupported protocol. {protocol}")

    return DialRequest(host=host, port=port, request=request, protocol=proto, tries=tries)


def resolve(req: DialRequest, transports: Optional[Dict[str, Transport]] = None) -> Address:
    transport = (transports or TRANSPORTS)[req.protocol]
    try:
        return transport.resolve(req.host, req.port)
    except (OSError, ValueError, UnicodeError, OverflowError) as e:
        raise DialParamError(f"host and/or port param are invalid. {e}") from e


def run_dial(
    req: DialRequest,
    addr: Address,
    timeout: float = DIAL_TIMEOUT_SEC,
    transports: Optional[Dict[str, Transport]] = None,
) -> DialOutcome:
    """Run the dialer ``req.tries`` times in order and bucket the outcomes."""
    transport = (transports or TRANSPORTS)[req.protocol]
    outcome = DialOutcome()
    for i in range(req.tries):
        result = transport.dial(req.request, addr, timeout)
        log.debug("dial %s %s try=%d -> %s", req.protocol, addr, i + 1, result)
        outcome.add(result)
    return outcome


def dial(
    params: Mapping[str, str],
    timeout: float = DIAL_TIMEOUT_SEC,
    transports: Optional[Dict[str, Transport]] = None,
) -> DialOutcome:
    req = parse_dial_params(params)
    addr = resolve(req, transports)
    return run_dial(req, addr, timeout, transports)
