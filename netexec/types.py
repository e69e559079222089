from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Tuple, Union

Protocol = Literal["http", "udp", "sctp"]

# (host, port) for IPv4, (host, port, flowinfo, scope_id) for IPv6
SockAddr = Tuple[Any, ...]


@dataclass(frozen=True)
class Address:
    host: str
    port: str
    # resolved socket address for the chosen protocol
    sockaddr: SockAddr
    family: int

    def __str__(self) -> str:
        return join_host_port(str(self.sockaddr[0]), int(self.sockaddr[1]))


@dataclass(frozen=True)
class Success:
    body: str


@dataclass(frozen=True)
class Failure:
    message: str


DialAttemptResult = Union[Success, Failure]


@dataclass
class DialOutcome:
    responses: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def add(self, result: DialAttemptResult) -> None:
        if isinstance(result, Success):
            self.responses.append(result.body)
        else:
            self.errors.append(result.message)

    def to_dict(self) -> Dict[str, List[str]]:
        """Only non-empty buckets are emitted."""
        out: Dict[str, List[str]] = {}
        if self.responses:
            out["responses"] = self.responses
        if self.errors:
            out["errors"] = self.errors
        return out


def join_host_port(host: str, port: int | str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def unmap_host(host: str) -> str:
    """``::ffff:10.0.0.1`` -> ``10.0.0.1``; other hosts are returned as is."""
    if host.lower().startswith("::ffff:") and "." in host:
        return host[len("::ffff:"):]
    return host


def format_sockaddr(host: str, port: int | str) -> str:
    # peers reaching a dual-stack socket over IPv4 show up IPv4-mapped
    return join_host_port(unmap_host(host), port)
