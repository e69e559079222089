from __future__ import annotations

import argparse
import logging
from typing import List, Optional

import uvicorn

from .config import Config, load_config
from .logging_setup import resolve_level, setup_logging
from .net.host import ipv6_available
from .net.listeners import SctpCommandListener, UdpCommandListener
from .net.readiness import SERVER_READY
from .services import server


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="netexec",
        description="HTTP, UDP and (optionally) SCTP servers answering hostname/echo/clientip, plus /dial.",
    )
    p.add_argument("--config", default="config.yaml")
    p.add_argument("--http-port", type=int, default=None, help="HTTP Listen Port")
    p.add_argument("--udp-port", type=int, default=None, help="UDP Listen Port")
    p.add_argument("--sctp-port", type=int, default=None, help="SCTP Listen Port (-1 disables)")
    p.add_argument("--log-level", default=None)
    return p


def apply_args(cfg: Config, args: argparse.Namespace) -> Config:
    if args.http_port is not None:
        cfg.http_port = args.http_port
    if args.udp_port is not None:
        cfg.udp_port = args.udp_port
    if args.sctp_port is not None:
        cfg.sctp_port = args.sctp_port
    if args.log_level:
        cfg.log_level = args.log_level
    return cfg


def start_listeners(cfg: Config) -> list:
    """Start the command listeners in daemon threads.

    Only the UDP listener drives readiness; SCTP runs only when a port is given.
    """
    listeners: list = [UdpCommandListener(cfg.udp_port, cfg.bind_host, readiness=SERVER_READY)]
    if cfg.sctp_enabled:
        listeners.append(SctpCommandListener(cfg.sctp_port, cfg.bind_host, readiness=None))
    for listener in listeners:
        listener.start()
    return listeners


def http_bind_host(bind_host: str) -> str:
    """Empty means every interface, IPv6 included when the host has it."""
    if bind_host:
        return bind_host
    return "::" if ipv6_available() else "0.0.0.0"


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = apply_args(load_config(args.config), args)
    setup_logging(cfg.log_level)
    log = logging.getLogger(__name__)
    log.info("netexec starting http=%d udp=%d sctp=%d", cfg.http_port, cfg.udp_port, cfg.sctp_port)

    server.configure(cfg)
    start_listeners(cfg)
    uvicorn.run(
        server.app,
        host=http_bind_host(cfg.bind_host),
        port=cfg.http_port,
        log_level=resolve_level(cfg.log_level),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
