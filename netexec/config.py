from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

SCTP_DISABLED = -1


@dataclass
class Config:
    bind_host: str
    http_port: int
    udp_port: int
    sctp_port: int
    dial_timeout_sec: float
    shell_path: str
    upload_dir: str
    log_level: str

    @property
    def sctp_enabled(self) -> bool:
        return self.sctp_port != SCTP_DISABLED


def load_config(path: str = "config.yaml") -> Config:
    load_dotenv(override=True)
    y: Dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            y = yaml.safe_load(f) or {}

    ports = y.get("ports", {})

    config = Config(
        bind_host=os.getenv("BIND_HOST", y.get("bind_host", "")),
        http_port=int(os.getenv("HTTP_PORT", ports.get("http", 8080))),
        udp_port=int(os.getenv("UDP_PORT", ports.get("udp", 8081))),
        sctp_port=int(os.getenv("SCTP_PORT", ports.get("sctp", SCTP_DISABLED))),
        dial_timeout_sec=float(os.getenv("DIAL_TIMEOUT_SEC", y.get("dial_timeout_sec", 5))),
        shell_path=os.getenv("SHELL_PATH", y.get("shell_path", "/bin/sh")),
        upload_dir=os.getenv("UPLOAD_DIR", y.get("upload_dir", "/uploads")),
        log_level=os.getenv("LOG_LEVEL", y.get("log_level", "INFO")),
    )

    return config
