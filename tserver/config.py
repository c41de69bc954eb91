from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .domain.models import ServerConfig


def _seconds(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


@dataclass
class Config:
    """Settings for the bundled entry point, read from TSERVER_* variables."""

    env: Mapping[str, str] = field(default_factory=lambda: os.environ)
    addr: str = field(init=False)
    read_timeout: float = field(init=False)
    write_timeout: float = field(init=False)
    idle_timeout: float = field(init=False)
    static_dir: str = field(init=False)
    log_level: str = field(init=False)

    def __post_init__(self) -> None:
        env = self.env
        self.addr = env.get("TSERVER_ADDR", ":8080")
        self.read_timeout = _seconds(env, "TSERVER_READ_TIMEOUT", 15.0)
        self.write_timeout = _seconds(env, "TSERVER_WRITE_TIMEOUT", 15.0)
        self.idle_timeout = _seconds(env, "TSERVER_IDLE_TIMEOUT", 60.0)
        self.static_dir = env.get("TSERVER_STATIC_DIR", "static")
        self.log_level = env.get("TSERVER_LOG_LEVEL", "INFO").upper()

    def server_config(self, static_dir: Optional[str] = None) -> ServerConfig:
        cfg = ServerConfig(
            addr=self.addr,
            read_timeout=self.read_timeout,
            write_timeout=self.write_timeout,
            idle_timeout=self.idle_timeout,
            static_dir=static_dir or self.static_dir,
        )
        cfg.host_port()  # fail early on a malformed address
        return cfg
