from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


Seconds = Optional[float]  # 0 or None -> no timeout


class ServerState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ServerConfig:
    addr: str = ":8080"
    read_timeout: Seconds = None
    write_timeout: Seconds = None
    idle_timeout: Seconds = None
    static_dir: str = "static"

    def host_port(self) -> Tuple[str, int]:
        """
        Splits `addr` ("host:port") into its parts.
        - ":8080"          -> ("", 8080), all interfaces
        - "127.0.0.1:0"    -> ("127.0.0.1", 0), any free port
        - "[::1]:8080"     -> ("::1", 8080)
        """
        host, sep, port = self.addr.rpartition(":")
        if not sep or not port:
            raise ValueError(f"missing port in address {self.addr!r}")
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        try:
            return host, int(port)
        except ValueError:
            raise ValueError(f"invalid port in address {self.addr!r}") from None

    @staticmethod
    def timeout(value: Seconds) -> Optional[float]:
        """Maps a configured duration to a socket timeout."""
        if not value:
            return None
        return float(value)
