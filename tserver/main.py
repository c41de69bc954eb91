from __future__ import annotations

import sys
from typing import List, Optional

from .adapters.logs import configure_logging, get_logger
from .app.respond import respond
from .app.server import ServerControl
from .app.static import default_handlers
from .config import Config
from .domain.errors import ServerStartError


def health_handlers(server: ServerControl) -> None:
    def health(handler) -> None:
        respond(handler, {"status": "ok", "state": server.state.value})

    server.router.handle("/healthz", health)


def main(argv: Optional[List[str]] = None) -> int:
    cfg = Config()
    configure_logging(cfg.log_level)
    logger = get_logger(__name__)
    static_dir = argv[0] if argv else None

    server = ServerControl(cfg.server_config(static_dir))
    try:
        server.start(default_handlers, health_handlers)
    except ServerStartError as e:
        logger.critical("server failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
