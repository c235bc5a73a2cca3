from __future__ import annotations

import logging
import sys

import uvicorn

from .api import create_app
from .bridge import Bridge
from .config import BridgeConfig
from .exceptions import ConfigError
from .util.log import setup_logging

logger = logging.getLogger("wabridge")


def main() -> int:
    try:
        config = BridgeConfig.from_env()
    except ConfigError as e:
        print(f"wabridge: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level)
    bridge = Bridge(config)
    app = create_app(bridge)

    logger.info("wabridge listening on port %d", config.port)
    # uvicorn handles SIGINT/SIGTERM: it stops accepting connections, then
    # runs the app lifespan shutdown, which closes the session.
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
