import logging

import anyio

from .config import load_config
from .mcp_server import configure_logging, create_server
from .transports.manager import TransportManager

logger = logging.getLogger("human-mcp-server")


def main() -> None:
    config = load_config()
    configure_logging(config.log_level)

    mcp = create_server()
    manager = TransportManager(mcp, config.transport, config.storage)

    try:
        anyio.run(manager.start)
    except KeyboardInterrupt:
        logger.info("Interrupted, shut down")


if __name__ == "__main__":
    main()
