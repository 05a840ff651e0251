from __future__ import annotations

import logging
from typing import Callable, Iterable

from mcp.server.fastmcp import FastMCP

SERVER_NAME = "human-mcp"

Registrar = Callable[[FastMCP], None]


def configure_logging(level: str = "info") -> None:
    """Configure root logging once; output goes to stderr so stdio stays clean."""
    name = "WARNING" if level.lower() == "warn" else level.upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_server(registrars: Iterable[Registrar] = ()) -> FastMCP:
    """Create the FastMCP server. Each registrar adds its tools, prompts or resources."""
    mcp = FastMCP(SERVER_NAME)
    for register in registrars:
        register(mcp)
    return mcp
