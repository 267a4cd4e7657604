# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Entry point: python -m fraglens

Builds the Retriever from config and serves the MCP tools over stdio.
"""
import logging

from . import __version__
from .config import Config
from .health import HealthTracker
from .logging_setup import configure_logging
from .retriever import Retriever
from .server import create_mcp_server

logger = logging.getLogger(__name__)


def main():
    config = Config.load()
    configure_logging(config.log_level)

    health = HealthTracker()
    retriever = Retriever.from_config(config, health=health)
    logger.info(
        "Fraglens %s: %d active fragments in %s (%s)",
        __version__, retriever.store.count(),
        "memory" if config.in_memory else config.vectorstore_path,
        config.active_embedding_model,
    )

    mcp_server = create_mcp_server(retriever, health)
    logger.info("MCP server starting (stdio transport)...")
    try:
        mcp_server.run(transport="stdio")
    finally:
        retriever.close()


if __name__ == "__main__":
    main()
