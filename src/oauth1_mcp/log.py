"""Console logging setup for the OAuth1 MCP server."""

import logging
import sys

logger = logging.getLogger("oauth1_mcp")


def configure_logging(level: int | str | None = None) -> None:
    """Attach a stderr handler to the package logger.

    stdout is reserved for the MCP stdio transport.
    """
    level = level or logging.INFO

    if not logger.handlers:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        logger.addHandler(console_handler)

    logger.setLevel(level)
