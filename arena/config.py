"""Runtime configuration for Chess Arena.

Values are module constants with environment overrides so the review
CLI, the MCP server and the match server share one source of truth.
"""

from __future__ import annotations

import logging
import os

# Search depths (plies) for the two engine consumers
REVIEW_DEPTH = int(os.environ.get("ARENA_REVIEW_DEPTH", "12"))
LIVE_DEPTH = int(os.environ.get("ARENA_LIVE_DEPTH", "10"))

# Explicit engine binary; None means auto-detect
STOCKFISH_PATH = os.environ.get("ARENA_STOCKFISH") or None

# Match server bind address
HOST = os.environ.get("ARENA_HOST", "127.0.0.1")
PORT = int(os.environ.get("ARENA_PORT", "3000"))

LOG_LEVEL = os.environ.get("ARENA_LOG_LEVEL", "INFO").upper()

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for a CLI or server entry point.

    Args:
        level: Level name overriding ARENA_LOG_LEVEL.
    """
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=_LOG_FORMAT,
    )
