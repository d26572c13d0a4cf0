"""Process-level logging setup, called once by each entry point."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler at *level* (idempotent across repeated calls)."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger().setLevel(level.upper())
    # Chatty third-party clients stay at WARNING unless explicitly raised.
    for name in ("httpx", "openai", "chromadb"):
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.getLogger().level))
