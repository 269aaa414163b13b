"""
Logging setup for the service.

Modules log through ``logging.getLogger(__name__)``; this only wires the root
handler once at startup.
"""
from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger. Safe to call multiple times."""
    global _configured

    lvl = logging.getLevelName(str(level or "INFO").upper())
    if not isinstance(lvl, int):
        lvl = logging.INFO

    if not _configured:
        logging.basicConfig(
            level=lvl,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stdout)],
        )
        _configured = True

    logging.getLogger("tradesync").setLevel(lvl)


def mask(value: str | None, keep: int = 4) -> str:
    """Shorten an identifier for log lines (tokens, digests)."""
    s = value or ""
    if len(s) <= keep:
        return "*" * len(s)
    return s[:keep] + "..."
