from __future__ import annotations

import logging
import os
import sys

CONNECT_TIMEOUT = float(os.environ.get("CERTS_CONNECT_TIMEOUT", "3"))
MAX_WORKERS = int(os.environ.get("CERTS_MAX_WORKERS", "100"))
DEFAULT_PORT = int(os.environ.get("CERTS_DEFAULT_PORT", "443"))
LOG_LEVEL = os.environ.get("CERTS_LOG_LEVEL", "INFO").strip().upper() or "INFO"

# HTTP API limits
API_MAX_TARGETS = int(os.environ.get("CERTS_API_MAX_TARGETS", "200"))
API_MAX_TARGET_LEN = 255

LOG_FORMAT = "%(asctime)s %(message)s"
LOG_DATE_FORMAT = "%Y/%m/%d %H:%M:%S"


_handler = None


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Send log records to stderr, one line each, timestamp first."""
    global _handler
    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root.addHandler(_handler)
    root.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))
