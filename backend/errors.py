from __future__ import annotations

from typing import Optional


class CertsError(Exception):
    """Base class for everything get-certs raises on purpose."""


class ConnectError(CertsError):
    """
    Connecting to host:port or completing the TLS handshake failed.

    str(err) is the underlying error text. `reason` is a coarse label
    (dns, timeout, refused, handshake, other) for log output only.
    """

    def __init__(self, message: str, host: str = "", port: int = 0, reason: str = "other"):
        super().__init__(message)
        self.host = host
        self.port = port
        self.reason = reason


class ParseError(CertsError):
    """A CSV field could not be parsed (recovered by the caller)."""

    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(message)
        self.line = line


class FatalReadError(CertsError):
    """Reading the host list failed for a reason other than end of input."""
