# backend/scanner.py
from __future__ import annotations

import ipaddress
import socket
import ssl
from dataclasses import dataclass, field
from typing import Any, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from config import CONNECT_TIMEOUT
from errors import ConnectError

# ssl.SSLSocket.version() label -> TLS wire version code
PROTOCOL_VERSIONS = {
    "SSLv3": 0x0300,
    "TLSv1": 0x0301,
    "TLSv1.1": 0x0302,
    "TLSv1.2": 0x0303,
    "TLSv1.3": 0x0304,
}


@dataclass
class TLSSession:
    """What a completed handshake gave us. None entries are DER blobs that failed to parse."""

    version: int = 0
    server_name: str = ""
    peer_certificates: List[Optional[x509.Certificate]] = field(default_factory=list)
    verified_chains: List[List[Optional[x509.Certificate]]] = field(default_factory=list)


def _classify_connect_error(err: Exception) -> str:
    if isinstance(err, socket.gaierror):
        return "dns"
    if isinstance(err, (socket.timeout, TimeoutError)):
        return "timeout"
    if isinstance(err, ConnectionRefusedError):
        return "refused"
    if isinstance(err, (ssl.SSLError, ssl.CertificateError)):
        return "handshake"
    return "other"


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
        return True
    except ValueError:
        return False


def _make_context() -> ssl.SSLContext:
    # We want to see whatever the peer sends, trusted or not.
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _to_der(item: Any) -> Optional[bytes]:
    if isinstance(item, (bytes, bytearray)):
        return bytes(item)
    if isinstance(item, x509.Certificate):
        return item.public_bytes(serialization.Encoding.DER)
    return None


def _load_certificate(der: Optional[bytes]) -> Optional[x509.Certificate]:
    if not der:
        return None
    try:
        return x509.load_der_x509_certificate(der)
    except ValueError:
        return None


def _load_chain(items) -> List[Optional[x509.Certificate]]:
    return [_load_certificate(_to_der(item)) for item in (items or [])]


def _peer_chain(ssock: ssl.SSLSocket) -> List[Optional[x509.Certificate]]:
    """
    Full chain as sent by the peer when the interpreter exposes it,
    otherwise just the leaf from getpeercert().
    """
    fn = getattr(ssock, "get_unverified_chain", None)
    if callable(fn):
        chain = fn()
        if chain:
            return _load_chain(chain)

    leaf = ssock.getpeercert(binary_form=True)
    if leaf:
        return [_load_certificate(leaf)]
    return []


def _verified_chains(ssock: ssl.SSLSocket) -> List[List[Optional[x509.Certificate]]]:
    # OpenSSL reports the chain it built even when verification is off; that is not a verified path.
    if ssock.context.verify_mode == ssl.CERT_NONE:
        return []
    fn = getattr(ssock, "get_verified_chain", None)
    if not callable(fn):
        return []
    try:
        chain = fn()
    except (ssl.SSLError, ValueError):
        return []
    if not chain:
        return []
    return [_load_chain(chain)]


def connect_session(host: str, port: int = 443, timeout: float = CONNECT_TIMEOUT) -> TLSSession:
    """
    Open a TLS connection to host:port without verifying the peer, run the
    handshake and return what was negotiated. The socket is closed on return.

    Raises ConnectError for DNS, timeout, refused and handshake failures.
    """
    ctx = _make_context()
    server_name = "" if _is_ip_literal(host) else host

    try:
        with socket.create_connection((host, port), timeout=timeout) as sock:
            with ctx.wrap_socket(
                sock,
                server_hostname=server_name or None,
                do_handshake_on_connect=False,
            ) as ssock:
                ssock.do_handshake()
                return TLSSession(
                    version=PROTOCOL_VERSIONS.get(ssock.version() or "", 0),
                    server_name=server_name,
                    peer_certificates=_peer_chain(ssock),
                    verified_chains=_verified_chains(ssock),
                )
    except (OSError, ssl.CertificateError, ValueError) as e:
        # ssl.SSLError, socket.gaierror and socket.timeout are all OSError subclasses
        raise ConnectError(str(e) or e.__class__.__name__, host=host, port=port, reason=_classify_connect_error(e)) from e
