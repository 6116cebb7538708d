import ipaddress
import socket
import ssl
import threading
from datetime import datetime, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519
from cryptography.x509.oid import AuthorityInformationAccessOID, NameOID

from errors import ConnectError
from scanner import TLSSession

NOT_BEFORE = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
NOT_AFTER = datetime(2034, 11, 12, 13, 14, 15, tzinfo=timezone.utc)


def full_name(cn):
    return x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
        x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, "Illinois"),
        x509.NameAttribute(NameOID.LOCALITY_NAME, "Springfield"),
        x509.NameAttribute(NameOID.STREET_ADDRESS, "1 Main St"),
        x509.NameAttribute(NameOID.POSTAL_CODE, "62701"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Org"),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "Web"),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "Ops"),
        x509.NameAttribute(NameOID.COMMON_NAME, cn),
    ])


def build_cert(
    cn="example.test",
    serial=0x1234,
    key=None,
    ca=False,
    extensions=True,
    algorithm=None,
    rsa_padding=None,
    not_before=NOT_BEFORE,
    not_after=NOT_AFTER,
):
    key = key or ec.generate_private_key(ec.SECP256R1())
    name = full_name(cn)
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(serial)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )

    if extensions and not ca:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([
                x509.DNSName(cn),
                x509.DNSName("www." + cn),
                x509.RFC822Name("admin@" + cn),
                x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
                x509.IPAddress(ipaddress.ip_address("::1")),
                x509.UniformResourceIdentifier("https://%s/" % cn),
            ]),
            critical=False,
        )
        builder = builder.add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        builder = builder.add_extension(
            x509.AuthorityInformationAccess([
                x509.AccessDescription(
                    AuthorityInformationAccessOID.OCSP,
                    x509.UniformResourceIdentifier("http://ocsp.example.test"),
                ),
                x509.AccessDescription(
                    AuthorityInformationAccessOID.CA_ISSUERS,
                    x509.UniformResourceIdentifier("http://ca.example.test/ca.crt"),
                ),
            ]),
            critical=False,
        )
        builder = builder.add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)

    if extensions and ca:
        builder = builder.add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        builder = builder.add_extension(
            x509.KeyUsage(
                digital_signature=False,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=True,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=True,
                decipher_only=False,
            ),
            critical=True,
        )
        builder = builder.add_extension(
            x509.NameConstraints(
                permitted_subtrees=[x509.DNSName("example.test"), x509.DNSName("example.org")],
                excluded_subtrees=[x509.DNSName("bad.example.test")],
            ),
            critical=True,
        )

    if algorithm is None and not _is_edwards(key):
        algorithm = hashes.SHA256()
    if rsa_padding is not None:
        return builder.sign(key, algorithm, rsa_padding=rsa_padding), key
    return builder.sign(key, algorithm), key


def _is_edwards(key):
    return isinstance(key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey))


@pytest.fixture
def leaf_cert():
    cert, _ = build_cert()
    return cert


@pytest.fixture
def ca_cert():
    cert, _ = build_cert(cn="Example Root CA", serial=0x01, ca=True)
    return cert


@pytest.fixture
def make_session():
    def _make(server_name="example.test", peer=None, verified=None, version=0x0304):
        return TLSSession(
            version=version,
            server_name=server_name,
            peer_certificates=list(peer or []),
            verified_chains=list(verified or []),
        )
    return _make


class FakeConnector(object):
    """
    Stands in for scanner.connect_session. Hosts listed in `up` answer with a
    session whose server_name is the host dialed; everything else raises.
    """

    def __init__(self, up=(), cert=None):
        self.up = set(up)
        self.cert = cert
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, host, port, timeout):
        with self._lock:
            self.calls.append((host, port, timeout))
        if host in self.up:
            return TLSSession(
                version=0x0303,
                server_name=host,
                peer_certificates=[self.cert] if self.cert is not None else [],
                verified_chains=[],
            )
        raise ConnectError("dial %s:%d: no such host" % (host, port), host=host, port=port, reason="dns")


@pytest.fixture
def fake_connector(leaf_cert):
    def _make(up=()):
        return FakeConnector(up=up, cert=leaf_cert)
    return _make


@pytest.fixture
def tls_server(tmp_path):
    """A local TLS server presenting a freshly built certificate; yields (port, cert)."""
    cert, key = build_cert(cn="localhost", serial=0xBEEF)
    cert_path = tmp_path / "server.crt"
    key_path = tmp_path / "server.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ))

    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(str(cert_path), str(key_path))

    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    listener.bind(("127.0.0.1", 0))
    listener.listen(16)
    listener.settimeout(0.2)
    port = listener.getsockname()[1]
    stop = threading.Event()

    def serve():
        while not stop.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            conn.settimeout(2)
            try:
                with ctx.wrap_socket(conn, server_side=True) as tls:
                    try:
                        tls.recv(1)
                    except (OSError, ssl.SSLError):
                        pass
            except (OSError, ssl.SSLError):
                conn.close()

    t = threading.Thread(target=serve, daemon=True)
    t.start()
    try:
        yield port, cert
    finally:
        stop.set()
        t.join(timeout=2)
        listener.close()


@pytest.fixture
def plain_tcp_server():
    """Accepts connections and answers with plaintext, so any TLS handshake fails."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(4)
    listener.settimeout(0.2)
    port = listener.getsockname()[1]
    stop = threading.Event()

    def serve():
        while not stop.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            with conn:
                try:
                    conn.sendall(b"HTTP/1.0 400 Bad Request\r\n\r\n")
                except OSError:
                    pass

    t = threading.Thread(target=serve, daemon=True)
    t.start()
    try:
        yield port
    finally:
        stop.set()
        t.join(timeout=2)
        listener.close()


@pytest.fixture
def closed_port():
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port
