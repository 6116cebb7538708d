# backend/normalize.py
from __future__ import annotations

from datetime import datetime
from ipaddress import IPv4Address, IPv6Address
from typing import Any, Iterable, List, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.x509.oid import AuthorityInformationAccessOID, NameOID

from models import CertificateRecord, DistinguishedName, SessionRecord

# Header byte of the serial encoding: format version 1 shifted left, low bit = sign.
SERIAL_ENCODING_VERSION = 0x02

# Dotted OID -> display name. RSASSA-PSS is resolved separately from the hash.
SIGNATURE_ALGORITHM_NAMES = {
    "1.2.840.113549.1.1.2": "MD2-RSA",
    "1.2.840.113549.1.1.4": "MD5-RSA",
    "1.2.840.113549.1.1.5": "SHA1-RSA",
    "1.3.14.3.2.29": "SHA1-RSA",
    "1.2.840.113549.1.1.11": "SHA256-RSA",
    "1.2.840.113549.1.1.12": "SHA384-RSA",
    "1.2.840.113549.1.1.13": "SHA512-RSA",
    "1.2.840.10040.4.3": "DSA-SHA1",
    "2.16.840.1.101.3.4.3.2": "DSA-SHA256",
    "1.2.840.10045.4.1": "ECDSA-SHA1",
    "1.2.840.10045.4.3.2": "ECDSA-SHA256",
    "1.2.840.10045.4.3.3": "ECDSA-SHA384",
    "1.2.840.10045.4.3.4": "ECDSA-SHA512",
    "1.3.101.112": "Ed25519",
}
RSASSA_PSS_OID = "1.2.840.113549.1.1.10"

PUBLIC_KEY_ALGORITHM_NAMES = {
    "1.2.840.113549.1.1.1": "RSA",
    "1.2.840.10040.4.1": "DSA",
    "1.2.840.10045.2.1": "ECDSA",
    "1.3.101.112": "Ed25519",
    "1.3.101.113": "Ed448",
}

# KeyUsage attribute -> bit, lowest bit first as in RFC 5280 order.
KEY_USAGE_BITS = [
    ("digital_signature", 1 << 0),
    ("content_commitment", 1 << 1),
    ("key_encipherment", 1 << 2),
    ("data_encipherment", 1 << 3),
    ("key_agreement", 1 << 4),
    ("key_cert_sign", 1 << 5),
    ("crl_sign", 1 << 6),
]
ENCIPHER_ONLY_BIT = 1 << 7
DECIPHER_ONLY_BIT = 1 << 8


# -------------------------
# Helpers
# -------------------------

def format_time(dt: datetime) -> str:
    # Components are used as-is; no timezone conversion.
    return "%04d-%02d-%02dT%02d:%02d:%02dZ" % (dt.year, dt.month, dt.day, dt.hour, dt.minute, dt.second)


def encode_serial(serial: int) -> bytes:
    """
    Stable byte encoding of an arbitrary-precision integer:
    one header byte (0x02, low bit set for negative numbers) followed by the
    big-endian magnitude without leading zero bytes. Zero is just b"\\x02".
    """
    sign = 1 if serial < 0 else 0
    mag = -serial if sign else serial
    body = mag.to_bytes((mag.bit_length() + 7) // 8, "big")
    return bytes([SERIAL_ENCODING_VERSION | sign]) + body


def decode_serial(data: bytes) -> int:
    """Inverse of encode_serial."""
    if not data:
        return 0
    if data[0] >> 1 != SERIAL_ENCODING_VERSION >> 1:
        raise ValueError(f"unsupported serial encoding version: {data[0] >> 1}")
    mag = int.from_bytes(data[1:], "big")
    return -mag if data[0] & 1 else mag


def _get_extension(cert: x509.Certificate, ext_class) -> Optional[x509.Extension]:
    try:
        return cert.extensions.get_extension_for_class(ext_class)
    except x509.ExtensionNotFound:
        return None
    except (x509.DuplicateExtension, ValueError):
        # Malformed extension block: report as absent.
        return None


def _name_values(name: x509.Name, oid: x509.ObjectIdentifier) -> List[str]:
    return [str(attr.value) for attr in name.get_attributes_for_oid(oid)]


def _validity(cert: x509.Certificate, attr: str) -> datetime:
    dt = getattr(cert, attr + "_utc", None)
    if dt is None:
        dt = getattr(cert, attr)
    return dt


def _cert_version(cert: x509.Certificate) -> int:
    try:
        return cert.version.value + 1
    except x509.InvalidVersion as e:
        return int(e.parsed_version) + 1


def _signature_algorithm(cert: x509.Certificate) -> str:
    oid = cert.signature_algorithm_oid
    dotted = oid.dotted_string
    if dotted == RSASSA_PSS_OID:
        try:
            h = cert.signature_hash_algorithm
        except UnsupportedAlgorithm:
            h = None
        if h is not None:
            return f"{h.name.upper()}-RSAPSS"
    name = SIGNATURE_ALGORITHM_NAMES.get(dotted)
    if name:
        return name
    return getattr(oid, "_name", None) or dotted


def _public_key_algorithm(cert: x509.Certificate) -> str:
    oid = getattr(cert, "public_key_algorithm_oid", None)
    if oid is not None:
        return PUBLIC_KEY_ALGORITHM_NAMES.get(oid.dotted_string) or getattr(oid, "_name", None) or oid.dotted_string

    # older cryptography releases: look at the key type instead
    try:
        pk = cert.public_key()
    except (UnsupportedAlgorithm, ValueError):
        return ""
    if isinstance(pk, rsa.RSAPublicKey):
        return "RSA"
    if isinstance(pk, dsa.DSAPublicKey):
        return "DSA"
    if isinstance(pk, ec.EllipticCurvePublicKey):
        return "ECDSA"
    if isinstance(pk, ed25519.Ed25519PublicKey):
        return "Ed25519"
    if isinstance(pk, ed448.Ed448PublicKey):
        return "Ed448"
    return pk.__class__.__name__


def _key_usage(cert: x509.Certificate) -> int:
    ext = _get_extension(cert, x509.KeyUsage)
    if ext is None:
        return 0
    ku = ext.value
    bits = 0
    for attr, bit in KEY_USAGE_BITS:
        if getattr(ku, attr):
            bits |= bit
    # encipher_only/decipher_only raise unless key_agreement is set
    if ku.key_agreement:
        if ku.encipher_only:
            bits |= ENCIPHER_ONLY_BIT
        if ku.decipher_only:
            bits |= DECIPHER_ONLY_BIT
    return bits


def _authority_info(cert: x509.Certificate) -> tuple:
    ocsp_urls: List[str] = []
    ca_issuers: List[str] = []
    ext = _get_extension(cert, x509.AuthorityInformationAccess)
    if ext is None:
        return ocsp_urls, ca_issuers
    for ad in ext.value:
        if not isinstance(ad.access_location, x509.UniformResourceIdentifier):
            continue
        if ad.access_method == AuthorityInformationAccessOID.OCSP:
            ocsp_urls.append(str(ad.access_location.value))
        elif ad.access_method == AuthorityInformationAccessOID.CA_ISSUERS:
            ca_issuers.append(str(ad.access_location.value))
    return ocsp_urls, ca_issuers


def _subject_alt_names(cert: x509.Certificate) -> tuple:
    dns: List[str] = []
    emails: List[str] = []
    ips: List[Any] = []
    ext = _get_extension(cert, x509.SubjectAlternativeName)
    if ext is None:
        return dns, emails, ips
    for gn in ext.value:
        if isinstance(gn, x509.DNSName):
            dns.append(str(gn.value))
        elif isinstance(gn, x509.RFC822Name):
            emails.append(str(gn.value))
        elif isinstance(gn, x509.IPAddress) and isinstance(gn.value, (IPv4Address, IPv6Address)):
            ips.append(gn.value)
    return dns, emails, ips


def _name_constraints(cert: x509.Certificate) -> tuple:
    ext = _get_extension(cert, x509.NameConstraints)
    if ext is None:
        return False, []
    permitted = [
        str(gn.value)
        for gn in (ext.value.permitted_subtrees or [])
        if isinstance(gn, x509.DNSName)
    ]
    return bool(ext.critical), permitted


# -------------------------
# Normalizers
# -------------------------

def name_to_record(name: x509.Name) -> DistinguishedName:
    return DistinguishedName(
        country=_name_values(name, NameOID.COUNTRY_NAME),
        organization=_name_values(name, NameOID.ORGANIZATION_NAME),
        organizational_unit=_name_values(name, NameOID.ORGANIZATIONAL_UNIT_NAME),
        locality=_name_values(name, NameOID.LOCALITY_NAME),
        province=_name_values(name, NameOID.STATE_OR_PROVINCE_NAME),
        street_address=_name_values(name, NameOID.STREET_ADDRESS),
        postal_code=_name_values(name, NameOID.POSTAL_CODE),
    )


def certificate_to_record(cert: x509.Certificate) -> CertificateRecord:
    """
    Flatten one parsed certificate into a CertificateRecord.

    URIs, IP range constraints, excluded DNS/email/URI constraints and
    permitted email/URI constraints are left out of the record on purpose.
    """
    ocsp_urls, ca_issuers = _authority_info(cert)
    dns, emails, ips = _subject_alt_names(cert)
    nc_critical, nc_permitted = _name_constraints(cert)
    bc = _get_extension(cert, x509.BasicConstraints)

    return CertificateRecord(
        signature=cert.signature.hex(),
        signature_algorithm=_signature_algorithm(cert),
        public_key_algorithm=_public_key_algorithm(cert),
        version=_cert_version(cert),
        serial_number=encode_serial(cert.serial_number).hex(),
        issuer=name_to_record(cert.issuer),
        subject=name_to_record(cert.subject),
        not_before=format_time(_validity(cert, "not_valid_before")),
        not_after=format_time(_validity(cert, "not_valid_after")),
        key_usage=_key_usage(cert),
        ocsp_server=ocsp_urls,
        issuing_certificate_url=ca_issuers,
        dns_names=dns,
        email_addresses=emails,
        ip_addresses=ips,
        permitted_dns_domains_critical=nc_critical,
        permitted_dns_domains=nc_permitted,
        basic_constraints_valid=bc is not None,
        is_ca=bool(bc.value.ca) if bc is not None else False,
    )


def _chain_to_records(chain: Iterable[Optional[x509.Certificate]]) -> List[CertificateRecord]:
    return [certificate_to_record(c) for c in chain if c is not None]


def session_to_record(session) -> SessionRecord:
    """
    Normalize a TLSSession. None entries are dropped from every chain;
    verified chains that are None or empty are dropped entirely.
    """
    verified: List[List[CertificateRecord]] = []
    for chain in session.verified_chains or []:
        if not chain:
            continue
        verified.append(_chain_to_records(chain))

    return SessionRecord(
        version=int(session.version or 0),
        server_name=session.server_name or "",
        peer_certificates=_chain_to_records(session.peer_certificates or []),
        verified_chains=verified,
    )
