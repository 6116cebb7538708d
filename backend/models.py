from __future__ import annotations

from ipaddress import IPv4Address, IPv6Address
from typing import List, Union

from pydantic import BaseModel, ConfigDict, Field


# -----------------------------
# Pydantic models
# -----------------------------
# Field aliases are the JSON keys consumers of the output rely on.
# Always dump with by_alias=True.

_RECORD_CONFIG = ConfigDict(frozen=True, populate_by_name=True)


class DistinguishedName(BaseModel):
    model_config = _RECORD_CONFIG

    country: List[str] = Field(default_factory=list, alias="Country")
    organization: List[str] = Field(default_factory=list, alias="Organization")
    organizational_unit: List[str] = Field(default_factory=list, alias="OrganizationalUnit")
    locality: List[str] = Field(default_factory=list, alias="Locality")
    province: List[str] = Field(default_factory=list, alias="Province")
    street_address: List[str] = Field(default_factory=list, alias="StreetAddress")
    postal_code: List[str] = Field(default_factory=list, alias="PostalCode")


class CertificateRecord(BaseModel):
    model_config = _RECORD_CONFIG

    signature: str = Field("", alias="Signature")
    signature_algorithm: str = Field("", alias="SignatureAlgorithm")
    public_key_algorithm: str = Field("", alias="PublicKeyAlgorithm")
    version: int = Field(0, alias="Version")
    serial_number: str = Field("", alias="SerialNumber")
    issuer: DistinguishedName = Field(default_factory=DistinguishedName, alias="Issuer")
    subject: DistinguishedName = Field(default_factory=DistinguishedName, alias="Subject")
    not_before: str = Field("", alias="NotBefore")
    not_after: str = Field("", alias="NotAfter")
    key_usage: int = Field(0, alias="KeyUsage")
    ocsp_server: List[str] = Field(default_factory=list, alias="OCSPServer")
    issuing_certificate_url: List[str] = Field(default_factory=list, alias="IssuingCertificateURL")
    dns_names: List[str] = Field(default_factory=list, alias="DNSNames")
    email_addresses: List[str] = Field(default_factory=list, alias="EmailAddresses")
    ip_addresses: List[Union[IPv4Address, IPv6Address]] = Field(default_factory=list, alias="IPAddresses")
    permitted_dns_domains_critical: bool = Field(False, alias="PermittedDNSDomainsCritical")
    permitted_dns_domains: List[str] = Field(default_factory=list, alias="PermittedDNSDomains")
    basic_constraints_valid: bool = Field(False, alias="BasicConstraintsValid")
    is_ca: bool = Field(False, alias="IsCA")


class SessionRecord(BaseModel):
    model_config = _RECORD_CONFIG

    version: int = Field(0, alias="Version")
    server_name: str = Field("", alias="ServerName")
    peer_certificates: List[CertificateRecord] = Field(default_factory=list, alias="PeerCertificates")
    verified_chains: List[List[CertificateRecord]] = Field(default_factory=list, alias="VerifiedChains")

    def to_json(self) -> str:
        """Compact single-line JSON with the public field names."""
        return self.model_dump_json(by_alias=True)


class HostEntry(BaseModel):
    """One `rank,hostname` row of a batch input file."""

    model_config = ConfigDict(frozen=True)

    rank: int = 0
    hostname: str
