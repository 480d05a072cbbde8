"""Immutable snapshot of the identity fields of a peer certificate."""

import ipaddress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

from cryptography import x509
from cryptography.x509.oid import NameOID

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True)
class Certificate:
    """The capability set hostname and validity checks depend on.

    Decoupled from any TLS backend so checks can be exercised with plain values.
    ``not_before`` and ``not_after`` are timezone-aware UTC datetimes.
    """

    dns_names: tuple[str, ...] = ()
    ip_addresses: tuple[IPAddress, ...] = ()
    common_name: str = ""
    not_before: datetime = datetime.min.replace(tzinfo=timezone.utc)
    not_after: datetime = datetime.max.replace(tzinfo=timezone.utc)
    has_san_extension: bool = False
    der: bytes = field(default=b"", repr=False, compare=False)

    @classmethod
    def from_x509(cls, cert: x509.Certificate, der: bytes = b"") -> "Certificate":
        """Extract the identity snapshot from a parsed X.509 certificate."""
        dns_names: tuple[str, ...] = ()
        ip_addresses: tuple[IPAddress, ...] = ()
        has_san_extension = False
        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        except x509.ExtensionNotFound:
            pass
        else:
            has_san_extension = True
            dns_names = tuple(san.value.get_values_for_type(x509.DNSName))
            ip_addresses = tuple(
                address
                for address in san.value.get_values_for_type(x509.IPAddress)
                if not isinstance(address, (ipaddress.IPv4Network, ipaddress.IPv6Network))
            )

        return cls(
            dns_names=dns_names,
            ip_addresses=ip_addresses,
            common_name=_common_name(cert),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            has_san_extension=has_san_extension,
            der=der,
        )

    @classmethod
    def from_der(cls, der: bytes) -> "Certificate":
        """Parse DER bytes as returned by ``SSLSocket.getpeercert(True)``."""
        return cls.from_x509(x509.load_der_x509_certificate(der), der)

    @classmethod
    def from_pem(cls, pem: bytes) -> "Certificate":
        """Parse a PEM encoded certificate."""
        cert = x509.load_pem_x509_certificate(pem)
        return cls.from_x509(cert)


def _common_name(cert: x509.Certificate) -> str:
    attributes = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attributes:
        return ""
    value: Optional[Union[str, bytes]] = attributes[-1].value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value or ""
