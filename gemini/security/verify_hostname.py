"""Peer certificate trust checks: hostname matching and validity window.

Hostnames are matched following RFC 6125 section 6.4 with the leniency real
deployments need: underscores are accepted in labels, only a complete
left-most ``*`` label acts as a wildcard, and the subject common name is used
as the identity only when the certificate carries no Subject Alternative Name
extension at all and the common name is itself a valid hostname.

Everything here is pure. The verifier only touches the fields exposed by
:class:`~gemini.security.certificate.Certificate`.
"""

import ipaddress
from datetime import datetime, timezone
from typing import Iterable, Optional

from gemini.bootstrap.config import ClientConfig
from gemini.domain.errors import (
    CertificateExpired,
    CertificateNotYetValid,
    HostnameMismatch,
)
from gemini.security.certificate import Certificate, IPAddress

_LABEL_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_"
)


def to_lower_case_ascii(value: str) -> str:
    """Lower-case ASCII letters only, leaving every other code point untouched."""
    if not any("A" <= char <= "Z" for char in value):
        return value
    return "".join(
        chr(ord(char) + 32) if "A" <= char <= "Z" else char for char in value
    )


def _valid_hostname(host: str, is_pattern: bool) -> bool:
    if not is_pattern and host.endswith("."):
        host = host[:-1]
    if not host:
        return False

    for index, label in enumerate(host.split(".")):
        if not label:
            return False
        if is_pattern and index == 0 and label == "*":
            continue
        for position, char in enumerate(label):
            if char not in _LABEL_CHARS:
                return False
            if char == "-" and position == 0:
                return False
    return True


def valid_hostname_pattern(host: str) -> bool:
    """Return True when ``host`` may be used as a certificate name pattern."""
    return _valid_hostname(host, is_pattern=True)


def valid_hostname_input(host: str) -> bool:
    """Return True when ``host`` is a valid name to match against patterns."""
    return _valid_hostname(host, is_pattern=False)


def common_name_as_hostname(cert: Certificate) -> bool:
    """Return True when the legacy common name counts as the certificate identity."""
    return not cert.has_san_extension and valid_hostname_pattern(cert.common_name)


def match_exactly(host_a: str, host_b: str) -> bool:
    """Case-insensitive (ASCII) equality, rejecting empty names and a bare dot."""
    if host_a in ("", ".") or host_b in ("", "."):
        return False
    return to_lower_case_ascii(host_a) == to_lower_case_ascii(host_b)


def match_hostnames(pattern: str, host: str) -> bool:
    """Match ``host`` against ``pattern`` label by label.

    A left-most ``*`` in the pattern stands for exactly one non-empty label, so
    ``*.example.com`` matches ``www.example.com`` but never ``example.com``.
    A single trailing dot is ignored on the host, never on the pattern.
    """
    pattern = to_lower_case_ascii(pattern)
    if host.endswith("."):
        host = host[:-1]
    host = to_lower_case_ascii(host)

    if not pattern or not host:
        return False

    pattern_labels = pattern.split(".")
    host_labels = host.split(".")
    if len(pattern_labels) != len(host_labels):
        return False

    for index, pattern_label in enumerate(pattern_labels):
        if index == 0 and pattern_label == "*":
            if not host_labels[0]:
                return False
            continue
        if pattern_label != host_labels[index]:
            return False
    return True


def _parse_ip(host: str) -> Optional[IPAddress]:
    candidate = host
    if len(host) >= 3 and host[0] == "[" and host[-1] == "]":
        candidate = host[1:-1]
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        return None


def _same_ip(left: IPAddress, right: IPAddress) -> bool:
    # IPv4-mapped IPv6 addresses compare equal to their IPv4 form.
    if isinstance(left, ipaddress.IPv6Address) and left.ipv4_mapped is not None:
        left = left.ipv4_mapped
    if isinstance(right, ipaddress.IPv6Address) and right.ipv4_mapped is not None:
        right = right.ipv4_mapped
    return left == right


def candidate_names(cert: Certificate) -> list[str]:
    """Return the DNS identities ``verify_hostname`` matches a host against."""
    if common_name_as_hostname(cert):
        return [cert.common_name]
    return list(cert.dns_names)


def verify_hostname(cert: Certificate, host: str) -> None:
    """Raise :class:`HostnameMismatch` unless ``cert`` is valid for ``host``.

    IP literals, optionally in square brackets, are only ever matched against
    the certificate's IP addresses. Other hosts are matched against the DNS
    names, with wildcard and trailing dot handling applied only when both the
    host and the pattern are syntactically valid hostnames; otherwise an exact
    case-insensitive comparison is used.
    """
    ip = _parse_ip(host)
    if ip is not None:
        for candidate in cert.ip_addresses:
            if _same_ip(ip, candidate):
                return
        raise HostnameMismatch(str(ip), [str(address) for address in cert.ip_addresses])

    names = candidate_names(cert)
    candidate_name = to_lower_case_ascii(host)
    valid_candidate_name = valid_hostname_input(candidate_name)

    for name in names:
        if valid_candidate_name and valid_hostname_pattern(name):
            if match_hostnames(name, candidate_name):
                return
        elif match_exactly(name, candidate_name):
            return

    raise HostnameMismatch(host, names)


def verify_any_hostname(cert: Certificate, hosts: Iterable[str]) -> None:
    """Accept the certificate when any of ``hosts`` verifies.

    Used to try both the ASCII (punycode) and the Unicode form of a host. The
    mismatch raised for the first host is re-raised when none match.
    """
    first_error: Optional[HostnameMismatch] = None
    for host in hosts:
        try:
            verify_hostname(cert, host)
        except HostnameMismatch as error:
            if first_error is None:
                first_error = error
            continue
        return
    if first_error is None:
        raise HostnameMismatch("", candidate_names(cert))
    raise first_error


def verify_validity(cert: Certificate, now: Optional[datetime] = None) -> None:
    """Raise when ``now`` falls outside ``[not_before, not_after]``."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if now < cert.not_before:
        raise CertificateNotYetValid(
            f"server certificate is not valid before {cert.not_before.isoformat()}"
        )
    if now > cert.not_after:
        raise CertificateExpired(
            f"server certificate expired at {cert.not_after.isoformat()}"
        )


def verify_certificate(
    cert: Certificate,
    hosts: Iterable[str],
    config: ClientConfig,
    now: Optional[datetime] = None,
) -> None:
    """Apply the hostname and validity checks the client configuration enables."""
    if config.insecure:
        return
    if not config.no_hostname_check:
        verify_any_hostname(cert, hosts)
    if not config.no_time_check:
        verify_validity(cert, now)
