"""Validation and formatting helpers shared across modules."""

import ipaddress
import re

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

# RFC 1123 names as used by Kubernetes for namespaces and pods
DNS_LABEL_MAX_LENGTH = 63
DNS_SUBDOMAIN_MAX_LENGTH = 253
_DNS_LABEL_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def is_dns_label(value: str) -> bool:
    """Check whether value is an RFC 1123 label (namespace names)."""
    return len(value) <= DNS_LABEL_MAX_LENGTH and bool(_DNS_LABEL_RE.match(value))


def is_dns_subdomain(value: str) -> bool:
    """Check whether value is an RFC 1123 subdomain (pod names)."""
    if not value or len(value) > DNS_SUBDOMAIN_MAX_LENGTH:
        return False
    return all(is_dns_label(part) for part in value.split("."))


def is_loopback_address(host: str) -> bool:
    """Return True if host is a literal loopback IP address."""
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def format_address(host: str, port: int) -> str:
    """Format host and port for display, bracketing IPv6 literals.

    Args:
        host: IP address literal
        port: Port number

    Returns:
        ``host:port`` or ``[host]:port`` for IPv6
    """
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"
