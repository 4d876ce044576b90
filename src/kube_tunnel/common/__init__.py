"""Common utilities and shared functionality."""

from .exceptions import (
    AuthError,
    BindError,
    ClusterError,
    ConfigurationError,
    KubeTunnelError,
    OrchestratorError,
    RemoteStreamError,
    TunnelError,
)
from .logging import get_logger, setup_logging
from .utils import (
    MAX_PORT,
    MIN_PORT,
    format_address,
    is_dns_label,
    is_dns_subdomain,
    is_loopback_address,
)

__all__ = [
    # Exceptions
    "KubeTunnelError",
    "ConfigurationError",
    "TunnelError",
    "BindError",
    "RemoteStreamError",
    "OrchestratorError",
    "ClusterError",
    "AuthError",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "is_dns_label",
    "is_dns_subdomain",
    "is_loopback_address",
    "format_address",
    "MIN_PORT",
    "MAX_PORT",
]
