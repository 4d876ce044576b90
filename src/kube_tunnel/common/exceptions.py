"""Custom exceptions for kube-tunnel."""


class KubeTunnelError(Exception):
    """Base exception for all kube-tunnel errors."""

    pass


class ConfigurationError(KubeTunnelError):
    """Raised when configuration is invalid or cannot be read."""

    pass


class TunnelError(KubeTunnelError):
    """Base exception for tunnel lifecycle errors."""

    pass


class BindError(TunnelError):
    """Raised when a local listener cannot be bound for a forward."""

    def __init__(self, message: str, address: str | None = None, port: int | None = None):
        super().__init__(message)
        self.address = address
        self.port = port


class RemoteStreamError(TunnelError):
    """Raised when a port-forward stream to the workload cannot be opened."""

    pass


class OrchestratorError(TunnelError):
    """Raised when the orchestrator run fails or is misused."""

    pass


class ClusterError(KubeTunnelError):
    """Base exception for cluster client errors."""

    pass


class AuthError(ClusterError):
    """Raised when a cluster client cannot be created for a context."""

    def __init__(self, message: str, context: str | None = None):
        super().__init__(message)
        self.context = context
