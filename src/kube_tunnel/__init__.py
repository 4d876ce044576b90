"""kube-tunnel - local TCP tunnels to Kubernetes pod ports."""

from .cluster import (
    ClusterClient,
    ClusterClientProvider,
    KubernetesClientProvider,
    KubernetesClusterClient,
)
from .common.exceptions import (
    AuthError,
    BindError,
    ClusterError,
    ConfigurationError,
    KubeTunnelError,
    OrchestratorError,
    RemoteStreamError,
    TunnelError,
)
from .common.logging import get_logger, setup_logging
from .config import (
    ForwardSpec,
    TunnelConfig,
    TunnelSettings,
    discover_config_path,
    load_config,
)
from .tunnels import (
    ForwardState,
    ForwardStatus,
    Orchestrator,
    RelayOutcome,
    ShutdownSignal,
    StopController,
    TunnelHandle,
)

__version__ = "0.1.0"


__all__ = [
    # Orchestration
    "Orchestrator",
    "TunnelHandle",
    "StopController",
    "ShutdownSignal",
    "ForwardState",
    "ForwardStatus",
    "RelayOutcome",
    # Configuration
    "ForwardSpec",
    "TunnelConfig",
    "TunnelSettings",
    "load_config",
    "discover_config_path",
    # Cluster
    "ClusterClient",
    "ClusterClientProvider",
    "KubernetesClientProvider",
    "KubernetesClusterClient",
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
]
