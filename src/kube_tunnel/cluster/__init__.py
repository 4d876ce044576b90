"""Cluster API boundary: client protocols and the Kubernetes provider."""

from .interfaces import ClusterClient, ClusterClientProvider, RemoteStream
from .k8s import KubernetesClientProvider, KubernetesClusterClient

__all__ = [
    "ClusterClient",
    "ClusterClientProvider",
    "RemoteStream",
    "KubernetesClientProvider",
    "KubernetesClusterClient",
]
