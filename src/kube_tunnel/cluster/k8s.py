"""Cluster client provider backed by the official Kubernetes client."""

import asyncio
import socket
from typing import Any

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.stream import portforward

from ..common.exceptions import AuthError, ClusterError, RemoteStreamError
from ..common.logging import get_logger
from .interfaces import RemoteStream

logger = get_logger(__name__)


def _close_abandoned(handshake: "asyncio.Future[Any]") -> None:
    if handshake.cancelled() or handshake.exception() is not None:
        return
    handshake.result().close()


class KubernetesClusterClient:
    """Opens pod port-forward streams for one kubeconfig context."""

    def __init__(self, context: str, api_client: Any):
        self.context = context
        self._core_v1 = k8s_client.CoreV1Api(api_client)

    def _portforward(self, namespace: str, workload_name: str, remote_port: int) -> Any:
        return portforward(
            self._core_v1.connect_get_namespaced_pod_portforward,
            workload_name,
            namespace,
            ports=str(remote_port),
        )

    async def open_stream(
        self, namespace: str, workload_name: str, remote_port: int
    ) -> RemoteStream:
        """Open a port-forward to the pod and expose it as asyncio streams.

        The websocket handshake blocks, so it runs in a worker thread. The
        client library hands back one end of a socket pair that it pumps from
        its own thread; that end is duplicated into an asyncio transport. A
        handshake abandoned by cancellation is closed once it completes.

        Raises:
            RemoteStreamError: If the port-forward cannot be established
        """
        target = f"{namespace}/{workload_name}:{remote_port}"
        handshake = asyncio.ensure_future(
            asyncio.to_thread(self._portforward, namespace, workload_name, remote_port)
        )
        try:
            forward = await asyncio.shield(handshake)
        except asyncio.CancelledError:
            handshake.add_done_callback(_close_abandoned)
            logger.debug("Port-forward abandoned during handshake", target=target)
            raise
        except (ApiException, OSError, ValueError) as e:
            raise RemoteStreamError(
                f"Port-forward to {target} failed in context '{self.context}': {e}"
            ) from e

        try:
            local_end = forward.socket(remote_port)
            sock = socket.fromfd(local_end.fileno(), local_end.family, local_end.type)
            local_end.close()
            return await asyncio.open_connection(sock=sock)
        except (OSError, ValueError) as e:
            forward.close()
            raise RemoteStreamError(f"Cannot attach to port-forward {target}: {e}") from e


class KubernetesClientProvider:
    """Builds KubernetesClusterClient instances from a kubeconfig file."""

    def __init__(self, config_file: str | None = None):
        """Initialize provider.

        Args:
            config_file: Kubeconfig path (``$KUBECONFIG`` or ``~/.kube/config`` if None)
        """
        self.config_file = config_file

    def list_contexts(self) -> set[str]:
        """Context names present in the kubeconfig.

        Raises:
            ClusterError: If the kubeconfig cannot be read
        """
        try:
            contexts, _active = k8s_config.list_kube_config_contexts(
                config_file=self.config_file
            )
        except (ConfigException, OSError) as e:
            logger.debug("Error reading kubeconfig", error=str(e))
            raise ClusterError(f"Cannot read kubeconfig: {e}") from e

        return {ctx["name"] for ctx in contexts or []}

    async def create_client(self, context: str) -> KubernetesClusterClient:
        """Load credentials for context and build a client.

        Raises:
            AuthError: If the context or its credentials cannot be loaded
        """
        try:
            api_client = await asyncio.to_thread(
                k8s_config.new_client_from_config,
                config_file=self.config_file,
                context=context,
            )
        except (ConfigException, OSError, ValueError) as e:
            logger.debug("Kube client creation failed", context=context, error=str(e))
            raise AuthError(
                f"Cannot create client for context '{context}': {e}", context=context
            ) from e

        logger.debug("Created kube client", context=context)
        return KubernetesClusterClient(context, api_client)
