"""Protocol interfaces for the cluster API boundary."""

from __future__ import annotations

import asyncio
from typing import Protocol

RemoteStream = tuple[asyncio.StreamReader, asyncio.StreamWriter]


class ClusterClient(Protocol):
    """Handle scoped to one context that opens port-forward streams.

    Shared by every connection of its context without locking, so
    implementations must not keep per-stream state.
    """

    context: str

    async def open_stream(
        self, namespace: str, workload_name: str, remote_port: int
    ) -> RemoteStream:
        """Open a byte stream to ``remote_port`` of the workload.

        Raises:
            RemoteStreamError: If the stream cannot be opened
        """
        ...


class ClusterClientProvider(Protocol):
    """Factory for per-context cluster clients."""

    def list_contexts(self) -> set[str]:
        """Names of the contexts known to the provider.

        Raises:
            ClusterError: If the context list cannot be read
        """
        ...

    async def create_client(self, context: str) -> ClusterClient:
        """Create a client bound to ``context``.

        Raises:
            AuthError: If credentials for the context cannot be loaded
        """
        ...
