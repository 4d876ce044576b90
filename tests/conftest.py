"""Shared pytest fixtures for kube-tunnel tests."""

import asyncio
import socket
import time
from collections.abc import Awaitable, Callable

import pytest

from kube_tunnel.common.exceptions import AuthError, ClusterError, RemoteStreamError
from kube_tunnel.config import ForwardSpec, TunnelSettings

PodHandler = Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]


async def echo_pod(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    """Pod side that echoes everything back until EOF."""
    try:
        while data := await reader.read(4096):
            writer.write(data)
            await writer.drain()
    except OSError:
        pass
    finally:
        writer.close()


async def idle_pod(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    """Pod side that never sends anything and waits for EOF."""
    try:
        await reader.read()
    except OSError:
        pass
    finally:
        writer.close()


async def stream_pair() -> tuple[
    tuple[asyncio.StreamReader, asyncio.StreamWriter],
    tuple[asyncio.StreamReader, asyncio.StreamWriter],
]:
    """Two connected asyncio stream endpoints backed by a socket pair."""
    left, right = socket.socketpair()
    return (
        await asyncio.open_connection(sock=left),
        await asyncio.open_connection(sock=right),
    )


class FakeClusterClient:
    """Cluster client whose pods are coroutines running on the caller's loop."""

    def __init__(self, context: str, handler: PodHandler | None = echo_pod, fail: bool = False):
        self.context = context
        self.handler = handler
        self.fail = fail
        self.calls: list[tuple[str, str, int]] = []
        self.pod_streams: list[tuple[asyncio.StreamReader, asyncio.StreamWriter]] = []
        self._tasks: set[asyncio.Task] = set()

    async def open_stream(self, namespace: str, workload_name: str, remote_port: int):
        self.calls.append((namespace, workload_name, remote_port))
        if self.fail:
            raise RemoteStreamError(f"pods \"{workload_name}\" not found")

        local_end, pod_end = socket.socketpair()
        local = await asyncio.open_connection(sock=local_end)
        pod = await asyncio.open_connection(sock=pod_end)
        self.pod_streams.append(pod)

        if self.handler is not None:
            task = asyncio.create_task(self.handler(*pod))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return local


class FakeProvider:
    """Provider serving FakeClusterClient instances by context."""

    def __init__(
        self,
        clients: dict[str, FakeClusterClient],
        known_contexts: set[str] | None = None,
        list_error: bool = False,
    ):
        self.clients = clients
        self.known_contexts = known_contexts if known_contexts is not None else set(clients)
        self.list_error = list_error
        self.created: list[str] = []

    def list_contexts(self) -> set[str]:
        if self.list_error:
            raise ClusterError("Cannot read kubeconfig: no such file")
        return set(self.known_contexts)

    async def create_client(self, context: str) -> FakeClusterClient:
        self.created.append(context)
        if context not in self.clients:
            raise AuthError(f"Cannot create client for context '{context}'", context=context)
        return self.clients[context]


def get_free_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for a currently unused TCP port."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.socket(family, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def ipv6_loopback_available() -> bool:
    if not socket.has_ipv6:
        return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as sock:
            sock.bind(("::1", 0))
        return True
    except OSError:
        return False


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll predicate from a synchronous test."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


async def async_wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll predicate from an async test."""
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


def recv_all(sock: socket.socket, size: int) -> bytes:
    """Read exactly size bytes from a blocking socket (fewer on EOF)."""
    chunks = []
    remaining = size
    while remaining:
        chunk = sock.recv(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


@pytest.fixture
def free_port() -> int:
    return get_free_port()


@pytest.fixture
def forward_spec(free_port) -> ForwardSpec:
    return ForwardSpec(
        context="staging",
        namespace="db",
        workload_name="postgres-0",
        remote_port=5432,
        local_port=free_port,
    )


@pytest.fixture
def loopback_settings() -> TunnelSettings:
    """Settings binding IPv4 loopback only, which every CI host has."""
    return TunnelSettings(bind_addresses=("127.0.0.1",), drain_timeout=2.0)
