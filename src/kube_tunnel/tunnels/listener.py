"""Local listeners and their cancellable accept loops."""

import asyncio
import socket

from ..cluster.interfaces import ClusterClient
from ..common.exceptions import BindError
from ..common.logging import get_logger
from ..common.utils import format_address
from ..config import DEFAULT_BIND_ADDRESSES, ForwardSpec
from .forwarder import DEFAULT_BUFFER_SIZE, ConnectionForwarder
from .registry import ForwardRegistry
from .shutdown import ShutdownWatch
from .supervisor import TaskSupervisor

logger = get_logger(__name__)


def bind_listener(host: str, port: int, backlog: int = 100) -> socket.socket:
    """Bind a non-blocking listening socket.

    IPv6 sockets are v6-only so the IPv4 loopback can be bound separately
    on the same port.

    Raises:
        OSError: If the address cannot be bound
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.create_server(
        (host, port), family=family, backlog=backlog, dualstack_ipv6=False
    )
    sock.setblocking(False)
    return sock


class ListenerManager:
    """Binds the listeners of one forward and runs an accept loop per listener."""

    def __init__(
        self,
        index: int,
        spec: ForwardSpec,
        client: ClusterClient,
        shutdown: ShutdownWatch,
        supervisor: TaskSupervisor,
        registry: ForwardRegistry | None = None,
        bind_addresses: tuple[str, ...] = DEFAULT_BIND_ADDRESSES,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        backlog: int = 100,
    ):
        self.index = index
        self.spec = spec
        self.client = client
        self.shutdown = shutdown
        self.supervisor = supervisor
        self.registry = registry
        self.bind_addresses = bind_addresses
        self.buffer_size = buffer_size
        self.backlog = backlog
        self._listeners: list[socket.socket] = []

    @property
    def listeners(self) -> list[socket.socket]:
        return list(self._listeners)

    def bind(self) -> list[socket.socket]:
        """Bind one listener per bind address at the forward's local port.

        Returns:
            The bound listening sockets

        Raises:
            BindError: If any address fails; sockets already bound are closed
        """
        bound: list[socket.socket] = []
        for host in self.bind_addresses:
            try:
                bound.append(bind_listener(host, self.spec.local_port, self.backlog))
            except OSError as e:
                for sock in bound:
                    sock.close()
                address = format_address(host, self.spec.local_port)
                logger.error(
                    "Failed to bind interface",
                    address=address,
                    podspec=self.spec.podspec,
                    reason=repr(e),
                )
                raise BindError(
                    f"Cannot bind {address} for {self.spec.podspec}: {e.strerror or e}",
                    address=host,
                    port=self.spec.local_port,
                ) from e

        self._listeners = bound
        return bound

    def start(self) -> list[asyncio.Task]:
        """Spawn one supervised accept loop per bound listener."""
        if not self._listeners:
            raise BindError(f"No listeners bound for {self.spec.podspec}")

        return [
            self.supervisor.spawn(
                self.accept_loop(sock),
                name=f"accept {format_address(*sock.getsockname()[:2])}",
            )
            for sock in self._listeners
        ]

    def _dispatch(self, conn: socket.socket, peer: object) -> None:
        try:
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            logger.error("Failed to set nodelay", reason=repr(e))
            conn.close()
            return

        logger.info(
            "Accepted new connection",
            port=self.spec.local_port,
            podspec=self.spec.podspec,
            peer=str(peer),
        )

        forwarder = ConnectionForwarder(
            self.index,
            self.spec,
            self.client,
            self.shutdown,
            registry=self.registry,
            buffer_size=self.buffer_size,
        )
        self.supervisor.spawn(
            forwarder.run(conn, peer), name=f"relay {self.spec.podspec} {peer}"
        )

    async def accept_loop(self, sock: socket.socket) -> None:
        """Accept connections on sock until shutdown is observed.

        The listener is closed when the loop exits.
        """
        loop = asyncio.get_running_loop()
        stop = asyncio.ensure_future(self.shutdown.wait())
        accept: asyncio.Future | None = None

        try:
            while not self.shutdown.stopped:
                accept = asyncio.ensure_future(loop.sock_accept(sock))
                done, _ = await asyncio.wait(
                    {accept, stop}, return_when=asyncio.FIRST_COMPLETED
                )

                if stop in done or self.shutdown.stopped:
                    break

                try:
                    conn, peer = accept.result()
                except OSError as e:
                    logger.error("Failed to accept client", reason=repr(e))
                    continue
                finally:
                    accept = None

                self._dispatch(conn, peer)
        finally:
            pending = [stop]
            if accept is not None:
                if accept.done() and not accept.cancelled() and accept.exception() is None:
                    # Accepted in the same wake-up as shutdown: never dispatched
                    conn, _peer = accept.result()
                    conn.close()
                else:
                    accept.cancel()
                    pending.append(accept)
            stop.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            sock.close()
            if sock in self._listeners:
                self._listeners.remove(sock)
            logger.debug(
                "Accept loop exited", port=self.spec.local_port, podspec=self.spec.podspec
            )
