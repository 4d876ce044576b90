"""Per-connection forwarding: open the remote stream and relay bytes both ways."""

import asyncio
import socket
from typing import Any

from ..cluster.interfaces import ClusterClient, RemoteStream
from ..common.exceptions import RemoteStreamError
from ..common.logging import get_logger
from ..config import ForwardSpec
from .models import Disposition, RelayOutcome, disposition_for
from .registry import ForwardRegistry
from .shutdown import ShutdownWatch

logger = get_logger(__name__)

DEFAULT_BUFFER_SIZE = 1024


async def _write_all(writer: asyncio.StreamWriter, data: bytes) -> None:
    writer.write(data)
    await writer.drain()


async def relay(
    client_reader: asyncio.StreamReader,
    client_writer: asyncio.StreamWriter,
    remote_reader: asyncio.StreamReader,
    remote_writer: asyncio.StreamWriter,
    shutdown: ShutdownWatch,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    log: Any = logger,
) -> RelayOutcome:
    """Copy bytes between client and remote until one side ends or shutdown.

    Each pass waits on three events at once: client readable, remote
    readable and shutdown. Pending reads carry over between passes, so no
    data is dropped and each direction keeps its order.

    Args:
        client_reader: Reader of the accepted local socket
        client_writer: Writer of the accepted local socket
        remote_reader: Reader of the port-forward stream
        remote_writer: Writer of the port-forward stream
        shutdown: Read-only view of the shutdown signal
        buffer_size: Maximum bytes read per direction per pass
        log: Logger, usually bound with connection details

    Returns:
        Why the loop terminated
    """
    if shutdown.stopped:
        return RelayOutcome.CANCELLED

    client_read: asyncio.Task[bytes] | None = None
    remote_read: asyncio.Task[bytes] | None = None
    stop = asyncio.ensure_future(shutdown.wait())

    try:
        while True:
            if client_read is None:
                client_read = asyncio.ensure_future(client_reader.read(buffer_size))
            if remote_read is None:
                remote_read = asyncio.ensure_future(remote_reader.read(buffer_size))

            done, _ = await asyncio.wait(
                {client_read, remote_read, stop},
                return_when=asyncio.FIRST_COMPLETED,
            )

            if stop in done:
                log.debug("Shutdown observed, abandoning connection")
                return RelayOutcome.CANCELLED

            if client_read in done:
                try:
                    data = client_read.result()
                except OSError as e:
                    log.debug("Client read failed", error=repr(e))
                    return RelayOutcome.CLIENT_READ_ERROR
                client_read = None

                if not data:
                    log.debug("Client socket closed")
                    return RelayOutcome.CLIENT_CLOSED

                log.debug("Client read", bytes=len(data))
                try:
                    await _write_all(remote_writer, data)
                except OSError as e:
                    log.debug("Remote write failed", error=repr(e))
                    return RelayOutcome.REMOTE_WRITE_ERROR

            if remote_read in done:
                try:
                    data = remote_read.result()
                except OSError as e:
                    log.debug("Remote read failed", error=repr(e))
                    return RelayOutcome.REMOTE_READ_ERROR
                remote_read = None

                if not data:
                    log.debug("Remote stream closed")
                    return RelayOutcome.REMOTE_CLOSED

                log.debug("Remote read", bytes=len(data))
                try:
                    await _write_all(client_writer, data)
                except OSError as e:
                    log.debug("Client write failed", error=repr(e))
                    return RelayOutcome.CLIENT_WRITE_ERROR
    finally:
        pending = [t for t in (client_read, remote_read, stop) if t is not None]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


async def _close(writer: asyncio.StreamWriter, wait: bool = True) -> None:
    writer.close()
    if not wait:
        return
    try:
        await writer.wait_closed()
    except OSError:
        pass


async def close_remote(
    client_writer: asyncio.StreamWriter, remote_writer: asyncio.StreamWriter, log: Any
) -> None:
    await _close(remote_writer)
    # The client side already hit EOF or an error; only release the socket
    await _close(client_writer, wait=False)


async def half_close_client(
    client_writer: asyncio.StreamWriter, remote_writer: asyncio.StreamWriter, log: Any
) -> None:
    try:
        if client_writer.can_write_eof():
            client_writer.write_eof()
            await client_writer.drain()
    except (OSError, RuntimeError) as e:
        log.warning("Failed to shutdown socket", reason=repr(e))
    await _close(client_writer)
    await _close(remote_writer, wait=False)


async def abandon(
    client_writer: asyncio.StreamWriter, remote_writer: asyncio.StreamWriter, log: Any
) -> None:
    await _close(client_writer, wait=False)
    await _close(remote_writer, wait=False)


DISPOSITION_HANDLERS = {
    Disposition.CLOSE_REMOTE: close_remote,
    Disposition.HALF_CLOSE_CLIENT: half_close_client,
    Disposition.ABANDON: abandon,
}


class ConnectionForwarder:
    """Owns one accepted client socket for the lifetime of its relay loop."""

    def __init__(
        self,
        index: int,
        spec: ForwardSpec,
        client: ClusterClient,
        shutdown: ShutdownWatch,
        registry: ForwardRegistry | None = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        self.index = index
        self.spec = spec
        self.client = client
        self.shutdown = shutdown
        self.registry = registry
        self.buffer_size = buffer_size

    async def _open_remote(self) -> RemoteStream | None:
        """Open the remote stream unless shutdown is observed first.

        Returns:
            The remote stream, or None if shutdown won the race

        Raises:
            RemoteStreamError: If the stream cannot be opened
        """
        opening = asyncio.ensure_future(
            self.client.open_stream(
                self.spec.namespace, self.spec.workload_name, self.spec.remote_port
            )
        )
        stop = asyncio.ensure_future(self.shutdown.wait())
        try:
            await asyncio.wait({opening, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not opening.done():
                opening.cancel()
            await asyncio.gather(stop, opening, return_exceptions=True)

        if self.shutdown.stopped:
            if not opening.cancelled() and opening.exception() is None:
                # Opened in the same wake-up as shutdown: never relayed
                _reader, writer = opening.result()
                await _close(writer, wait=False)
            return None

        return opening.result()

    async def run(self, conn: socket.socket, peer: Any = None) -> RelayOutcome | None:
        """Forward one accepted connection.

        Args:
            conn: Accepted client socket (non-blocking, TCP_NODELAY set)
            peer: Client address for logging

        Returns:
            The relay outcome, or None if the remote stream could not be opened
        """
        log = logger.bind(
            port=self.spec.local_port, podspec=self.spec.podspec, peer=str(peer)
        )

        if self.shutdown.stopped:
            conn.close()
            log.debug("Shutdown already signalled, dropping accepted connection")
            return RelayOutcome.CANCELLED

        try:
            client_reader, client_writer = await asyncio.open_connection(sock=conn)
        except OSError as e:
            conn.close()
            log.error("Failed to adopt client socket", reason=repr(e))
            return None

        remote: RemoteStream | None = None
        if not self.shutdown.stopped:
            try:
                remote = await self._open_remote()
            except RemoteStreamError as e:
                log.error("Pods error", reason=str(e))
                await _close(client_writer, wait=False)
                return None

        if remote is None:
            log.debug("Shutdown signalled before the remote stream was opened")
            await _close(client_writer, wait=False)
            return RelayOutcome.CANCELLED

        remote_reader, remote_writer = remote
        log.info(
            "Portforwarder set up correctly",
            pod=self.spec.workload_name,
            pod_port=self.spec.remote_port,
        )

        if self.registry is not None:
            self.registry.connection_opened(self.index)

        outcome = RelayOutcome.CANCELLED
        try:
            outcome = await relay(
                client_reader,
                client_writer,
                remote_reader,
                remote_writer,
                self.shutdown,
                buffer_size=self.buffer_size,
                log=log,
            )
        finally:
            handler = DISPOSITION_HANDLERS[disposition_for(outcome)]
            await handler(client_writer, remote_writer, log)
            if self.registry is not None:
                self.registry.connection_closed(self.index, outcome)

        finished = log.warning if outcome.is_error else log.info
        finished("Connection finished", outcome=outcome.value)
        return outcome
