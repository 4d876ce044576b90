"""Process-wide shutdown broadcast shared by every accept and relay loop."""

import asyncio
import threading

from ..common.logging import get_logger

logger = get_logger(__name__)


def _resolve(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


class ShutdownSignal:
    """Single-writer, multi-reader flag that flips once from running to stopping.

    ``signal_stop`` may be called from any thread. Waiters may live on any
    event loop; each is woken on its own loop.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stopped = False
        self._waiters: set[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = (
            set()
        )

    @property
    def stopped(self) -> bool:
        """Current value of the flag."""
        return self._stopped

    def signal_stop(self) -> bool:
        """Transition to stopping and wake every waiter.

        Returns:
            True if this call performed the transition, False if already stopped
        """
        with self._lock:
            if self._stopped:
                return False
            self._stopped = True
            waiters = list(self._waiters)
            self._waiters.clear()

        for loop, waiter in waiters:
            try:
                loop.call_soon_threadsafe(_resolve, waiter)
            except RuntimeError:
                # Loop already closed; nobody is left to observe the change
                logger.debug("Skipped shutdown notification for closed event loop")

        logger.info("Shutdown signalled", waiters=len(waiters))
        return True

    def observe(self) -> "ShutdownWatch":
        """Return a read-only view of this signal."""
        return ShutdownWatch(self)

    async def wait(self) -> None:
        """Suspend until the signal is stopped (returns at once if it already is)."""
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        entry = (loop, waiter)

        with self._lock:
            if self._stopped:
                return
            self._waiters.add(entry)

        try:
            await waiter
        finally:
            with self._lock:
                self._waiters.discard(entry)


class ShutdownWatch:
    """Read-only handle on a ShutdownSignal."""

    __slots__ = ("_signal",)

    def __init__(self, signal: ShutdownSignal) -> None:
        self._signal = signal

    @property
    def stopped(self) -> bool:
        return self._signal.stopped

    async def wait(self) -> None:
        """Suspend until shutdown is signalled."""
        await self._signal.wait()


class StopController:
    """Caller-side handle that requests shutdown of a running orchestrator."""

    __slots__ = ("_signal",)

    def __init__(self, signal: ShutdownSignal) -> None:
        self._signal = signal

    @property
    def stopped(self) -> bool:
        return self._signal.stopped

    def signal_stop(self) -> bool:
        """Request shutdown; repeated calls are no-ops."""
        return self._signal.signal_stop()
