"""Tunnel orchestrator: overall start/stop lifecycle of every forward."""

import asyncio
import threading
from collections.abc import Coroutine, Iterable
from types import TracebackType
from typing import Any, Literal, TypeVar

from ..cluster.interfaces import ClusterClient, ClusterClientProvider
from ..common.exceptions import AuthError, BindError, ClusterError, OrchestratorError
from ..common.logging import get_logger
from ..config import ForwardSpec, TunnelSettings, log_forwards
from .listener import ListenerManager
from .models import ForwardState, ForwardStatus
from .registry import ForwardRegistry
from .shutdown import ShutdownSignal, StopController
from .supervisor import TaskSupervisor

logger = get_logger(__name__)

T = TypeVar("T")


def run_detached(coro: Coroutine[Any, Any, T]) -> T:
    """Run coro to completion on a fresh event loop.

    Unlike ``asyncio.run``, executor threads still blocked in a cluster call
    are not joined on exit; ``loop.close()`` shuts the default executor down
    without waiting.
    """
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        try:
            tasks = asyncio.all_tasks(loop)
            for task in tasks:
                task.cancel()
            if tasks:
                loop.run_until_complete(
                    asyncio.gather(*tasks, return_exceptions=True)
                )
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            loop.close()


class TunnelHandle:
    """Handle on an orchestrator running in its own thread."""

    def __init__(self, registry: ForwardRegistry, controller: StopController):
        self._registry = registry
        self._controller = controller
        self._thread: threading.Thread | None = None
        self._result: list[ForwardState] | None = None
        self._error: BaseException | None = None

    def _attach(self, thread: threading.Thread) -> None:
        self._thread = thread

    def _finish(
        self, result: list[ForwardState] | None, error: BaseException | None
    ) -> None:
        self._result = result
        self._error = error

    @property
    def registry(self) -> ForwardRegistry:
        return self._registry

    def states(self) -> list[ForwardState]:
        """Live snapshot of every forward's state."""
        return self._registry.snapshot()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: float | None = None) -> list[ForwardState]:
        """Block until the orchestrator run returns.

        Args:
            timeout: Seconds to wait (forever if None)

        Returns:
            Final state of every forward

        Raises:
            OrchestratorError: If the run crashed or did not finish in time
        """
        if self._thread is None:
            raise OrchestratorError("Orchestrator was never started")

        self._thread.join(timeout)
        if self._thread.is_alive():
            raise OrchestratorError(f"Orchestrator still running after {timeout}s")

        if self._error is not None:
            raise OrchestratorError(f"Orchestrator failed: {self._error}") from self._error

        return self._result if self._result is not None else self._registry.snapshot()

    def __enter__(self) -> "TunnelHandle":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        """Stop and join on context exit."""
        self._controller.signal_stop()
        try:
            self.join()
        except OrchestratorError as e:
            logger.error("Error during context exit", error=str(e))
        return False


class Orchestrator:
    """Builds cluster clients and listeners for a set of forwards."""

    def __init__(
        self,
        provider: ClusterClientProvider,
        settings: TunnelSettings | None = None,
    ):
        """Initialize orchestrator.

        Args:
            provider: Source of per-context cluster clients
            settings: Listener and relay settings (defaults if None)
        """
        self.provider = provider
        self.settings = settings or TunnelSettings()

    def start(
        self, specs: Iterable[ForwardSpec]
    ) -> tuple[TunnelHandle, StopController]:
        """Run the orchestrator on a dedicated thread with its own event loop.

        Args:
            specs: Forwards to serve (snapshotted now)

        Returns:
            Handle to join the run and controller to stop it
        """
        forwards = list(specs)
        shutdown = ShutdownSignal()
        controller = StopController(shutdown)
        registry = ForwardRegistry(forwards)
        handle = TunnelHandle(registry, controller)

        def target() -> None:
            try:
                result = run_detached(self.run(forwards, shutdown, registry))
            except Exception as e:
                logger.error("Orchestrator crashed", error=repr(e), exc_info=e)
                handle._finish(None, e)
            else:
                handle._finish(result, None)

        thread = threading.Thread(target=target, name="kube-tunnel-orchestrator", daemon=True)
        handle._attach(thread)
        thread.start()
        return handle, controller

    def _validate_contexts(self, forwards: list[ForwardSpec]) -> None:
        try:
            known = self.provider.list_contexts()
        except ClusterError as e:
            logger.error("Cannot validate contexts", error=str(e))
            return

        for spec in forwards:
            if spec.context not in known:
                logger.warning(
                    f"You specified context = '{spec.context}', "
                    "which is not present in kubeconfig",
                    podspec=spec.podspec,
                )

    async def _build_clients(
        self, forwards: list[ForwardSpec]
    ) -> dict[str, ClusterClient | AuthError]:
        contexts = list(dict.fromkeys(spec.context for spec in forwards))
        results = await asyncio.gather(
            *(self.provider.create_client(context) for context in contexts),
            return_exceptions=True,
        )

        clients: dict[str, ClusterClient | AuthError] = {}
        for context, result in zip(contexts, results):
            if isinstance(result, AuthError):
                logger.error(
                    "Error creating kube client", context=context, error=str(result)
                )
                clients[context] = result
            elif isinstance(result, BaseException):
                raise result
            else:
                clients[context] = result
        return clients

    async def run(
        self,
        specs: Iterable[ForwardSpec],
        shutdown: ShutdownSignal,
        registry: ForwardRegistry | None = None,
    ) -> list[ForwardState]:
        """Serve every forward until shutdown, then drain all spawned work.

        Args:
            specs: Forwards to serve
            shutdown: Signal that ends the run
            registry: State store (created from specs if None)

        Returns:
            Final state of every forward
        """
        forwards = list(specs)
        registry = registry if registry is not None else ForwardRegistry(forwards)
        watch = shutdown.observe()
        supervisor = TaskSupervisor()

        self._validate_contexts(forwards)
        log_forwards(forwards)

        clients = await self._build_clients(forwards)

        try:
            for index, spec in enumerate(forwards):
                if shutdown.stopped:
                    break

                client = clients[spec.context]
                if isinstance(client, AuthError):
                    registry.mark_failed(index, str(client))
                    continue

                manager = ListenerManager(
                    index,
                    spec,
                    client,
                    watch,
                    supervisor,
                    registry=registry,
                    bind_addresses=self.settings.bind_addresses,
                    buffer_size=self.settings.buffer_size,
                    backlog=self.settings.listen_backlog,
                )
                try:
                    manager.bind()
                except BindError as e:
                    registry.mark_failed(index, str(e))
                    continue

                manager.start()
                registry.update_status(index, ForwardStatus.RUNNING)
                logger.info(
                    "Forward listening",
                    podspec=spec.podspec,
                    local_port=spec.local_port,
                    remote_port=spec.remote_port,
                )

            await watch.wait()
        finally:
            shutdown.signal_stop()
            cancelled = await supervisor.drain(timeout=self.settings.drain_timeout)
            registry.mark_stopped()
            logger.info("All forwards stopped", cancelled_tasks=cancelled)

        return registry.snapshot()
