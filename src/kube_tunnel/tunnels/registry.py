"""Forward registry shared between the orchestrator and its presentation layer."""

import threading
from collections.abc import Iterable
from typing import Any

from ..common.exceptions import TunnelError
from ..common.logging import get_logger
from ..config import ForwardSpec
from .models import ForwardState, ForwardStatus, RelayOutcome

logger = get_logger(__name__)


class ForwardRegistryError(TunnelError):
    """Exception raised for forward registry operations."""

    pass


class ForwardRegistry:
    """Thread-safe store of one ForwardState per configured forward.

    Forwards are keyed by their position in the configuration, so duplicate
    specs keep separate states.
    """

    def __init__(self, specs: Iterable[ForwardSpec] = ()) -> None:
        self._lock = threading.Lock()
        self._states: list[ForwardState] = [
            ForwardState(index=index, spec=spec) for index, spec in enumerate(specs)
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def _replace(self, index: int, state: ForwardState) -> None:
        self._states[index] = state

    def get(self, index: int) -> ForwardState:
        """Get state by index.

        Raises:
            ForwardRegistryError: If index is unknown
        """
        with self._lock:
            return self._get_locked(index)

    def _get_locked(self, index: int) -> ForwardState:
        if not 0 <= index < len(self._states):
            raise ForwardRegistryError(f"Forward #{index} not found")
        return self._states[index]

    def update_status(
        self, index: int, status: ForwardStatus, error: str | None = None
    ) -> ForwardState:
        """Update forward status.

        Args:
            index: Forward position
            status: New status
            error: Failure reason for FAILED

        Returns:
            Updated state
        """
        with self._lock:
            state = self._get_locked(index).with_status(status, error)
            self._replace(index, state)

        logger.debug(
            "Updated forward status",
            podspec=state.podspec,
            local_port=state.spec.local_port,
            status=status.value,
        )
        return state

    def mark_failed(self, index: int, error: str) -> ForwardState:
        return self.update_status(index, ForwardStatus.FAILED, error)

    def mark_stopped(self) -> None:
        """Move every running forward to STOPPED."""
        with self._lock:
            for index, state in enumerate(self._states):
                if state.status == ForwardStatus.RUNNING:
                    self._replace(index, state.with_status(ForwardStatus.STOPPED))

    def connection_opened(self, index: int) -> None:
        with self._lock:
            self._replace(index, self._get_locked(index).with_connection_opened())

    def connection_closed(self, index: int, outcome: RelayOutcome) -> None:
        with self._lock:
            self._replace(
                index, self._get_locked(index).with_connection_closed(outcome)
            )

    def list_states(self, status: ForwardStatus | None = None) -> list[ForwardState]:
        """List states in configuration order, optionally filtered by status."""
        with self._lock:
            states = list(self._states)

        if status is not None:
            states = [s for s in states if s.status == status]

        return states

    def snapshot(self) -> list[ForwardState]:
        return self.list_states()

    def to_dict(self) -> dict[str, Any]:
        """Serialize registry to a JSON-friendly dictionary."""
        return {"forwards": [state.model_dump(mode="json") for state in self.snapshot()]}
