"""Forward state and relay outcome models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..config import ForwardSpec


class ForwardStatus(str, Enum):
    """Forward status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    FAILED = "failed"
    STOPPED = "stopped"


class RelayOutcome(str, Enum):
    """Why a relay loop terminated."""

    CLIENT_CLOSED = "client_closed"
    CLIENT_READ_ERROR = "client_read_error"
    CLIENT_WRITE_ERROR = "client_write_error"
    REMOTE_CLOSED = "remote_closed"
    REMOTE_READ_ERROR = "remote_read_error"
    REMOTE_WRITE_ERROR = "remote_write_error"
    CANCELLED = "cancelled"

    @property
    def is_error(self) -> bool:
        return self.value.endswith("_error")


class Disposition(str, Enum):
    """What happens to the two sockets of a terminated connection."""

    CLOSE_REMOTE = "close_remote"
    HALF_CLOSE_CLIENT = "half_close_client"
    ABANDON = "abandon"


DISPOSITIONS: dict[RelayOutcome, Disposition] = {
    RelayOutcome.CLIENT_CLOSED: Disposition.CLOSE_REMOTE,
    RelayOutcome.CLIENT_READ_ERROR: Disposition.CLOSE_REMOTE,
    RelayOutcome.CLIENT_WRITE_ERROR: Disposition.CLOSE_REMOTE,
    RelayOutcome.REMOTE_CLOSED: Disposition.HALF_CLOSE_CLIENT,
    RelayOutcome.REMOTE_READ_ERROR: Disposition.HALF_CLOSE_CLIENT,
    RelayOutcome.REMOTE_WRITE_ERROR: Disposition.HALF_CLOSE_CLIENT,
    RelayOutcome.CANCELLED: Disposition.ABANDON,
}


def disposition_for(outcome: RelayOutcome) -> Disposition:
    """Look up the socket disposition for a relay outcome."""
    return DISPOSITIONS[outcome]


class ForwardState(BaseModel):
    """Observable state of one configured forward (immutable)."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0, description="Position in the configured forward list")
    spec: ForwardSpec
    status: ForwardStatus = Field(default=ForwardStatus.PENDING)
    error: str | None = Field(default=None, description="Why the forward failed")
    active_connections: int = Field(default=0, ge=0)
    total_connections: int = Field(default=0, ge=0)
    last_outcome: RelayOutcome | None = Field(default=None)
    started_at: datetime | None = Field(default=None)
    stopped_at: datetime | None = Field(default=None)

    @property
    def podspec(self) -> str:
        return self.spec.podspec

    def with_status(
        self, status: ForwardStatus, error: str | None = None
    ) -> "ForwardState":
        """Create new state with updated status (immutable pattern).

        Args:
            status: New forward status
            error: Failure reason, kept only for FAILED

        Returns:
            New state instance
        """
        update_data: dict[str, Any] = {"status": status}

        if status == ForwardStatus.RUNNING and self.started_at is None:
            update_data["started_at"] = datetime.now()
        elif status in (ForwardStatus.STOPPED, ForwardStatus.FAILED):
            update_data["stopped_at"] = datetime.now()

        if status == ForwardStatus.FAILED:
            update_data["error"] = error

        return self.model_copy(update=update_data)

    def with_connection_opened(self) -> "ForwardState":
        return self.model_copy(
            update={
                "active_connections": self.active_connections + 1,
                "total_connections": self.total_connections + 1,
            }
        )

    def with_connection_closed(self, outcome: RelayOutcome) -> "ForwardState":
        return self.model_copy(
            update={
                "active_connections": max(0, self.active_connections - 1),
                "last_outcome": outcome,
            }
        )
