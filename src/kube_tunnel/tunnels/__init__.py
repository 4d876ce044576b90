"""Tunnel orchestration: listeners, relays and the shutdown broadcast."""

from .forwarder import ConnectionForwarder, relay
from .listener import ListenerManager, bind_listener
from .models import (
    DISPOSITIONS,
    Disposition,
    ForwardState,
    ForwardStatus,
    RelayOutcome,
    disposition_for,
)
from .orchestrator import Orchestrator, TunnelHandle
from .registry import ForwardRegistry, ForwardRegistryError
from .shutdown import ShutdownSignal, ShutdownWatch, StopController
from .supervisor import TaskSupervisor

__all__ = [
    "Orchestrator",
    "TunnelHandle",
    "ListenerManager",
    "bind_listener",
    "ConnectionForwarder",
    "relay",
    "ShutdownSignal",
    "ShutdownWatch",
    "StopController",
    "TaskSupervisor",
    "ForwardRegistry",
    "ForwardRegistryError",
    "ForwardState",
    "ForwardStatus",
    "RelayOutcome",
    "Disposition",
    "DISPOSITIONS",
    "disposition_for",
]
