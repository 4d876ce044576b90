"""Tests for forward state and relay outcome models."""

import pytest
from pydantic import ValidationError

from kube_tunnel.config import ForwardSpec
from kube_tunnel.tunnels.models import (
    DISPOSITIONS,
    Disposition,
    ForwardState,
    ForwardStatus,
    RelayOutcome,
    disposition_for,
)


@pytest.fixture
def spec():
    return ForwardSpec(
        context="dev",
        namespace="default",
        workload_name="web-0",
        remote_port=80,
        local_port=8080,
    )


class TestRelayOutcome:
    def test_outcome_values(self):
        """Outcome enum values are stable strings"""
        assert RelayOutcome.CLIENT_CLOSED == "client_closed"
        assert RelayOutcome.REMOTE_CLOSED == "remote_closed"
        assert RelayOutcome.CANCELLED == "cancelled"

    def test_is_error(self):
        assert RelayOutcome.CLIENT_READ_ERROR.is_error
        assert RelayOutcome.REMOTE_WRITE_ERROR.is_error
        assert not RelayOutcome.CLIENT_CLOSED.is_error
        assert not RelayOutcome.CANCELLED.is_error


class TestDispositions:
    def test_table_is_exhaustive(self):
        """Every outcome has a disposition"""
        assert set(DISPOSITIONS) == set(RelayOutcome)

    @pytest.mark.parametrize(
        "outcome",
        [
            RelayOutcome.CLIENT_CLOSED,
            RelayOutcome.CLIENT_READ_ERROR,
            RelayOutcome.CLIENT_WRITE_ERROR,
        ],
    )
    def test_client_side_outcomes_close_remote(self, outcome):
        assert disposition_for(outcome) == Disposition.CLOSE_REMOTE

    @pytest.mark.parametrize(
        "outcome",
        [
            RelayOutcome.REMOTE_CLOSED,
            RelayOutcome.REMOTE_READ_ERROR,
            RelayOutcome.REMOTE_WRITE_ERROR,
        ],
    )
    def test_remote_side_outcomes_half_close_client(self, outcome):
        assert disposition_for(outcome) == Disposition.HALF_CLOSE_CLIENT

    def test_cancelled_abandons(self):
        assert disposition_for(RelayOutcome.CANCELLED) == Disposition.ABANDON


class TestForwardState:
    def test_defaults(self, spec):
        """New state is pending with zero counters"""
        state = ForwardState(index=0, spec=spec)

        assert state.status == ForwardStatus.PENDING
        assert state.error is None
        assert state.active_connections == 0
        assert state.total_connections == 0
        assert state.started_at is None
        assert state.podspec == "default/web-0"

    def test_state_is_immutable(self, spec):
        state = ForwardState(index=0, spec=spec)

        with pytest.raises(ValidationError):
            state.status = ForwardStatus.RUNNING

    def test_with_status_running_sets_started_at(self, spec):
        state = ForwardState(index=0, spec=spec)
        running = state.with_status(ForwardStatus.RUNNING)

        assert running is not state
        assert running.status == ForwardStatus.RUNNING
        assert running.started_at is not None
        assert state.status == ForwardStatus.PENDING

    def test_with_status_failed_keeps_error(self, spec):
        state = ForwardState(index=0, spec=spec).with_status(
            ForwardStatus.FAILED, "address in use"
        )

        assert state.error == "address in use"
        assert state.stopped_at is not None

    def test_connection_counters(self, spec):
        state = ForwardState(index=0, spec=spec)
        state = state.with_connection_opened().with_connection_opened()
        state = state.with_connection_closed(RelayOutcome.CLIENT_CLOSED)

        assert state.active_connections == 1
        assert state.total_connections == 2
        assert state.last_outcome == RelayOutcome.CLIENT_CLOSED

    def test_connection_closed_never_negative(self, spec):
        state = ForwardState(index=0, spec=spec).with_connection_closed(
            RelayOutcome.CANCELLED
        )

        assert state.active_connections == 0
