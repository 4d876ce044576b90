"""Console front end: start the tunnels, show their status, stop on Ctrl+C.

Usage:
    kube-tunnel run [--config PATH] [--log-level LEVEL] [--json-logs] [--json]
    kube-tunnel check [--config PATH]
"""

import time
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from .cluster.k8s import KubernetesClientProvider
from .common.exceptions import ClusterError, ConfigurationError, OrchestratorError
from .common.logging import setup_logging
from .config import ForwardSpec, TunnelConfig, load_config
from .tunnels.models import ForwardState, ForwardStatus
from .tunnels.orchestrator import Orchestrator, TunnelHandle

app = typer.Typer(
    name="kube-tunnel",
    help="Forward local ports to Kubernetes pods",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

STATUS_STYLES = {
    ForwardStatus.PENDING: "dim",
    ForwardStatus.RUNNING: "green",
    ForwardStatus.FAILED: "red",
    ForwardStatus.STOPPED: "yellow",
}

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Forwards file (default: $KUBE_TUNNEL_CONFIG or ~/.config/kube-tunnel/forwards.toml)",
    ),
]


def print_error(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")


def _load(config_path: Path | None) -> TunnelConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(1)


def forwards_table(specs: list[ForwardSpec]) -> Table:
    """Table of configured forwards."""
    table = Table(title="Port forwards")
    table.add_column("Context")
    table.add_column("Name")
    table.add_column("Port", justify="right")

    for spec in specs:
        table.add_row(
            spec.context, spec.podspec, f"{spec.local_port} → {spec.remote_port}"
        )
    return table


def states_table(states: list[ForwardState]) -> Table:
    """Table of forward states with status and connection counters."""
    table = Table(title="Port forwards")
    table.add_column("Status")
    table.add_column("Name")
    table.add_column("Port", justify="right")
    table.add_column("Connections", justify="right")
    table.add_column("Error")

    for state in states:
        style = STATUS_STYLES[state.status]
        table.add_row(
            f"[{style}]{state.status.value}[/{style}]",
            state.podspec,
            f"{state.spec.local_port} → {state.spec.remote_port}",
            f"{state.active_connections}/{state.total_connections}",
            state.error or "",
        )
    return table


def wait_until_settled(handle: TunnelHandle, timeout: float = 30.0) -> None:
    """Wait until no forward is PENDING or the run ends."""
    deadline = time.monotonic() + timeout
    while handle.is_alive() and time.monotonic() < deadline:
        if all(s.status != ForwardStatus.PENDING for s in handle.states()):
            return
        time.sleep(0.1)


@app.command()
def run(
    config_path: ConfigOption = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", "-l", help="Override log level")
    ] = None,
    json_logs: Annotated[
        bool, typer.Option("--json-logs", help="Emit logs as JSON")
    ] = False,
    log_file: Annotated[
        Path | None, typer.Option("--log-file", help="Also write logs to this file")
    ] = None,
    json_output: Annotated[
        bool, typer.Option("--json", help="Print the final forward states as JSON")
    ] = False,
):
    """Start every configured forward and serve until Ctrl+C."""
    config = _load(config_path)
    settings = config.settings

    setup_logging(
        level=log_level or settings.log_level,
        json_format=json_logs or settings.json_logs,
        log_file=str(log_file) if log_file else None,
    )

    if not config.forwards:
        print_error("No forwards configured.")
        raise typer.Exit(1)

    orchestrator = Orchestrator(KubernetesClientProvider(settings.kubeconfig), settings)
    handle, controller = orchestrator.start(config.forwards)

    wait_until_settled(handle)
    console.print(states_table(handle.states()))
    console.print("[dim]Press Ctrl+C to stop.[/dim]")

    try:
        while handle.is_alive():
            time.sleep(0.5)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopping...[/dim]")

    controller.signal_stop()
    try:
        final = handle.join()
    except OrchestratorError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if json_output:
        console.print_json(data=handle.registry.to_dict())
    else:
        console.print(states_table(final))


@app.command()
def check(config_path: ConfigOption = None):
    """Validate the forwards file and the contexts it references."""
    config = _load(config_path)
    console.print(forwards_table(config.forwards))

    provider = KubernetesClientProvider(config.settings.kubeconfig)
    try:
        known = provider.list_contexts()
    except ClusterError as e:
        print_error(str(e))
        raise typer.Exit(1)

    missing = [context for context in config.contexts if context not in known]
    for context in missing:
        console.print(
            f"[yellow]Warning:[/yellow] context '{context}' is not present in kubeconfig"
        )

    if not missing:
        console.print("[green]Configuration OK[/green]")


def main() -> None:
    app()
