"""
launcher.py
-----------
The ``tiltmux`` command line: one command per lifecycle phase.

    tiltmux up       start one tilt window per component (prerequisite first)
    tiltmux down     stop every window and kill the tmux session
    tiltmux status   show session, windows, registry, cluster and UI state
    tiltmux ports    show the port assigned to each component

If no command is given, status is shown.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from box import Box
from rich.table import Table

from common.app_setup import console, print_and_log, print_error, print_warning, setup_logging
from common.errors import ConfigError, TiltmuxError
from connectors.cluster_connector import KubectlConnector
from connectors.connections_manager import get_session_manager
from orchestrator import (
    ComponentRegistry,
    ExistingSessionPolicy,
    Orchestrator,
    StatusReporter,
    StatusSnapshot,
    allocate,
    load_registry,
)

app = typer.Typer(add_completion=False, help="Run every Tilt-based component in one tmux session. If no command is given, status is shown.")

logger = logging.getLogger(__name__)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Path = typer.Option(Path("components.yaml"), "--config", "-c", envvar="TILTMUX_CONFIG",
                                help="Component list (components.yaml)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    log_file: Optional[str] = typer.Option(None, envvar="TILTMUX_LOG_FILE",
                                           help="Log file (default ~/.tiltmux/log.txt)"),
):
    setup_logging(app_name="tiltmux", loglevel=logging.DEBUG if verbose else logging.INFO, logfile=log_file)
    ctx.obj = Box(config=config)
    if ctx.invoked_subcommand is None:
        try:
            ctx.invoke(status, ctx=ctx, json_output=False)
        finally:
            print_and_log("[bold yellow]Tip:[/bold yellow] Use [green]--help[/green] to see all available commands.")


# -- factories (replaced in tests) -------------------------------------------

def make_orchestrator(registry: ComponentRegistry) -> Orchestrator:
    return Orchestrator(registry, sessions=get_session_manager("tmux"),
                        cluster=KubectlConnector(timeout=registry.settings.cluster_timeout))


def make_reporter(registry: Optional[ComponentRegistry], config_problem: Optional[str] = None) -> StatusReporter:
    return StatusReporter(registry, sessions=get_session_manager("tmux"), config_problem=config_problem)


# -- commands ----------------------------------------------------------------

@app.command()
def up(
    ctx: typer.Context,
    recreate: bool = typer.Option(False, "--recreate", help="Kill an existing session and start fresh"),
    reuse: bool = typer.Option(False, "--reuse", help="Keep an existing session untouched"),
    attach: bool = typer.Option(False, "--attach/--no-attach", help="Attach to the session when done"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Continue even if the image registry is down"),
):
    """Start one tilt window per component. The prerequisite component starts first and must become ready."""
    if recreate and reuse:
        print_error("--recreate and --reuse are mutually exclusive")
        raise typer.Exit(2)
    interactive = _interactive()

    def resolve_existing(name: str) -> ExistingSessionPolicy:
        if recreate:
            return ExistingSessionPolicy.RECREATE
        if reuse:
            return ExistingSessionPolicy.REUSE
        if interactive:
            print_warning(f"tmux session '{name}' already exists")
            if typer.confirm("Kill existing session and start fresh?", default=False):
                return ExistingSessionPolicy.RECREATE
            if typer.confirm("Keep it and attach?", default=True):
                return ExistingSessionPolicy.REUSE
        return ExistingSessionPolicy.FAIL

    def confirm_registry(url: str) -> bool:
        print_warning(f"Docker registry at {url} is not accessible (run the registry setup step to start it)")
        if interactive and not yes:
            return typer.confirm("Continue anyway?", default=False)
        return True

    try:
        registry = load_registry(ctx.obj.config)
        orchestrator = make_orchestrator(registry)
        result = orchestrator.up(resolve_existing, confirm_registry)
    except KeyboardInterrupt:
        print_error("Interrupted: anything already started was stopped.")
        raise typer.Exit(130)
    except TiltmuxError as exc:
        _fail(exc)

    name = registry.settings.session_name
    if result.reused:
        print_and_log(f"Reusing existing tmux session '{name}'.")
    else:
        print_and_log(f"[bold blue]=== Tilt environment started in tmux session '{name}' ===[/bold blue]")
    _print_ports(result.allocation, registry, started=None if result.reused else result.started)
    for warning in result.warnings:
        print_warning(warning)
    print_and_log(f"Attach: tmux attach -t {name}   Detach: Ctrl-b d   Windows: Ctrl-b w")

    if attach or (interactive and typer.confirm("Attach to tmux session now?", default=False)):
        orchestrator.sessions.attach(name)


@app.command()
def down(
    ctx: typer.Context,
    cleanup: Optional[bool] = typer.Option(None, "--cleanup/--no-cleanup",
                                           help="Also delete Tilt-managed cluster objects and leftover helper processes"),
):
    """Stop every tilt window (interrupt, then exit) and kill the tmux session."""
    try:
        registry = load_registry(ctx.obj.config)
        if cleanup is None:
            cleanup = _interactive() and typer.confirm("Clean up Kubernetes resources?", default=False)
        result = make_orchestrator(registry).down(cleanup=cleanup)
    except TiltmuxError as exc:
        _fail(exc)

    name = registry.settings.session_name
    if not result.session_found:
        print_warning(f"tmux session '{name}' not found, nothing to stop")
    for window in result.stopped_windows:
        print_and_log(f"Stopped tilt in {window}")
    if result.killed_pids:
        print_and_log(f"Killed leftover processes: {', '.join(str(p) for p in result.killed_pids)}")
    if result.cleanup_ran:
        print_and_log("Cluster cleanup done.")
    for warning in result.warnings:
        print_warning(warning)
    print_and_log("[green]All Tilt instances stopped![/green]")


@app.command()
def status(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Print the snapshot as JSON"),
):
    """Show session, window, registry, cluster and Tilt UI state. Always exits 0."""
    registry, problem = None, None
    try:
        registry = load_registry(ctx.obj.config)
    except ConfigError as exc:
        problem = exc.describe()
    try:
        snapshot = make_reporter(registry, problem).report()
    except TiltmuxError as exc:
        print_error(f"Cannot collect status: {exc.describe()}")
        return
    if json_output:
        typer.echo(snapshot.model_dump_json(indent=2))
        return
    _print_status(snapshot)


@app.command()
def ports(ctx: typer.Context):
    """Print the port assigned to each component. Touches nothing."""
    try:
        registry = load_registry(ctx.obj.config)
        allocation = allocate(registry, registry.settings.base_port)
    except TiltmuxError as exc:
        _fail(exc)
    _print_ports(allocation, registry)


# -- helpers -----------------------------------------------------------------

def _interactive() -> bool:
    return sys.stdin.isatty()


def _fail(exc: TiltmuxError):
    print_error(f"[ERROR] {exc.message}")
    if exc.hint:
        print_warning(f"Hint: {exc.hint}")
    raise typer.Exit(1)


def _print_ports(allocation: dict[str, int], registry: ComponentRegistry, started: Optional[list[str]] = None):
    table = Table(title="Tilt UIs")
    table.add_column("Component")
    table.add_column("Port", justify="right")
    table.add_column("URL")
    if started is not None:
        table.add_column("Window")
    for name, port in allocation.items():
        row = [name, str(port), registry.settings.ui_url(port)]
        if started is not None:
            row.append("started" if name in started else "skipped")
        table.add_row(*row)
    console.print(table)


def _up_down(flag: bool, up_word: str = "UP", down_word: str = "DOWN") -> str:
    return f"[green]{up_word}[/green]" if flag else f"[red]{down_word}[/red]"


def _print_status(snapshot: StatusSnapshot):
    console.print("\n[blue]Tmux Session Status[/blue]")
    console.print(f"Session '{snapshot.session_name}': {_up_down(snapshot.session_exists, 'RUNNING', 'NOT RUNNING')}")
    for window in snapshot.windows:
        console.print(f"  {window.index}: {window.name} ({window.command or '-'}) {_up_down(window.alive, 'alive', 'dead')}")

    console.print("\n[blue]Tilt Processes[/blue]")
    if not snapshot.processes:
        console.print(f"Status: {_up_down(False, down_word='NOT RUNNING')}")
    for proc in snapshot.processes:
        console.print(f"  PID: {proc.pid} Port: {proc.port or 'unknown'}")

    console.print("\n[blue]Docker Registry[/blue]")
    console.print(f"{snapshot.registry_url}: {_up_down(snapshot.registry_ready, 'AVAILABLE', 'NOT AVAILABLE')}")

    console.print("\n[blue]Tilt UI Status[/blue]")
    if not snapshot.components:
        console.print("  No components (components.yaml not loaded)")
    for component in snapshot.components:
        console.print(f"  {component.name} ({component.url}): {_up_down(component.ui_ready)}")

    console.print("\n[blue]Kubernetes Connection[/blue]")
    console.print(f"Status: {_up_down(snapshot.cluster_ready, 'CONNECTED', 'NOT CONNECTED')}")
    if snapshot.managed_objects:
        console.print(f"Tilt-managed resources: {snapshot.managed_objects}")
    elif snapshot.managed_objects == 0:
        console.print("No Tilt-managed resources found")

    if snapshot.degraded:
        console.print("\n[yellow]Drift[/yellow]")
        for warning in snapshot.drift:
            print_warning(str(warning))


if __name__ == "__main__":
    app()
