"""
Orchestrator: drives one run through

    IDLE -> PREFLIGHT -> STARTING -> RUNNING -> STOPPING -> STOPPED

with BLOCKED (failed precondition, terminal) and FAILED (aborted while
starting, terminal). The prerequisite component is always started first and
gates every other window on its readiness; the rest start in declaration
order with a fixed stagger.

All external effects go through injected collaborators (session manager,
cluster connector, prober, process connector, sleep, which) so the state
machine can be exercised without tmux, tilt or a cluster.
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from common.errors import (
    ConfigError,
    MissingComponentDirectory,
    PreconditionError,
    ReadinessTimeout,
    SessionError,
    TiltmuxError,
    WindowError,
)
from connectors import process_connector
from connectors.cluster_connector import KubectlConnector
from connectors.multiplexer_interface import MultiplexerSessionManager
from connectors.probes import http_check, probe

from .models import Component, ComponentRegistry
from .ports import allocate, startup_order

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    PREFLIGHT = "preflight"
    BLOCKED = "blocked"
    STARTING = "starting"
    FAILED = "failed"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.IDLE: {RunState.PREFLIGHT, RunState.STOPPING},
    RunState.PREFLIGHT: {RunState.BLOCKED, RunState.STARTING, RunState.RUNNING},
    RunState.STARTING: {RunState.RUNNING, RunState.FAILED, RunState.STOPPING},
    RunState.FAILED: {RunState.STOPPING},
    RunState.RUNNING: {RunState.STOPPING},
    RunState.STOPPING: {RunState.STOPPED},
    RunState.STOPPED: {RunState.PREFLIGHT, RunState.STOPPING},
    RunState.BLOCKED: set(),
}


class ExistingSessionPolicy(str, Enum):
    FAIL = "fail"
    REUSE = "reuse"
    RECREATE = "recreate"


@dataclass
class UpResult:
    allocation: dict[str, int]
    started: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    reused: bool = False


@dataclass
class DownResult:
    session_found: bool = False
    stopped_windows: list[str] = field(default_factory=list)
    killed_pids: list[int] = field(default_factory=list)
    cleanup_ran: bool = False
    warnings: list[str] = field(default_factory=list)


def _fail_on_existing(name: str) -> ExistingSessionPolicy:
    return ExistingSessionPolicy.FAIL


def _continue_without_registry(url: str) -> bool:
    return True


class Orchestrator:
    """
    Start and stop one tilt window per orchestrated component.

    Args:
        registry: loaded ComponentRegistry (components + settings).
        sessions: multiplexer session manager (tmux in production).
        cluster: KubectlConnector-like object (is_reachable, delete_managed).
        probe_fn: readiness prober, ``probe(check, sleep=...)``.
        processes: object exposing kill_processes(patterns) (process_connector).
        sleep: delay function for staggers and grace periods.
        which: tool lookup, ``shutil.which`` by default.
    """

    def __init__(self, registry: ComponentRegistry, sessions: MultiplexerSessionManager,
                 cluster: KubectlConnector | None = None, probe_fn=probe, processes=process_connector,
                 sleep: Callable[[float], None] = time.sleep, which=shutil.which):
        self.registry = registry
        self.settings = registry.settings
        self.sessions = sessions
        self.cluster = cluster or KubectlConnector(timeout=self.settings.cluster_timeout)
        self.probe_fn = probe_fn
        self.processes = processes
        self.sleep = sleep
        self.which = which
        self.state = RunState.IDLE
        self.history: list[RunState] = [RunState.IDLE]
        self.warnings: list[str] = []
        self.allocation: dict[str, int] = {}

    @property
    def session_name(self) -> str:
        return self.settings.session_name

    # -- state -------------------------------------------------------------

    def _transition(self, new_state: RunState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid transition {self.state.value} -> {new_state.value}")
        logger.info("State %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    # -- preflight ---------------------------------------------------------

    def preflight(self, confirm_registry: Callable[[str], bool] = _continue_without_registry) -> None:
        """Check every hard precondition. Any failure leaves the run BLOCKED."""
        self._transition(RunState.PREFLIGHT)
        try:
            self._check_tools()
            self._check_directories()
            if not self.cluster.is_reachable:
                raise PreconditionError("Cannot connect to Kubernetes cluster",
                                        hint="configure the kubectl context first")
            self._check_registry(confirm_registry)
        except TiltmuxError as exc:
            logger.error("Preflight failed: %s", exc.describe())
            self._transition(RunState.BLOCKED)
            raise

    def _check_tools(self) -> None:
        missing = [tool for tool in self.settings.required_tools if self.which(tool) is None]
        if missing:
            raise PreconditionError(f"Missing required tools: {', '.join(missing)}",
                                    hint="run the tool setup step first")

    def _check_directories(self) -> None:
        ordered = startup_order(self.registry)
        if not ordered:
            raise ConfigError(f"No orchestrated components (has_tiltfile: true) in {self.registry.source}")
        root = self.registry.components_root
        if not root.is_dir():
            raise MissingComponentDirectory("components root", root)
        # port range errors must surface before any session is touched
        self.allocation = allocate(self.registry, self.settings.base_port)
        for component in ordered:
            workdir = self.registry.component_dir(component)
            if not workdir.is_dir():
                raise MissingComponentDirectory(component.name, workdir)
        prerequisite = ordered[0] if ordered[0].prerequisite else None
        marker = self.settings.startup_marker
        if prerequisite and marker and not (self.registry.component_dir(prerequisite) / marker).exists():
            raise PreconditionError(f"{prerequisite.name}: no {marker} found, other components depend on it",
                                    hint="sync the component sources first")

    def _check_registry(self, confirm_registry: Callable[[str], bool]) -> None:
        url = self.settings.registry_url
        check = http_check(url, self.settings.registry_ready_status, max_attempts=1)
        if self.probe_fn(check, sleep=self.sleep):
            logger.info("Docker registry at %s is accessible", url)
            return
        if not confirm_registry(url):
            raise PreconditionError(f"Docker registry at {url} is not accessible",
                                    hint="run the registry setup step first")
        self._warn(f"Docker registry at {url} is not accessible, continuing anyway")

    # -- up ----------------------------------------------------------------

    def up(self, resolve_existing: Callable[[str], ExistingSessionPolicy] = _fail_on_existing,
           confirm_registry: Callable[[str], bool] = _continue_without_registry) -> UpResult:
        """
        Run IDLE -> RUNNING.

        Args:
            resolve_existing: called with the session name when it already exists;
                decides between failing, reusing it untouched and recreating it.
            confirm_registry: called with the registry URL when it is not reachable;
                returning False blocks the run.
        """
        self.preflight(confirm_registry)
        name = self.session_name

        if self.sessions.session_exists(name):
            policy = resolve_existing(name)
            logger.info("Session %s already exists, policy: %s", name, policy.value)
            if policy is ExistingSessionPolicy.REUSE:
                self._transition(RunState.RUNNING)
                return UpResult(allocation=dict(self.allocation),
                                warnings=list(self.warnings), reused=True)
            if policy is not ExistingSessionPolicy.RECREATE:
                self._transition(RunState.BLOCKED)
                raise SessionError(f"tmux session '{name}' already exists",
                                   hint="pass --reuse to keep it, --recreate to restart it, or run 'tiltmux down'")
            self.sessions.destroy_session(name)

        self._transition(RunState.STARTING)
        result = UpResult(allocation=dict(self.allocation))
        try:
            self._start_all(result)
        except KeyboardInterrupt:
            logger.warning("Interrupted while starting, stopping what was started")
            self.down()
            raise
        except TiltmuxError as exc:
            logger.error("Start aborted: %s", exc.describe())
            self._transition(RunState.FAILED)
            raise
        self._transition(RunState.RUNNING)
        result.warnings = list(self.warnings)
        return result

    def _start_all(self, result: UpResult) -> None:
        name = self.session_name
        self.sessions.create_session(name, self.settings.initial_window, str(self.registry.components_root))
        self._banner()

        stagger = False
        for component in startup_order(self.registry):
            port = result.allocation[component.name]
            if component.prerequisite:
                # failures here are fatal: nothing else can start safely
                self._start_component(component, port)
                result.started.append(component.name)
                self._wait_ready(component, port)
                continue
            if stagger:
                self.sleep(self.settings.stagger_seconds)
            try:
                started = self._start_component(component, port)
            except (WindowError, SessionError) as exc:
                self._warn(f"{component.name}: {exc.describe()}")
                started = False
            if started:
                result.started.append(component.name)
                stagger = True
            else:
                result.skipped.append(component.name)

    def _start_component(self, component: Component, port: int) -> bool:
        workdir = self.registry.component_dir(component)
        marker = self.settings.startup_marker
        if marker and not (workdir / marker).exists():
            self._warn(f"{component.name}: no {marker} found in {workdir}, skipping")
            return False
        logger.info("Starting %s on port %d", component.name, port)
        self.sessions.create_window(self.session_name, component.name, str(workdir),
                                    self.window_environment(workdir))
        self.sessions.dispatch(self.session_name, component.name,
                               self.settings.startup_command.format(port=port))
        return True

    def _wait_ready(self, component: Component, port: int) -> None:
        url = self.settings.ui_url(port)
        check = http_check(url, self.settings.ui_ready_status,
                           interval=self.settings.prerequisite_interval,
                           max_attempts=self.settings.prerequisite_attempts)
        logger.info("Waiting for %s at %s", component.name, url)
        if not self.probe_fn(check, sleep=self.sleep):
            raise ReadinessTimeout(
                f"{component.name} did not become ready at {url} "
                f"after {check.max_attempts} attempts",
                hint=f"inspect it with 'tmux attach -t {self.session_name}', then run 'tiltmux down'",
            )
        logger.info("%s is ready", component.name)

    def window_environment(self, workdir: Path) -> dict[str, str]:
        """Variables handed to a component window. Our own os.environ is never modified."""
        env = dict(self.settings.environment)
        entries = []
        for entry in self.settings.path_prepend:
            path = Path(entry).expanduser()
            entries.append(str(path if path.is_absolute() else workdir / path))
        entries.append(os.environ.get("PATH", ""))
        env["PATH"] = os.pathsep.join(e for e in entries if e)
        return env

    def _banner(self) -> None:
        lines = [
            "clear",
            f"echo '=== {self.session_name} Tilt Dashboard ==='",
            "echo 'Switch windows: Ctrl-b [number] | List windows: Ctrl-b w | Detach: Ctrl-b d'",
            "echo 'Starting components...'",
        ]
        try:
            for line in lines:
                self.sessions.dispatch(self.session_name, self.settings.initial_window, line)
        except (WindowError, SessionError) as exc:
            self._warn(f"{self.settings.initial_window}: banner not shown: {exc.describe()}")

    # -- down --------------------------------------------------------------

    def down(self, cleanup: bool = False) -> DownResult:
        """
        Run -> STOPPED. Each component window gets an interrupt, a grace
        period, then ``exit``; the session is destroyed afterwards. Without a
        session this only reaps orphaned tool processes started on this
        configuration's ports.
        """
        ports = set(allocate(self.registry, self.settings.base_port).values())
        self._transition(RunState.STOPPING)
        result = DownResult()
        name = self.session_name

        if not self.sessions.session_exists(name):
            logger.info("tmux session %s not found", name)
            result.killed_pids += self.processes.kill_processes(self.settings.tool_process_patterns, ports=ports)
            if result.killed_pids:
                self._warn(f"Killed orphaned tilt processes: {result.killed_pids}")
        else:
            result.session_found = True
            for window in self.sessions.list_windows(name):
                if window == self.settings.initial_window:
                    continue
                try:
                    self.sessions.interrupt(name, window)
                    self.sleep(self.settings.interrupt_grace)
                    self.sessions.dispatch(name, window, "exit")
                    result.stopped_windows.append(window)
                except (WindowError, SessionError) as exc:
                    # window exited on its own between listing and signalling
                    self._warn(f"{window}: {exc.describe()}")
            if result.stopped_windows:
                self.sleep(self.settings.shutdown_wait)
            self.sessions.destroy_session(name)

        if cleanup:
            self._cleanup(result)
        self._transition(RunState.STOPPED)
        result.warnings = list(self.warnings)
        return result

    def _cleanup(self, result: DownResult) -> None:
        logger.info("Cleaning up cluster objects (%s)", self.settings.cleanup_selector)
        if not self.cluster.delete_managed(self.settings.cleanup_selector, self.settings.cleanup_kinds):
            self._warn("Cluster cleanup failed or cluster unreachable")
        result.killed_pids += self.processes.kill_processes(self.settings.helper_process_patterns)
        result.cleanup_ran = True
