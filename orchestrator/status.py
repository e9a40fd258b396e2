"""Read-only status aggregation: session, windows, backends, UIs and drift."""

from __future__ import annotations

import logging

import httpx
from pydantic import BaseModel, Field, computed_field

from common.errors import ConfigError, DriftWarning, SessionError
from connectors import process_connector
from connectors.cluster_connector import KubectlConnector
from connectors.multiplexer_interface import MultiplexerSessionManager
from connectors.probes import http_check, probe

from .models import ComponentRegistry, Settings
from .ports import allocate

logger = logging.getLogger(__name__)


class WindowStatus(BaseModel):
    index: int | None = None
    name: str
    pane_pid: int | None = None
    pane_dead: bool = False
    command: str = ""
    alive: bool = False


class ComponentStatus(BaseModel):
    name: str
    port: int
    url: str
    has_window: bool = False
    ui_ready: bool = False


class ProcessStatus(BaseModel):
    pid: int
    port: int | None = None
    cmdline: str = ""


class StatusSnapshot(BaseModel):
    session_name: str
    session_exists: bool = False
    windows: list[WindowStatus] = Field(default_factory=list)
    registry_url: str = ""
    registry_ready: bool = False
    cluster_ready: bool = False
    managed_objects: int | None = None
    components: list[ComponentStatus] = Field(default_factory=list)
    processes: list[ProcessStatus] = Field(default_factory=list)
    drift: list[DriftWarning] = Field(default_factory=list)

    @computed_field
    @property
    def degraded(self) -> bool:
        return bool(self.drift)


class StatusReporter:
    """
    Build a StatusSnapshot without changing anything.

    The port table is re-derived with ``ports.allocate`` on every call, so it
    matches what ``up`` assigned without sharing any state with it.
    A missing registry (no config file) still yields a snapshot.
    """

    def __init__(self, registry: ComponentRegistry | None, sessions: MultiplexerSessionManager,
                 cluster: KubectlConnector | None = None, probe_fn=probe,
                 processes=process_connector, settings: Settings | None = None,
                 config_problem: str | None = None):
        self.registry = registry
        self.settings = registry.settings if registry is not None else (settings or Settings())
        self.sessions = sessions
        self.cluster = cluster or KubectlConnector(timeout=self.settings.cluster_timeout)
        self.probe_fn = probe_fn
        self.processes = processes
        self.config_problem = config_problem

    def report(self) -> StatusSnapshot:
        settings = self.settings
        snapshot = StatusSnapshot(session_name=settings.session_name, registry_url=settings.registry_url)
        if self.registry is None and self.config_problem:
            snapshot.drift.append(DriftWarning("config", self.config_problem))

        snapshot.session_exists = self.sessions.session_exists(settings.session_name)
        if snapshot.session_exists:
            try:
                snapshot.windows = self._windows()
            except SessionError as exc:
                snapshot.drift.append(DriftWarning(settings.session_name, exc.describe()))

        snapshot.processes = [ProcessStatus(pid=p.pid, port=p.port, cmdline=p.cmdline)
                              for p in self.processes.find_processes(settings.tool_process_patterns)]

        snapshot.cluster_ready = self.cluster.is_reachable
        if snapshot.cluster_ready:
            snapshot.managed_objects = self.cluster.count_managed(settings.cleanup_selector)

        with httpx.Client(follow_redirects=False) as client:
            snapshot.registry_ready = bool(self.probe_fn(
                http_check(settings.registry_url, settings.registry_ready_status), client=client))
            snapshot.components = self._components(snapshot, client)

        snapshot.drift += self._drift(snapshot)
        for warning in snapshot.drift:
            logger.warning("Drift: %s", warning)
        return snapshot

    def _windows(self) -> list[WindowStatus]:
        windows = []
        for info in self.sessions.window_details(self.settings.session_name):
            alive = not info.pane_dead and self.processes.pid_running(info.pane_pid)
            windows.append(WindowStatus(index=info.index, name=info.name, pane_pid=info.pane_pid,
                                        pane_dead=info.pane_dead, command=info.command or "", alive=alive))
        return windows

    def _components(self, snapshot: StatusSnapshot, client: httpx.Client) -> list[ComponentStatus]:
        if self.registry is None:
            return []
        try:
            allocation = allocate(self.registry, self.settings.base_port)
        except ConfigError as exc:
            snapshot.drift.append(DriftWarning("config", exc.describe()))
            return []
        window_names = {w.name for w in snapshot.windows}
        rows = []
        for name, port in allocation.items():
            url = self.settings.ui_url(port)
            ready = bool(self.probe_fn(http_check(url, self.settings.ui_ready_status), client=client))
            rows.append(ComponentStatus(name=name, port=port, url=url,
                                        has_window=name in window_names, ui_ready=ready))
        return rows

    def _drift(self, snapshot: StatusSnapshot) -> list[DriftWarning]:
        drift = []
        name = self.settings.session_name
        if not snapshot.session_exists:
            orphans = snapshot.processes
            if snapshot.components:
                # tilt runs of other projects use other ports
                ports = {c.port for c in snapshot.components}
                orphans = [p for p in orphans if process_connector.uses_port(p, ports)]
            if orphans:
                drift.append(DriftWarning(
                    "tilt", f"{len(orphans)} tilt process(es) running without session '{name}'"
                            " (orphans, run 'tiltmux down')"))
            return drift

        for component in snapshot.components:
            if not component.has_window:
                drift.append(DriftWarning(component.name, f"no window in session '{name}'"))
        for window in snapshot.windows:
            if window.name == self.settings.initial_window:
                continue
            if not window.alive:
                drift.append(DriftWarning(window.name, "window has no backing process"))
            elif not self.processes.has_descendant(window.pane_pid, self.settings.tool_process_patterns):
                drift.append(DriftWarning(window.name,
                                          f"no tilt process in window (pane is running {window.command or 'nothing'})"))
        return drift
