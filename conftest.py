"""Shared fixtures: in-memory stand-ins for tmux, kubectl, psutil and the prober."""

from pathlib import Path

import pytest
import yaml
from box import Box

from common.errors import SessionError, WindowError
from connectors.multiplexer_interface import WindowInfo
from connectors.probes import ProbeResult

SCENARIO = [
    {"name": "dependency-controller", "repo": "https://github.com/mNi-Cloud/dependency-controller.git",
     "type": "controller", "has_tiltfile": True, "prerequisite": True},
    {"name": "api-gateway", "repo": "https://github.com/mNi-Cloud/api-gateway.git",
     "type": "service", "has_tiltfile": True},
    {"name": "vpc-controller", "repo": "https://github.com/mNi-Cloud/vpc-controller.git",
     "type": "controller", "has_tiltfile": True},
    {"name": "mni-cli", "repo": "https://github.com/mNi-Cloud/mni-cli.git", "type": "tool"},
]

FAST_SETTINGS = {
    "stagger_seconds": 2,
    "prerequisite_interval": 1,
    "prerequisite_attempts": 5,
    "interrupt_grace": 1,
    "shutdown_wait": 3,
}


class FakeSessions:
    """Session manager keeping sessions in a dict; records every call in ``calls``."""

    multiplexer_type = "fake"

    def __init__(self):
        self.sessions: dict[str, list[str]] = {}
        self.dispatched: list[tuple[str, str, str]] = []
        self.environments: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.dead: set[str] = set()
        self.attached: list[str] = []

    def session_exists(self, name):
        return name in self.sessions

    def create_session(self, name, initial_window, working_dir):
        self.calls.append(("create_session", name))
        if name in self.sessions:
            raise SessionError(f"tmux session '{name}' already exists")
        self.sessions[name] = [initial_window]

    def create_window(self, session, window, working_dir, environment=None):
        self.calls.append(("create_window", window))
        windows = self._windows(session)
        if window in windows:
            raise WindowError(f"Window '{window}' already exists in session '{session}'")
        windows.append(window)
        self.environments[window] = dict(environment or {})

    def dispatch(self, session, window, command_text):
        if window not in self._windows(session):
            raise WindowError(f"Window '{window}' does not exist in session '{session}'")
        self.calls.append(("dispatch", window, command_text))
        self.dispatched.append((session, window, command_text))

    def interrupt(self, session, window):
        if window not in self._windows(session):
            raise WindowError(f"Window '{window}' does not exist in session '{session}'")
        self.calls.append(("interrupt", window))

    def list_windows(self, session):
        return list(self._windows(session))

    def window_details(self, session):
        return [WindowInfo(index=i, name=w, pane_pid=1000 + i, pane_dead=w in self.dead, command="tilt")
                for i, w in enumerate(self._windows(session))]

    def destroy_session(self, name):
        self.calls.append(("destroy_session", name))
        self.sessions.pop(name, None)

    def attach(self, name):
        self.attached.append(name)

    def _windows(self, session):
        if session not in self.sessions:
            raise SessionError(f"tmux session '{session}' does not exist")
        return self.sessions[session]

    def created_windows(self):
        return [call[1] for call in self.calls if call[0] == "create_window"]


class FakeCluster:
    def __init__(self, reachable=True, managed=0, delete_ok=True):
        self.reachable = reachable
        self.managed = managed
        self.delete_ok = delete_ok
        self.deleted: list[tuple] = []

    @property
    def is_reachable(self):
        return self.reachable

    def count_managed(self, selector, kinds=("deployments", "services", "pods")):
        return self.managed if self.reachable else None

    def delete_managed(self, selector, kinds):
        self.deleted.append((selector, tuple(kinds)))
        return self.delete_ok


class FakeProcesses:
    def __init__(self, running=None, descendants=True):
        self.running = running or []
        self.descendants = descendants
        self.killed_patterns: list[list[str]] = []

    def find_processes(self, patterns, ports=None):
        return [Box(p) for p in self.running if ports is None or p["port"] in ports]

    def kill_processes(self, patterns, grace=3, ports=None):
        self.killed_patterns.append(list(patterns))
        return [p.pid for p in self.find_processes(patterns, ports)]

    def pid_running(self, pid):
        return pid is not None

    def has_descendant(self, pid, patterns):
        return self.descendants


class FakeProbe:
    """Answers READY unless the URL is listed in ``down``; records what it was asked."""

    def __init__(self, down=(), sessions=None):
        self.down = set(down)
        self.sessions = sessions
        self.checks = []
        self.windows_at_call: list[list[str]] = []

    def __call__(self, check, sleep=None, client=None):
        self.checks.append(check)
        if self.sessions is not None:
            self.windows_at_call.append(self.sessions.created_windows())
        return ProbeResult.TIMEOUT if check.url in self.down else ProbeResult.READY


class Sleeps(list):
    def __call__(self, seconds):
        self.append(seconds)


def write_config(tmp_path: Path, components=None, settings=None, make_dirs=True, marker=True) -> Path:
    """Write components.yaml and (optionally) the component directories with a Tiltfile."""
    components = SCENARIO if components is None else components
    root = tmp_path / "mni-backend"
    root.mkdir(parents=True, exist_ok=True)
    if make_dirs:
        for entry in components:
            workdir = root / entry["name"]
            workdir.mkdir(exist_ok=True)
            if marker:
                (workdir / "Tiltfile").write_text("# tilt\n")
    config_dir = tmp_path / "dev-env"
    config_dir.mkdir(parents=True, exist_ok=True)
    path = config_dir / "components.yaml"
    merged = dict(FAST_SETTINGS)
    merged.update(settings or {})
    path.write_text(yaml.safe_dump({"settings": merged, "components": components}, sort_keys=False))
    return path


@pytest.fixture(autouse=True)
def _log_to_tmp(tmp_path, monkeypatch):
    monkeypatch.setenv("TILTMUX_LOG_FILE", str(tmp_path / "tiltmux.log"))


@pytest.fixture
def config_path(tmp_path):
    return write_config(tmp_path)


@pytest.fixture
def sessions():
    return FakeSessions()


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def processes():
    return FakeProcesses()


@pytest.fixture
def sleeps():
    return Sleeps()


@pytest.fixture
def all_tools():
    return lambda tool: f"/usr/bin/{tool}"
