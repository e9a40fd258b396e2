import os
import subprocess
import sys

import psutil
import pytest
from box import Box

from connectors import process_connector

MARKER = "tiltmux-process-connector-test"


@pytest.fixture
def sleeper():
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)", MARKER])
    yield proc
    if proc.poll() is None:
        proc.kill()
    proc.wait(timeout=5)


def test_find_processes_matches_command_line(sleeper):
    found = process_connector.find_processes([MARKER])
    assert [p.pid for p in found] == [sleeper.pid]
    assert MARKER in found[0].cmdline
    assert found[0].port is None


def test_find_processes_never_returns_itself():
    own = " ".join(psutil.Process().cmdline())
    assert os.getpid() not in [p.pid for p in process_connector.find_processes([own])]


def test_has_descendant(sleeper):
    assert process_connector.has_descendant(os.getpid(), [MARKER])
    assert not process_connector.has_descendant(os.getpid(), ["no-such-command-anywhere"])
    assert not process_connector.has_descendant(None, [MARKER])


def test_kill_processes(sleeper):
    killed = process_connector.kill_processes([MARKER], grace=5)
    assert killed == [sleeper.pid]
    sleeper.wait(timeout=5)
    assert process_connector.find_processes([MARKER]) == []


def test_kill_processes_without_match_is_noop():
    assert process_connector.kill_processes(["no-such-command-anywhere"], grace=0) == []


def test_pid_running():
    assert process_connector.pid_running(os.getpid())
    assert not process_connector.pid_running(None)
    assert not process_connector.pid_running(0)


def test_uses_port_prefers_listening_port():
    assert process_connector.uses_port(Box(pid=1, cmdline="tilt up --port 20000", port=10350), {10350})
    assert not process_connector.uses_port(Box(pid=1, cmdline="tilt up --port 10350", port=20000), {10350})


def test_uses_port_falls_back_to_port_flag():
    assert process_connector.uses_port(Box(pid=1, cmdline="tilt up --port 10351", port=None), {10350, 10351})
    assert process_connector.uses_port(Box(pid=1, cmdline="tilt up --port=10351", port=None), {10351})
    assert not process_connector.uses_port(Box(pid=1, cmdline="tilt up", port=None), {10350})


def test_find_processes_filters_on_ports(sleeper):
    assert process_connector.find_processes([MARKER], ports={10350}) == []
