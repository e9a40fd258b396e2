"""
process_connector.py
--------------------
Find, inspect and reap OS processes by command line, using psutil.
No PID files: processes are matched on their command line, the same way
for orphan detection, status and cleanup.
"""

import logging
import os
import re
import signal
from typing import Collection, Iterable

import psutil
from box import Box

logger = logging.getLogger(__name__)

_PORT_FLAG = re.compile(r"--port[= ](\d+)")


def find_processes(patterns: Iterable[str], ports: Collection[int] | None = None) -> list[Box]:
    """
    Return running processes whose command line contains any of ``patterns``.
    Each result is a Box with pid, cmdline and port (first listening port or None).
    With ``ports``, only processes listening on (or started with ``--port``) one
    of those ports are returned. The current process is never returned.
    """
    patterns = [p for p in patterns if p]
    found = []
    for proc in psutil.process_iter(['pid', 'cmdline']):
        try:
            cmdline = ' '.join(proc.info['cmdline'] or [])
            if proc.pid == os.getpid() or not cmdline:
                continue
            if any(p in cmdline for p in patterns):
                match = Box(pid=proc.pid, cmdline=cmdline, port=_listening_port(proc))
                if ports is None or uses_port(match, ports):
                    found.append(match)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return found


def kill_processes(patterns: Iterable[str], grace: float = 3, ports: Collection[int] | None = None) -> list[int]:
    """SIGTERM every matching process, SIGKILL the ones still alive after ``grace``. Returns PIDs signalled."""
    victims = []
    for match in find_processes(patterns, ports):
        try:
            proc = psutil.Process(match.pid)
            proc.send_signal(signal.SIGTERM)
            victims.append(proc)
            logger.info("Sent SIGTERM to %d (%s)", match.pid, match.cmdline)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as exc:
            logger.warning("Could not signal %d: %s", match.pid, exc)
    _, alive = psutil.wait_procs(victims, timeout=grace)
    for proc in alive:
        try:
            proc.kill()
            logger.info("Sent SIGKILL to %d", proc.pid)
        except psutil.NoSuchProcess:
            pass
    return [proc.pid for proc in victims]


def uses_port(match: Box, ports: Collection[int]) -> bool:
    """True if a find_processes result listens on, or was told to use, one of ``ports``."""
    if match.port is not None:
        return match.port in ports
    flag = _PORT_FLAG.search(match.cmdline)
    return flag is not None and int(flag.group(1)) in ports


def pid_running(pid: int | None) -> bool:
    if not pid:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


def has_descendant(pid: int | None, patterns: Iterable[str]) -> bool:
    """True if some child of ``pid`` (any depth) has a command line matching ``patterns``."""
    patterns = [p for p in patterns if p]
    try:
        children = psutil.Process(pid).children(recursive=True) if pid else []
    except psutil.NoSuchProcess:
        return False
    for child in children:
        try:
            cmdline = ' '.join(child.cmdline())
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if any(p in cmdline for p in patterns):
            return True
    return False


def _listening_port(proc: psutil.Process) -> int | None:
    try:
        for c in proc.net_connections(kind='inet'):
            if c.status == psutil.CONN_LISTEN:
                return c.laddr.port
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        pass
    return None
