"""
tmux_connector.py
-----------------
Session Manager backed by the ``tmux`` binary.

Every call shells out to tmux; nothing about sessions or windows is cached,
so results always reflect what is actually running.
"""

import logging
import subprocess
from typing import Mapping

from common.errors import SessionError, WindowError
from connectors.multiplexer_interface import MultiplexerSessionManager, WindowInfo

logger = logging.getLogger(__name__)

_DETAIL_FORMAT = "#{window_index}\t#{window_name}\t#{pane_pid}\t#{pane_dead}\t#{pane_current_command}"


class TmuxSessionManager(MultiplexerSessionManager):
    """
    Manage tmux sessions and windows.

    Args:
        tmux_bin (str): tmux executable, "tmux" by default.
        timeout (float): seconds to wait for any single tmux command.
    """

    def __init__(self, tmux_bin: str = "tmux", timeout: float = 10):
        self.tmux_bin = tmux_bin
        self.timeout = timeout

    @property
    def multiplexer_type(self) -> str:
        return "tmux"

    def run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """
        Run a tmux subcommand and return the completed process.
        With check=True a non-zero exit raises SessionError carrying tmux's stderr.
        """
        cmd = [self.tmux_bin, *args]
        logger.debug("tmux: %s", " ".join(args))
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as exc:
            raise SessionError(f"tmux executable not found: {self.tmux_bin}",
                               hint="install tmux first") from exc
        except subprocess.TimeoutExpired as exc:
            raise SessionError(f"tmux {args[0]} timed out after {self.timeout}s") from exc
        if check and proc.returncode != 0:
            raise SessionError(f"tmux {args[0]} failed: {proc.stderr.strip() or proc.returncode}")
        return proc

    # -- sessions ----------------------------------------------------------

    def session_exists(self, name: str) -> bool:
        try:
            return self.run("has-session", "-t", f"={name}", check=False).returncode == 0
        except SessionError:
            # tmux missing or hung: nothing we could operate on
            return False

    def create_session(self, name: str, initial_window: str, working_dir: str) -> None:
        if self.session_exists(name):
            raise SessionError(f"tmux session '{name}' already exists",
                               hint="run 'tiltmux down' or pass --recreate")
        self.run("new-session", "-d", "-s", name, "-n", initial_window, "-c", str(working_dir))
        logger.info("Created tmux session %s (initial window %s)", name, initial_window)

    def destroy_session(self, name: str) -> None:
        if not self.session_exists(name):
            logger.debug("destroy_session: %s does not exist", name)
            return
        self.run("kill-session", "-t", f"={name}")
        logger.info("Killed tmux session %s", name)

    def attach(self, name: str) -> None:
        self._require_session(name)
        # interactive: tmux takes over the terminal until the operator detaches
        subprocess.run([self.tmux_bin, "attach-session", "-t", f"={name}"])

    # -- windows -----------------------------------------------------------

    def list_windows(self, session: str) -> list[str]:
        return [w.name for w in self.window_details(session)]

    def window_details(self, session: str) -> list[WindowInfo]:
        self._require_session(session)
        proc = self.run("list-windows", "-t", f"={session}", "-F", _DETAIL_FORMAT)
        return [_parse_detail(line) for line in proc.stdout.splitlines() if line.strip()]

    def create_window(self, session: str, window: str, working_dir: str,
                      environment: Mapping[str, str] | None = None) -> None:
        if window in self.list_windows(session):
            raise WindowError(f"Window '{window}' already exists in session '{session}'",
                              hint="run 'tiltmux down' before starting it again")
        args = ["new-window", "-d", "-t", f"={session}:", "-n", window, "-c", str(working_dir)]
        for key, value in (environment or {}).items():
            args += ["-e", f"{key}={value}"]
        self.run(*args)
        logger.info("Created window %s:%s in %s", session, window, working_dir)

    def dispatch(self, session: str, window: str, command_text: str) -> None:
        target = self._window_target(session, window)
        self.run("send-keys", "-t", target, "-l", command_text)
        self.run("send-keys", "-t", target, "Enter")
        logger.info("Dispatched to %s:%s: %s", session, window, command_text)

    def interrupt(self, session: str, window: str) -> None:
        self.run("send-keys", "-t", self._window_target(session, window), "C-c")
        logger.info("Sent interrupt to %s:%s", session, window)

    # -- helpers -----------------------------------------------------------

    def _require_session(self, name: str) -> None:
        if not self.session_exists(name):
            raise SessionError(f"tmux session '{name}' does not exist", hint="run 'tiltmux up' first")

    def _window_target(self, session: str, window: str) -> str:
        if window not in self.list_windows(session):
            raise WindowError(f"Window '{window}' does not exist in session '{session}'")
        return f"={session}:{window}"


def _parse_detail(line: str) -> WindowInfo:
    index, name, pane_pid, pane_dead, command = (line.split("\t") + [""] * 5)[:5]
    return WindowInfo(
        index=int(index) if index.isdigit() else None,
        name=name,
        pane_pid=int(pane_pid) if pane_pid.isdigit() else None,
        pane_dead=pane_dead == "1",
        command=command,
    )
