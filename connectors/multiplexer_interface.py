from typing import Protocol, Mapping, List
from box import Box


class WindowInfo(Box):
    """
    Live information about one multiplexer window. Box (dot-access dict).
    Keys: index, name, pane_pid, pane_dead, command.
    Examples:
        info = WindowInfo(index=1, name='api-gateway', pane_pid=4242, pane_dead=False, command='tilt')
        print(info.name)         # api-gateway
        print(info['pane_pid'])  # 4242
    """


class MultiplexerSessionManager(Protocol):
    """Interface Protocol for terminal multiplexer backends.
    Every query reflects live external state, never a cached mirror:
    windows can die without the orchestrator being told.
    """

    @property
    def multiplexer_type(self) -> str: ...

    def session_exists(self, name: str) -> bool: ...

    def create_session(self, name: str, initial_window: str, working_dir: str) -> None:
        """
        Create a detached session with one initial window.
        Raises SessionError if a session with that name already exists;
        callers must check first (check-then-act, single operator).
        """
        ...

    def create_window(self, session: str, window: str, working_dir: str,
                      environment: Mapping[str, str] | None = None) -> None:
        """
        Create a window in an existing session. ``environment`` is handed to the
        window process only. Raises WindowError if the window already exists.
        """
        ...

    def dispatch(self, session: str, window: str, command_text: str) -> None:
        """
        Type a command line into the window and press Enter.
        Fire-and-forget: the command may still be running when this returns.
        """
        ...

    def interrupt(self, session: str, window: str) -> None: ...
    def list_windows(self, session: str) -> List[str]: ...
    def window_details(self, session: str) -> List[WindowInfo]: ...

    def destroy_session(self, name: str) -> None:
        """Kill the session. No-op if it does not exist."""
        ...

    def attach(self, name: str) -> None: ...
