# connections_manager.py
"""
connections_manager.py
----------------------
Hands out multiplexer session managers.

Holds one in-memory manager per multiplexer type and reuses it, so every
part of a single CLI invocation talks to the same backend object.
"""

from connectors.multiplexer_interface import MultiplexerSessionManager
from connectors.tmux_connector import TmuxSessionManager

# key: multiplexer type ("tmux")
_active_managers: dict[str, MultiplexerSessionManager] = {}


def get_session_manager(multiplexer_type: str = "tmux") -> MultiplexerSessionManager:
    """
    Get or create the session manager for ``multiplexer_type``.
    Only tmux is supported.
    """
    if multiplexer_type in _active_managers:
        return _active_managers[multiplexer_type]

    if multiplexer_type == "tmux":
        manager: MultiplexerSessionManager = TmuxSessionManager()
    # Add other multiplexers (zellij, screen) here as needed
    else:
        raise ValueError(f"Unsupported multiplexer type: {multiplexer_type}")

    _active_managers[multiplexer_type] = manager
    return manager


def reset() -> None:
    """Forget cached managers."""
    _active_managers.clear()
