"""Sequential port allocation for orchestrated components.

Both ``up`` and ``status`` call :func:`allocate` on the same component list,
so the mapping must stay a pure function of (ordered components, base port).
"""

from __future__ import annotations

import logging
from typing import Iterable

from common.errors import ConfigError

from .models import Component

logger = logging.getLogger(__name__)

MAX_PORT = 65535


def startup_order(components: Iterable[Component]) -> list[Component]:
    """Prerequisite first (if present and orchestrated), then declaration order."""
    ordered = [c for c in components if c.orchestrated]
    for index, component in enumerate(ordered):
        if component.prerequisite:
            return [component] + ordered[:index] + ordered[index + 1:]
    return ordered


def allocate(components: Iterable[Component], base_port: int) -> dict[str, int]:
    """Map each orchestrated component name to a unique port, in startup order."""
    ordered = startup_order(components)
    if base_port < 1 or base_port + max(len(ordered) - 1, 0) > MAX_PORT:
        raise ConfigError(
            f"Port range {base_port}..{base_port + len(ordered) - 1} is outside 1..{MAX_PORT}",
            hint="lower settings.base_port",
        )
    allocation = {}
    for offset, component in enumerate(ordered):
        port = base_port + offset
        if component.port is not None and component.port != port:
            logger.debug("%s declares port %d, using allocated port %d", component.name, component.port, port)
        allocation[component.name] = port
    return allocation

