"""Core orchestrator package: component registry, port allocation, lifecycle and status."""

from .core import DownResult, ExistingSessionPolicy, Orchestrator, RunState, UpResult
from .models import Component, ComponentCategory, ComponentRegistry, Settings, load_registry, parse_registry
from .ports import allocate, startup_order
from .status import StatusReporter, StatusSnapshot

__all__ = [
    "Component",
    "ComponentCategory",
    "ComponentRegistry",
    "DownResult",
    "ExistingSessionPolicy",
    "Orchestrator",
    "RunState",
    "Settings",
    "StatusReporter",
    "StatusSnapshot",
    "UpResult",
    "allocate",
    "load_registry",
    "parse_registry",
    "startup_order",
]
