"""Pydantic models for the component registry and orchestrator settings."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from common.errors import ConfigError

logger = logging.getLogger(__name__)


# tmux reads these as session:window.pane separators in a target
_TARGET_CHARS = ".:"


class ComponentCategory(str, Enum):
    CONTROLLER = "controller"
    SERVICE = "service"
    TOOL = "tool"
    LIBRARY = "library"
    OPERATOR = "operator"
    OTHER = "other"


class Component(BaseModel):
    """One independently developed component, as declared in components.yaml."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    name: str = Field(..., min_length=1)
    source_location: str | None = Field(None, alias="repo", description="Opaque repository locator")
    category: ComponentCategory = Field(ComponentCategory.OTHER, alias="type")
    orchestrated: bool = Field(False, alias="has_tiltfile", description="Runs a startup program")
    prerequisite: bool = Field(False, description="Provides CRDs the others depend on")
    port: int | None = Field(None, ge=1, le=65535, description="Declared port preference")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        if any(ch in value for ch in _TARGET_CHARS):
            raise ValueError(f"name must not contain any of {_TARGET_CHARS!r} (used as a tmux window name)")
        return value


def _default_environment() -> dict[str, str]:
    return {
        "GOPRIVATE": "github.com/mNi-Cloud",
        "TILT_ALLOW_K8S_CONTEXT": "kubernetes-admin@kubernetes",
        "TILT_REGISTRY": "localhost:5000",
    }


class Settings(BaseModel):
    """Orchestrator settings. Every field has a default; YAML may override any of them."""

    model_config = ConfigDict(extra="forbid")

    session_name: str = Field("mni-tilt", min_length=1)
    initial_window: str = Field("main", min_length=1)
    base_port: int = Field(10350, ge=1, le=65535)
    components_root: Path = Path("../mni-backend")

    registry_url: str = "http://localhost:5000/v2/"
    registry_ready_status: list[int] = Field(default_factory=lambda: [200, 401])
    ui_host: str = "localhost"
    ui_ready_status: list[int] = Field(default_factory=lambda: [200, 302])
    cluster_timeout: float = Field(10, gt=0)

    startup_command: str = "tilt up --port {port}"
    startup_marker: str | None = "Tiltfile"
    required_tools: list[str] = Field(default_factory=lambda: ["tmux", "tilt", "kubectl", "docker"])
    environment: dict[str, str] = Field(default_factory=_default_environment)
    path_prepend: list[str] = Field(default_factory=lambda: ["~/.local/share/aquaproj-aqua/bin", "bin"])

    stagger_seconds: float = Field(2, ge=0)
    prerequisite_interval: float = Field(2, ge=0)
    prerequisite_attempts: int = Field(60, ge=1)
    interrupt_grace: float = Field(1, ge=0)
    shutdown_wait: float = Field(3, ge=0)

    cleanup_selector: str = "app.kubernetes.io/managed-by=tilt"
    cleanup_kinds: list[str] = Field(
        default_factory=lambda: ["deployments", "services", "configmaps", "secrets"]
    )
    tool_process_patterns: list[str] = Field(default_factory=lambda: ["tilt up"])
    helper_process_patterns: list[str] = Field(default_factory=lambda: ["kubectl port-forward", "tilt up"])

    @field_validator("startup_command")
    @classmethod
    def _needs_port_placeholder(cls, value: str) -> str:
        if "{port}" not in value:
            raise ValueError("startup_command must contain a {port} placeholder")
        return value

    def ui_url(self, port: int) -> str:
        return f"http://{self.ui_host}:{port}"


class ComponentRegistry(Sequence[Component]):
    """Immutable, ordered snapshot of the declared components plus settings."""

    def __init__(self, components: Sequence[Component], settings: Settings | None = None,
                 source: Path | None = None):
        self._components = tuple(components)
        self.settings = settings or Settings()
        self.source = source
        _check_invariants(self._components, self.settings)

    def __getitem__(self, index):
        return self._components[index]

    def __len__(self) -> int:
        return len(self._components)

    def __iter__(self) -> Iterator[Component]:
        return iter(self._components)

    def __repr__(self) -> str:
        return f"ComponentRegistry({[c.name for c in self._components]!r})"

    def orchestrated(self) -> list[Component]:
        """Components with a startup program, in declaration order."""
        return [c for c in self._components if c.orchestrated]

    @property
    def prerequisite(self) -> Component | None:
        for component in self._components:
            if component.prerequisite:
                return component
        return None

    @property
    def components_root(self) -> Path:
        root = self.settings.components_root.expanduser()
        if not root.is_absolute() and self.source is not None:
            root = self.source.parent / root
        return root.resolve()

    def component_dir(self, component: Component) -> Path:
        return self.components_root / component.name


# ---------------------------------------------------------------------------
# helpers


def load_registry(path: str | Path) -> ComponentRegistry:
    """Load and validate components.yaml. Any problem is a ConfigError."""
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}",
                          hint="pass --config or set TILTMUX_CONFIG")
    try:
        raw = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    registry = parse_registry(raw, source=path.resolve())
    logger.info("Loaded %d components (%d orchestrated) from %s",
                len(registry), len(registry.orchestrated()), path)
    return registry


def parse_registry(raw: Any, source: Path | None = None) -> ComponentRegistry:
    """Build a registry from an already-parsed YAML document."""
    where = str(source) if source else "configuration"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: expected a mapping with a 'components' list")
    entries = raw.get("components")
    if not isinstance(entries, list) or not entries:
        raise ConfigError(f"{where}: 'components' must be a non-empty list")

    components = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigError(f"{where}: components[{index}] is not a mapping")
        if not entry.get("name"):
            raise ConfigError(f"{where}: components[{index}] is missing required field 'name'")
        try:
            components.append(Component.model_validate(entry))
        except ValidationError as exc:
            raise ConfigError(f"{where}: invalid component {entry.get('name')!r}: {_first_error(exc)}") from exc

    try:
        settings = Settings.model_validate(raw.get("settings") or {})
    except ValidationError as exc:
        raise ConfigError(f"{where}: invalid settings: {_first_error(exc)}") from exc
    return ComponentRegistry(components, settings, source)


def _check_invariants(components: Sequence[Component], settings: Settings) -> None:
    seen: set[str] = set()
    for component in components:
        if component.name == settings.initial_window:
            raise ConfigError(f"Component name {component.name!r} is taken by the initial window",
                              hint="rename the component or change settings.initial_window")
        if component.name in seen:
            raise ConfigError(f"Duplicate component name: {component.name!r}")
        seen.add(component.name)
    prerequisites = [c.name for c in components if c.prerequisite]
    if len(prerequisites) > 1:
        raise ConfigError(f"Only one prerequisite component is allowed, got {prerequisites}")


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err["loc"])
    return f"{loc}: {err['msg']}" if loc else err["msg"]


__all__ = [
    "Component",
    "ComponentCategory",
    "ComponentRegistry",
    "Settings",
    "load_registry",
    "parse_registry",
]
