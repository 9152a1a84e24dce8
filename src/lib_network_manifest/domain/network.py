"""Domain value objects describing networks, compile options, and evaluated targets.

Purpose
-------
Hold the immutable data shapes that flow between the compiler phases: the
compile-time options struct, the merged network, the priority wrapper used by
fragments, and the evaluated per-target configuration. No I/O lives here.

Contents
--------
* :data:`RESERVED_NETWORK_KEYS` – top-level names that are never targets in the
  legacy model.
* :class:`CompileOptions` – explicit options threaded through every compile call.
* :class:`Override` plus :func:`mk_override` / :func:`mk_default` / :func:`mk_force`.
* :class:`FragmentContext` – argument passed to callable fragments.
* :class:`UnresolvedReference` – raised by a sibling read a partial evaluation cannot answer.
* :class:`MergedNetwork` – result of the network merger.
* :class:`EngineResult` – raw output of the configuration evaluation engine.
* :class:`EvaluatedTarget` – per-target output of the evaluator.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Any, Callable, Final, Mapping, Union

RESERVED_NETWORK_KEYS: Final[tuple[str, ...]] = ("network", "resources")
"""Network-wide settings and resource declarations of the legacy deployment model."""

SYSTEM_CONFIGURATION: Final[str] = "system-configuration"
"""Container and type name of whole-machine configuration activation items."""

DEFAULT_PRIORITY: Final[int] = 100
DEFAULT_VALUE_PRIORITY: Final[int] = 1000
FORCE_PRIORITY: Final[int] = 50


@dataclass(frozen=True, slots=True)
class Override:
    """Wrap an option value with an explicit priority (lower number wins).

    Examples
    --------
    >>> mk_override(900, "web1")
    Override(priority=900, value='web1')
    >>> mk_default(True).priority
    1000
    """

    priority: int
    value: Any


def mk_override(priority: int, value: Any) -> Override:
    """Return ``value`` wrapped with ``priority``."""

    return Override(priority, value)


def mk_default(value: Any) -> Override:
    """Return ``value`` at default priority so any plain assignment replaces it."""

    return Override(DEFAULT_VALUE_PRIORITY, value)


def mk_force(value: Any) -> Override:
    """Return ``value`` at force priority so it beats plain assignments."""

    return Override(FORCE_PRIORITY, value)


@dataclass(frozen=True, slots=True)
class FragmentContext:
    """Arguments handed to callable fragments during evaluation.

    Attributes
    ----------
    name:
        Target name being evaluated.
    nodes:
        Lazy mapping of every target name to a view of its configuration.
        A view exposes ``infrastructure[...]`` and ``lookup(*path)``, which
        resolve one attribute at a time, and ``artifact_path``, ``build_task``
        and ``properties``, which need the whole configuration.
    """

    name: str
    nodes: Mapping[str, Any]


class UnresolvedReference(Exception):
    """A fragment read a sibling attribute that is still being resolved from this one.

    Only raised while a single attribute is resolved ahead of the full
    configuration. Engines drop the fragment that raised it from that pass.
    """


Fragment = Union[Mapping[str, Any], Callable[[FragmentContext], Mapping[str, Any]]]
"""A composable unit of target configuration."""


@dataclass(frozen=True, slots=True)
class CompileOptions:
    """Global compile-time options.

    Attributes
    ----------
    target_property:
        Infrastructure attribute used as a target's address unless the target
        overrides it.
    client_interface:
        Executable used to reach a target unless the target overrides it.
    enable_agent:
        Inject the remote-deployment-agent fragment.
    legacy_model:
        Treat the network as a legacy deployment model (drops reserved keys and
        injects legacy compatibility fragments).
    use_vm_testing:
        Inject virtualisation and test-instrumentation fragments.
    use_backdoor:
        Inject the backdoor-access fragment.
    containers_helper:
        Name of the helper that derives container properties from the
        evaluated configuration.
    legacy_options:
        Name of the module exposing legacy deployment-target options.

    Examples
    --------
    >>> CompileOptions().target_property
    'hostname'
    >>> CompileOptions.from_mapping({"use_backdoor": True}).use_backdoor
    True
    """

    target_property: str = "hostname"
    client_interface: str = "disnix-ssh-client"
    enable_agent: bool = True
    legacy_model: bool = False
    use_vm_testing: bool = False
    use_backdoor: bool = False
    containers_helper: str = "generate-containers"
    legacy_options: str = "legacy-deployment-options"

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(item.name for item in fields(cls))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> CompileOptions:
        """Build options from a mapping; unknown keys raise ``KeyError``."""

        known = set(cls.field_names())
        unknown = sorted(set(values) - known)
        if unknown:
            raise KeyError(", ".join(unknown))
        return cls(**dict(values))

    def as_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.field_names()}

    def with_overrides(self, **changes: Any) -> CompileOptions:
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class MergedNetwork:
    """Target name to ordered fragment list, plus merged network-wide settings.

    ``settings`` carries the merged values of the reserved keys; it is populated
    regardless of the legacy flag so callers can inspect network metadata.
    """

    targets: Mapping[str, tuple[Fragment, ...]]
    settings: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "targets", MappingProxyType(dict(self.targets)))
        object.__setattr__(self, "settings", MappingProxyType(dict(self.settings)))

    def names(self) -> list[str]:
        """Return target names in sorted order, the order every projection uses."""

        return sorted(self.targets)


@dataclass(frozen=True, slots=True)
class EngineResult:
    """What the configuration evaluation engine returns for one fragment list."""

    artifact_path: str
    build_task: str
    properties: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class EvaluatedTarget:
    """Fully realised configuration of one target.

    Attributes
    ----------
    name:
        Target name.
    artifact_path:
        Content-addressed path of the realised configuration (profile).
    build_task:
        Unrealised, distributable build descriptor of the same configuration.
    infrastructure:
        Properties describing how to reach the target.
    properties:
        Every other property the engine exposed (``components``, ``config`` ...).
    """

    name: str
    artifact_path: str
    build_task: str
    infrastructure: Mapping[str, Any]
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "infrastructure", MappingProxyType(dict(self.infrastructure)))
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    @property
    def components(self) -> Mapping[str, Any]:
        """Declared state components, ``{container: [name, ...]}``."""

        return self.properties.get("components", {})
