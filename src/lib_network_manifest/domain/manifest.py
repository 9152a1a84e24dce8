"""Manifest and distributed-derivation value objects.

Purpose
-------
Represent the compiled deployment plan as immutable records with a stable
document form. The document keys (``profiles``, ``activation``, ``snapshots``,
``targets`` and ``build``, ``interfaces``) are the wire format consumed by the
deployment tooling.

Contents
--------
* :class:`ProfileMapping`, :class:`ActivationMapping`, :class:`SnapshotMapping`
* :class:`Manifest` – the four manifest sections plus JSON/YAML round-tripping.
* :class:`BuildMapping`, :class:`InterfaceMapping`, :class:`DistributedDerivation`
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from .errors import InvalidFormat
from .snapshot import SnapshotKey


@dataclass(frozen=True, slots=True)
class ProfileMapping:
    profile: str
    target: Any

    def as_dict(self) -> dict[str, Any]:
        return {"profile": self.profile, "target": self.target}


@dataclass(frozen=True, slots=True)
class ActivationMapping:
    """One activation item; ``stable_key`` identifies it across compilations."""

    stable_key: str
    name: str
    service: str
    target: Any
    container: str
    type: str
    depends_on: tuple[Any, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "stableKey": self.stable_key,
            "name": self.name,
            "service": self.service,
            "target": self.target,
            "container": self.container,
            "dependsOn": list(self.depends_on),
            "type": self.type,
        }


@dataclass(frozen=True, slots=True)
class SnapshotMapping:
    component: str
    container: str
    type: str
    service: str
    target: Any

    @property
    def key(self) -> SnapshotKey:
        return SnapshotKey(self.container, self.component, self.target)

    def as_dict(self) -> dict[str, Any]:
        return {
            "component": self.component,
            "container": self.container,
            "type": self.type,
            "service": self.service,
            "target": self.target,
        }


@dataclass(frozen=True, slots=True)
class Manifest:
    """Immutable snapshot of deployment intent.

    Examples
    --------
    >>> manifest = Manifest.from_dict({"profiles": [{"profile": "/s/p", "target": "web1"}]})
    >>> manifest.profile_for("web1")
    '/s/p'
    >>> Manifest.from_json(manifest.to_json()) == manifest
    True
    """

    profiles: tuple[ProfileMapping, ...] = ()
    activation: tuple[ActivationMapping, ...] = ()
    snapshots: tuple[SnapshotMapping, ...] = ()
    targets: tuple[Mapping[str, Any], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "targets", tuple(MappingProxyType(dict(entry)) for entry in self.targets))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash(self.to_json())

    def target_addresses(self) -> list[Any]:
        """Resolved addresses of every target, in manifest order."""

        return [profile.target for profile in self.profiles]

    def profile_for(self, target: Any) -> str | None:
        for entry in self.profiles:
            if entry.target == target:
                return entry.profile
        return None

    def snapshot_keys(self) -> set[SnapshotKey]:
        return {mapping.key for mapping in self.snapshots}

    def containers(self) -> set[str]:
        return {mapping.container for mapping in self.snapshots}

    def snapshots_for(self, target: Any) -> list[SnapshotMapping]:
        return [mapping for mapping in self.snapshots if mapping.target == target]

    def to_dict(self) -> dict[str, Any]:
        return {
            "profiles": [entry.as_dict() for entry in self.profiles],
            "activation": [entry.as_dict() for entry in self.activation],
            "snapshots": [entry.as_dict() for entry in self.snapshots],
            "targets": [_plain(entry) for entry in self.targets],
        }

    def to_json(self, *, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, separators=(",", ":"), ensure_ascii=False)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Manifest:
        """Rebuild a manifest from its document form.

        Raises
        ------
        InvalidFormat
            When a record lacks a required field.
        """

        try:
            return cls(
                profiles=tuple(ProfileMapping(item["profile"], item["target"]) for item in data.get("profiles", [])),
                activation=tuple(
                    ActivationMapping(
                        stable_key=item["stableKey"],
                        name=item["name"],
                        service=item["service"],
                        target=item["target"],
                        container=item["container"],
                        type=item["type"],
                        depends_on=tuple(item.get("dependsOn", ())),
                    )
                    for item in data.get("activation", [])
                ),
                snapshots=tuple(
                    SnapshotMapping(
                        component=item["component"],
                        container=item["container"],
                        type=item["type"],
                        service=item["service"],
                        target=item["target"],
                    )
                    for item in data.get("snapshots", [])
                ),
                targets=tuple(dict(item) for item in data.get("targets", [])),
            )
        except (KeyError, TypeError) as exc:
            raise InvalidFormat(f"Malformed manifest document: {exc}") from exc

    @classmethod
    def from_json(cls, text: str) -> Manifest:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidFormat(f"Invalid manifest JSON: {exc}") from exc
        if not isinstance(data, Mapping):
            raise InvalidFormat("Manifest document did not produce a mapping")
        return cls.from_dict(data)


@dataclass(frozen=True, slots=True)
class BuildMapping:
    build_task: str
    target: Any

    def as_dict(self) -> dict[str, Any]:
        return {"buildTask": self.build_task, "target": self.target}


@dataclass(frozen=True, slots=True)
class InterfaceMapping:
    target: Any
    client_interface: str

    def as_dict(self) -> dict[str, Any]:
        return {"target": self.target, "clientInterface": self.client_interface}


@dataclass(frozen=True, slots=True)
class DistributedDerivation:
    """Build tasks mapped to the targets that should build them."""

    build: tuple[BuildMapping, ...] = ()
    interfaces: tuple[InterfaceMapping, ...] = ()

    def build_tasks(self) -> list[str]:
        return [entry.build_task for entry in self.build]

    def to_dict(self) -> dict[str, Any]:
        return {
            "build": [entry.as_dict() for entry in self.build],
            "interfaces": [entry.as_dict() for entry in self.interfaces],
        }

    def to_json(self, *, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, separators=(",", ":"), ensure_ascii=False)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)


def _plain(value: Any) -> Any:
    """Convert mapping proxies and tuples into JSON-friendly containers."""

    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value
