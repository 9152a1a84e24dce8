"""Manifest generator.

Purpose
-------
Project evaluated target configurations into the four manifest sections:
profiles, activation mappings, snapshot mappings, and target descriptors.

Contents
--------
* :func:`stable_key` – deterministic identity of an activation item.
* :func:`strip_content_address_prefix` – component label of an artifact.
* :func:`generate_profiles` / :func:`generate_activation` /
  :func:`generate_snapshots` / :func:`generate_targets` – the four projections.
* :func:`generate_manifest` – all four, bundled into a
  :class:`~lib_network_manifest.domain.manifest.Manifest`.

System Role
-----------
Pure functions over ``{name: EvaluatedTarget}``. Targets are always visited in
sorted name order so two compilations of the same network produce identical
documents. Every projection resolves the target address through
:func:`~lib_network_manifest.application.properties.resolve_target_property`,
so the ``target`` field agrees across sections.
"""

from __future__ import annotations

import hashlib
import json
import posixpath
from typing import Any, Final, Iterable, Mapping, Sequence

from ..domain.manifest import ActivationMapping, Manifest, ProfileMapping, SnapshotMapping
from ..domain.network import SYSTEM_CONFIGURATION, CompileOptions, EvaluatedTarget
from ..observability import log_debug, make_event
from .properties import resolve_client_interface, resolve_target_property

CONTENT_ADDRESS_PREFIX_LENGTH: Final[int] = 33
"""32 hash characters plus the separating dash."""

DEFAULT_NUM_OF_CORES: Final[int] = 1


def stable_key(service: str, name: str, type: str, depends_on: Sequence[Any] = ()) -> str:
    """Return the SHA-256 hex digest identifying an activation item.

    The four fields are serialised as canonical JSON in the fixed order
    ``service, name, type, dependsOn``; nothing else contributes.

    Examples
    --------
    >>> a = stable_key("/nix/store/abc-system-web1", "web1", "system-configuration")
    >>> a == stable_key("/nix/store/abc-system-web1", "web1", "system-configuration", [])
    True
    >>> a == stable_key("/nix/store/abc-system-web1", "web2", "system-configuration")
    False
    >>> len(a)
    64
    """

    document = [
        ["service", service],
        ["name", name],
        ["type", type],
        ["dependsOn", list(depends_on)],
    ]
    canonical = json.dumps(document, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def strip_content_address_prefix(path: str) -> str:
    """Return the human-readable label of a content-addressed artifact path.

    Paths whose base name carries no hash prefix are returned by base name.

    Examples
    --------
    >>> strip_content_address_prefix("/nix/store/" + "a" * 32 + "-system-web1")
    'system-web1'
    >>> strip_content_address_prefix("/tmp/plain")
    'plain'
    """

    base = posixpath.basename(path.rstrip("/"))
    if len(base) > CONTENT_ADDRESS_PREFIX_LENGTH and base[CONTENT_ADDRESS_PREFIX_LENGTH - 1] == "-":
        return base[CONTENT_ADDRESS_PREFIX_LENGTH:]
    return base


def _ordered(configurations: Mapping[str, EvaluatedTarget]) -> Iterable[EvaluatedTarget]:
    for name in sorted(configurations):
        yield configurations[name]


def _address(target: EvaluatedTarget, options: CompileOptions) -> Any:
    return resolve_target_property(options.target_property, target.infrastructure)


def generate_profiles(configurations: Mapping[str, EvaluatedTarget], options: CompileOptions) -> tuple[ProfileMapping, ...]:
    return tuple(
        ProfileMapping(profile=target.artifact_path, target=_address(target, options))
        for target in _ordered(configurations)
    )


def generate_activation(
    configurations: Mapping[str, EvaluatedTarget], options: CompileOptions
) -> tuple[ActivationMapping, ...]:
    """One ``system-configuration`` activation item per target, without dependencies."""

    return tuple(
        ActivationMapping(
            stable_key=stable_key(target.artifact_path, target.name, SYSTEM_CONFIGURATION, ()),
            name=target.name,
            service=target.artifact_path,
            target=_address(target, options),
            container=SYSTEM_CONFIGURATION,
            type=SYSTEM_CONFIGURATION,
            depends_on=(),
        )
        for target in _ordered(configurations)
    )


def generate_snapshots(
    configurations: Mapping[str, EvaluatedTarget], options: CompileOptions
) -> tuple[SnapshotMapping, ...]:
    return tuple(
        SnapshotMapping(
            component=strip_content_address_prefix(target.artifact_path),
            container=SYSTEM_CONFIGURATION,
            type=SYSTEM_CONFIGURATION,
            service=target.artifact_path,
            target=_address(target, options),
        )
        for target in _ordered(configurations)
    )


def generate_targets(
    configurations: Mapping[str, EvaluatedTarget], options: CompileOptions
) -> tuple[dict[str, Any], ...]:
    """Infrastructure properties plus resolved ``targetProperty``/``clientInterface``.

    Examples
    --------
    >>> target = EvaluatedTarget("web1", "/s/x", "/s/x.drv", {"hostname": "web1", "numOfCores": 4})
    >>> entry = generate_targets({"web1": target}, CompileOptions())[0]
    >>> entry["targetProperty"], entry["clientInterface"], entry["numOfCores"]
    ('hostname', 'disnix-ssh-client', 1)
    """

    descriptors: list[dict[str, Any]] = []
    for target in _ordered(configurations):
        infrastructure = target.infrastructure
        descriptor = dict(infrastructure)
        descriptor["targetProperty"] = infrastructure.get("targetProperty", options.target_property)
        descriptor["clientInterface"] = resolve_client_interface(options.client_interface, infrastructure)
        descriptor["numOfCores"] = DEFAULT_NUM_OF_CORES
        descriptors.append(descriptor)
    return tuple(descriptors)


def generate_manifest(configurations: Mapping[str, EvaluatedTarget], options: CompileOptions) -> Manifest:
    """Project *configurations* into a complete :class:`Manifest`.

    Raises
    ------
    MissingPropertyError
        When any target lacks the attribute used as its address; no partial
        manifest is produced.
    """

    manifest = Manifest(
        profiles=generate_profiles(configurations, options),
        activation=generate_activation(configurations, options),
        snapshots=generate_snapshots(configurations, options),
        targets=generate_targets(configurations, options),
    )
    log_debug("manifest_generated", **make_event("manifest", "*", {"targets": len(manifest.profiles)}))
    return manifest
