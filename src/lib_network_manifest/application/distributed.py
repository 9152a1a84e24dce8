"""Distributed build-task generator.

Maps every target's unrealised build task to the target that should build it,
plus the client interface used to reach each target, so building can happen on
the fleet instead of centrally. Independent of the manifest generator.
"""

from __future__ import annotations

from typing import Mapping

from ..domain.manifest import BuildMapping, DistributedDerivation, InterfaceMapping
from ..domain.network import CompileOptions, EvaluatedTarget
from ..observability import log_debug, make_event
from .properties import resolve_client_interface, resolve_target_property


def unrealised_form(target: EvaluatedTarget) -> str:
    """Return the build task that produces *target*'s artifact path."""

    return target.build_task


def generate_distributed_derivation(
    configurations: Mapping[str, EvaluatedTarget],
    options: CompileOptions,
) -> DistributedDerivation:
    """Project *configurations* into ``build`` and ``interfaces`` entries, sorted by target name.

    Examples
    --------
    >>> web1 = EvaluatedTarget("web1", "/s/a-system-web1", "/s/b-system-web1.drv",
    ...                        {"hostname": "web1", "clientInterface": "disnix-soap-client"})
    >>> document = generate_distributed_derivation({"web1": web1}, CompileOptions()).to_dict()
    >>> document["build"]
    [{'buildTask': '/s/b-system-web1.drv', 'target': 'web1'}]
    >>> document["interfaces"]
    [{'target': 'web1', 'clientInterface': 'disnix-soap-client'}]
    """

    build: list[BuildMapping] = []
    interfaces: list[InterfaceMapping] = []
    for name in sorted(configurations):
        target = configurations[name]
        address = resolve_target_property(options.target_property, target.infrastructure)
        build.append(BuildMapping(build_task=unrealised_form(target), target=address))
        interfaces.append(
            InterfaceMapping(
                target=address,
                client_interface=resolve_client_interface(options.client_interface, target.infrastructure),
            )
        )
    log_debug("distributed_derivation_generated", **make_event("distribute", "*", {"targets": len(build)}))
    return DistributedDerivation(build=tuple(build), interfaces=tuple(interfaces))
