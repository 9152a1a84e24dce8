"""Network merger.

Combine the target mappings of several network sources into one mapping from
target name to an ordered fragment list. Fragments are concatenated, never merged
field by field; overriding individual options is the evaluation engine's job.
The reserved network-wide keys are additionally merged as settings in strict
mode so two sources cannot silently disagree about them.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Sequence

from ..domain.errors import ConfigurationError
from ..domain.network import RESERVED_NETWORK_KEYS, Fragment, MergedNetwork
from ..observability import log_debug, log_info, make_event
from .merge import merge_layers


def merge_networks(
    networks: Sequence[Mapping[str, Any]],
    *,
    legacy_model: bool = False,
    labels: Sequence[str] | None = None,
) -> MergedNetwork:
    """Merge *networks* by target name, preserving source order.

    Parameters
    ----------
    networks:
        Loaded network sources, earliest first. Each maps a target name to a
        single fragment or a list of fragments.
    legacy_model:
        Drop the reserved keys (``network``, ``resources``) from the targets.
    labels:
        Optional source names used in provenance and error messages.

    Raises
    ------
    ConfigurationError
        When two sources assign different scalar values to the same reserved
        setting, or a target entry is not a fragment.

    Examples
    --------
    >>> merged = merge_networks([{"web1": {"a": 1}}, {"web1": [{"b": 2}], "db1": {"c": 3}}])
    >>> merged.names()
    ['db1', 'web1']
    >>> list(merged.targets["web1"])
    [{'a': 1}, {'b': 2}]
    >>> "network" in merge_networks([{"network": {"description": "x"}}], legacy_model=True).targets
    False
    """

    names = list(labels) if labels is not None else [f"network-{index}" for index in range(len(networks))]
    targets: dict[str, list[Fragment]] = {}
    settings_layers: list[tuple[str, Mapping[str, object], str | None]] = []

    for label, network in zip(names, networks):
        reserved = {key: network[key] for key in RESERVED_NETWORK_KEYS if isinstance(network.get(key), Mapping)}
        if reserved:
            settings_layers.append((label, reserved, None))
        for target_name, value in network.items():
            targets.setdefault(target_name, []).extend(_as_fragments(target_name, value, label))

    settings, _ = merge_layers(settings_layers, strict=True)

    if legacy_model:
        for key in RESERVED_NETWORK_KEYS:
            targets.pop(key, None)

    log_info(
        "network_merged",
        **make_event("merge", None, {"sources": len(networks), "targets": len(targets), "legacy_model": legacy_model}),
    )
    return MergedNetwork({name: tuple(fragments) for name, fragments in targets.items()}, settings)


def _as_fragments(target_name: str, value: Any, label: str) -> list[Fragment]:
    """Normalise a target entry to a fragment list."""

    items = list(value) if isinstance(value, (list, tuple)) else [value]
    for item in items:
        if not (isinstance(item, (Mapping, str)) or callable(item)):
            raise ConfigurationError(
                f"Target {target_name} in {label} contains a fragment of unsupported type {type(item).__name__}"
            )
    log_debug("target_fragments", **make_event("merge", target_name, {"source": label, "fragments": len(items)}))
    return items
