"""Application-layer layer-merge policy.

Purpose
-------
Convert a sequence of layer payloads into a single coherent mapping while
tracking provenance. Two callers rely on it: option resolution (defaults →
config file → environment → explicit overrides, later layers win) and the
network merger, which merges the reserved network-wide settings of every
source in strict mode (disagreeing scalars are a configuration error).

Contents
    - ``merge_layers``: public entry point driven by a simple loop.
    - ``_merge_layer`` / ``_merge_mapping``: recursive stanzas that keep
      precedence logic readable.
    - ``_set_scalar`` / ``_merge_branch`` / ``_clear_branch``: tiny helpers that
      narrate how provenance is updated when values change.
"""

from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from typing import Iterable

from ..domain.errors import ConfigurationError


def merge_layers(
    layers: Iterable[tuple[str, Mapping[str, object], str | None]],
    *,
    strict: bool = False,
) -> tuple[dict[str, object], dict[str, dict[str, object]]]:
    """Merge *layers* honouring precedence and provenance.

    Parameters
    ----------
    layers:
        Iterable of ``(layer_name, mapping, source_path)`` tuples ordered from
        lowest to highest precedence.
    strict:
        When true, a scalar assigned by an earlier layer may only be repeated
        with the same value; any disagreement raises :class:`ConfigurationError`.

    Returns
    -------
    tuple[dict[str, object], dict[str, dict[str, object]]]
        ``(merged_data, provenance)`` where ``provenance`` maps dotted keys to
        ``{"layer", "path", "key"}``.

    Examples
    --------
    >>> merged, meta = merge_layers([
    ...     ("defaults", {"target_property": "hostname"}, None),
    ...     ("env", {"target_property": "address"}, None),
    ... ])
    >>> merged["target_property"], meta["target_property"]["layer"]
    ('address', 'env')
    >>> merge_layers([("a", {"network": {"description": "x"}}, None),
    ...               ("b", {"network": {"description": "y"}}, None)], strict=True)
    Traceback (most recent call last):
    ...
    lib_network_manifest.domain.errors.ConfigurationError: Conflicting values for network.description: 'x' (a) and 'y' (b)
    """

    merged: dict[str, object] = {}
    meta: dict[str, dict[str, object]] = {}

    for layer_name, data, path in layers:
        _merge_layer(merged, meta, data, layer_name, path, strict)
    return merged, meta


def _merge_layer(
    target: dict[str, object],
    meta: dict[str, dict[str, object]],
    payload: Mapping[str, object],
    layer: str,
    path: str | None,
    strict: bool,
) -> None:
    """Merge a single *payload* into *target* while tracking provenance."""

    clone = deepcopy(dict(payload))
    _merge_mapping(target, meta, clone, layer, path, [], strict)


def _merge_mapping(
    target: dict[str, object],
    meta: dict[str, dict[str, object]],
    incoming: Mapping[str, object],
    layer: str,
    path: str | None,
    segments: list[str],
    strict: bool,
) -> None:
    for key, value in incoming.items():
        dotted = _dotted_key(segments, key)
        if isinstance(value, Mapping):
            _merge_branch(target, meta, key, value, dotted, layer, path, segments, strict)
        else:
            _set_scalar(target, meta, key, value, dotted, layer, path, strict)


def _merge_branch(
    target: dict[str, object],
    meta: dict[str, dict[str, object]],
    key: str,
    value: Mapping[str, object],
    dotted: str,
    layer: str,
    path: str | None,
    segments: list[str],
    strict: bool,
) -> None:
    """Merge mapping ``value`` into ``target[key]`` and recurse."""

    existing = target.get(key)
    if strict and key in target and not isinstance(existing, Mapping):
        _raise_conflict(meta, dotted, existing, dict(value), layer)
    payload = dict(value)
    if not value:
        if isinstance(existing, Mapping) and not segments:
            return
        _clear_branch(meta, dotted)
        target[key] = {}
        return

    if isinstance(existing, Mapping):
        container: dict[str, object] = dict(existing)
        created_new = False
    else:
        _clear_branch(meta, dotted)
        container = {}
        created_new = True

    target[key] = container
    _merge_mapping(container, meta, payload, layer, path, segments + [key], strict)
    if created_new and not container:
        target.pop(key, None)


def _set_scalar(
    target: dict[str, object],
    meta: dict[str, dict[str, object]],
    key: str,
    value: object,
    dotted: str,
    layer: str,
    path: str | None,
    strict: bool,
) -> None:
    """Assign a scalar value and update provenance for ``dotted``."""

    if strict and key in target and target[key] != value:
        _raise_conflict(meta, dotted, target[key], value, layer)
    _clear_branch(meta, dotted)
    target[key] = value
    meta[dotted] = {"layer": layer, "path": path, "key": dotted}


def _raise_conflict(
    meta: dict[str, dict[str, object]],
    dotted: str,
    existing: object,
    incoming: object,
    layer: str,
) -> None:
    previous = meta.get(dotted, {}).get("layer", "?")
    raise ConfigurationError(
        f"Conflicting values for {dotted}: {existing!r} ({previous}) and {incoming!r} ({layer})"
    )


def _clear_branch(meta: dict[str, dict[str, object]], prefix: str) -> None:
    """Remove provenance entries that belong to *prefix* or its descendants."""

    for meta_key in list(meta.keys()):
        if meta_key == prefix or meta_key.startswith(prefix + "."):
            meta.pop(meta_key, None)


def _dotted_key(segments: list[str], key: str) -> str:
    return ".".join([*segments, key]) if segments else key
