"""Environment variable adapter.

Purpose
-------
Translate process environment variables into a nested options mapping. It is
the environment layer of the compile-option precedence chain, above the
options file and below explicit overrides.

Key behaviours
--------------
* Only variables starting with the prefix (``LIB_NETWORK_MANIFEST_`` by
  default) are captured.
* ``__`` is the nesting delimiter (``FOO__BAR`` becomes ``{"foo": {"bar": ...}}``).
* Light type coercion for common scalars (bools, ints, floats, ``null``/``none``).
"""

from __future__ import annotations

import os
from typing import Final, Mapping

from ...observability import log_debug

ENV_SLUG: Final[str] = "lib-network-manifest"


def default_env_prefix(slug: str = ENV_SLUG) -> str:
    """Return the canonical environment prefix for *slug*.

    Examples
    --------
    >>> default_env_prefix()
    'LIB_NETWORK_MANIFEST'
    """

    return slug.replace("-", "_").upper()


class DefaultEnvLoader:
    """Load environment variables that belong to the options namespace."""

    def __init__(self, *, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def load(self, prefix: str) -> dict[str, object]:
        """Return a nested mapping containing variables with the supplied *prefix*.

        Keys are lower-cased so they line up with option names.

        Examples
        --------
        >>> env = {
        ...     'LIB_NETWORK_MANIFEST_USE_BACKDOOR': 'true',
        ...     'LIB_NETWORK_MANIFEST_TARGET_PROPERTY': 'sshTarget',
        ...     'HOME': '/root',
        ... }
        >>> DefaultEnvLoader(environ=env).load('LIB_NETWORK_MANIFEST')
        {'use_backdoor': True, 'target_property': 'sshTarget'}
        """

        prefix = f"{prefix}_" if prefix and not prefix.endswith("_") else prefix
        collected: dict[str, object] = {}
        for key, value in self._environ.items():
            if prefix and not key.startswith(prefix):
                continue
            stripped = key[len(prefix) :] if prefix else key
            if not stripped:
                continue
            assign_nested(collected, stripped, _coerce(value))
        log_debug("env_variables_loaded", layer="env", keys=sorted(collected.keys()))
        return collected


def assign_nested(target: dict[str, object], key: str, value: object) -> None:
    """Assign ``value`` inside ``target`` using ``__`` as a nesting delimiter.

    Examples
    --------
    >>> data: dict[str, object] = {}
    >>> assign_nested(data, 'ENGINE__STORE_DIR', '/tmp/store')
    >>> data
    {'engine': {'store_dir': '/tmp/store'}}
    """

    parts = key.split("__")
    cursor = target
    for part in parts[:-1]:
        cursor = _ensure_child_mapping(cursor, part)
    cursor[_resolve_key(cursor, parts[-1])] = value


def _resolve_key(mapping: dict[str, object], key: str) -> str:
    """Return an existing key matching ``key`` case-insensitively, or a new lowercase key."""

    lower = key.lower()
    for existing in mapping.keys():
        if existing.lower() == lower:
            return existing
    return lower


def _ensure_child_mapping(mapping: dict[str, object], key: str) -> dict[str, object]:
    resolved = _resolve_key(mapping, key)
    if resolved not in mapping:
        mapping[resolved] = {}
    child = mapping[resolved]
    if not isinstance(child, dict):
        raise ValueError(f"Cannot override scalar with mapping for key {key}")
    return child


def _coerce(value: str) -> object:
    """Coerce textual environment values to Python primitives where possible.

    Examples
    --------
    >>> _coerce('true'), _coerce('10'), _coerce('3.5'), _coerce('hostname')
    (True, 10, 3.5, 'hostname')
    """

    lowered = value.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    if lowered in {"null", "none"}:
        return None
    try:
        if value.isdigit() or (value.startswith("-") and value[1:].isdigit()):
            return int(value)
        return float(value)
    except ValueError:
        return value
