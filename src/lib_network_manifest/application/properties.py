"""Target property resolution.

A target is addressed by one of its infrastructure attributes. The global
``target_property`` names that attribute unless the target carries its own
``targetProperty`` override.
"""

from __future__ import annotations

from typing import Any, Mapping

from ..domain.errors import MissingPropertyError


def resolve_target_property(global_property: str, infrastructure: Mapping[str, Any]) -> Any:
    """Return the value of the attribute used as the target's address.

    Examples
    --------
    >>> resolve_target_property("hostname", {"hostname": "web1.local"})
    'web1.local'
    >>> resolve_target_property("hostname", {"hostname": "web1", "targetProperty": "sshTarget", "sshTarget": "10.0.0.5"})
    '10.0.0.5'
    >>> resolve_target_property("address", {"hostname": "web1"})
    Traceback (most recent call last):
    ...
    lib_network_manifest.domain.errors.MissingPropertyError: Infrastructure attribute not found: address
    """

    attribute = infrastructure.get("targetProperty", global_property)
    try:
        return infrastructure[attribute]
    except KeyError as exc:
        raise MissingPropertyError(attribute) from exc


def resolve_client_interface(global_interface: str, infrastructure: Mapping[str, Any]) -> Any:
    """Return the target's ``clientInterface`` override or the global default."""

    return infrastructure.get("clientInterface", global_interface)
