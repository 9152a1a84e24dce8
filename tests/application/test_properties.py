from __future__ import annotations

import pytest

from lib_network_manifest.application.properties import resolve_client_interface, resolve_target_property
from lib_network_manifest.domain.errors import MissingPropertyError


def test_global_property_is_looked_up_directly() -> None:
    assert resolve_target_property("hostname", {"hostname": "test1"}) == "test1"


def test_per_target_override_wins() -> None:
    infrastructure = {"hostname": "test1", "targetProperty": "sshTarget", "sshTarget": "192.168.1.5"}
    assert resolve_target_property("hostname", infrastructure) == "192.168.1.5"


def test_missing_override_attribute_fails() -> None:
    with pytest.raises(MissingPropertyError) as excinfo:
        resolve_target_property("hostname", {"hostname": "test1", "targetProperty": "sshTarget"})
    assert excinfo.value.attribute == "sshTarget"


def test_missing_global_attribute_fails() -> None:
    with pytest.raises(MissingPropertyError):
        resolve_target_property("address", {"hostname": "test1"})


def test_client_interface_override() -> None:
    assert resolve_client_interface("disnix-ssh-client", {}) == "disnix-ssh-client"
    assert resolve_client_interface("disnix-ssh-client", {"clientInterface": "disnix-soap-client"}) == "disnix-soap-client"
