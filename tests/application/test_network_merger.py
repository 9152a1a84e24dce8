"""Network merger behaviour: concatenation order, reserved keys, settings."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from lib_network_manifest.application.network import merge_networks
from lib_network_manifest.domain.errors import ConfigurationError
from lib_network_manifest.domain.network import RESERVED_NETWORK_KEYS

TARGET = st.sampled_from(["test1", "test2", "web1", "db1"])
FRAGMENT = st.dictionaries(st.sampled_from(["services", "networking", "users"]), st.integers(), min_size=1, max_size=2)
NETWORK = st.dictionaries(TARGET, st.one_of(FRAGMENT, st.lists(FRAGMENT, max_size=3)), max_size=4)


def _as_list(value):
    return list(value) if isinstance(value, list) else [value]


@given(st.lists(NETWORK, min_size=1, max_size=4))
def test_fragments_are_concatenated_in_source_order(networks) -> None:
    merged = merge_networks(networks)
    for name in merged.names():
        expected = [fragment for network in networks if name in network for fragment in _as_list(network[name])]
        assert list(merged.targets[name]) == expected


@given(st.lists(NETWORK, min_size=1, max_size=3), st.sampled_from(RESERVED_NETWORK_KEYS))
def test_reserved_keys_are_dropped_in_legacy_model(networks, reserved) -> None:
    networks = [*networks, {reserved: {"description": "settings"}}]
    legacy = merge_networks(networks, legacy_model=True)
    assert not set(RESERVED_NETWORK_KEYS) & set(legacy.targets)
    plain = merge_networks(networks)
    assert reserved in plain.targets


def test_later_sources_append_rather_than_replace() -> None:
    logical = {"test1": {"services": {"mysql": {"enable": True}}}}
    physical = {"test1": [{"networking": {"hostName": "test1.local"}}]}
    merged = merge_networks([logical, physical], labels=["logical.py", "physical.toml"])
    assert list(merged.targets["test1"]) == [logical["test1"], physical["test1"][0]]


def test_settings_collect_reserved_values_from_every_source() -> None:
    merged = merge_networks(
        [
            {"network": {"description": "Test network"}, "test1": {}},
            {"network": {"enableRollback": True}, "resources": {"machines": {"count": 2}}},
        ],
        legacy_model=True,
    )
    assert dict(merged.settings["network"]) == {"description": "Test network", "enableRollback": True}
    assert dict(merged.settings["resources"]) == {"machines": {"count": 2}}
    assert merged.names() == ["test1"]


def test_conflicting_reserved_settings_fail() -> None:
    with pytest.raises(ConfigurationError, match="network.description"):
        merge_networks(
            [{"network": {"description": "one"}}, {"network": {"description": "two"}}],
            legacy_model=True,
        )


def test_non_fragment_entries_are_rejected() -> None:
    with pytest.raises(ConfigurationError, match="test1"):
        merge_networks([{"test1": 42}])


def test_callable_and_module_fragments_are_accepted() -> None:
    def fragment(context):
        return {"networking": {"hostName": context.name}}

    merged = merge_networks([{"test1": [fragment, "virtualisation/qemu-vm"]}])
    assert list(merged.targets["test1"]) == [fragment, "virtualisation/qemu-vm"]


def test_merged_network_is_read_only() -> None:
    merged = merge_networks([{"test1": {}}])
    with pytest.raises(TypeError):
        merged.targets["test2"] = ()  # type: ignore[index]
