"""Environment loader adapter tests clarifying namespace coercion.

The scenarios cover prefix naming, nested assignment, and randomised inputs to
prove the adapter keeps turning ``LIB_NETWORK_MANIFEST_*`` variables into
compile options.
"""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from lib_network_manifest.adapters.env.default import DefaultEnvLoader, assign_nested, default_env_prefix


def test_default_env_prefix() -> None:
    """Slug values should become upper snake-case prefixes."""

    assert default_env_prefix() == "LIB_NETWORK_MANIFEST"
    assert default_env_prefix("demo-tool") == "DEMO_TOOL"


def test_env_loader_reads_option_names() -> None:
    """Coerce option variables while ignoring out-of-scope keys."""

    environ = {
        "LIB_NETWORK_MANIFEST_TARGET_PROPERTY": "sshTarget",
        "LIB_NETWORK_MANIFEST_USE_VM_TESTING": "true",
        "LIB_NETWORK_MANIFEST_ENGINE__WORKERS": "4",
        "OTHER": "ignored",
    }
    data = DefaultEnvLoader(environ=environ).load("LIB_NETWORK_MANIFEST")
    assert data == {"target_property": "sshTarget", "use_vm_testing": True, "engine": {"workers": 4}}


def test_empty_environment_is_respected() -> None:
    assert DefaultEnvLoader(environ={}).load("LIB_NETWORK_MANIFEST") == {}


def test_assign_nested_overwrites_scalar_raises() -> None:
    """Protect existing scalar values from being replaced by nested assignments."""

    container: dict[str, object] = {"A": "value"}
    with pytest.raises(ValueError):
        assign_nested(container, "A__B", 1)


SCALAR_VALUES = st.sampled_from(["0", "1", "true", "false", "3.5", "none", "debug"])
NAMESPACE_KEYS = st.sampled_from(["ENGINE__STORE_DIR", "ENGINE__WORKERS", "LIFECYCLE__RETRIES"])


@given(st.dictionaries(NAMESPACE_KEYS, SCALAR_VALUES, max_size=3))
def test_env_loader_handles_random_namespace(entries) -> None:
    """Randomised namespace inputs should map to consistent nested/coerced payloads."""

    prefix = "DEMO"
    environ = {f"{prefix}_" + key: value for key, value in entries.items()}
    environ["IGNORED"] = "1"
    payload = DefaultEnvLoader(environ=environ).load(prefix)

    def _expect(value: str) -> object:
        lowered = value.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        if lowered in {"none", "null"}:
            return None
        if lowered.isdigit():
            return int(lowered)
        try:
            return float(value)
        except ValueError:
            return value

    for key, original in entries.items():
        parts = key.lower().split("__")
        node = payload
        for part in parts[:-1]:
            assert part in node
            node = node[part]
        assert node[parts[-1]] == _expect(original)
    assert "ignored" not in payload
