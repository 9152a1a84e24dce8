"""Default configuration engine: merging, priorities, modules, content addressing."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from lib_network_manifest.adapters.engine.default import (
    DefaultConfigurationEngine,
    generate_containers,
    store_hash,
)
from lib_network_manifest.application.manifest import strip_content_address_prefix
from lib_network_manifest.domain.errors import ConfigurationError, InvalidFormat, NotFound
from lib_network_manifest.domain.network import UnresolvedReference, mk_default, mk_force, mk_override


def _evaluate(engine: DefaultConfigurationEngine, *fragments, name: str = "test1"):
    return engine.evaluate(name, list(fragments), {})


def test_lists_concatenate_and_mappings_recurse(tmp_path: Path) -> None:
    result = _evaluate(
        DefaultConfigurationEngine(tmp_path),
        {"users": {"admins": ["alice"], "shell": "bash"}},
        {"users": {"admins": ["bob"]}},
    )
    assert result.properties["config"]["users"] == {"admins": ["alice", "bob"], "shell": "bash"}


def test_equal_scalars_agree(tmp_path: Path) -> None:
    result = _evaluate(DefaultConfigurationEngine(tmp_path), {"nix": {"cores": 2}}, {"nix": {"cores": 2}})
    assert result.properties["config"]["nix"]["cores"] == 2


def test_conflicting_scalars_name_the_option(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="nix.cores"):
        _evaluate(DefaultConfigurationEngine(tmp_path), {"nix": {"cores": 2}}, {"nix": {"cores": 4}})


@pytest.mark.parametrize(
    ("first", "second", "expected"),
    [
        (mk_default(1), 2, 2),
        (5, mk_force(6), 6),
        (mk_override(10, "low"), mk_override(20, "high"), "low"),
        (mk_force(1), mk_default(2), 1),
    ],
)
def test_lower_priority_wins(tmp_path: Path, first, second, expected) -> None:
    result = _evaluate(DefaultConfigurationEngine(tmp_path), {"nix": {"value": first}}, {"nix": {"value": second}})
    assert result.properties["config"]["nix"]["value"] == expected


def test_injected_hostname_yields_to_plain_definition(tmp_path: Path) -> None:
    result = _evaluate(
        DefaultConfigurationEngine(tmp_path),
        {"networking": {"hostName": "custom"}},
        {"networking": {"hostName": mk_override(900, "test1")}},
    )
    assert result.properties["infrastructure"]["hostname"] == "custom"
    assert result.artifact_path.endswith("-system-custom")


def test_value_and_set_cannot_mix(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="services"):
        _evaluate(DefaultConfigurationEngine(tmp_path), {"services": {"mysql": True}}, {"services": {"mysql": {"enable": True}}})


def test_undeclared_options_are_rejected_unless_checks_are_off(tmp_path: Path) -> None:
    engine = DefaultConfigurationEngine(tmp_path)
    with pytest.raises(ConfigurationError, match="used but not defined"):
        _evaluate(engine, {"deployment": {"targetHost": "x"}})
    relaxed = _evaluate(engine, {"deployment": {"targetHost": "x"}}, {"environment": {"check_configuration_options": False}})
    assert relaxed.properties["infrastructure"]["targetHost"] == "x"


def test_modules_declare_options_and_apply_once(tmp_path: Path) -> None:
    result = _evaluate(
        DefaultConfigurationEngine(tmp_path),
        "virtualisation/qemu-vm",
        {"imports": ["virtualisation/qemu-vm"], "virtualisation": {"memory_size": 2048}},
    )
    assert result.properties["config"]["virtualisation"] == {
        "qemu": True,
        "memory_size": 2048,
        "disk_size": 512,
        "graphics": False,
    }


def test_unknown_module_is_a_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Unknown module"):
        _evaluate(DefaultConfigurationEngine(tmp_path), "no-such-module")


def test_callable_fragment_must_return_a_mapping(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="did not return a mapping"):
        _evaluate(DefaultConfigurationEngine(tmp_path), lambda context: ["not", "a", "mapping"])


def test_fragment_with_an_unresolved_reference_contributes_nothing(tmp_path: Path) -> None:
    def pending(context):
        raise UnresolvedReference("db1.infrastructure.hostname")

    result = _evaluate(DefaultConfigurationEngine(tmp_path), {"users": {"admin": "alice"}}, pending)
    assert result.properties["config"]["users"] == {"admin": "alice"}


def test_infrastructure_exposes_properties_and_containers(tmp_path: Path) -> None:
    result = _evaluate(
        DefaultConfigurationEngine(tmp_path),
        {"services": {"mysql": {"enable": True}}, "components": {"tomcat-webapplication": {"app": "war"}}},
        {
            "infrastructure": {
                "enable": True,
                "generate_containers_expr": "generate-containers",
                "properties": {"mem": 1024},
            }
        },
    )
    infrastructure = result.properties["infrastructure"]
    assert infrastructure["hostname"] == "test1"
    assert infrastructure["system"] == "x86_64-linux"
    assert infrastructure["mem"] == 1024
    assert sorted(infrastructure["containers"]) == ["mysql-database", "process", "tomcat-webapplication", "wrapper"]
    assert result.properties["components"] == {"tomcat-webapplication": ["app"]}


def test_unknown_containers_helper_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="containers helper"):
        _evaluate(
            DefaultConfigurationEngine(tmp_path),
            {"infrastructure": {"enable": True, "generate_containers_expr": "missing"}},
        )


def test_disabled_services_offer_no_container() -> None:
    assert sorted(generate_containers({"services": {"mysql": {"enable": False}}})) == ["process", "wrapper"]


def test_artifact_paths_are_content_addressed(tmp_path: Path) -> None:
    engine = DefaultConfigurationEngine(tmp_path / "store")
    first = _evaluate(engine, {"nix": {"cores": 1}})
    again = _evaluate(engine, {"nix": {"cores": 1}})
    other = _evaluate(engine, {"nix": {"cores": 2}})
    assert first.artifact_path == again.artifact_path
    assert first.artifact_path != other.artifact_path
    assert first.artifact_path.startswith(f"{tmp_path / 'store'}/")
    assert first.build_task.endswith("-system-test1.drv")
    assert strip_content_address_prefix(first.artifact_path) == "system-test1"


def test_store_hash_uses_the_store_alphabet() -> None:
    digest = store_hash("output", "{}")
    assert len(digest) == 32
    assert set(digest) <= set("0123456789abcdfghijklmnpqrsvwxyz")
    assert digest != store_hash("derivation", "{}")


def test_realise_builds_the_profile_document(tmp_path: Path) -> None:
    engine = DefaultConfigurationEngine(tmp_path / "store", write_derivations=True)
    result = _evaluate(engine, {"components": {"mysql-database": {"testdb": {"schema.sql": "create"}}}})
    assert json.loads(Path(result.build_task).read_text(encoding="utf-8"))["output"] == result.artifact_path

    artifact = engine.realise(result.build_task)
    assert artifact == result.artifact_path
    profile = json.loads((Path(artifact) / "profile.json").read_text(encoding="utf-8"))
    assert profile == {
        "name": "system-test1",
        "hostname": "test1",
        "components": {"mysql-database": {"testdb": {"schema.sql": "create"}}},
    }


def test_realise_rejects_missing_and_corrupt_build_tasks(tmp_path: Path) -> None:
    engine = DefaultConfigurationEngine(tmp_path)
    with pytest.raises(NotFound):
        engine.realise(str(tmp_path / "missing.drv"))
    corrupt = tmp_path / "corrupt.drv"
    corrupt.write_text("{}", encoding="utf-8")
    with pytest.raises(InvalidFormat):
        engine.realise(str(corrupt))


def test_derivations_are_not_written_by_default(tmp_path: Path) -> None:
    result = _evaluate(DefaultConfigurationEngine(tmp_path / "store"), {})
    assert not Path(result.build_task).exists()
