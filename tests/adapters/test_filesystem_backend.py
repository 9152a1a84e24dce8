"""Filesystem state backend: activation, nested snapshots, restore, garbage collection."""

from __future__ import annotations

from itertools import count
from pathlib import Path

import pytest

from lib_network_manifest.adapters.state.filesystem import FilesystemStateBackend
from lib_network_manifest.domain.errors import RemoteOperationError, StateConsistencyError
from lib_network_manifest.domain.network import SYSTEM_CONFIGURATION
from lib_network_manifest.domain.snapshot import SnapshotKey
from tests.support import SCHEMA, databases, insert_row, query_rows, write_profile

SYSTEM = (SYSTEM_CONFIGURATION, "system-test1")


@pytest.fixture()
def backend(tmp_path: Path) -> FilesystemStateBackend:
    ticks = count(1)
    fleet = FilesystemStateBackend(tmp_path / "fleet", clock=lambda: next(ticks))
    fleet.add_target("test1")
    return fleet


@pytest.fixture()
def profile(tmp_path: Path) -> str:
    return write_profile(tmp_path / "profiles" / "test1", "test1", databases("testdb"))


def test_activation_seeds_declared_components(backend, profile) -> None:
    backend.activate("test1", profile, [SYSTEM])
    state = backend.state_path("test1", "mysql-database", "testdb")
    assert (state / "schema.sql").read_text(encoding="utf-8") == SCHEMA
    assert backend.active_profile("test1") == profile
    assert backend.deployed("test1") == {SYSTEM}


def test_activation_keeps_existing_state(backend, profile) -> None:
    backend.activate("test1", profile, [SYSTEM])
    insert_row(backend, "test1", "mysql-database", "testdb", "1")
    backend.activate("test1", profile, [SYSTEM])
    assert query_rows(backend, "test1", "mysql-database", "testdb") == ["1"]


def test_string_payload_becomes_init_file(backend, tmp_path) -> None:
    profile = write_profile(tmp_path / "p", "test1", {"process": {"daemon": "start"}})
    backend.activate("test1", profile, [])
    assert (backend.state_path("test1", "process", "daemon") / "init").read_text(encoding="utf-8") == "start"


def test_unbuilt_profile_cannot_be_activated(backend, tmp_path) -> None:
    with pytest.raises(StateConsistencyError, match="has not been built"):
        backend.activate("test1", str(tmp_path / "missing"), [SYSTEM])


def test_unknown_target_is_unreachable_unless_provisioned(tmp_path, profile) -> None:
    closed = FilesystemStateBackend(tmp_path / "closed")
    with pytest.raises(RemoteOperationError, match="unreachable"):
        closed.deployed("test1")
    open_fleet = FilesystemStateBackend(tmp_path / "open", provision=True)
    open_fleet.activate("test1", profile, [SYSTEM])
    assert open_fleet.deployed("test1") == {SYSTEM}


def test_system_capture_records_nested_snapshots(backend, profile) -> None:
    backend.activate("test1", profile, [SYSTEM])
    snapshot = backend.capture(*SYSTEM, "test1")
    assert snapshot.key == SnapshotKey(*SYSTEM, "test1")
    containers = {item.key.container for item in backend.query_all(None, "test1")}
    assert containers == {SYSTEM_CONFIGURATION, "mysql-database", "postgresql-database"}
    assert {item.captured_at for item in backend.query_all(None, "test1")} == {snapshot.captured_at}


def test_system_capture_requires_deployment(backend, profile) -> None:
    backend.activate("test1", profile, [])
    with pytest.raises(StateConsistencyError, match="not deployed"):
        backend.capture(*SYSTEM, "test1")


def test_component_capture_requires_state(backend) -> None:
    with pytest.raises(StateConsistencyError, match="no state"):
        backend.capture("mysql-database", "testdb", "test1")


def test_restore_replaces_component_state(backend, profile) -> None:
    backend.activate("test1", profile, [SYSTEM])
    insert_row(backend, "test1", "mysql-database", "testdb", "1")
    snapshot = backend.capture("mysql-database", "testdb", "test1")
    insert_row(backend, "test1", "mysql-database", "testdb", "2")
    backend.restore("mysql-database", "testdb", "test1", snapshot.ref)
    assert query_rows(backend, "test1", "mysql-database", "testdb") == ["1"]


def test_restore_rejects_foreign_references(backend, profile) -> None:
    backend.activate("test1", profile, [SYSTEM])
    snapshot = backend.capture("mysql-database", "testdb", "test1")
    with pytest.raises(StateConsistencyError):
        backend.restore("postgresql-database", "testdb", "test1", snapshot.ref)
    with pytest.raises(StateConsistencyError):
        backend.restore("mysql-database", "testdb", "test1", "mysql-database/testdb/1-missing")


def test_clean_prunes_per_key(backend, profile) -> None:
    backend.activate("test1", profile, [SYSTEM])
    for _ in range(3):
        backend.capture(*SYSTEM, "test1")
    removed = backend.clean("mysql-database", "test1", keep=1)
    assert len(removed) == 2
    assert len(backend.query_all("mysql-database", "test1")) == 1
    assert len(backend.query_all(SYSTEM_CONFIGURATION, "test1")) == 3
    backend.clean(None, "test1", keep=0)
    assert backend.query_all(None, "test1") == []


def test_delete_state_removes_state_and_snapshots(backend, profile) -> None:
    backend.activate("test1", profile, [SYSTEM])
    backend.capture("mysql-database", "testdb", "test1")
    backend.delete_state("mysql-database", "testdb", "test1")
    assert ("mysql-database", "testdb") not in backend.components("test1")
    with pytest.raises(FileNotFoundError):
        query_rows(backend, "test1", "mysql-database", "testdb")


def test_collect_garbage_removes_undeclared_components(backend, profile, tmp_path) -> None:
    backend.activate("test1", profile, [SYSTEM])
    slimmer = write_profile(tmp_path / "profiles" / "slim", "test1", {"mysql-database": {"testdb": {}}})
    backend.activate("test1", slimmer, [SYSTEM])
    assert backend.collect_garbage("mysql-database", "testdb", "test1") == []
    assert backend.collect_garbage(*SYSTEM, "test1") == ["postgresql-database/testdb"]
    assert query_rows(backend, "test1", "mysql-database", "testdb") == []
    with pytest.raises(FileNotFoundError):
        query_rows(backend, "test1", "postgresql-database", "testdb")


def test_running_includes_inner_components_of_a_deployed_system(backend, profile) -> None:
    backend.activate("test1", profile, [])
    assert backend.running("test1") == set()
    backend.activate("test1", profile, [SYSTEM])
    assert backend.running("test1") == {
        SYSTEM,
        ("mysql-database", "testdb"),
        ("postgresql-database", "testdb"),
    }


def test_collect_garbage_removes_nested_snapshots_of_undeclared_components(backend, profile, tmp_path) -> None:
    backend.activate("test1", profile, [SYSTEM])
    backend.capture(*SYSTEM, "test1")
    slimmer = write_profile(tmp_path / "profiles" / "slim", "test1", {"mysql-database": {"testdb": {}}})
    backend.activate("test1", slimmer, [SYSTEM])
    assert backend.collect_garbage(*SYSTEM, "test1") == ["postgresql-database/testdb"]
    assert backend.query_all("postgresql-database", "test1") == []
    assert len(backend.query_all("mysql-database", "test1")) == 1
    assert len(backend.query_all(SYSTEM_CONFIGURATION, "test1")) == 1
