"""Shared fixtures for network, fleet, and manifest scenarios.

The helpers build the two-target database network used throughout the suite,
write realised profiles for lifecycle tests that bypass the engine, and read
and write rows of a component's state the way a database client would.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping

from lib_network_manifest.adapters.engine.default import DefaultConfigurationEngine
from lib_network_manifest.adapters.state.filesystem import FilesystemStateBackend
from lib_network_manifest.application.manifest import stable_key
from lib_network_manifest.domain.errors import RemoteOperationError
from lib_network_manifest.domain.manifest import ActivationMapping, Manifest, ProfileMapping, SnapshotMapping
from lib_network_manifest.domain.network import SYSTEM_CONFIGURATION

SCHEMA = "create table test (test_id INTEGER NOT NULL, PRIMARY KEY(test_id));"
DATABASE_CONTAINERS = ("mysql-database", "postgresql-database")


def database_network(*, test1_databases: bool = True) -> dict[str, Any]:
    """Two targets each running MySQL and PostgreSQL with a ``testdb`` component.

    With ``test1_databases=False`` the databases are no longer declared on
    ``test1`` while the services keep running.
    """

    def target(with_databases: bool) -> dict[str, Any]:
        fragment: dict[str, Any] = {
            "services": {"mysql": {"enable": True}, "postgresql": {"enable": True}},
        }
        if with_databases:
            fragment["components"] = {
                container: {"testdb": {"schema.sql": SCHEMA}} for container in DATABASE_CONTAINERS
            }
        return fragment

    return {"test1": target(test1_databases), "test2": target(True)}


def physical_network() -> dict[str, Any]:
    return {
        "test1": {"infrastructure": {"properties": {"mem": 1024}}},
        "test2": {"infrastructure": {"properties": {"mem": 2048}}},
    }


def make_engine(tmp_path: Path) -> DefaultConfigurationEngine:
    return DefaultConfigurationEngine(tmp_path / "store", write_derivations=True)


def write_profile(path: Path, hostname: str, components: Mapping[str, Mapping[str, Any]]) -> str:
    """Materialise a realised profile directory the filesystem backend can activate."""

    path.mkdir(parents=True, exist_ok=True)
    document = {"name": f"system-{hostname}", "hostname": hostname, "components": components}
    (path / "profile.json").write_text(json.dumps(document), encoding="utf-8")
    return str(path)


def manual_manifest(tmp_path: Path, targets: Mapping[str, Mapping[str, Mapping[str, Any]]], *, label: str = "a") -> Manifest:
    """Build a manifest whose profiles declare *targets*' components, without the engine.

    *targets* maps a target name to ``{container: {component: payload}}``.
    """

    profiles: list[ProfileMapping] = []
    activation: list[ActivationMapping] = []
    snapshots: list[SnapshotMapping] = []
    for name in sorted(targets):
        profile = write_profile(tmp_path / "profiles" / label / name, name, targets[name])
        profiles.append(ProfileMapping(profile, name))
        activation.append(
            ActivationMapping(
                stable_key=stable_key(profile, name, SYSTEM_CONFIGURATION),
                name=name,
                service=profile,
                target=name,
                container=SYSTEM_CONFIGURATION,
                type=SYSTEM_CONFIGURATION,
            )
        )
        snapshots.append(SnapshotMapping(f"system-{name}", SYSTEM_CONFIGURATION, SYSTEM_CONFIGURATION, profile, name))
    return Manifest(profiles=tuple(profiles), activation=tuple(activation), snapshots=tuple(snapshots))


def databases(*names: str) -> dict[str, dict[str, Any]]:
    return {container: {name: {"schema.sql": SCHEMA} for name in names} for container in DATABASE_CONTAINERS}


def insert_row(backend: FilesystemStateBackend, target: str, container: str, component: str, row: str) -> None:
    path = backend.state_path(target, container, component)
    if not path.is_dir():
        raise FileNotFoundError(path)
    with (path / "rows").open("a", encoding="utf-8") as handle:
        handle.write(f"{row}\n")


def query_rows(backend: FilesystemStateBackend, target: str, container: str, component: str) -> list[str]:
    """Return the rows of a component; a removed component cannot be queried."""

    path = backend.state_path(target, container, component)
    if not path.is_dir():
        raise FileNotFoundError(path)
    rows = path / "rows"
    return rows.read_text(encoding="utf-8").splitlines() if rows.is_file() else []


def fleet(tmp_path: Path, targets: Iterable[str] = ("test1", "test2")) -> FilesystemStateBackend:
    backend = FilesystemStateBackend(tmp_path / "fleet")
    for target in targets:
        backend.add_target(target)
    return backend


class FlakyBackend:
    """Delegate to *inner*, failing the first *failures* calls of *operation* with a transport error."""

    def __init__(self, inner: FilesystemStateBackend, operation: str, failures: int) -> None:
        self.inner = inner
        self.operation = operation
        self.failures = failures
        self.calls = 0

    def __getattr__(self, name: str) -> Any:
        attribute = getattr(self.inner, name)
        if name != self.operation:
            return attribute

        def flaky(*args: Any, **kwargs: Any) -> Any:
            self.calls += 1
            if self.calls <= self.failures:
                raise RemoteOperationError(str(args[2]), name, "connection reset")
            return attribute(*args, **kwargs)

        return flaky
