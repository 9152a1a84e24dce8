"""Filesystem state backend.

Purpose
-------
Implement :class:`~lib_network_manifest.application.ports.StateBackend` on a
local directory tree so a fleet of targets can be managed without remote
transport. Each target is a directory below ``root``::

    <root>/<target>/profile                      active profile path
    <root>/<target>/deployed.json                deployed (container, component) pairs
    <root>/<target>/state/<container>/<component>/
    <root>/<target>/snapshots/<container>/<component>/<captured-ns>-<digest>/

The ``system-configuration`` container holds whole-machine configurations. Its
state is the set of inner components declared by the active profile's
``profile.json``: capturing it copies every inner component (and also records a
snapshot of each inner component in its own container), restoring it copies
them back, and garbage collection removes inner components the active profile
no longer declares, together with their nested snapshots.
"""

from __future__ import annotations

import hashlib
import json
import shutil
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from ...domain.errors import RemoteOperationError, StateConsistencyError
from ...domain.network import SYSTEM_CONFIGURATION
from ...domain.snapshot import Snapshot, SnapshotKey, latest_per_key, newest_first, split_retention
from ...observability import log_debug, log_info, make_event

PROFILE_DOCUMENT = "profile.json"
DIGEST_LENGTH = 12


class FilesystemStateBackend:
    """Keep component state and snapshots of every target under one directory.

    Parameters
    ----------
    root:
        Directory containing one subdirectory per target.
    provision:
        Create a target's directory on first use. Otherwise an unknown target
        is unreachable and raises :class:`RemoteOperationError`.
    clock:
        Nanosecond clock used to timestamp snapshots.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        provision: bool = False,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        self.root = Path(root)
        self.provision = provision
        self._clock = clock
        self._clock_lock = threading.Lock()
        self._last_stamp = 0

    def add_target(self, target: str) -> Path:
        """Create the directory of *target* and return it."""

        path = self.root / str(target)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def state_path(self, target: str, container: str, component: str) -> Path:
        return self.root / str(target) / "state" / container / component

    def active_profile(self, target: str) -> str | None:
        marker = self._target_dir(target, "query") / "profile"
        return marker.read_text(encoding="utf-8").strip() if marker.is_file() else None

    def activate(self, target: str, profile: str, components: Iterable[tuple[str, str]]) -> None:
        base = self._target_dir(target, "activate")
        document = self._profile_document(target, profile)
        for container, name, payload in _declared_components(document):
            path = base / "state" / container / name
            if not path.exists():
                path.mkdir(parents=True)
                _seed(path, payload)
                log_debug("component_initialised", **make_event("activate", target, {"component": f"{container}/{name}"}))
        (base / "profile").write_text(profile, encoding="utf-8")
        pairs = sorted({(container, component) for container, component in components})
        (base / "deployed.json").write_text(json.dumps([list(pair) for pair in pairs]), encoding="utf-8")
        log_info("profile_switched", **make_event("activate", target, {"profile": profile}))

    def deployed(self, target: str) -> set[tuple[str, str]]:
        marker = self._target_dir(target, "query") / "deployed.json"
        if not marker.is_file():
            return set()
        return {(container, component) for container, component in json.loads(marker.read_text(encoding="utf-8"))}

    def running(self, target: str) -> set[tuple[str, str]]:
        """Deployed pairs plus the inner components of a deployed system configuration."""

        deployed = self.deployed(target)
        if not any(container == SYSTEM_CONFIGURATION for container, _ in deployed):
            return deployed
        return deployed | set(self._declared(target))

    def components(self, target: str, container: str | None = None) -> set[tuple[str, str]]:
        base = self._target_dir(target, "query")
        found = {pair for pair in self.deployed(target) if container is None or pair[0] == container}
        for area in ("state", "snapshots"):
            for container_dir in _subdirs(base / area):
                if container is not None and container_dir.name != container:
                    continue
                found.update((container_dir.name, entry.name) for entry in _subdirs(container_dir))
        return found

    def capture(self, container: str, component: str, target: str) -> Snapshot:
        base = self._target_dir(target, "capture")
        stamp = self._next_stamp()
        key = SnapshotKey(container, component, target)
        if container == SYSTEM_CONFIGURATION:
            if (container, component) not in self.deployed(target):
                raise StateConsistencyError(target, f"cannot capture {key}: component is not deployed")
            sources = {
                f"{inner}/{name}": base / "state" / inner / name
                for inner, name in self._declared(target)
                if (base / "state" / inner / name).is_dir()
            }
            for relative, source in sources.items():
                inner, name = relative.split("/", 1)
                self._store(base, SnapshotKey(inner, name, target), {"": source}, stamp)
        else:
            source = base / "state" / container / component
            if not source.is_dir():
                raise StateConsistencyError(target, f"cannot capture {key}: component has no state")
            sources = {"": source}
        snapshot = self._store(base, key, sources, stamp)
        log_info("snapshot_captured", **make_event("capture", target, {"snapshot": snapshot.ref}))
        return snapshot

    def query_all(self, container: str | None, target: str) -> list[Snapshot]:
        base = self._target_dir(target, "query") / "snapshots"
        found: list[Snapshot] = []
        for container_dir in _subdirs(base):
            if container is not None and container_dir.name != container:
                continue
            for component_dir in _subdirs(container_dir):
                key = SnapshotKey(container_dir.name, component_dir.name, target)
                found.extend(_parse_snapshot(entry.name, key) for entry in _subdirs(component_dir))
        return newest_first(found)

    def query_latest(self, container: str | None, target: str) -> list[Snapshot]:
        return latest_per_key(self.query_all(container, target))

    def clean(self, container: str | None, target: str, keep: int) -> list[Snapshot]:
        base = self._target_dir(target, "clean") / "snapshots"
        _, removed = split_retention(self.query_all(container, target), keep)
        for snapshot in removed:
            path = base / snapshot.ref
            shutil.rmtree(path)
            _prune_empty(path.parent, stop=base)
        log_info("snapshots_cleaned", **make_event("clean", target, {"removed": len(removed), "keep": keep}))
        return removed

    def restore(self, container: str, component: str, target: str, snapshot_ref: str) -> None:
        base = self._target_dir(target, "restore")
        prefix = f"{container}/{component}/"
        source = base / "snapshots" / snapshot_ref
        if not snapshot_ref.startswith(prefix) or not source.is_dir():
            raise StateConsistencyError(target, f"snapshot {snapshot_ref} not found for {container}/{component}")
        if container == SYSTEM_CONFIGURATION:
            for inner_dir in _subdirs(source):
                for component_dir in _subdirs(inner_dir):
                    _replace_tree(component_dir, base / "state" / inner_dir.name / component_dir.name)
        else:
            _replace_tree(source, base / "state" / container / component)
        log_info("snapshot_restored", **make_event("restore", target, {"snapshot": snapshot_ref}))

    def delete_state(self, container: str, component: str, target: str) -> None:
        base = self._target_dir(target, "delete-state")
        for area in ("state", "snapshots"):
            path = base / area / container / component
            if path.exists():
                shutil.rmtree(path)
                _prune_empty(path.parent, stop=base / area)
        log_info("state_deleted", **make_event("delete-state", target, {"component": f"{container}/{component}"}))

    def collect_garbage(self, container: str, component: str, target: str) -> list[str]:
        if container != SYSTEM_CONFIGURATION:
            return []
        self._target_dir(target, "collect-garbage")
        keep = set(self._declared(target)) | self.deployed(target)
        removed: list[str] = []
        for inner, name in sorted(self.components(target)):
            if inner == SYSTEM_CONFIGURATION or (inner, name) in keep:
                continue
            self.delete_state(inner, name, target)
            removed.append(f"{inner}/{name}")
        if removed:
            log_info("garbage_collected", **make_event("collect-garbage", target, {"removed": removed}))
        return removed

    def _target_dir(self, target: str, operation: str) -> Path:
        path = self.root / str(target)
        if self.provision:
            path.mkdir(parents=True, exist_ok=True)
        if not path.is_dir():
            raise RemoteOperationError(target, operation, "target is unreachable")
        return path

    def _profile_document(self, target: str, profile: str) -> Mapping[str, Any]:
        document = Path(profile) / PROFILE_DOCUMENT
        if not document.is_file():
            raise StateConsistencyError(target, f"profile {profile} has not been built")
        return json.loads(document.read_text(encoding="utf-8"))

    def _declared(self, target: str) -> list[tuple[str, str]]:
        profile = self.active_profile(target)
        if profile is None:
            return []
        return [(container, name) for container, name, _ in _declared_components(self._profile_document(target, profile))]

    def _next_stamp(self) -> int:
        with self._clock_lock:
            self._last_stamp = max(self._clock(), self._last_stamp + 1)
            return self._last_stamp

    def _store(self, base: Path, key: SnapshotKey, sources: Mapping[str, Path], stamp: int) -> Snapshot:
        snapshot_id = f"{stamp}-{_tree_digest(sources)[:DIGEST_LENGTH]}"
        destination = base / "snapshots" / key.container / key.component / snapshot_id
        destination.mkdir(parents=True)
        for relative, source in sources.items():
            shutil.copytree(source, destination / relative if relative else destination, dirs_exist_ok=True)
        return Snapshot(stamp, snapshot_id, key)


def _declared_components(document: Mapping[str, Any]) -> list[tuple[str, str, Any]]:
    declared: list[tuple[str, str, Any]] = []
    for container, entries in sorted(document.get("components", {}).items()):
        if isinstance(entries, Mapping):
            declared.extend((container, name, payload) for name, payload in sorted(entries.items()))
        else:
            declared.extend((container, name, None) for name in sorted(entries))
    return declared


def _seed(path: Path, payload: Any) -> None:
    """Write a component's initial state files."""

    if isinstance(payload, Mapping):
        for name, content in payload.items():
            (path / name).write_text(str(content), encoding="utf-8")
    elif isinstance(payload, str):
        (path / "init").write_text(payload, encoding="utf-8")


def _subdirs(path: Path) -> list[Path]:
    if not path.is_dir():
        return []
    return sorted(entry for entry in path.iterdir() if entry.is_dir())


def _parse_snapshot(name: str, key: SnapshotKey) -> Snapshot:
    stamp, _, _ = name.partition("-")
    return Snapshot(int(stamp), name, key)


def _tree_digest(sources: Mapping[str, Path]) -> str:
    digest = hashlib.sha256()
    for relative, source in sorted(sources.items()):
        for file in sorted(item for item in source.rglob("*") if item.is_file()):
            digest.update(f"{relative}/{file.relative_to(source).as_posix()}".encode("utf-8"))
            digest.update(file.read_bytes())
    return digest.hexdigest()


def _replace_tree(source: Path, destination: Path) -> None:
    if destination.exists():
        shutil.rmtree(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copytree(source, destination)


def _prune_empty(path: Path, *, stop: Path) -> None:
    """Remove empty directories from *path* upwards, never touching *stop*."""

    while path != stop and path.is_dir() and not any(path.iterdir()):
        path.rmdir()
        path = path.parent
