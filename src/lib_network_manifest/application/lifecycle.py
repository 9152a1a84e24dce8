"""State snapshot lifecycle.

Purpose
-------
Drive capture, query, retention, restore, and deployment-aware deletion of
component state across the targets of a manifest.

Key behaviours
--------------
* Operations fan out per target on a thread pool whose workers carry the
  run's trace id. A failing target is recorded in the :class:`LifecycleReport`
  while the remaining targets finish; the operation then raises
  :class:`~lib_network_manifest.domain.errors.LifecycleError`.
* Mutations of one ``(container, component, target)`` key are serialised with a
  per-key lock.
* Restore and delete-state retry
  :class:`~lib_network_manifest.domain.errors.RemoteOperationError` with
  exponential backoff. Nothing else is retried.
* ``delete_state`` only ever removes state of keys that are neither listed in
  the manifest nor running on the target.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, TypeVar

from ..domain.errors import LifecycleError, RemoteOperationError, StateConsistencyError
from ..domain.manifest import Manifest
from ..domain.snapshot import ComponentState, Snapshot, SnapshotKey, classify, latest_per_key, newest_first
from ..observability import bind_trace_id, log_debug, log_error, log_info, log_warning, make_event, new_trace_id
from .ports import StateBackend

T = TypeVar("T")


@dataclass(slots=True)
class TargetOutcome:
    """Result of one lifecycle operation on one target."""

    target: str
    result: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class LifecycleReport:
    """Per-target outcomes of one lifecycle operation.

    Examples
    --------
    >>> report = LifecycleReport("snapshot")
    >>> report.record(TargetOutcome("web1", result=[]))
    >>> report.ok, report.failures
    (True, {})
    """

    operation: str
    outcomes: dict[str, TargetOutcome] = field(default_factory=dict)

    def record(self, outcome: TargetOutcome) -> None:
        self.outcomes[outcome.target] = outcome

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes.values())

    @property
    def failures(self) -> dict[str, BaseException]:
        return {name: outcome.error for name, outcome in self.outcomes.items() if outcome.error is not None}

    def results(self) -> dict[str, Any]:
        return {name: outcome.result for name, outcome in sorted(self.outcomes.items()) if outcome.ok}


class KeyLocks:
    """Hand out one lock per snapshot key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[SnapshotKey, threading.Lock] = {}

    def get(self, key: SnapshotKey) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def hold(self, keys: Iterable[SnapshotKey]) -> Iterator[None]:
        """Acquire the locks of *keys* in sorted order."""

        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self.get(key))
            yield


class StateLifecycle:
    """Manage component state on the targets of a manifest.

    Parameters
    ----------
    backend:
        Per-target state operations.
    max_workers:
        Upper bound on targets processed concurrently.
    retries:
        Additional attempts for restore and delete-state after a
        :class:`RemoteOperationError`.
    retry_delay:
        Delay before the first retry in seconds; doubled for each further attempt.
    """

    def __init__(
        self,
        backend: StateBackend,
        *,
        max_workers: int = 4,
        retries: int = 2,
        retry_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backend = backend
        self.max_workers = max(1, max_workers)
        self.retries = max(0, retries)
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._locks = KeyLocks()

    def deploy(self, manifest: Manifest) -> LifecycleReport:
        """Activate every profile; restore retained state of newly deployed keys."""

        return self._fan_out("deploy", manifest, lambda target: self._deploy_target(manifest, target))

    def snapshot(self, manifest: Manifest) -> LifecycleReport:
        """Capture a fresh snapshot of every snapshot mapping."""

        return self._fan_out("snapshot", manifest, lambda target: self._snapshot_target(manifest, target))

    def query_latest(self, manifest: Manifest, container: str | None = None) -> list[Snapshot]:
        """Most recent snapshot per key on the manifest's targets, newest first."""

        report = self._fan_out("query-latest", manifest, lambda target: self.backend.query_latest(container, target))
        return latest_per_key(snapshot for result in report.results().values() for snapshot in result)

    def query_all(self, manifest: Manifest, container: str | None = None) -> list[Snapshot]:
        """Every retained snapshot on the manifest's targets, newest first."""

        report = self._fan_out("query-all", manifest, lambda target: self.backend.query_all(container, target))
        return newest_first(snapshot for result in report.results().values() for snapshot in result)

    def clean(self, manifest: Manifest, keep: int, container: str | None = None) -> list[Snapshot]:
        """Keep the *keep* newest snapshots per key; ``keep=0`` removes them all.

        Raises
        ------
        ValueError
            When *keep* is negative.
        """

        if keep < 0:
            raise ValueError("keep must not be negative")

        def clean_target(target: str) -> list[Snapshot]:
            keys = [SnapshotKey(c, name, target) for c, name in self.backend.components(target, container)]
            with self._locks.hold(keys):
                return self.backend.clean(container, target, keep)

        report = self._fan_out("clean", manifest, clean_target)
        return newest_first(snapshot for result in report.results().values() for snapshot in result)

    def restore(self, manifest: Manifest) -> LifecycleReport:
        """Re-deploy missing components and install their latest snapshots."""

        return self._fan_out("restore", manifest, lambda target: self._restore_target(manifest, target))

    def delete_state(self, manifest: Manifest) -> LifecycleReport:
        """Delete state of keys that are no longer deployed and not in *manifest*."""

        return self._fan_out("delete-state", manifest, lambda target: self._delete_target(manifest, target))

    def state_of(self, key: SnapshotKey) -> ComponentState:
        deployed = (key.container, key.component) in self.backend.running(key.target)
        count = sum(1 for snapshot in self.backend.query_all(key.container, key.target) if snapshot.key == key)
        return classify(deployed, count)

    def _deploy_target(self, manifest: Manifest, target: str) -> dict[str, Any]:
        profile = manifest.profile_for(target)
        if profile is None:
            raise StateConsistencyError(target, "manifest has no profile for this target")
        pairs = [(mapping.container, mapping.component) for mapping in manifest.snapshots_for(target)]
        keys = [SnapshotKey(container, component, target) for container, component in pairs]
        with self._locks.hold(keys):
            before = self.backend.deployed(target)
            self.backend.activate(target, profile, pairs)
            restored = []
            for key in keys:
                if (key.container, key.component) in before:
                    continue
                latest = self._latest(key)
                if latest is not None:
                    self._with_retry("restore", target, lambda: self.backend.restore(*key, latest.ref))
                    restored.append(latest.ref)
        log_info("profile_activated", **make_event("deploy", target, {"profile": profile, "restored": len(restored)}))
        return {"profile": profile, "restored": restored}

    def _snapshot_target(self, manifest: Manifest, target: str) -> list[Snapshot]:
        captured: list[Snapshot] = []
        for mapping in manifest.snapshots_for(target):
            with self._locks.hold([mapping.key]):
                if (mapping.container, mapping.component) not in self.backend.deployed(target):
                    raise StateConsistencyError(target, f"cannot capture {mapping.key}: component is not deployed")
                captured.append(self.backend.capture(mapping.container, mapping.component, target))
        return captured

    def _restore_target(self, manifest: Manifest, target: str) -> list[str]:
        mappings = manifest.snapshots_for(target)
        keys = [mapping.key for mapping in mappings]
        restored: list[str] = []
        with self._locks.hold(keys):
            deployed = self.backend.deployed(target)
            missing = [mapping for mapping in mappings if (mapping.container, mapping.component) not in deployed]
            if missing:
                profile = manifest.profile_for(target)
                if profile is None:
                    raise StateConsistencyError(target, "manifest has no profile for this target")
                self.backend.activate(target, profile, [(m.container, m.component) for m in mappings])
            for key in keys:
                latest = self._latest(key)
                if latest is None:
                    raise StateConsistencyError(target, f"no snapshot retained for {key}")
                self._with_retry("restore", target, lambda: self.backend.restore(*key, latest.ref))
                restored.append(latest.ref)
        return restored

    def _delete_target(self, manifest: Manifest, target: str) -> dict[str, list[str]]:
        listed = {(mapping.container, mapping.component) for mapping in manifest.snapshots_for(target)}
        deployed = self.backend.running(target)
        deleted: list[str] = []
        collected: list[str] = []
        for container in sorted(manifest.containers()):
            for pair in sorted(self.backend.components(target, container)):
                if pair in listed or pair in deployed:
                    continue
                key = SnapshotKey(pair[0], pair[1], target)
                with self._locks.hold([key]):
                    self._with_retry("delete-state", target, lambda: self.backend.delete_state(*key))
                deleted.append(str(key))
        for pair in sorted(listed & deployed):
            key = SnapshotKey(pair[0], pair[1], target)
            with self._locks.hold([key]):
                collected.extend(self._with_retry("delete-state", target, lambda: self.backend.collect_garbage(*key)))
        return {"deleted": deleted, "collected": collected}

    def _latest(self, key: SnapshotKey) -> Snapshot | None:
        for snapshot in self.backend.query_latest(key.container, key.target):
            if snapshot.key == key:
                return snapshot
        return None

    def _with_retry(self, operation: str, target: str, call: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return call()
            except RemoteOperationError as exc:
                if attempt >= self.retries:
                    raise
                delay = self.retry_delay * (2**attempt)
                attempt += 1
                log_warning(
                    "remote_operation_retry",
                    **make_event(operation, target, {"attempt": attempt, "delay": delay, "error": str(exc)}),
                )
                self._sleep(delay)

    def _fan_out(self, operation: str, manifest: Manifest, action: Callable[[str], Any]) -> LifecycleReport:
        trace_id = new_trace_id()
        targets = _targets_of(manifest)
        report = LifecycleReport(operation)

        def run(target: str) -> TargetOutcome:
            bind_trace_id(trace_id)
            log_debug("lifecycle_target_started", **make_event(operation, target))
            try:
                return TargetOutcome(target, result=action(target))
            except Exception as exc:
                log_error("lifecycle_target_failed", **make_event(operation, target, {"error": str(exc)}))
                return TargetOutcome(target, error=exc)

        workers = min(self.max_workers, len(targets)) or 1
        with ThreadPoolExecutor(max_workers=workers) as executor:
            for outcome in executor.map(run, targets):
                report.record(outcome)
        if not report.ok:
            raise LifecycleError(operation, report)
        log_info("lifecycle_completed", **make_event(operation, None, {"targets": len(targets)}))
        return report


def _targets_of(manifest: Manifest) -> list[str]:
    targets = set(manifest.target_addresses())
    targets.update(mapping.target for mapping in manifest.snapshots)
    return sorted(targets, key=str)
