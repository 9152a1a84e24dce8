"""Snapshot lifecycle value objects and the per-component state machine.

Contents
--------
* :class:`SnapshotKey` – ``(container, component, target)`` identity.
* :class:`Snapshot` – one timestamped capture addressed by a key.
* :class:`ComponentState` – lifecycle states of one key.
* :class:`Transition` / :func:`next_state` – the allowed transitions.
* :func:`newest_first` / :func:`latest_per_key` / :func:`split_retention` – pure
  ordering helpers shared by the lifecycle and the backends.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, NamedTuple

from .errors import StateConsistencyError


class SnapshotKey(NamedTuple):
    """Identity of a stateful component on one target."""

    container: str
    component: str
    target: str

    def __str__(self) -> str:
        return f"{self.container}/{self.component}@{self.target}"


@dataclass(frozen=True, slots=True, order=True)
class Snapshot:
    """A capture of one component's state.

    Ordering compares ``captured_at`` first so sorted snapshot lists follow
    capture time.

    Examples
    --------
    >>> key = SnapshotKey("system-configuration", "system-web1", "web1")
    >>> older = Snapshot(1, "a", key)
    >>> newer = Snapshot(2, "b", key)
    >>> [s.snapshot_id for s in newest_first([older, newer])]
    ['b', 'a']
    """

    captured_at: int
    snapshot_id: str
    key: SnapshotKey

    @property
    def ref(self) -> str:
        """Backend-relative reference ``container/component/id``."""

        return f"{self.key.container}/{self.key.component}/{self.snapshot_id}"

    def as_dict(self) -> dict[str, object]:
        return {
            "container": self.key.container,
            "component": self.key.component,
            "target": self.key.target,
            "snapshot": self.snapshot_id,
            "capturedAt": self.captured_at,
        }


class ComponentState(str, Enum):
    DEPLOYED = "deployed"
    DEPLOYED_WITH_SNAPSHOTS = "deployed-with-snapshots"
    UNDEPLOYED_RETAINING_SNAPSHOTS = "undeployed-retaining-snapshots"
    UNDEPLOYED_NO_SNAPSHOTS = "undeployed-no-snapshots"


class Transition(str, Enum):
    DEPLOY = "deploy"
    CAPTURE = "capture"
    UNDEPLOY = "undeploy"
    DELETE_STATE = "delete-state"


_DEPLOYED = {ComponentState.DEPLOYED, ComponentState.DEPLOYED_WITH_SNAPSHOTS}


def next_state(current: ComponentState, transition: Transition) -> ComponentState:
    """Return the state reached from *current* via *transition*.

    Raises
    ------
    StateConsistencyError
        When capturing a component that is not deployed.

    Examples
    --------
    >>> next_state(ComponentState.DEPLOYED, Transition.CAPTURE).value
    'deployed-with-snapshots'
    >>> next_state(ComponentState.DEPLOYED_WITH_SNAPSHOTS, Transition.DELETE_STATE).value
    'deployed-with-snapshots'
    >>> next_state(ComponentState.UNDEPLOYED_RETAINING_SNAPSHOTS, Transition.DEPLOY).value
    'deployed-with-snapshots'
    """

    if transition is Transition.DEPLOY:
        if current is ComponentState.UNDEPLOYED_RETAINING_SNAPSHOTS:
            return ComponentState.DEPLOYED_WITH_SNAPSHOTS
        if current is ComponentState.UNDEPLOYED_NO_SNAPSHOTS:
            return ComponentState.DEPLOYED
        return current
    if transition is Transition.CAPTURE:
        if current not in _DEPLOYED:
            raise StateConsistencyError("-", f"cannot capture a component in state {current.value}")
        return ComponentState.DEPLOYED_WITH_SNAPSHOTS
    if transition is Transition.UNDEPLOY:
        if current is ComponentState.DEPLOYED_WITH_SNAPSHOTS:
            return ComponentState.UNDEPLOYED_RETAINING_SNAPSHOTS
        if current is ComponentState.DEPLOYED:
            return ComponentState.UNDEPLOYED_NO_SNAPSHOTS
        return current
    if current is ComponentState.UNDEPLOYED_RETAINING_SNAPSHOTS:
        return ComponentState.UNDEPLOYED_NO_SNAPSHOTS
    return current


def classify(deployed: bool, snapshot_count: int) -> ComponentState:
    """Map observed facts about a key to its :class:`ComponentState`."""

    if deployed:
        return ComponentState.DEPLOYED_WITH_SNAPSHOTS if snapshot_count else ComponentState.DEPLOYED
    if snapshot_count:
        return ComponentState.UNDEPLOYED_RETAINING_SNAPSHOTS
    return ComponentState.UNDEPLOYED_NO_SNAPSHOTS


def newest_first(snapshots: Iterable[Snapshot]) -> list[Snapshot]:
    return sorted(snapshots, reverse=True)


def latest_per_key(snapshots: Iterable[Snapshot]) -> list[Snapshot]:
    """Keep only the most recent snapshot of each key, newest first."""

    latest: dict[SnapshotKey, Snapshot] = {}
    for snapshot in snapshots:
        current = latest.get(snapshot.key)
        if current is None or snapshot > current:
            latest[snapshot.key] = snapshot
    return newest_first(latest.values())


def split_retention(snapshots: Iterable[Snapshot], keep: int) -> tuple[list[Snapshot], list[Snapshot]]:
    """Partition snapshots into ``(kept, removed)`` keeping *keep* per key.

    Examples
    --------
    >>> key = SnapshotKey("c", "x", "t")
    >>> kept, removed = split_retention([Snapshot(i, str(i), key) for i in range(3)], 1)
    >>> [s.snapshot_id for s in kept], [s.snapshot_id for s in removed]
    (['2'], ['1', '0'])
    """

    if keep < 0:
        raise ValueError("keep must not be negative")
    grouped: dict[SnapshotKey, list[Snapshot]] = {}
    for snapshot in snapshots:
        grouped.setdefault(snapshot.key, []).append(snapshot)
    kept: list[Snapshot] = []
    removed: list[Snapshot] = []
    for group in grouped.values():
        ordered = newest_first(group)
        kept.extend(ordered[:keep])
        removed.extend(ordered[keep:])
    return newest_first(kept), newest_first(removed)
