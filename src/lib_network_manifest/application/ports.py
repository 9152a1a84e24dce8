"""Application-layer ports describing collaborator responsibilities.

Purpose
-------
Define the structural contracts the external collaborators must satisfy so the
compiler and the lifecycle can orchestrate behaviour without depending on
concrete implementations.

Contents
--------
* :class:`NetworkLoader` – parses a network source file into a target mapping.
* :class:`ConfigurationEngine` – evaluates a fragment list into an
  :class:`~lib_network_manifest.domain.network.EngineResult`.
* :class:`StateBackend` – activation, capture, query, retention, restore, and
  deletion of component state on targets.

System Role
-----------
These protocols enforce Dependency Inversion. Adapters under
``lib_network_manifest.adapters`` implement them; tests substitute fakes.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Protocol, Sequence, runtime_checkable

from ..domain.network import EngineResult, Fragment
from ..domain.snapshot import Snapshot


@runtime_checkable
class NetworkLoader(Protocol):
    """Parse one network source file.

    Why
    ----
    Segregate parsing concerns (TOML/JSON/YAML/Python) from merging.
    """

    def load(self, path: str) -> Mapping[str, Any]:
        """Read *path* and return the target mapping or raise ``InvalidFormat``."""


@runtime_checkable
class ConfigurationEngine(Protocol):
    """Black-box machine-configuration evaluator.

    Why
    ----
    The compiler only needs an artifact path, a build task, and the
    ``infrastructure`` property; everything else about evaluation is the
    engine's business.
    """

    def evaluate(
        self,
        name: str,
        fragments: Sequence[Fragment],
        nodes: Mapping[str, Any],
    ) -> EngineResult:
        """Evaluate *fragments* for target *name*; *nodes* resolves siblings lazily.

        A callable fragment raising
        :class:`~lib_network_manifest.domain.network.UnresolvedReference`
        must be left out of the result instead of failing the evaluation.
        """


@runtime_checkable
class StateBackend(Protocol):
    """Per-target state operations, addressed by ``(container, component, target)``.

    Every method may raise :class:`RemoteOperationError` on transport failure
    and :class:`StateConsistencyError` when the request cannot succeed.
    ``container=None`` in queries addresses every container on the target.
    """

    def activate(self, target: str, profile: str, components: Iterable[tuple[str, str]]) -> None:
        """Make *profile* the active configuration; *components* become deployed."""

    def deployed(self, target: str) -> set[tuple[str, str]]:
        """Return the ``(container, component)`` pairs currently deployed."""

    def running(self, target: str) -> set[tuple[str, str]]:
        """Return deployed pairs plus the components live inside them."""

    def components(self, target: str, container: str | None = None) -> set[tuple[str, str]]:
        """Return every pair holding state or snapshots on *target*."""

    def capture(self, container: str, component: str, target: str) -> Snapshot:
        """Append a fresh snapshot of the component's state."""

    def query_latest(self, container: str | None, target: str) -> list[Snapshot]:
        """Most recent snapshot per component, newest first."""

    def query_all(self, container: str | None, target: str) -> list[Snapshot]:
        """Every retained snapshot, newest first."""

    def clean(self, container: str | None, target: str, keep: int) -> list[Snapshot]:
        """Keep the *keep* newest snapshots per component; return the removed ones."""

    def restore(self, container: str, component: str, target: str, snapshot_ref: str) -> None:
        """Install the snapshot *snapshot_ref* as the component's state."""

    def delete_state(self, container: str, component: str, target: str) -> None:
        """Remove the component's state and every snapshot of it."""

    def collect_garbage(self, container: str, component: str, target: str) -> list[str]:
        """Remove nested state the active configuration no longer declares."""
