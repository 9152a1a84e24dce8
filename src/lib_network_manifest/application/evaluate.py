"""Configuration evaluator.

Purpose
-------
Evaluate every target of a merged network into an
:class:`~lib_network_manifest.domain.network.EvaluatedTarget` by handing its
fragments, plus the injected fragments, to the configuration engine.

Each evaluation receives a lazy view of all sibling configurations. Sibling
reads resolve one attribute at a time (``nodes["db1"].infrastructure["hostname"]``
or ``nodes["db1"].lookup("config", "networking", "hostName")``) and are
memoised per ``(target, attribute)``:

* an attribute is taken from the sibling's full configuration, which is
  evaluated once per target and shared by every reader;
* when waiting for that configuration would close a cycle, the attribute is
  resolved from a separate pass over the sibling's fragments in which fragments
  that read back into the cycle are left out;
* attributes obtained that way are checked against the full configurations
  once every target is evaluated.

Reads are edges of a wait-for graph. A read that cannot be answered without
its own value fails with :class:`CyclicReferenceError`.

Contents
    - ``evaluate_configurations``: public entry point.
    - ``ConfigurationEvaluator``: caches, wait-for graph, and engine calls.
    - ``LazyNodes`` / ``NodeView``: what fragments see of their siblings.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterator

import networkx as nx

from ..domain.errors import ConfigurationError, EvaluationError
from ..domain.network import CompileOptions, EngineResult, EvaluatedTarget, MergedNetwork, UnresolvedReference
from ..observability import TRACE_ID, bind_trace_id, log_debug, log_error, make_event
from .fragments import injected_fragments
from .ports import ConfigurationEngine

AttributePath = tuple[Any, ...]
Node = tuple[Any, ...]
WHOLE: AttributePath = ()
"""Attribute path naming a target's entire configuration."""


class CyclicReferenceError(ConfigurationError):
    """Target attributes depend on themselves through sibling reads."""

    def __init__(self, path: list[str]) -> None:
        self.path = path
        super().__init__("Cyclic reference between targets: " + " -> ".join(path))


class _Blocked(Exception):
    """Waiting for a full configuration would close a cycle."""


class _Entry:
    """Compute-once slot for one target or one target attribute."""

    __slots__ = ("done", "result", "error")

    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Any = None
        self.error: BaseException | None = None

    def get(self) -> Any:
        self.done.wait()
        if self.error is not None:
            raise self.error
        return self.result


class _Pass:
    """One engine call, or one wait on behalf of an attribute, as a graph node."""

    __slots__ = ("node", "partial", "delegate", "cycle")

    def __init__(self, node: Node, *, partial: bool = False, delegate: bool = False) -> None:
        self.node = node
        self.partial = partial
        self.delegate = delegate
        self.cycle: list[str] | None = None


class NodeView:
    """Lazy view of one sibling's configuration."""

    __slots__ = ("name", "_evaluator", "_reader")

    def __init__(self, evaluator: ConfigurationEvaluator, name: str, reader: _Pass | None) -> None:
        self.name = name
        self._evaluator = evaluator
        self._reader = reader

    @property
    def infrastructure(self) -> Mapping[str, Any]:
        return _Attributes(self, ("infrastructure",))

    @property
    def properties(self) -> Mapping[str, Any]:
        return _Attributes(self, WHOLE)

    @property
    def artifact_path(self) -> str:
        return self.whole().artifact_path

    @property
    def build_task(self) -> str:
        return self.whole().build_task

    def lookup(self, *path: Any) -> Any:
        """Resolve one attribute, e.g. ``lookup("config", "networking", "hostName")``."""

        if not path:
            raise ValueError("lookup needs at least one attribute name")
        return self._evaluator.resolve(self.name, tuple(path), self._reader)

    def whole(self) -> EvaluatedTarget:
        return self._evaluator.resolve(self.name, WHOLE, self._reader)

    def __repr__(self) -> str:
        return f"NodeView({self.name!r})"


class _Attributes(Mapping):
    """Mapping below *prefix* of a sibling; item access resolves single attributes."""

    def __init__(self, view: NodeView, prefix: AttributePath) -> None:
        self._view = view
        self._prefix = prefix

    def __getitem__(self, key: Any) -> Any:
        return self._view.lookup(*self._prefix, key)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._materialise())

    def __len__(self) -> int:
        return len(self._materialise())

    def _materialise(self) -> Mapping[str, Any]:
        if self._prefix:
            return self._view.lookup(*self._prefix)
        return self._view.whole().properties


class LazyNodes(Mapping):
    """Read-only mapping of target name to a :class:`NodeView`.

    Membership, iteration and item access never trigger evaluation; reading an
    attribute of a view does.
    """

    def __init__(self, evaluator: ConfigurationEvaluator, reader: _Pass | None) -> None:
        self._evaluator = evaluator
        self._reader = reader

    def __getitem__(self, name: str) -> NodeView:
        if name not in self._evaluator.network.targets:
            raise KeyError(name)
        return NodeView(self._evaluator, name, self._reader)

    def __contains__(self, name: object) -> bool:
        return name in self._evaluator.network.targets

    def __iter__(self) -> Iterator[str]:
        return iter(self._evaluator.network.names())

    def __len__(self) -> int:
        return len(self._evaluator.network.targets)


class ConfigurationEvaluator:
    """Evaluate targets of one merged network, each full configuration exactly once."""

    def __init__(self, network: MergedNetwork, engine: ConfigurationEngine, options: CompileOptions) -> None:
        self.network = network
        self.engine = engine
        self.options = options
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, AttributePath], _Entry] = {}
        self._graph = nx.DiGraph()
        self._serial = itertools.count()
        self._speculative: list[tuple[str, AttributePath, Any, list[str]]] = []

    @property
    def nodes(self) -> LazyNodes:
        """Lazy view of every target, for callers outside any evaluation."""

        return LazyNodes(self, None)

    def force(self, name: str) -> EvaluatedTarget:
        """Return the evaluated configuration of *name*, evaluating it on first use."""

        return self.resolve(name, WHOLE)

    def resolve(self, name: str, path: AttributePath = WHOLE, reader: _Pass | None = None) -> Any:
        """Return attribute *path* of target *name*; ``WHOLE`` yields the :class:`EvaluatedTarget`.

        Raises
        ------
        CyclicReferenceError
            When the value is (transitively) needed to compute itself.
        """

        node = (name, path)
        with self._lock:
            whole = self._entries.get((name, WHOLE))
            if path and whole is not None and whole.done.is_set() and whole.error is None:
                return _extract(whole.result, path)
            entry = self._entries.get(node)
            cycle = None
            if reader is not None:
                if entry is not None and not entry.done.is_set():
                    cycle = self._cycle(reader.node, node)
                if cycle is None:
                    self._graph.add_edge(reader.node, node)
            owner = entry is None and cycle is None
            if owner:
                entry = self._entries[node] = _Entry()
        if cycle is not None:
            return self._on_cycle(name, path, reader, cycle)
        if owner:
            try:
                entry.result = self._attribute(name, path) if path else self._evaluate(name)
            except BaseException as exc:  # noqa: BLE001 - stored and re-raised to every waiter
                entry.error = exc
            finally:
                self._release(node)
                entry.done.set()
        return entry.get()

    def evaluate_all(self, *, max_workers: int = 1) -> dict[str, EvaluatedTarget]:
        """Evaluate every target; any failure aborts the whole evaluation."""

        names = self.network.names()
        if max_workers <= 1 or len(names) <= 1:
            results = {name: self.force(name) for name in names}
        else:
            trace_id = TRACE_ID.get()

            def run(name: str) -> EvaluatedTarget:
                bind_trace_id(trace_id)
                return self.force(name)

            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                results = dict(zip(names, executor.map(run, names)))
        self._verify(results)
        return results

    def _on_cycle(self, name: str, path: AttributePath, reader: _Pass, cycle: list[str]) -> Any:
        if reader.delegate:
            raise _Blocked
        if not path:
            raise CyclicReferenceError(cycle)
        if reader.partial:
            reader.cycle = cycle
            log_debug("sibling_read_deferred", **make_event("evaluate", name, {"cycle": cycle}))
            raise UnresolvedReference(" -> ".join(cycle))
        node = (name, path, next(self._serial))
        with self._lock:
            self._graph.add_edge(reader.node, node)
        try:
            return self._partial(name, path, node)
        finally:
            self._release(node)

    def _attribute(self, name: str, path: AttributePath) -> Any:
        node = (name, path)
        try:
            whole = self.resolve(name, WHOLE, _Pass(node, delegate=True))
        except _Blocked:
            return self._partial(name, path, node)
        return _extract(whole, path)

    def _partial(self, name: str, path: AttributePath, node: Node) -> Any:
        """Resolve one attribute from a pass that leaves out fragments reading back into a cycle."""

        reader = _Pass(node, partial=True)
        log_debug("attribute_resolving", **make_event("evaluate", name, {"attribute": _label(name, path)}))
        try:
            target = self._run_engine(name, reader)
        except UnresolvedReference as exc:
            raise CyclicReferenceError(reader.cycle or [_label(name, path)]) from exc
        except EvaluationError as exc:
            if reader.cycle is None or exc.target != name:
                raise
            raise CyclicReferenceError(reader.cycle) from exc
        try:
            value = _extract(target, path)
        except KeyError:
            if reader.cycle is None:
                raise
            raise CyclicReferenceError(reader.cycle) from None
        if reader.cycle is not None:
            with self._lock:
                self._speculative.append((name, path, value, reader.cycle))
        return value

    def _evaluate(self, name: str) -> EvaluatedTarget:
        return self._run_engine(name, _Pass((name, WHOLE)))

    def _run_engine(self, name: str, reader: _Pass) -> EvaluatedTarget:
        fragments = [*self.network.targets[name], *injected_fragments(name, self.options)]
        log_debug("target_evaluating", **make_event("evaluate", name, {"fragments": len(fragments)}))
        try:
            result = self.engine.evaluate(name, fragments, LazyNodes(self, reader))
        except (CyclicReferenceError, EvaluationError, UnresolvedReference):
            raise
        except Exception as exc:
            log_error("target_evaluation_failed", **make_event("evaluate", name, {"error": str(exc)}))
            raise EvaluationError(name, exc) from exc
        target = _to_target(name, result)
        log_debug("target_evaluated", **make_event("evaluate", name, {"artifact": result.artifact_path}))
        return target

    def _verify(self, results: Mapping[str, EvaluatedTarget]) -> None:
        """Check attributes resolved ahead of their full configuration against it."""

        for name, path, value, cycle in self._speculative:
            try:
                actual = _extract(results[name], path)
            except KeyError:
                raise CyclicReferenceError(cycle) from None
            if actual != value:
                raise CyclicReferenceError(cycle)

    def _cycle(self, source: Node, node: Node) -> list[str] | None:
        """Labels of the cycle an edge ``source -> node`` would close. Caller holds the lock."""

        if source == node:
            return [_node_label(source), _node_label(node)]
        if self._graph.has_node(node) and self._graph.has_node(source) and nx.has_path(self._graph, node, source):
            hops = [source, *nx.shortest_path(self._graph, node, source)]
            return [_node_label(hop) for hop in _without_waits(hops)]
        return None

    def _release(self, node: Node) -> None:
        """Drop the wait-for edges of a finished node."""

        with self._lock:
            if self._graph.has_node(node):
                self._graph.remove_edges_from(list(self._graph.out_edges(node)))


def _to_target(name: str, result: EngineResult) -> EvaluatedTarget:
    properties: dict[str, Any] = dict(result.properties)
    infrastructure = properties.pop("infrastructure", None)
    if not isinstance(infrastructure, Mapping):
        cause = ConfigurationError("engine did not expose an infrastructure mapping")
        raise EvaluationError(name, cause)
    return EvaluatedTarget(
        name=name,
        artifact_path=result.artifact_path,
        build_task=result.build_task,
        infrastructure=infrastructure,
        properties=properties,
    )


def _extract(target: EvaluatedTarget, path: AttributePath) -> Any:
    if not path:
        return target
    head, *rest = path
    value = target.infrastructure if head == "infrastructure" else target.properties[head]
    for key in rest:
        value = value[key]
    return value


def _label(name: str, path: AttributePath) -> str:
    return ".".join([name, *map(str, path)])


def _node_label(node: Node) -> str:
    return _label(node[0], node[1])


def _without_waits(hops: list[Node]) -> list[Node]:
    """Drop the hop from an attribute to its own target's full configuration."""

    kept = [hops[0]]
    for hop in hops[1:]:
        previous = kept[-1]
        if hop[1] == WHOLE and previous[0] == hop[0] and previous[1] != WHOLE:
            continue
        kept.append(hop)
    return kept


def evaluate_configurations(
    network: MergedNetwork,
    engine: ConfigurationEngine,
    options: CompileOptions,
    *,
    max_workers: int = 1,
) -> dict[str, EvaluatedTarget]:
    """Evaluate every target of *network* and return them keyed by name (sorted).

    Raises
    ------
    EvaluationError
        Carrying the failing target name and the underlying cause.
    CyclicReferenceError
        When a target attribute depends on itself through sibling reads.
    """

    return ConfigurationEvaluator(network, engine, options).evaluate_all(max_workers=max_workers)
