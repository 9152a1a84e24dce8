"""Public package surface of ``lib_network_manifest``.

Compile logical and physical network descriptions into deployment manifests
and distributed build-task documents, and manage the persistent state of the
deployed components. :mod:`lib_network_manifest.core` holds the entry points;
the value objects and errors are re-exported here so consumers need a single
import.
"""

from __future__ import annotations

from .application.evaluate import CyclicReferenceError, evaluate_configurations
from .application.lifecycle import LifecycleReport, StateLifecycle
from .application.manifest import generate_manifest, stable_key, strip_content_address_prefix
from .application.distributed import generate_distributed_derivation
from .application.network import merge_networks
from .application.properties import resolve_target_property
from .adapters.engine.default import DefaultConfigurationEngine
from .adapters.state.filesystem import FilesystemStateBackend
from .core import (
    build_profiles,
    compile_distributed_derivation,
    compile_manifest,
    compile_network,
    load_options,
    load_sources,
    open_lifecycle,
)
from .domain.errors import (
    ConfigurationError,
    EvaluationError,
    InvalidFormat,
    LifecycleError,
    MissingPropertyError,
    NetworkDeploymentError,
    NotFound,
    RemoteOperationError,
    StateConsistencyError,
)
from .domain.manifest import DistributedDerivation, Manifest
from .domain.network import CompileOptions, EvaluatedTarget, FragmentContext, MergedNetwork, mk_default, mk_force, mk_override
from .domain.snapshot import ComponentState, Snapshot, SnapshotKey
from .observability import bind_trace_id, get_logger

__all__ = [
    "ComponentState",
    "CompileOptions",
    "ConfigurationError",
    "CyclicReferenceError",
    "DefaultConfigurationEngine",
    "DistributedDerivation",
    "EvaluatedTarget",
    "EvaluationError",
    "FilesystemStateBackend",
    "FragmentContext",
    "InvalidFormat",
    "LifecycleError",
    "LifecycleReport",
    "Manifest",
    "MergedNetwork",
    "MissingPropertyError",
    "NetworkDeploymentError",
    "NotFound",
    "RemoteOperationError",
    "Snapshot",
    "SnapshotKey",
    "StateConsistencyError",
    "StateLifecycle",
    "bind_trace_id",
    "build_profiles",
    "compile_distributed_derivation",
    "compile_manifest",
    "compile_network",
    "evaluate_configurations",
    "generate_distributed_derivation",
    "generate_manifest",
    "get_logger",
    "load_options",
    "load_sources",
    "merge_networks",
    "mk_default",
    "mk_force",
    "mk_override",
    "open_lifecycle",
    "resolve_target_property",
    "stable_key",
    "strip_content_address_prefix",
]
