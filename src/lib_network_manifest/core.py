"""Composition root for ``lib_network_manifest``.

Purpose
-------
Provide the entry points that wire source loading, option resolution, network
merging, configuration evaluation, the manifest and build-task projections, and
the state lifecycle together. Only stable, consumer-ready APIs live here.

Contents
--------
* :func:`load_options` – layered compile options (defaults, file, env, overrides).
* :func:`load_sources` – load network files and pass mappings through.
* :func:`compile_network` – merge and evaluate; returns evaluated targets.
* :func:`compile_manifest` / :func:`compile_distributed_derivation` – the two
  output documents.
* :func:`build_profiles` – realise every target's build task with the engine.
* :func:`open_lifecycle` – a :class:`StateLifecycle` over a filesystem fleet.

System Role
-----------
Every compile call binds a fresh trace identifier, so all events of one
compilation share it. Any error aborts the compilation; no partial document is
returned.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence, Union

from .adapters.engine.default import DefaultConfigurationEngine
from .adapters.env.default import DefaultEnvLoader, default_env_prefix
from .adapters.file_loaders.structured import JSONFileLoader, TOMLFileLoader, YAMLFileLoader, load_network
from .adapters.state.filesystem import FilesystemStateBackend
from .application.distributed import generate_distributed_derivation
from .application.evaluate import evaluate_configurations
from .application.lifecycle import StateLifecycle
from .application.manifest import generate_manifest
from .application.merge import merge_layers
from .application.network import merge_networks
from .application.ports import ConfigurationEngine
from .domain.errors import ConfigurationError, InvalidFormat
from .domain.manifest import DistributedDerivation, Manifest
from .domain.network import CompileOptions, EvaluatedTarget
from .observability import log_debug, log_error, log_info, make_event, new_trace_id

NetworkSource = Union[str, Path, Mapping[str, Any]]
"""A network file path or an already-loaded target mapping."""

# Options files are data only; Python network sources are not accepted here.
_OPTION_LOADERS = {
    ".toml": TOMLFileLoader(),
    ".json": JSONFileLoader(),
    ".yaml": YAMLFileLoader(),
    ".yml": YAMLFileLoader(),
}


def load_options(
    config_file: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> CompileOptions:
    """Resolve :class:`CompileOptions` from layered sources.

    Precedence, lowest first: defaults, *config_file*, ``LIB_NETWORK_MANIFEST_*``
    environment variables, *overrides*. ``None`` values in *overrides* are
    ignored so unset CLI flags do not mask lower layers.

    Raises
    ------
    ConfigurationError
        When a layer names an unknown option.
    InvalidFormat
        When *config_file* has an unsupported suffix or cannot be parsed.

    Examples
    --------
    >>> load_options(overrides={"use_backdoor": True}, environ={}).use_backdoor
    True
    >>> load_options(environ={"LIB_NETWORK_MANIFEST_TARGET_PROPERTY": "sshTarget"}).target_property
    'sshTarget'
    """

    layers: list[tuple[str, Mapping[str, object], str | None]] = [("defaults", CompileOptions().as_dict(), None)]
    if config_file is not None:
        path = str(config_file)
        loader = _OPTION_LOADERS.get(Path(path).suffix.lower())
        if loader is None:
            raise InvalidFormat(f"Unsupported options file type: {path}")
        layers.append(("file", loader.load(path), path))

    env_data = DefaultEnvLoader(environ=environ).load(default_env_prefix())
    if env_data:
        layers.append(("env", env_data, None))

    explicit = {key: value for key, value in (overrides or {}).items() if value is not None}
    if explicit:
        layers.append(("overrides", explicit, None))

    merged, provenance = merge_layers(layers)
    try:
        options = CompileOptions.from_mapping(merged)
    except KeyError as exc:
        raise ConfigurationError(f"Unknown compile options: {exc.args[0]}") from exc
    log_debug("options_resolved", layers=[name for name, _, _ in layers], provenance=provenance)
    return options


def load_sources(sources: Iterable[NetworkSource]) -> tuple[list[Mapping[str, Any]], list[str]]:
    """Load every source, returning the mappings and their labels in order."""

    networks: list[Mapping[str, Any]] = []
    labels: list[str] = []
    for index, source in enumerate(sources):
        if isinstance(source, Mapping):
            networks.append(source)
            labels.append(f"network-{index}")
        else:
            networks.append(load_network(source))
            labels.append(str(source))
    return networks, labels


def compile_network(
    networks: Sequence[NetworkSource],
    *,
    physical: NetworkSource | None = None,
    options: CompileOptions | None = None,
    engine: ConfigurationEngine | None = None,
    max_workers: int = 1,
) -> dict[str, EvaluatedTarget]:
    """Merge *networks* (then *physical*) and evaluate every target.

    Parameters
    ----------
    networks:
        Logical network sources, earliest first.
    physical:
        Physical network source; its fragments are appended after the logical
        ones for each target.
    options:
        Compile options; defaults to :class:`CompileOptions`.
    engine:
        Configuration engine; defaults to :class:`DefaultConfigurationEngine`.
    max_workers:
        Evaluate up to this many targets concurrently.
    """

    options = options or CompileOptions()
    engine = engine or DefaultConfigurationEngine()
    trace_id = new_trace_id()
    sources = [*networks, *([physical] if physical is not None else [])]
    try:
        loaded, labels = load_sources(sources)
        merged = merge_networks(loaded, legacy_model=options.legacy_model, labels=labels)
        configurations = evaluate_configurations(merged, engine, options, max_workers=max_workers)
    except Exception as exc:
        log_error("compilation_failed", **make_event("compile", getattr(exc, "target", None), {"error": str(exc)}))
        raise
    log_info("network_compiled", **make_event("compile", None, {"targets": len(configurations), "trace_id": trace_id}))
    return configurations


def compile_manifest(
    networks: Sequence[NetworkSource],
    *,
    physical: NetworkSource | None = None,
    options: CompileOptions | None = None,
    engine: ConfigurationEngine | None = None,
    max_workers: int = 1,
    build: bool = False,
) -> Manifest:
    """Compile *networks* into a deployment :class:`Manifest`.

    With ``build=True`` every profile is realised through the engine before the
    manifest is returned, so the manifest can be activated right away.
    """

    options = options or CompileOptions()
    engine = engine or DefaultConfigurationEngine(write_derivations=build)
    configurations = compile_network(
        networks, physical=physical, options=options, engine=engine, max_workers=max_workers
    )
    manifest = generate_manifest(configurations, options)
    if build:
        build_profiles(configurations, engine)
    return manifest


def compile_distributed_derivation(
    networks: Sequence[NetworkSource],
    *,
    physical: NetworkSource | None = None,
    options: CompileOptions | None = None,
    engine: ConfigurationEngine | None = None,
    max_workers: int = 1,
) -> DistributedDerivation:
    """Compile *networks* into the build-task-to-target document."""

    options = options or CompileOptions()
    configurations = compile_network(
        networks, physical=physical, options=options, engine=engine, max_workers=max_workers
    )
    return generate_distributed_derivation(configurations, options)


def build_profiles(configurations: Mapping[str, EvaluatedTarget], engine: Any) -> list[str]:
    """Realise the build task of every target and return the artifact paths.

    Raises
    ------
    ConfigurationError
        When *engine* cannot realise build tasks.
    """

    realise = getattr(engine, "realise", None)
    if realise is None:
        raise ConfigurationError(f"{type(engine).__name__} cannot build profiles")
    return [realise(configurations[name].build_task) for name in sorted(configurations)]


def open_lifecycle(
    state_root: str | Path,
    *,
    provision: bool = False,
    max_workers: int = 4,
    retries: int = 2,
    retry_delay: float = 0.5,
) -> StateLifecycle:
    """Return a :class:`StateLifecycle` over a :class:`FilesystemStateBackend` at *state_root*."""

    backend = FilesystemStateBackend(state_root, provision=provision)
    return StateLifecycle(backend, max_workers=max_workers, retries=retries, retry_delay=retry_delay)
