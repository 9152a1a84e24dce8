"""Default configuration evaluation engine.

Purpose
-------
Implement the :class:`~lib_network_manifest.application.ports.ConfigurationEngine`
port for fragments written as Python mappings, so networks can be compiled
without an external machine-configuration evaluator.

Key behaviours
--------------
* Fragments are deep-merged: mappings recurse, lists concatenate, and scalars
  must agree unless an :class:`~lib_network_manifest.domain.network.Override`
  gives one definition a better (lower) priority.
* A fragment with a ``key`` is applied at most once; ``imports`` names built-in
  modules; ``options`` declares additional top-level options.
* A callable fragment that raises
  :class:`~lib_network_manifest.domain.network.UnresolvedReference` contributes
  nothing to that evaluation.
* Unless ``environment.check_configuration_options`` is false, every top-level
  option must be declared.
* Artifact paths are content addressed: ``<store>/<digest>-system-<hostName>``.
  The build task is the matching ``.drv`` path; :meth:`realise` turns a written
  build task into the artifact directory holding ``profile.json``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Final, Sequence

from ...domain.errors import ConfigurationError, InvalidFormat, NotFound
from ...domain.network import (
    DEFAULT_PRIORITY,
    EngineResult,
    Fragment,
    FragmentContext,
    Override,
    UnresolvedReference,
    mk_default,
)
from ...observability import log_debug, log_info, make_event

DEFAULT_STORE_DIR: Final[str] = "/nix/store"
DEFAULT_SYSTEM: Final[str] = "x86_64-linux"
HASH_LENGTH: Final[int] = 32
_BASE32_ALPHABET: Final[str] = "0123456789abcdfghijklmnpqrsvwxyz"
_META_KEYS: Final[frozenset[str]] = frozenset({"key", "imports", "options"})

BASE_OPTIONS: Final[frozenset[str]] = frozenset(
    {
        "boot",
        "components",
        "environment",
        "fileSystems",
        "infrastructure",
        "networking",
        "nix",
        "security",
        "services",
        "system",
        "users",
    }
)

BUILTIN_MODULES: Final[dict[str, Mapping[str, Any]]] = {
    "virtualisation/qemu-vm": {
        "key": "virtualisation/qemu-vm",
        "options": ["virtualisation"],
        "virtualisation": {
            "qemu": True,
            "memory_size": mk_default(1024),
            "disk_size": mk_default(512),
            "graphics": mk_default(False),
        },
    },
    "testing/test-instrumentation": {
        "key": "testing/test-instrumentation",
        "options": ["testing"],
        "testing": {"instrumented": True},
        "services": {"test_driver": {"enable": True}},
    },
    "legacy-deployment-options": {
        "key": "legacy-deployment-options",
        "options": ["deployment"],
    },
}

SERVICE_CONTAINERS: Final[dict[str, str]] = {
    "mysql": "mysql-database",
    "postgresql": "postgresql-database",
    "mongodb": "mongo-database",
    "tomcat": "tomcat-webapplication",
    "httpd": "apache-webapplication",
}


def generate_containers(config: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Derive the container set a target offers from its evaluated configuration.

    Examples
    --------
    >>> sorted(generate_containers({"services": {"mysql": {"enable": True}}}))
    ['mysql-database', 'process', 'wrapper']
    """

    containers: dict[str, dict[str, Any]] = {"process": {}, "wrapper": {}}
    services = config.get("services", {})
    for service, container in SERVICE_CONTAINERS.items():
        settings = services.get(service, {})
        if isinstance(settings, Mapping) and settings.get("enable"):
            containers[container] = {}
    for container in config.get("components", {}):
        containers.setdefault(container, {})
    return containers


CONTAINER_HELPERS: Final[dict[str, Callable[[Mapping[str, Any]], dict[str, dict[str, Any]]]]] = {
    "generate-containers": generate_containers,
}


@dataclass(slots=True)
class _Definition:
    priority: int
    value: Any
    origin: str


class DefaultConfigurationEngine:
    """Evaluate mapping fragments into content-addressed system configurations."""

    def __init__(self, store_dir: str | Path = DEFAULT_STORE_DIR, *, write_derivations: bool = False) -> None:
        """Initialise the engine.

        Parameters
        ----------
        store_dir:
            Directory that artifact paths and build tasks are placed in.
        write_derivations:
            Write each build task as a JSON file so :meth:`realise` can build it.
        """

        self.store_dir = str(store_dir).rstrip("/") or "/"
        self.write_derivations = write_derivations

    def evaluate(
        self,
        name: str,
        fragments: Sequence[Fragment],
        nodes: Mapping[str, Any],
    ) -> EngineResult:
        context = FragmentContext(name=name, nodes=nodes)
        declared: set[str] = set(BASE_OPTIONS)
        seen: set[str] = set()
        tree: dict[str, Any] = {}
        for index, fragment in enumerate(fragments):
            self._apply(tree, fragment, context, declared, seen, f"fragment {index}")

        config = _strip(tree)
        _check_options(config, declared)

        hostname = str(config.get("networking", {}).get("hostName", name))
        components = config.get("components", {})
        infrastructure = self._infrastructure(config, hostname)
        canonical = _canonical(config)
        label = f"system-{hostname}"
        artifact_path = f"{self.store_dir}/{store_hash('output', canonical)}-{label}"
        build_task = f"{self.store_dir}/{store_hash('derivation', canonical)}-{label}.drv"

        if self.write_derivations:
            self._write_derivation(build_task, artifact_path, label, hostname, components, canonical)

        log_debug("engine_evaluated", **make_event("evaluate", name, {"artifact": artifact_path}))
        return EngineResult(
            artifact_path=artifact_path,
            build_task=build_task,
            properties={
                "infrastructure": infrastructure,
                "components": {container: sorted(entries) for container, entries in components.items()},
                "config": config,
            },
        )

    def realise(self, build_task: str) -> str:
        """Build *build_task* into its artifact directory and return the artifact path.

        Raises
        ------
        NotFound
            When the build task was never written.
        InvalidFormat
            When the build task file is not a valid derivation document.
        """

        task_path = Path(build_task)
        if not task_path.is_file():
            raise NotFound(f"Build task not found: {build_task}")
        try:
            derivation = json.loads(task_path.read_text(encoding="utf-8"))
            output = Path(derivation["output"])
            profile = {
                "name": derivation["name"],
                "hostname": derivation["hostname"],
                "components": derivation["components"],
            }
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            raise InvalidFormat(f"Invalid build task {build_task}: {exc}") from exc
        output.mkdir(parents=True, exist_ok=True)
        (output / "profile.json").write_text(json.dumps(profile, indent=2, sort_keys=True), encoding="utf-8")
        log_info("build_task_realised", **make_event("build", derivation["hostname"], {"artifact": str(output)}))
        return str(output)

    def _apply(
        self,
        tree: dict[str, Any],
        fragment: Fragment,
        context: FragmentContext,
        declared: set[str],
        seen: set[str],
        origin: str,
    ) -> None:
        body = _resolve_fragment(fragment, context)
        key = body.get("key")
        if key is not None:
            if key in seen:
                return
            seen.add(key)
            origin = str(key)
        declared.update(body.get("options", ()))
        for imported in body.get("imports", ()):
            self._apply(tree, imported, context, declared, seen, origin)
        _merge_into(tree, {k: v for k, v in body.items() if k not in _META_KEYS}, [], origin)

    @staticmethod
    def _infrastructure(config: Mapping[str, Any], hostname: str) -> dict[str, Any]:
        settings = config.get("infrastructure", {})
        infrastructure: dict[str, Any] = {
            "hostname": hostname,
            "system": settings.get("system", DEFAULT_SYSTEM),
        }
        infrastructure.update(settings.get("properties", {}))
        target_host = config.get("deployment", {}).get("targetHost")
        if target_host is not None:
            infrastructure.setdefault("targetHost", target_host)
        helper_name = settings.get("generate_containers_expr")
        if settings.get("enable") and helper_name:
            helper = CONTAINER_HELPERS.get(helper_name)
            if helper is None:
                raise ConfigurationError(f"Unknown containers helper: {helper_name}")
            infrastructure["containers"] = helper(config)
        return infrastructure

    def _write_derivation(
        self,
        build_task: str,
        artifact_path: str,
        label: str,
        hostname: str,
        components: Mapping[str, Any],
        canonical: str,
    ) -> None:
        path = Path(build_task)
        path.parent.mkdir(parents=True, exist_ok=True)
        document = {
            "name": label,
            "hostname": hostname,
            "output": artifact_path,
            "components": components,
            "config": json.loads(canonical),
        }
        path.write_text(json.dumps(document, indent=2, sort_keys=True, default=str), encoding="utf-8")


def store_hash(kind: str, canonical: str) -> str:
    """Return the 32-character base32 digest used as a store path prefix.

    Examples
    --------
    >>> len(store_hash("output", "{}"))
    32
    >>> store_hash("output", "{}") == store_hash("output", "{}")
    True
    """

    digest = hashlib.sha256(f"{kind}:{canonical}".encode("utf-8")).digest()[:20]
    return _base32(digest)


def _base32(data: bytes) -> str:
    length = (len(data) * 8 - 1) // 5 + 1
    chars: list[str] = []
    for n in range(length - 1, -1, -1):
        bit = n * 5
        index, shift = divmod(bit, 8)
        value = data[index] >> shift
        if index + 1 < len(data):
            value |= data[index + 1] << (8 - shift)
        chars.append(_BASE32_ALPHABET[value & 0x1F])
    return "".join(chars)


def _resolve_fragment(fragment: Fragment | str, context: FragmentContext) -> Mapping[str, Any]:
    if isinstance(fragment, str):
        module = BUILTIN_MODULES.get(fragment)
        if module is None:
            raise ConfigurationError(f"Unknown module: {fragment}")
        return module
    if isinstance(fragment, Mapping):
        return fragment
    if callable(fragment):
        try:
            produced = fragment(context)
        except UnresolvedReference:
            log_debug("fragment_deferred", **make_event("evaluate", context.name))
            return {}
        if not isinstance(produced, Mapping):
            raise ConfigurationError(f"Fragment function for {context.name} did not return a mapping")
        return produced
    raise ConfigurationError(f"Unsupported fragment type: {type(fragment).__name__}")


def _merge_into(tree: dict[str, Any], incoming: Mapping[str, Any], segments: list[str], origin: str) -> None:
    for key, raw in incoming.items():
        dotted = ".".join([*segments, key])
        if isinstance(raw, Override):
            definition = _Definition(raw.priority, raw.value, origin)
        elif isinstance(raw, Mapping):
            existing = tree.get(key)
            if existing is None:
                existing = tree[key] = {}
            if isinstance(existing, _Definition):
                raise ConfigurationError(f"The option `{dotted}' is defined both as a value and as a set ({origin})")
            _merge_into(existing, raw, [*segments, key], origin)
            continue
        else:
            definition = _Definition(DEFAULT_PRIORITY, raw, origin)

        existing = tree.get(key)
        if existing is None:
            tree[key] = definition
        elif isinstance(existing, dict):
            raise ConfigurationError(f"The option `{dotted}' is defined both as a set and as a value ({origin})")
        else:
            tree[key] = _combine(existing, definition, dotted)


def _combine(existing: _Definition, incoming: _Definition, dotted: str) -> _Definition:
    if incoming.priority < existing.priority:
        return incoming
    if incoming.priority > existing.priority:
        return existing
    if isinstance(existing.value, list) and isinstance(incoming.value, list):
        return _Definition(existing.priority, existing.value + incoming.value, existing.origin)
    if existing.value == incoming.value:
        return existing
    raise ConfigurationError(
        f"The option `{dotted}' has conflicting definitions: "
        f"{existing.value!r} ({existing.origin}) and {incoming.value!r} ({incoming.origin})"
    )


def _strip(tree: Mapping[str, Any]) -> dict[str, Any]:
    """Replace every definition with its winning value."""

    plain: dict[str, Any] = {}
    for key, node in tree.items():
        plain[key] = _strip(node) if isinstance(node, dict) else _unwrap(node.value)
    return plain


def _unwrap(value: Any) -> Any:
    if isinstance(value, Override):
        return _unwrap(value.value)
    if isinstance(value, Mapping):
        return {key: _unwrap(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_unwrap(item) for item in value]
    return value


def _check_options(config: Mapping[str, Any], declared: set[str]) -> None:
    if not config.get("environment", {}).get("check_configuration_options", True):
        return
    undefined = sorted(set(config) - declared)
    if undefined:
        raise ConfigurationError(f"The option `{undefined[0]}' is used but not defined.")


def _canonical(config: Mapping[str, Any]) -> str:
    return json.dumps(config, sort_keys=True, separators=(",", ":"), default=str)
