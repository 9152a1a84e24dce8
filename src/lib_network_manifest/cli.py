"""CLI adapter for ``lib_network_manifest`` built on ``lib_cli_exit_tools``.

Purpose
-------
Expose the compiler and the state lifecycle as commands so operators can
produce manifests and manage component state without writing Python code.

Contents
--------
* :data:`CLICK_CONTEXT_SETTINGS` – shared Click settings ensuring ``-h`` works.
* :func:`cli` – root command wiring global traceback handling into
  ``lib_cli_exit_tools``.
* :func:`cli_info` – prints distribution metadata.
* :func:`cli_manifest` / :func:`cli_distributed_derivation` – compile documents.
* ``deploy-network``, ``snapshot-network``, ``restore-network``,
  ``delete-network-state``, ``query-snapshots``, ``clean-snapshots`` – the
  state lifecycle over a filesystem fleet.
* :func:`main` – entry point used by ``console_scripts`` registration.

System Role
-----------
The CLI lives in the outermost layer. It calls the composition root
(:mod:`lib_network_manifest.core`) only; ``lib_cli_exit_tools`` owns the exit
code strategy so failures surface consistently.
"""

from __future__ import annotations

import functools
import json
import sys
from importlib import metadata
from pathlib import Path
from typing import Any, Callable, Final, Optional, Sequence

import lib_cli_exit_tools
import rich_click as click

from .adapters.engine.default import DefaultConfigurationEngine
from .core import compile_distributed_derivation, compile_manifest, load_options, open_lifecycle
from .domain.manifest import Manifest
from .domain.snapshot import Snapshot

CLICK_CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}
_TRACEBACK_SUMMARY_LIMIT: Final[int] = 500
_TRACEBACK_VERBOSE_LIMIT: Final[int] = 10_000
_DISTRIBUTION: Final[str] = "lib_network_manifest"

FORMAT_CHOICES: Final[tuple[str, ...]] = ("json", "yaml")

_PATH = click.Path(path_type=Path, exists=True, file_okay=True, dir_okay=False, readable=True)


def _resolve_version() -> str:
    """Return the installed package version, ``"0.0.0"`` when not installed."""

    try:
        return metadata.version(_DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return "0.0.0"


def compile_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the network arguments and compile flags shared by every compile command."""

    decorators = [
        click.argument("networks", nargs=-1, required=True, type=_PATH),
        click.option("--physical", type=_PATH, default=None, help="Physical network (infrastructure) file"),
        click.option("--target-property", default=None, help="Infrastructure attribute used as target address"),
        click.option("--client-interface", default=None, help="Executable used to reach the targets"),
        click.option("--enable-agent/--disable-agent", default=None, help="Inject the deployment agent fragment"),
        click.option("--legacy-model", is_flag=True, default=None, help="Treat the network as a legacy model"),
        click.option("--vm-testing", is_flag=True, default=None, help="Inject VM and test instrumentation"),
        click.option("--backdoor", is_flag=True, default=None, help="Inject the backdoor access fragment"),
        click.option("--config", "config_file", type=_PATH, default=None, help="Options file (TOML/JSON/YAML)"),
        click.option("--workers", type=click.IntRange(min=1), default=1, show_default=True, help="Parallel evaluations"),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def state_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the fleet location options shared by the lifecycle commands."""

    decorators = [
        click.option(
            "--state-root",
            type=click.Path(path_type=Path, file_okay=False, dir_okay=True),
            required=True,
            help="Directory holding one subdirectory per target",
        ),
        click.option(
            "--store-dir",
            type=click.Path(path_type=Path, file_okay=False, dir_okay=True),
            default=None,
            help="Where profiles are built (defaults to <state-root>/.store)",
        ),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def _options_from(params: dict[str, Any]) -> Any:
    overrides = {
        "target_property": params.pop("target_property"),
        "client_interface": params.pop("client_interface"),
        "enable_agent": params.pop("enable_agent"),
        "legacy_model": params.pop("legacy_model"),
        "use_vm_testing": params.pop("vm_testing"),
        "use_backdoor": params.pop("backdoor"),
    }
    return load_options(config_file=params.pop("config_file"), overrides=overrides)


def _build_manifest(params: dict[str, Any]) -> Manifest:
    """Compile and build the manifest a lifecycle command operates on."""

    state_root: Path = params.pop("state_root")
    store_dir: Optional[Path] = params.pop("store_dir") or state_root / ".store"
    options = _options_from(params)
    engine = DefaultConfigurationEngine(store_dir.resolve(), write_derivations=True)
    return compile_manifest(
        [str(path) for path in params["networks"]],
        physical=str(params["physical"]) if params["physical"] else None,
        options=options,
        engine=engine,
        max_workers=params["workers"],
        build=True,
    )


def _echo_json(payload: Any, indent: Optional[int] = 2) -> None:
    click.echo(json.dumps(payload, indent=indent, default=_jsonable, sort_keys=False))


def _jsonable(value: Any) -> Any:
    if isinstance(value, Snapshot):
        return value.as_dict()
    raise TypeError(f"Cannot serialise {type(value).__name__}")


def lifecycle_command(name: str, *extra: Callable[[Callable[..., Any]], Any]) -> Callable[[Callable[..., Any]], Any]:
    """Register a lifecycle command calling ``func(manifest, state_root, **extra_params)``.

    The manifest is compiled and built from the command's network arguments
    first; *extra* decorators add command-specific options.
    """

    def register(func: Callable[..., Any]) -> Any:
        @functools.wraps(func)
        def command(**params: Any) -> None:
            state_root: Path = params["state_root"]
            manifest = _build_manifest(params)
            for key in ("networks", "physical", "workers"):
                params.pop(key)
            func(manifest, state_root, **params)

        for decorator in reversed(extra):
            command = decorator(command)
        return cli.command(name, context_settings=CLICK_CONTEXT_SETTINGS)(compile_options(state_options(command)))

    return register


@click.group(
    help="Deployment manifest compiler and state lifecycle",
    context_settings=CLICK_CONTEXT_SETTINGS,
    invoke_without_command=False,
)
@click.version_option(
    version=_resolve_version(),
    prog_name=_DISTRIBUTION,
    message="lib_network_manifest version %(version)s",
)
@click.option(
    "--traceback/--no-traceback",
    is_flag=True,
    default=False,
    help="Show full Python traceback on errors",
)
@click.pass_context
def cli(ctx: click.Context, traceback: bool) -> None:
    """Root command storing the traceback preference for ``lib_cli_exit_tools``."""

    ctx.ensure_object(dict)
    ctx.obj["traceback"] = traceback
    lib_cli_exit_tools.config.traceback = traceback
    lib_cli_exit_tools.config.traceback_force_color = traceback


@cli.command("info", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_info() -> None:
    """Print basic distribution metadata so users can confirm installation."""

    try:
        meta = metadata.metadata(_DISTRIBUTION)
    except metadata.PackageNotFoundError:
        click.echo(f"{_DISTRIBUTION} (metadata unavailable)")
        return
    click.echo(f"Info for {meta.get('Name', _DISTRIBUTION)}:")
    click.echo(f"  Version         : {meta.get('Version', _resolve_version())}")
    click.echo(f"  Requires-Python : {meta.get('Requires-Python', '>=3.10')}")
    summary = meta.get("Summary")
    if summary:
        click.echo(f"  Summary         : {summary}")


@cli.command("manifest", context_settings=CLICK_CONTEXT_SETTINGS)
@compile_options
@click.option("--store-dir", default="/nix/store", show_default=True, help="Prefix of artifact paths")
@click.option("--format", "output_format", type=click.Choice(FORMAT_CHOICES), default="json", show_default=True)
@click.option("--indent", type=int, default=None, help="Pretty-print JSON output with the provided indent size")
def cli_manifest(**params: Any) -> None:
    """Compile NETWORKS into a deployment manifest.

    Prints the ``profiles``, ``activation``, ``snapshots`` and ``targets``
    sections as JSON (default) or YAML.
    """

    output_format = params.pop("output_format")
    indent = params.pop("indent")
    engine = DefaultConfigurationEngine(params.pop("store_dir"))
    manifest = compile_manifest(
        [str(path) for path in params.pop("networks")],
        physical=_optional_path(params.pop("physical")),
        options=_options_from(params),
        engine=engine,
        max_workers=params.pop("workers"),
    )
    click.echo(manifest.to_yaml() if output_format == "yaml" else manifest.to_json(indent=indent))


@cli.command("distributed-derivation", context_settings=CLICK_CONTEXT_SETTINGS)
@compile_options
@click.option("--store-dir", default="/nix/store", show_default=True, help="Prefix of artifact paths")
@click.option("--format", "output_format", type=click.Choice(FORMAT_CHOICES), default="json", show_default=True)
@click.option("--indent", type=int, default=None, help="Pretty-print JSON output with the provided indent size")
def cli_distributed_derivation(**params: Any) -> None:
    """Compile NETWORKS into build tasks mapped to the targets that build them."""

    output_format = params.pop("output_format")
    indent = params.pop("indent")
    engine = DefaultConfigurationEngine(params.pop("store_dir"))
    document = compile_distributed_derivation(
        [str(path) for path in params.pop("networks")],
        physical=_optional_path(params.pop("physical")),
        options=_options_from(params),
        engine=engine,
        max_workers=params.pop("workers"),
    )
    click.echo(document.to_yaml() if output_format == "yaml" else document.to_json(indent=indent))


@lifecycle_command("deploy-network")
def cli_deploy_network(manifest: Manifest, state_root: Path) -> None:
    """Build and activate NETWORKS, restoring retained state of returning components."""

    report = open_lifecycle(state_root, provision=True).deploy(manifest)
    _echo_json(report.results())


@lifecycle_command("snapshot-network")
def cli_snapshot_network(manifest: Manifest, state_root: Path) -> None:
    """Capture a snapshot of every stateful component of NETWORKS."""

    report = open_lifecycle(state_root).snapshot(manifest)
    _echo_json(report.results())


@lifecycle_command("restore-network")
def cli_restore_network(manifest: Manifest, state_root: Path) -> None:
    """Re-deploy missing components of NETWORKS and restore their latest snapshots."""

    report = open_lifecycle(state_root).restore(manifest)
    _echo_json(report.results())


@lifecycle_command("delete-network-state")
def cli_delete_network_state(manifest: Manifest, state_root: Path) -> None:
    """Delete state of components that NETWORKS no longer deploys.

    Components still deployed keep their state and snapshots.
    """

    report = open_lifecycle(state_root).delete_state(manifest)
    _echo_json(report.results())


@lifecycle_command(
    "query-snapshots",
    click.option("--latest/--all", "latest", default=True, help="Only the newest snapshot per component"),
    click.option("--container", default=None, help="Restrict to one container"),
)
def cli_query_snapshots(manifest: Manifest, state_root: Path, latest: bool, container: Optional[str]) -> None:
    """List snapshots retained on the targets of NETWORKS, newest first."""

    lifecycle = open_lifecycle(state_root)
    snapshots = lifecycle.query_latest(manifest, container) if latest else lifecycle.query_all(manifest, container)
    _echo_json([snapshot.as_dict() for snapshot in snapshots])


@lifecycle_command(
    "clean-snapshots",
    click.option("--keep", type=click.IntRange(min=0), default=1, show_default=True, help="Snapshots kept per component"),
    click.option("--container", default=None, help="Restrict to one container"),
)
def cli_clean_snapshots(manifest: Manifest, state_root: Path, keep: int, container: Optional[str]) -> None:
    """Remove all but the KEEP newest snapshots of every component."""

    removed = open_lifecycle(state_root).clean(manifest, keep, container)
    _echo_json([snapshot.as_dict() for snapshot in removed])


def _optional_path(path: Optional[Path]) -> Optional[str]:
    return str(path) if path is not None else None


def main(argv: Optional[Sequence[str]] = None, *, restore_traceback: bool = True) -> int:
    """Execute the CLI with shared exit handling and return the exit code."""

    previous_traceback = getattr(lib_cli_exit_tools.config, "traceback", False)
    previous_force_color = getattr(lib_cli_exit_tools.config, "traceback_force_color", False)
    try:
        try:
            return lib_cli_exit_tools.run_cli(
                cli,
                argv=list(argv) if argv is not None else None,
                prog_name=_DISTRIBUTION,
            )
        except BaseException as exc:  # noqa: BLE001 - funnel through shared printers
            lib_cli_exit_tools.print_exception_message(
                trace_back=lib_cli_exit_tools.config.traceback,
                length_limit=(
                    _TRACEBACK_VERBOSE_LIMIT if lib_cli_exit_tools.config.traceback else _TRACEBACK_SUMMARY_LIMIT
                ),
            )
            return lib_cli_exit_tools.get_system_exit_code(exc)
    finally:
        if restore_traceback:
            lib_cli_exit_tools.config.traceback = previous_traceback
            lib_cli_exit_tools.config.traceback_force_color = previous_force_color


if __name__ == "__main__":  # pragma: no cover - exercised via console entry point
    raise SystemExit(main(sys.argv[1:]))
