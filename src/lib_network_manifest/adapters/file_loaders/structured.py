"""Network source loaders.

Purpose
-------
Convert network source files into target mappings that the network merger
understands. Static formats (TOML, JSON, YAML) describe fragments as plain
data; Python sources may additionally use callables and ``Override`` values.

Contents
--------
* :class:`BaseFileLoader` – shared helpers for reading files and validating
  mapping outputs.
* :class:`TOMLFileLoader`, :class:`JSONFileLoader`, :class:`YAMLFileLoader` –
  static network documents (also used for the options file).
* :class:`PythonNetworkLoader` – executes a module and reads its ``network``
  mapping.
* :func:`loader_for` / :func:`load_network` – dispatch on the file suffix.

System Role
-----------
Invoked by :func:`lib_network_manifest.core.load_sources` before the results
are handed to :func:`~lib_network_manifest.application.network.merge_networks`.
"""

from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Mapping

try:  # Python >= 3.11
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for <3.11
    import tomli as tomllib  # type: ignore[assignment]

import yaml

from ...application.ports import NetworkLoader
from ...domain.errors import InvalidFormat, NotFound
from ...observability import log_debug, log_error

NETWORK_ATTRIBUTE = "network"


class BaseFileLoader:
    """Common utilities shared by the network source loaders."""

    def _read(self, path: str) -> bytes:
        """Read *path* as bytes, raising :class:`NotFound` when the file is missing.

        Examples
        --------
        >>> from tempfile import NamedTemporaryFile
        >>> tmp = NamedTemporaryFile(delete=False)
        >>> _ = tmp.write(b"[web1]")
        >>> tmp.close()
        >>> BaseFileLoader()._read(tmp.name)[:5]
        b'[web1'
        >>> Path(tmp.name).unlink()
        """

        file_path = Path(path)
        if not file_path.is_file():
            raise NotFound(f"Network file not found: {path}")
        payload = file_path.read_bytes()
        log_debug("network_file_read", path=path, size=len(payload))
        return payload

    @staticmethod
    def _ensure_mapping(data: object, *, path: str) -> Mapping[str, object]:
        """Ensure *data* behaves like a mapping, otherwise raise ``InvalidFormat``.

        Examples
        --------
        >>> BaseFileLoader._ensure_mapping({"web1": {}}, path="demo")
        {'web1': {}}
        >>> BaseFileLoader._ensure_mapping(42, path="demo")
        Traceback (most recent call last):
        ...
        lib_network_manifest.domain.errors.InvalidFormat: File demo did not produce a mapping
        """

        if not isinstance(data, Mapping):
            raise InvalidFormat(f"File {path} did not produce a mapping")
        return data


class TOMLFileLoader(BaseFileLoader):
    """Load TOML documents using the standard library parser."""

    def load(self, path: str) -> Mapping[str, object]:
        """Return mapping extracted from the TOML file at *path*.

        Examples
        --------
        >>> from tempfile import NamedTemporaryFile
        >>> tmp = NamedTemporaryFile('w', delete=False, encoding='utf-8')
        >>> _ = tmp.write('[web1.networking]\\nhostName = "web1"')
        >>> tmp.close()
        >>> TOMLFileLoader().load(tmp.name)["web1"]["networking"]["hostName"]
        'web1'
        >>> Path(tmp.name).unlink()
        """

        try:
            text = self._read(path).decode("utf-8")
            data = tomllib.loads(text)
        except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
            log_error("network_file_invalid", path=path, format="toml", error=str(exc))
            raise InvalidFormat(f"Invalid TOML in {path}: {exc}") from exc
        result = self._ensure_mapping(data, path=path)
        log_debug("network_file_loaded", path=path, format="toml")
        return result


class JSONFileLoader(BaseFileLoader):
    """Load JSON documents."""

    def load(self, path: str) -> Mapping[str, object]:
        try:
            data = json.loads(self._read(path))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            log_error("network_file_invalid", path=path, format="json", error=str(exc))
            raise InvalidFormat(f"Invalid JSON in {path}: {exc}") from exc
        result = self._ensure_mapping(data, path=path)
        log_debug("network_file_loaded", path=path, format="json")
        return result


class YAMLFileLoader(BaseFileLoader):
    """Load YAML documents; an empty document is an empty network."""

    def load(self, path: str) -> Mapping[str, object]:
        try:
            data = yaml.safe_load(self._read(path))
        except yaml.YAMLError as exc:
            log_error("network_file_invalid", path=path, format="yaml", error=str(exc))
            raise InvalidFormat(f"Invalid YAML in {path}: {exc}") from exc
        if data is None:
            data = {}
        result = self._ensure_mapping(data, path=path)
        log_debug("network_file_loaded", path=path, format="yaml")
        return result


class PythonNetworkLoader(BaseFileLoader):
    """Execute a Python module and return its top-level ``network`` mapping.

    Fragments in such modules may be callables receiving a
    :class:`~lib_network_manifest.domain.network.FragmentContext`, which lets
    one target read another target's evaluated configuration.
    """

    def load(self, path: str) -> Mapping[str, object]:
        self._read(path)
        try:
            namespace = runpy.run_path(path, run_name="lib_network_manifest_network")
        except SyntaxError as exc:
            log_error("network_file_invalid", path=path, format="python", error=str(exc))
            raise InvalidFormat(f"Invalid Python in {path}: {exc}") from exc
        if NETWORK_ATTRIBUTE not in namespace:
            raise InvalidFormat(f"File {path} does not define `{NETWORK_ATTRIBUTE}'")
        result = self._ensure_mapping(namespace[NETWORK_ATTRIBUTE], path=path)
        log_debug("network_file_loaded", path=path, format="python")
        return result


_LOADERS: dict[str, NetworkLoader] = {
    ".toml": TOMLFileLoader(),
    ".json": JSONFileLoader(),
    ".yaml": YAMLFileLoader(),
    ".yml": YAMLFileLoader(),
    ".py": PythonNetworkLoader(),
}


def loader_for(path: str) -> NetworkLoader:
    """Return the loader registered for the suffix of *path*.

    Examples
    --------
    >>> type(loader_for("network.yml")).__name__
    'YAMLFileLoader'
    >>> loader_for("network.ini")
    Traceback (most recent call last):
    ...
    lib_network_manifest.domain.errors.InvalidFormat: Unsupported network file type: network.ini
    """

    loader = _LOADERS.get(Path(path).suffix.lower())
    if loader is None:
        raise InvalidFormat(f"Unsupported network file type: {path}")
    return loader


def load_network(path: str | Path) -> Mapping[str, object]:
    """Load the network source at *path* with the loader matching its suffix."""

    return loader_for(str(path)).load(str(path))
