"""Loading, validation and persistence of model.yaml and model.lock."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from constants import Constants
from common.errors import ConfigurationError
from .models import DependencySpec, LockFile, Manifest

logger = logging.getLogger(__name__)


def parse_manifest(data: Any, *, origin: str = Constants.MANIFEST_FILE) -> Manifest:
    """Build a validated Manifest from parsed YAML.

    Args:
        data: Mapping produced by yaml.safe_load (None is treated as empty).
        origin: File label used in error messages.

    Returns:
        Manifest with dependencies in declaration order.

    Raises:
        ConfigurationError: On structural problems, a missing ref or a bad source.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{origin} must contain a mapping at the top level")

    model = data.get("model") or {}
    if not isinstance(model, dict):
        raise ConfigurationError(f"'model' section in {origin} must be a mapping")

    raw_deps = data.get("dependencies") or {}
    if not isinstance(raw_deps, dict):
        raise ConfigurationError(f"'dependencies' section in {origin} must be a mapping")

    dependencies: Dict[str, DependencySpec] = {}
    for alias, spec in raw_deps.items():
        dependencies[str(alias)] = parse_dependency_spec(str(alias), spec)

    raw_overrides = data.get("overrides") or {}
    if not isinstance(raw_overrides, dict):
        raise ConfigurationError(f"'overrides' section in {origin} must be a mapping")
    overrides = {}
    for source, ref in raw_overrides.items():
        _validate_source(str(source))
        if ref is None or str(ref).strip() == "":
            raise ConfigurationError(f"Missing ref for override '{source}'")
        overrides[str(source)] = str(ref)

    version = model.get("version")
    return Manifest(
        name=model.get("name"),
        version=str(version) if version is not None else None,
        dependencies=dependencies,
        overrides=overrides,
    )


def parse_dependency_spec(alias: str, spec: Any) -> DependencySpec:
    """Parse one dependency entry.

    A bare string is a ref and the alias is the ``owner/repo`` source; a
    mapping carries ``source`` (or ``path``) and ``ref``.
    """
    if isinstance(spec, (str, int, float)):
        source, ref, path = alias, str(spec), None
    elif isinstance(spec, dict):
        path = spec.get("path")
        source = spec.get("source")
        if source is None and path is None:
            source = alias
        ref = spec.get("ref")
        ref = str(ref) if ref is not None else None
    elif spec is None:
        source, ref, path = alias, None, None
    else:
        raise ConfigurationError(f"Invalid dependency entry for '{alias}'")

    if path is not None and source is not None:
        raise ConfigurationError(
            f"Dependency '{alias}' declares both 'source' and 'path'; use exactly one"
        )
    if path is not None:
        return DependencySpec(name=alias, path=str(path), ref=ref)

    if not ref:
        raise ConfigurationError(f"Missing ref for dependency '{alias}'")
    _validate_source(str(source))
    return DependencySpec(name=alias, source=str(source), ref=ref)


def _validate_source(source: str) -> None:
    parts = source.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ConfigurationError(
            f"Invalid dependency source format: {source}. Expected 'owner/repo'."
        )


def load_manifest(path: Path, *, required: bool = True) -> Optional[Manifest]:
    """Read and validate a model.yaml file.

    Args:
        path: Manifest file path.
        required: When False a missing file yields None instead of an error.

    Raises:
        ConfigurationError: Missing (when required), unreadable or invalid manifest.
    """
    if not path.is_file():
        if required:
            raise ConfigurationError(f"No {Constants.MANIFEST_FILE} found in {path.parent}")
        return None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Failed to parse {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigurationError(f"Failed to read {path}: {exc}") from exc
    return parse_manifest(data, origin=str(path))


def load_lock_file(path: Path) -> Optional[LockFile]:
    """Read model.lock; returns None when the file does not exist."""
    if not path.is_file():
        return None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
        return LockFile.from_dict(data)
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise ConfigurationError(f"Failed to read lock file {path}: {exc}") from exc


def render_lock_file(lock: LockFile) -> str:
    return json.dumps(lock.to_dict(), indent=2) + "\n"


def write_lock_file(path: Path, lock: LockFile) -> None:
    """Write the lock file atomically (temp file in the same directory, then replace)."""
    content = render_lock_file(lock)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.debug("Wrote lock file %s (%d dependencies)", path, len(lock.dependencies))
