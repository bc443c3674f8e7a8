"""Spec and state file loading with validation.

All file operations enforce size limits. Input validation is performed
at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES, MAX_STATE_FILE_SIZE_BYTES
from .models import ProjectSpec
from .state import ResourceState

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when spec or state loading or validation fails."""

    pass


def _read_yaml_mapping(path: Path, max_size: int, kind: str) -> dict[str, Any]:
    """Read a YAML file that must contain a mapping."""
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat {kind} file {path}: {e}") from e

    if file_size > max_size:
        raise SpecLoadError(f"{kind.capitalize()} file exceeds maximum size of {max_size} bytes: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read {kind} file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"{kind.capitalize()} file must contain a YAML mapping: {path}")
    return raw_data


def load_spec(spec_path: Path) -> ProjectSpec:
    """Load and validate a project spec from YAML.

    Both the flat format and a Kubernetes-style wrapper are accepted::

        apiVersion: harbor/v1
        kind: Project
        spec:
          name: team-a

    Args:
        spec_path: Path to the spec file.

    Returns:
        Validated ProjectSpec.

    Raises:
        SpecLoadError: If the spec cannot be loaded or fails validation.
    """
    if not spec_path.exists():
        raise SpecLoadError(f"Spec file not found: {spec_path}")

    raw_data = _read_yaml_mapping(spec_path, MAX_SPEC_FILE_SIZE_BYTES, "spec")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {spec_path}")
    else:
        spec_data = raw_data

    try:
        spec = ProjectSpec.model_validate(spec_data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {spec_path}:\n{error_list}") from e

    logger.info("Loaded spec for project '%s' from %s", spec.name, spec_path)
    return spec


def load_state(state_path: Path) -> ResourceState:
    """Load resource state; a missing file means nothing is tracked yet."""
    if not state_path.exists():
        return ResourceState()

    raw_data = _read_yaml_mapping(state_path, MAX_STATE_FILE_SIZE_BYTES, "state")
    try:
        return ResourceState.from_dict(raw_data)
    except ValueError as e:
        raise SpecLoadError(f"Invalid state file {state_path}: {e}") from e


def save_state(state_path: Path, state: ResourceState) -> None:
    """Write resource state as YAML, replacing the file atomically."""
    temp = state_path.with_suffix(state_path.suffix + ".partial")
    try:
        temp.write_text(yaml.safe_dump(state.to_dict(), sort_keys=True), encoding="utf-8")
        temp.replace(state_path)
    except OSError as e:
        raise SpecLoadError(f"Failed to write state file {state_path}: {e}") from e
    finally:
        if temp.exists():
            temp.unlink(missing_ok=True)
