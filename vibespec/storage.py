"""Durable storage for spec status records.

Paths, YAML helpers and the per-project status record store. Every write
goes through :func:`atomic_write_yaml` so readers observe either the old or
the new file, never a partial one.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import (
    AccessDeniedError,
    InvalidParametersError,
    NotFoundError,
    ParseError,
    WriteError,
)
from .models import SpecStatus
from .vibespec_logging import log_performance

logger = logging.getLogger("vibespec.storage")


class SpecPaths:
    """Resolve every on-disk location below a project root."""

    STORAGE_DIR_ENV = "VIBESPEC_STORAGE_DIR"
    DEFAULT_STORAGE_DIR = Path(".vibedev") / "specs"
    METADATA_FILE = "_metadata.yaml"
    STATUS_FILE = ".status.yaml"
    DELIVERABLES: Dict[str, str] = {
        "requirements": "requirements.md",
        "design": "design.md",
        "tasks": "tasks.md",
    }

    _NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

    def __init__(self, root: Path | str, storage_dir: Optional[Path | str] = None):
        self.root = Path(root).expanduser().resolve()
        configured = storage_dir or os.getenv(self.STORAGE_DIR_ENV) or self.DEFAULT_STORAGE_DIR
        configured = Path(configured).expanduser()
        self.specs_dir = configured if configured.is_absolute() else self.root / configured

    def __repr__(self) -> str:
        return f"SpecPaths(root={str(self.root)!r}, specs_dir={str(self.specs_dir)!r})"

    @property
    def metadata_path(self) -> Path:
        return self.specs_dir / self.METADATA_FILE

    def spec_dir(self, name: str) -> Path:
        if not name or not self._NAME_PATTERN.match(name):
            raise InvalidParametersError(
                f"Invalid feature name: {name!r}",
                suggestion="Use a slug of letters, digits, '.', '_' or '-' such as 'user-auth'",
                details={"name": name},
            )
        return self.specs_dir / name

    def status_path(self, name: str) -> Path:
        return self.spec_dir(name) / self.STATUS_FILE

    def deliverable_path(self, name: str, kind: str) -> Path:
        try:
            filename = self.DELIVERABLES[kind]
        except KeyError:
            raise InvalidParametersError(
                f"Unknown deliverable: {kind}",
                suggestion=f"Valid deliverables are: {', '.join(self.DELIVERABLES)}",
            ) from None
        return self.spec_dir(name) / filename

    def requirements_path(self, name: str) -> Path:
        return self.deliverable_path(name, "requirements")

    def design_path(self, name: str) -> Path:
        return self.deliverable_path(name, "design")

    def tasks_path(self, name: str) -> Path:
        return self.deliverable_path(name, "tasks")


# ----------------------------------------------------------------------
# YAML helpers
# ----------------------------------------------------------------------


def read_text(path: Path) -> str:
    """Read a file, translating OS failures into structured errors."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise NotFoundError(
            "File not found",
            suggestion=f"Check if the file exists at: {path}",
            details={"path": str(path)},
        ) from None
    except PermissionError as e:
        raise AccessDeniedError(
            "Permission denied while reading file",
            details={"path": str(path), "error": str(e)},
        ) from e
    except (OSError, UnicodeDecodeError) as e:
        raise AccessDeniedError(
            "Failed to read file",
            details={"path": str(path), "error": str(e)},
        ) from e


def read_yaml(path: Path) -> Any:
    """Load a YAML document; NotFoundError when absent, ParseError when corrupt."""
    content = read_text(path)
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ParseError(
            "Invalid YAML format",
            details={"path": str(path), "error": str(e)},
        ) from e


def dump_yaml(data: Any) -> str:
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)


def atomic_write_yaml(path: Path, data: Any) -> None:
    """Write ``data`` as YAML to ``path`` atomically.

    The document is written to a temporary file in the same directory,
    fsynced, then renamed over ``path``. On any failure the temporary file
    is removed and the previous file is left as it was.
    """
    tmp_path: Optional[str] = None
    try:
        content = dump_yaml(data)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent),
            prefix=f".{path.name}.",
            suffix=".tmp",
        )
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except (OSError, yaml.YAMLError) as e:
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        logger.error(f"Failed to write {path}: {e}")
        raise WriteError(
            "Failed to write YAML file",
            details={"path": str(path), "error": str(e)},
        ) from e


# ----------------------------------------------------------------------
# Status record store
# ----------------------------------------------------------------------


class StatusStore:
    """Read and write per-project status records."""

    def __init__(self, paths: SpecPaths):
        self.paths = paths

    def ensure_project_directory(self, name: str) -> Path:
        """Create the project's directory if needed."""
        spec_dir = self.paths.spec_dir(name)
        try:
            spec_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WriteError(
                f"Could not create directory for spec '{name}'",
                details={"path": str(spec_dir), "error": str(e)},
            ) from e
        return spec_dir

    def status_exists(self, name: str) -> bool:
        return self.paths.status_path(name).is_file()

    @log_performance("read_status")
    def read_status(self, name: str) -> SpecStatus:
        """Load the status record for ``name``."""
        path = self.paths.status_path(name)
        try:
            data = read_yaml(path)
        except NotFoundError as e:
            raise NotFoundError(
                f"No status file for spec '{name}'",
                suggestion="Use 'list_specs' to see all available specs",
                details={"name": name, "path": str(path)},
            ) from e

        try:
            status = SpecStatus.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(
                f"Status file for spec '{name}' is malformed: {e}",
                details={"name": name, "path": str(path)},
            ) from e

        issues = status.validate()
        if issues:
            raise ParseError(
                f"Status file for spec '{name}' is invalid: {'; '.join(issues)}",
                details={"name": name, "path": str(path), "issues": issues},
            )
        return status

    @log_performance("write_status")
    def write_status(self, status: SpecStatus) -> Path:
        """Persist ``status`` atomically under its project directory."""
        issues = status.validate()
        if issues:
            raise InvalidParametersError(
                f"Refusing to write invalid status: {'; '.join(issues)}",
                details={"issues": issues},
            )
        path = self.paths.status_path(status.name)
        atomic_write_yaml(path, status.to_dict())
        logger.debug(f"Wrote status for spec '{status.name}' to {path}")
        return path

    def rename_project(self, old_name: str, new_name: str) -> Path:
        """Move a project's directory to its new name."""
        source = self.paths.spec_dir(old_name)
        target = self.paths.spec_dir(new_name)
        if source == target:
            return self.ensure_project_directory(new_name)
        if target.exists():
            raise InvalidParametersError(
                f"A spec named '{new_name}' already exists",
                suggestion="Choose a different feature name",
                details={"name": new_name},
            )
        if not source.exists():
            return self.ensure_project_directory(new_name)
        try:
            shutil.move(str(source), str(target))
        except OSError as e:
            raise WriteError(
                f"Could not rename spec '{old_name}' to '{new_name}'",
                details={"source": str(source), "target": str(target), "error": str(e)},
            ) from e
        logger.info(f"Renamed spec directory {source} -> {target}")
        return target

    # ------------------------------------------------------------------
    # Deliverables
    # ------------------------------------------------------------------

    def deliverable_exists(self, name: str, kind: str) -> bool:
        return self.paths.deliverable_path(name, kind).is_file()

    def deliverable_size(self, name: str, kind: str) -> int:
        path = self.paths.deliverable_path(name, kind)
        try:
            return path.stat().st_size
        except OSError:
            return 0

    def read_deliverable(self, name: str, kind: str) -> str:
        path = self.paths.deliverable_path(name, kind)
        try:
            return read_text(path)
        except NotFoundError as e:
            raise NotFoundError(
                f"No {path.name} found for spec '{name}'",
                suggestion=f"Complete the {kind} stage to create {path.name}",
                details={"name": name, "path": str(path)},
            ) from e
