"""Unit tests for VibeSpec storage.

This module tests path resolution, YAML helpers, atomic writes and the
status record store.
"""

import os
from unittest.mock import patch

import pytest

from vibespec.errors import AccessDeniedError, InvalidParametersError, NotFoundError, ParseError, WriteError
from vibespec.models import SpecStatus
from vibespec.storage import SpecPaths, StatusStore, atomic_write_yaml, read_yaml


@pytest.fixture
def paths(tmp_path):
    return SpecPaths(tmp_path)


@pytest.fixture
def store(paths):
    return StatusStore(paths)


class TestSpecPaths:
    """Test cases for on-disk layout."""

    def test_default_layout(self, tmp_path, monkeypatch):
        """Test the default storage directory and derived paths."""
        monkeypatch.delenv(SpecPaths.STORAGE_DIR_ENV, raising=False)
        paths = SpecPaths(tmp_path)

        assert paths.specs_dir == tmp_path.resolve() / ".vibedev" / "specs"
        assert paths.metadata_path == paths.specs_dir / "_metadata.yaml"
        assert paths.status_path("user-auth") == paths.specs_dir / "user-auth" / ".status.yaml"
        assert paths.tasks_path("user-auth") == paths.specs_dir / "user-auth" / "tasks.md"

    def test_storage_dir_from_environment(self, tmp_path, monkeypatch):
        """Test that VIBESPEC_STORAGE_DIR overrides the directory."""
        monkeypatch.setenv(SpecPaths.STORAGE_DIR_ENV, "docs/specs")

        assert SpecPaths(tmp_path).specs_dir == tmp_path.resolve() / "docs" / "specs"

    def test_explicit_storage_dir_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv(SpecPaths.STORAGE_DIR_ENV, "ignored")

        paths = SpecPaths(tmp_path, storage_dir=tmp_path / "elsewhere")

        assert paths.specs_dir == tmp_path / "elsewhere"

    @pytest.mark.parametrize("name", ["", "../escape", "a/b", ".hidden", "has space"])
    def test_invalid_names_rejected(self, paths, name):
        """Test that names which are not slugs are rejected."""
        with pytest.raises(InvalidParametersError):
            paths.spec_dir(name)

    def test_unknown_deliverable(self, paths):
        with pytest.raises(InvalidParametersError):
            paths.deliverable_path("feature", "notes")


class TestYamlHelpers:
    """Test cases for YAML reads and atomic writes."""

    def test_write_then_read(self, tmp_path):
        """Test that written data reads back unchanged, in key order."""
        path = tmp_path / "nested" / "doc.yaml"
        data = {"b": 1, "a": [1, 2], "c": {"z": None}}

        atomic_write_yaml(path, data)

        assert read_yaml(path) == data
        assert path.read_text(encoding="utf-8").startswith("b: 1")

    def test_read_missing(self, tmp_path):
        with pytest.raises(NotFoundError):
            read_yaml(tmp_path / "missing.yaml")

    def test_read_corrupt(self, tmp_path):
        """Test that invalid YAML raises ParseError."""
        path = tmp_path / "bad.yaml"
        path.write_text("key: [unclosed\n", encoding="utf-8")

        with pytest.raises(ParseError):
            read_yaml(path)

    def test_read_directory_is_access_error(self, tmp_path):
        """Test that non-NotFound read failures map to AccessDeniedError."""
        with pytest.raises(AccessDeniedError):
            read_yaml(tmp_path)

    def test_failed_rename_keeps_old_file(self, tmp_path):
        """Test that a crash before the rename leaves the old file and no temp file."""
        path = tmp_path / "doc.yaml"
        atomic_write_yaml(path, {"version": 1})

        with patch("vibespec.storage.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(WriteError):
                atomic_write_yaml(path, {"version": 2})

        assert read_yaml(path) == {"version": 1}
        assert sorted(os.listdir(tmp_path)) == ["doc.yaml"]


class TestStatusStore:
    """Test cases for the status record store."""

    def test_write_then_read(self, store):
        """Test that a written record reads back identically."""
        status = SpecStatus.create("abc123", "feature", stage="design")
        status.notes = "halfway"

        path = store.write_status(status)

        assert path.name == ".status.yaml"
        assert store.status_exists("feature")
        assert store.read_status("feature") == status

    def test_read_missing(self, store):
        """Test that an absent record raises NotFoundError."""
        with pytest.raises(NotFoundError) as exc_info:
            store.read_status("feature")

        assert "list_specs" in exc_info.value.suggestion

    def test_read_structurally_invalid(self, store, paths):
        """Test that valid YAML with the wrong shape raises ParseError."""
        path = paths.status_path("feature")
        path.parent.mkdir(parents=True)
        path.write_text("session_id: abc\nname: feature\n", encoding="utf-8")

        with pytest.raises(ParseError):
            store.read_status("feature")

    def test_read_semantically_invalid(self, store, paths):
        """Test that a record failing validation raises ParseError, never defaults."""
        status = SpecStatus.create("abc123", "feature")
        data = status.to_dict()
        data["overall_status"] = "bogus"
        atomic_write_yaml(paths.status_path("feature"), data)

        with pytest.raises(ParseError) as exc_info:
            store.read_status("feature")

        assert "Invalid status: bogus" in exc_info.value.details["issues"]

    def test_write_rejects_invalid_record(self, store):
        status = SpecStatus.create("abc123", "feature")
        status.stage = "deploy"

        with pytest.raises(InvalidParametersError):
            store.write_status(status)

        assert not store.status_exists("feature")

    def test_ensure_project_directory_idempotent(self, store, paths):
        first = store.ensure_project_directory("feature")
        second = store.ensure_project_directory("feature")

        assert first == second == paths.spec_dir("feature")
        assert first.is_dir()

    def test_rename_project(self, store, paths):
        """Test moving a project directory with its contents."""
        store.ensure_project_directory("spec-abc")
        (paths.spec_dir("spec-abc") / "notes.txt").write_text("hi", encoding="utf-8")

        target = store.rename_project("spec-abc", "user-auth")

        assert target == paths.spec_dir("user-auth")
        assert (target / "notes.txt").read_text(encoding="utf-8") == "hi"
        assert not paths.spec_dir("spec-abc").exists()

    def test_rename_onto_existing_project(self, store):
        store.ensure_project_directory("spec-abc")
        store.ensure_project_directory("user-auth")

        with pytest.raises(InvalidParametersError):
            store.rename_project("spec-abc", "user-auth")

    def test_deliverables(self, store, paths):
        """Test deliverable presence, size and reads."""
        store.ensure_project_directory("feature")
        paths.requirements_path("feature").write_text("# Requirements\n", encoding="utf-8")

        assert store.deliverable_exists("feature", "requirements")
        assert not store.deliverable_exists("feature", "design")
        assert store.deliverable_size("feature", "requirements") == len("# Requirements\n")
        assert store.deliverable_size("feature", "design") == 0
        assert store.read_deliverable("feature", "requirements") == "# Requirements\n"

        with pytest.raises(NotFoundError) as exc_info:
            store.read_deliverable("feature", "tasks")
        assert "tasks stage" in exc_info.value.suggestion
