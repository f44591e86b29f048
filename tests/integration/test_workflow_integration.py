"""
Integration tests for the VibeSpec MCP server tools.

These tests drive the tool functions registered in main.py end to end:
root resolution, the five-stage workflow, status updates, listing and
archive/restore, asserting on the rendered YAML envelopes.
"""

from pathlib import Path

import pytest
import yaml

import main
from vibespec.storage import SpecPaths


def call(tool, *args, **kwargs):
    """Invoke a tool and parse its YAML envelope."""
    return yaml.safe_load(tool(*args, **kwargs))


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.delenv(main.PROJECT_ROOT_ENV, raising=False)
    monkeypatch.delenv(SpecPaths.STORAGE_DIR_ENV, raising=False)
    return tmp_path


class TestRootResolution:
    """Integration tests for locating the project root."""

    def test_explicit_root(self, project):
        assert main._resolve_root(str(project)) == project.resolve()

    def test_missing_explicit_root(self, project):
        with pytest.raises(ValueError):
            main._resolve_root(str(project / "missing"))

    def test_environment_root(self, project, monkeypatch):
        monkeypatch.setenv(main.PROJECT_ROOT_ENV, str(project))

        assert main._resolve_root(None) == project.resolve()

    def test_marker_directory_in_ancestor(self, project, monkeypatch):
        """Test that the nearest ancestor holding .vibedev is used."""
        (project / ".vibedev").mkdir()
        nested = project / "src" / "pkg"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        assert main._resolve_root(None) == project.resolve()

    def test_invalid_root_is_error_envelope(self, project):
        response = call(main.vibedev_specs_list, root=str(project / "missing"))

        assert response["type"] == "error"
        assert response["data"]["code"] == "INVALID_ROOT"


class TestFullWorkflow:
    """Integration tests for a spec going from goal to completion."""

    def test_goal_to_completion(self, project):
        root = str(project)
        specs_dir = Path(project) / ".vibedev" / "specs"

        started = call(main.vibedev_specs_workflow_start, root=root)
        session_id = started["data"]["session_id"]
        assert started["vibespec_format"] == "v1"
        assert started["metadata"]["session_id"] == session_id

        goal = call(main.vibedev_specs_goal_confirmed, session_id, "user-auth", "Users can sign in", root=root)
        assert goal["data"]["stage"] == "requirements"
        assert (specs_dir / "user-auth").is_dir()
        assert not (specs_dir / f"spec-{session_id}").exists()

        (specs_dir / "user-auth" / "requirements.md").write_text("# Requirements\n", encoding="utf-8")
        assert call(main.vibedev_specs_requirements_confirmed, session_id, "user-auth", root=root)["data"]["stage"] == "design"

        (specs_dir / "user-auth" / "design.md").write_text("# Design\n", encoding="utf-8")
        assert call(main.vibedev_specs_design_confirmed, session_id, "user-auth", root=root)["data"]["stage"] == "tasks"

        (specs_dir / "user-auth" / "tasks.md").write_text(
            "# Tasks\n\n- [ ] Create user model\n  - [ ] Add password hashing [!]\n- [ ] Login endpoint\n",
            encoding="utf-8",
        )
        tasks = call(main.vibedev_specs_tasks_confirmed, session_id, "user-auth", root=root)
        assert tasks["data"]["stage"] == "execution"

        execution = call(main.vibedev_specs_execute_start, session_id, root=root)
        assert execution["data"]["message"] == "Next task: Create user model"

        updated = call(main.vibedev_specs_update_status, session_id, task_completed=2, notes="hashing done", root=root)
        assert updated["type"] == "status_update"

        status = call(main.vibedev_specs_get_status, session_id, "user-auth", root=root)["data"]
        assert status["spec"]["stages"]["tasks"]["total_tasks"] == 3
        assert status["spec"]["stages"]["tasks"]["completed_tasks"] == 2
        assert status["spec"]["stages"]["execution"]["current_task_index"] == 3
        assert status["spec"]["notes"] == "hashing done"
        assert status["file_sizes"]["design.md"] == len("# Design\n")
        assert status["task_progress"]["total"] == 3

        progress = call(main.vibedev_specs_task_progress, session_id, root=root)["data"]
        assert progress["details"]["high_priority_remaining"] == 1
        assert progress["validation"]["is_valid"] is True

        done = call(main.vibedev_specs_update_status, session_id, status="completed", task_completed=3, root=root)
        assert done["data"]["spec"]["status"] == "completed"

        listing = call(main.vibedev_specs_list, "completed", root=root)["data"]
        assert [spec["name"] for spec in listing["specs"]] == ["user-auth"]

    def test_archive_round_trip(self, project):
        root = str(project)
        session_id = call(main.vibedev_specs_workflow_start, root=root)["data"]["session_id"]
        call(main.vibedev_specs_update_status, session_id, status="paused", root=root)

        archived = call(main.vibedev_specs_archive, session_id, root=root)
        assert archived["data"]["spec"]["new_status"] == "archived"
        assert call(main.vibedev_specs_list, "paused", root=root)["data"]["count"] == 0

        restored = call(main.vibedev_specs_archive, session_id, "restore", root=root)
        assert restored["data"]["spec"]["new_status"] == "paused"

        status = call(main.vibedev_specs_get_status, session_id, root=root)["data"]["spec"]
        assert status["archived_at"] is None

    def test_errors_are_envelopes(self, project):
        """Test that failures come back as error envelopes with codes and suggestions."""
        root = str(project)

        missing = call(main.vibedev_specs_get_status, "nope", root=root)
        assert missing["type"] == "error"
        assert missing["data"]["code"] == "NOT_FOUND"
        assert missing["data"]["suggestion"]

        session_id = call(main.vibedev_specs_workflow_start, root=root)["data"]["session_id"]
        bad_stage = call(main.vibedev_specs_update_status, session_id, stage="deploy", root=root)
        assert bad_stage["data"]["code"] == "INVALID_STAGE"

        nothing = call(main.vibedev_specs_update_status, session_id, root=root)
        assert nothing["data"]["code"] == "INVALID_PARAMETERS"

    def test_workflow_guide(self, project):
        guide = call(main.vibedev_specs_workflow_guide, root=str(project))

        assert len(guide["data"]["steps"]) == 5
