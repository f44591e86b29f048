"""Unit tests for VibeSpec models.

This module tests the status record, its per-stage progress entries and
the metadata index entry: creation, serialization and validation.
"""

from datetime import datetime, timezone

import pytest

from vibespec.errors import InvalidStageError
from vibespec.models import (
    STAGES,
    WORKFLOW_STEPS,
    ExecutionStageProgress,
    SpecMetadata,
    SpecStatus,
    StageProgress,
    TasksStageProgress,
    default_stages,
    normalize_stage,
    parse_timestamp,
    stages_from_dict,
    utc_now,
    workflow_step,
)


class TestStageHelpers:
    """Test cases for stage names and timestamps."""

    def test_normalize_stage_aliases(self):
        """Test canonical names and short aliases."""
        assert normalize_stage("design") == "design"
        assert normalize_stage("REQ") == "requirements"
        assert normalize_stage(" exec ") == "execution"

    def test_normalize_stage_rejects_unknown(self):
        """Test that unknown stages raise InvalidStageError."""
        with pytest.raises(InvalidStageError) as exc_info:
            normalize_stage("deploy")

        assert exc_info.value.code == "INVALID_STAGE"
        assert exc_info.value.details["valid_stages"] == list(STAGES)

    def test_utc_now_format(self):
        """Test that timestamps are ISO-8601 UTC with a Z suffix."""
        now = utc_now()

        assert now.endswith("Z")
        assert parse_timestamp(now).tzinfo is not None

    def test_parse_timestamp_invalid_sorts_oldest(self):
        """Test that unparseable timestamps become the minimum datetime."""
        oldest = datetime.min.replace(tzinfo=timezone.utc)

        assert parse_timestamp("not a date") == oldest
        assert parse_timestamp(None) == oldest
        assert parse_timestamp("2024-01-01T00:00:00.000Z") > oldest


class TestStageProgress:
    """Test cases for the tagged per-stage entries."""

    def test_default_stages_types(self):
        """Test that each stage gets its own progress type."""
        stages = default_stages()

        assert list(stages) == list(STAGES)
        assert type(stages["goal"]) is StageProgress
        assert isinstance(stages["tasks"], TasksStageProgress)
        assert isinstance(stages["execution"], ExecutionStageProgress)
        assert all(entry.status == "pending" for entry in stages.values())

    def test_tasks_progress_round_trip(self):
        """Test tasks stage counters survive serialization."""
        entry = TasksStageProgress(status="done", timestamp="t", total_tasks=5, completed_tasks=2)

        assert TasksStageProgress.from_dict(entry.to_dict()) == entry

    def test_stages_from_dict_requires_every_stage(self):
        """Test that a missing stage is rejected."""
        data = {name: entry.to_dict() for name, entry in default_stages().items()}
        del data["design"]

        with pytest.raises(ValueError, match="design"):
            stages_from_dict(data)

    def test_stages_from_dict_rejects_unknown_stage(self):
        """Test that extra stages are rejected."""
        data = {name: entry.to_dict() for name, entry in default_stages().items()}
        data["deploy"] = {"status": "pending", "timestamp": ""}

        with pytest.raises(ValueError, match="deploy"):
            stages_from_dict(data)

    def test_stages_from_dict_rejects_wrong_type(self):
        """Test that a plain entry cannot stand in for the tasks stage."""
        stages = default_stages()
        stages["tasks"] = StageProgress()

        with pytest.raises(ValueError, match="tasks"):
            stages_from_dict(stages)


class TestSpecStatus:
    """Test cases for the status record."""

    def test_create_at_goal(self):
        """Test a new record starting at the goal stage."""
        status = SpecStatus.create("abc123", "spec-abc123", now="2024-01-01T00:00:00.000Z")

        assert status.stage == "goal"
        assert status.overall_status == "in_progress"
        assert status.created == status.updated == "2024-01-01T00:00:00.000Z"
        assert status.stages["goal"].status == "active"
        assert all(status.stages[name].status == "pending" for name in STAGES[1:])
        assert status.validate() == []

    def test_create_at_later_stage(self):
        """Test that earlier stages are done when starting further along."""
        status = SpecStatus.create("abc123", "feature", stage="exec")

        assert status.stage == "execution"
        assert [status.stages[name].status for name in STAGES] == [
            "done", "done", "done", "done", "active",
        ]

    def test_round_trip(self):
        """Test that to_dict/from_dict is lossless."""
        status = SpecStatus.create("abc123", "feature", stage="tasks")
        status.notes = "waiting on review"
        status.tasks_progress.total_tasks = 4
        status.tasks_progress.completed_tasks = 1

        assert SpecStatus.from_dict(status.to_dict()) == status

    def test_to_dict_field_order(self):
        """Test the serialized key order."""
        keys = list(SpecStatus.create("abc123", "feature").to_dict())

        assert keys == [
            "session_id", "name", "created", "updated", "stage", "overall_status",
            "notes", "archived_at", "archived_from", "stages",
        ]

    def test_from_dict_missing_fields(self):
        """Test that structurally incomplete records are rejected."""
        data = SpecStatus.create("abc123", "feature").to_dict()
        del data["stage"]

        with pytest.raises(ValueError, match="stage"):
            SpecStatus.from_dict(data)

    def test_from_dict_rejects_non_mapping(self):
        with pytest.raises(ValueError):
            SpecStatus.from_dict(["not", "a", "record"])

    def test_validate_reports_issues(self):
        """Test validation of status values and task counters."""
        status = SpecStatus.create("abc123", "feature")
        status.overall_status = "deleted"
        status.stages["design"].status = "skipped"
        status.tasks_progress.total_tasks = 2
        status.tasks_progress.completed_tasks = 3

        issues = status.validate()

        assert "Invalid status: deleted" in issues
        assert "Invalid status 'skipped' for stage 'design'" in issues
        assert "Task counters out of range: 3/2" in issues


class TestSpecMetadata:
    """Test cases for the metadata index entry."""

    def test_from_status(self):
        """Test deriving an index entry from a record."""
        status = SpecStatus.create("abc123", "feature")
        status.archived_at = "2024-02-01T00:00:00.000Z"

        entry = SpecMetadata.from_status(status)

        assert entry.to_dict() == {
            "session_id": "abc123",
            "name": "feature",
            "overall_status": "in_progress",
            "updated": status.updated,
            "archived_at": "2024-02-01T00:00:00.000Z",
        }
        assert SpecMetadata.from_dict(entry.to_dict()) == entry


class TestWorkflowSteps:
    """Test cases for the workflow step catalogue."""

    def test_one_step_per_stage(self):
        assert [step.stage for step in WORKFLOW_STEPS] == list(STAGES)
        assert [step.step_number for step in WORKFLOW_STEPS] == [1, 2, 3, 4, 5]

    def test_workflow_step_lookup(self):
        """Test lookup by stage name or alias."""
        assert workflow_step("req").deliverable == "requirements.md"
        assert workflow_step("execution").deliverable is None
