"""Status manager: the single owner of status records and the metadata index.

Resolves session ids to projects, infers missing status records from the
deliverables on disk, validates every mutation before writing, and keeps the
index entry in sync with each status write.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import (
    AlreadyArchivedError,
    FeatureNameMismatchError,
    InvalidParametersError,
    InvalidStageError,
    InvalidStatusError,
    InvalidTaskCountError,
    NotArchivedError,
    NotFoundError,
    VibeSpecError,
)
from .metadata import MetadataIndex
from .models import (
    OVERALL_STATUSES,
    STAGES,
    SpecMetadata,
    SpecStatus,
    StageProgress,
    TodoParseResult,
    normalize_stage,
    stage_index,
    stages_from_dict,
    utc_now,
)
from .storage import SpecPaths, StatusStore
from .todo_parser import TodoParser
from .vibespec_logging import log_operation, observability_hooks

logger = logging.getLogger("vibespec.status")

INFERRED_NOTE = "Status inferred from existing files"


class StatusManager:
    """Facade over the status store, the metadata index and the todo parser."""

    # Fields a partial update may replace; identity fields are fixed.
    MUTABLE_FIELDS = frozenset(
        {"stage", "overall_status", "notes", "archived_at", "archived_from", "stages"}
    )

    def __init__(self, paths: SpecPaths):
        self.paths = paths
        self.store = StatusStore(paths)
        self.index = MetadataIndex(paths)

    @classmethod
    def for_root(cls, root: Path | str, storage_dir: Optional[Path | str] = None) -> "StatusManager":
        return cls(SpecPaths(root, storage_dir))

    # ------------------------------------------------------------------
    # Index access
    # ------------------------------------------------------------------

    def ensure_metadata_index(self) -> None:
        self.index.ensure_index()

    def load_all_specs(self, status_filter: Optional[str] = None) -> List[SpecMetadata]:
        """List index entries newest first, optionally filtered by overall status."""
        if status_filter not in (None, "all") and status_filter not in OVERALL_STATUSES:
            raise InvalidStatusError(
                f"Invalid status filter: {status_filter}",
                suggestion=f"Valid filters are: all, {', '.join(OVERALL_STATUSES)}",
            )
        specs = self.index.load_index()
        if status_filter not in (None, "all"):
            specs = [spec for spec in specs if spec.overall_status == status_filter]
        return specs

    def resolve_session(self, session_id: str) -> str:
        """Map a session id to its project name via the index."""
        entry = self.index.find(session_id)
        if entry is None:
            raise NotFoundError(
                f"Spec not found for session ID '{session_id}'",
                suggestion="Use 'list_specs' to see all available specs and their session ids",
                details={"session_id": session_id},
            )
        return entry.name

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load_spec_status(self, session_id: str, feature_name: Optional[str] = None) -> SpecStatus:
        """Load the record for ``session_id``, inferring it when the file is missing."""
        name = self.resolve_session(session_id)
        if feature_name and feature_name != name:
            raise FeatureNameMismatchError(
                f"Session ID {session_id} belongs to feature '{name}', not '{feature_name}'",
                suggestion=f"Use the correct feature name '{name}' or omit the feature_name parameter",
                details={"session_id": session_id, "expected": feature_name, "actual": name},
            )

        try:
            return self.store.read_status(name)
        except NotFoundError:
            logger.warning(f"Status file missing for spec '{name}', inferring from deliverables")
            return self._infer_status(session_id, name)

    def get_task_progress(self, feature_name: str) -> TodoParseResult:
        """Parse the project's tasks.md; NotFoundError when it does not exist yet."""
        content = self.store.read_deliverable(feature_name, "tasks")
        return TodoParser.parse(content)

    def deliverable_sizes(self, feature_name: str) -> Dict[str, int]:
        return {
            filename: self.store.deliverable_size(feature_name, kind)
            for kind, filename in SpecPaths.DELIVERABLES.items()
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_spec_status(self, session_id: str, feature_name: str, stage: str = "goal") -> SpecStatus:
        """Create the record for a new session, starting at ``stage``."""
        if not session_id:
            raise InvalidParametersError("Session ID is required")
        stage = normalize_stage(stage)
        if self.index.find(session_id) is not None:
            raise InvalidParametersError(
                f"Session ID '{session_id}' is already registered",
                suggestion="Use 'get_status' to inspect the existing spec",
                details={"session_id": session_id},
            )
        if self.store.status_exists(feature_name):
            raise InvalidParametersError(
                f"A spec named '{feature_name}' already exists",
                suggestion="Choose a different feature name",
                details={"name": feature_name},
            )

        with log_operation("create_spec_status", session_id=session_id, name=feature_name, stage=stage):
            self.store.ensure_project_directory(feature_name)
            status = SpecStatus.create(session_id, feature_name, stage=stage)
            self._save(status, "status_created")
        return status

    def update_spec_status(self, session_id: str, updates: Mapping[str, Any]) -> SpecStatus:
        """Shallow-merge ``updates`` into the record and persist it.

        A ``stages`` value replaces the whole stage map; callers carry forward
        entries they do not change.
        """
        if not updates:
            raise InvalidParametersError("At least one field must be provided to update")
        unknown = sorted(set(updates) - self.MUTABLE_FIELDS)
        if unknown:
            raise InvalidParametersError(
                f"Fields cannot be updated: {', '.join(unknown)}",
                suggestion=f"Updatable fields are: {', '.join(sorted(self.MUTABLE_FIELDS))}",
                details={"fields": unknown},
            )

        current = self.load_spec_status(session_id)

        merged = current.to_dict()
        merged.update(updates)
        merged["updated"] = utc_now()

        try:
            status = SpecStatus.from_dict(merged)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidParametersError(f"Invalid status update: {e}") from e

        status.stage = normalize_stage(status.stage)
        if status.overall_status not in OVERALL_STATUSES:
            raise InvalidStatusError(f"Invalid status: {status.overall_status}")
        issues = status.validate()
        if issues:
            raise InvalidParametersError(
                f"Invalid status update: {'; '.join(issues)}",
                details={"issues": issues},
            )

        with log_operation("update_spec_status", session_id=session_id, fields=sorted(updates)):
            self._save(status, "status_written")
        return status

    def apply_update(
        self,
        session_id: str,
        *,
        status: Optional[str] = None,
        stage: Optional[str] = None,
        task_completed: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Tuple[SpecStatus, SpecStatus]:
        """Validate and apply a caller's status change.

        Returns ``(previous, updated)``. Nothing is written unless every
        supplied field is valid.
        """
        if status is None and stage is None and task_completed is None and notes is None:
            raise InvalidParametersError("At least one field must be provided to update")

        if status is not None:
            if status not in OVERALL_STATUSES:
                raise InvalidStatusError(f"Invalid status: {status}")
            if status == "archived":
                raise InvalidParametersError(
                    "Specs are archived through the archive operation",
                    suggestion="Use 'archive' with action 'archive' to archive this spec",
                )
        target_stage = normalize_stage(stage) if stage is not None else None

        current = self.load_spec_status(session_id)
        stages = _copy_stages(current)
        updates: Dict[str, Any] = {}
        now = utc_now()

        if target_stage is not None:
            _move_to_stage(stages, target_stage, now)
            updates["stage"] = target_stage
            updates["stages"] = stages

        if task_completed is not None:
            tasks = stages["tasks"]
            total = tasks.total_tasks
            if isinstance(task_completed, bool) or not 0 <= task_completed <= total:
                raise InvalidTaskCountError(
                    f"Invalid task_completed value: {task_completed}",
                    suggestion=f"Value must be between 0 and {total}",
                    details={"task_completed": task_completed, "total_tasks": total},
                )
            tasks.completed_tasks = task_completed
            if (target_stage or current.stage) == "execution":
                stages["execution"].current_task_index = task_completed + 1 if task_completed < total else total
            updates["stages"] = stages

        if status is not None:
            updates["overall_status"] = status
            if current.overall_status == "archived":
                updates["archived_at"] = None
                updates["archived_from"] = None

        if notes is not None:
            updates["notes"] = notes or None

        updated = self.update_spec_status(session_id, updates)
        return current, updated

    def archive_spec(self, session_id: str) -> Tuple[SpecStatus, SpecStatus]:
        """Archive a spec, remembering the status it held before."""
        current = self.load_spec_status(session_id)
        if current.overall_status == "archived":
            raise AlreadyArchivedError(
                f"Spec '{current.name}' is already archived",
                details={"session_id": session_id},
            )
        updated = self.update_spec_status(session_id, {
            "overall_status": "archived",
            "archived_at": utc_now(),
            "archived_from": current.overall_status,
        })
        observability_hooks.log_status_event("spec_archived", session_id=session_id, name=current.name)
        return current, updated

    def restore_spec(self, session_id: str) -> Tuple[SpecStatus, SpecStatus]:
        """Restore an archived spec to the status it held before archiving."""
        current = self.load_spec_status(session_id)
        if current.overall_status != "archived":
            raise NotArchivedError(
                f"Spec '{current.name}' is not archived",
                details={"session_id": session_id, "status": current.overall_status},
            )
        previous = current.archived_from
        if previous not in OVERALL_STATUSES or previous == "archived":
            previous = "in_progress"
        updated = self.update_spec_status(session_id, {
            "overall_status": previous,
            "archived_at": None,
            "archived_from": None,
        })
        observability_hooks.log_status_event("spec_restored", session_id=session_id, name=current.name)
        return current, updated

    def confirm_goal(self, session_id: str, feature_name: str) -> SpecStatus:
        """Fix the project's name and move on to requirements.

        The name can change only once: after the goal stage is done it is
        permanent.
        """
        current = self.load_spec_status(session_id)
        if current.stages["goal"].status == "done":
            if feature_name == current.name:
                return current
            raise InvalidParametersError(
                f"Goal already confirmed for spec '{current.name}'; the feature name can no longer change",
                suggestion=f"Keep using the feature name '{current.name}'",
                details={"session_id": session_id, "name": current.name},
            )
        self.paths.spec_dir(feature_name)

        stages = _copy_stages(current)
        now = utc_now()
        _complete_stage(stages, "goal", now)
        status = SpecStatus.from_dict({
            **current.to_dict(),
            "name": feature_name,
            "stage": "requirements",
            "stages": stages,
            "updated": now,
        })

        with log_operation("confirm_goal", session_id=session_id, old_name=current.name, name=feature_name):
            self.store.rename_project(current.name, feature_name)
            try:
                self._save(status, "status_written")
            except Exception:
                self._revert_rename(current, feature_name)
                raise
        observability_hooks.log_status_event(
            "spec_renamed", session_id=session_id, old_name=current.name, name=feature_name
        )
        return status

    def complete_stage(self, session_id: str, stage: str) -> SpecStatus:
        """Mark ``stage`` done and activate the one after it.

        Confirming the tasks stage records the checklist totals from tasks.md;
        completing execution marks the whole spec completed.
        """
        stage = normalize_stage(stage)
        current = self.load_spec_status(session_id)
        if stage_index(stage) < stage_index(current.stage):
            return current

        stages = _copy_stages(current)
        now = utc_now()
        next_stage = _complete_stage(stages, stage, now)

        if stage in ("tasks", "execution"):
            self._apply_checklist_counts(current.name, stages)

        updates: Dict[str, Any] = {"stage": next_stage or stage, "stages": stages}
        if stage == "execution":
            if current.overall_status == "archived":
                updates["archived_from"] = "completed"
            else:
                updates["overall_status"] = "completed"
        return self.update_spec_status(session_id, updates)

    def refresh_task_counts(self, session_id: str) -> SpecStatus:
        """Copy checklist totals from tasks.md into the tasks stage counters."""
        current = self.load_spec_status(session_id)
        stages = _copy_stages(current)
        if not self._apply_checklist_counts(current.name, stages):
            return current
        if stages == current.stages:
            return current
        return self.update_spec_status(session_id, {"stages": stages})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_checklist_counts(self, name: str, stages: Dict[str, StageProgress]) -> bool:
        try:
            progress = self.get_task_progress(name)
        except NotFoundError:
            return False
        tasks = stages["tasks"]
        tasks.total_tasks = progress.total
        tasks.completed_tasks = progress.completed
        execution = stages["execution"]
        if execution.status == "active":
            execution.current_task_index = (
                progress.items.index(progress.current_task) + 1 if progress.current_task else progress.total
            )
        return True

    def _infer_status(self, session_id: str, name: str) -> SpecStatus:
        """Rebuild and persist a best-effort record from the deliverables on disk."""
        has_requirements = self.store.deliverable_exists(name, "requirements")
        has_design = self.store.deliverable_exists(name, "design")
        has_tasks = self.store.deliverable_exists(name, "tasks")

        progress: Optional[TodoParseResult] = None
        overall_status = "in_progress"
        if has_tasks:
            stage = "execution"
            progress = self.get_task_progress(name)
            if progress.total and progress.percentage == 100:
                overall_status = "completed"
        elif has_design:
            stage = "tasks"
        elif has_requirements:
            stage = "design"
        else:
            stage = "requirements"

        now = utc_now()
        status = SpecStatus.create(session_id, name, stage=stage, now=now)
        status.overall_status = overall_status
        status.notes = INFERRED_NOTE

        if progress is not None:
            tasks = status.tasks_progress
            tasks.total_tasks = progress.total
            tasks.completed_tasks = progress.completed
            execution = status.execution_progress
            if overall_status == "completed":
                execution.mark_done(now)
                execution.current_task_index = progress.total
            elif progress.current_task is not None:
                execution.current_task_index = progress.items.index(progress.current_task) + 1

        with log_operation("infer_status", session_id=session_id, name=name, stage=stage):
            self.store.ensure_project_directory(name)
            self._save(status, "status_inferred")
        return status

    def _revert_rename(self, previous: SpecStatus, new_name: str) -> None:
        """Move a renamed project back and restore its record after a failed save."""
        logger.warning(f"Reverting rename of spec '{previous.name}' to '{new_name}'")
        try:
            self.store.rename_project(new_name, previous.name)
            self.store.write_status(previous)
        except VibeSpecError as e:
            logger.error(f"Could not restore spec '{previous.name}' after a failed rename: {e}")

    def _save(self, status: SpecStatus, event: str) -> None:
        self.store.write_status(status)
        self.index.upsert(SpecMetadata.from_status(status))
        observability_hooks.log_status_event(
            event,
            session_id=status.session_id,
            name=status.name,
            stage=status.stage,
            overall_status=status.overall_status,
        )


def _copy_stages(status: SpecStatus) -> Dict[str, StageProgress]:
    return stages_from_dict({name: entry.to_dict() for name, entry in status.stages.items()})


def _move_to_stage(stages: Dict[str, StageProgress], target: str, now: str) -> None:
    """Make ``target`` the current stage.

    Earlier stages become done. Moving back is allowed only while no later
    stage is done; an active later stage returns to pending.
    """
    position = stage_index(target)
    later_done = [name for name in STAGES[position + 1:] if stages[name].status == "done"]
    if later_done:
        raise InvalidStageError(
            f"Cannot move back to stage '{target}': '{later_done[-1]}' is already done",
            suggestion=f"Continue from stage '{later_done[-1]}' or a later stage",
            details={"stage": target, "done": later_done},
        )
    for name in STAGES[:position]:
        if stages[name].status != "done":
            stages[name].mark_done(now)
    if stages[target].status != "done":
        stages[target].activate(now)
    for name in STAGES[position + 1:]:
        if stages[name].status == "active":
            stages[name].status = "pending"
            stages[name].timestamp = ""


def _complete_stage(stages: Dict[str, StageProgress], stage: str, now: str) -> Optional[str]:
    """Mark ``stage`` (and everything before it) done; return the next stage, now active."""
    position = stage_index(stage)
    for name in STAGES[:position + 1]:
        if stages[name].status != "done":
            stages[name].mark_done(now)
    if position + 1 >= len(STAGES):
        return None
    next_stage = STAGES[position + 1]
    if stages[next_stage].status != "done":
        stages[next_stage].activate(now)
    return next_stage
