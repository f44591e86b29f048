"""Workflow management for VibeSpec.

This module provides the tool-level operations of the five-stage spec
workflow. Each method returns a response envelope; failures are reported as
error envelopes and never raised to the caller.
"""

from __future__ import annotations

import logging
import secrets
import string
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import InvalidParametersError, NotFoundError, VibeSpecError
from .models import OVERALL_STATUSES, WORKFLOW_STEPS, SpecMetadata, SpecStatus, workflow_step
from .responses import ContentType, create_success_response, error_response_from
from .status_manager import StatusManager
from .todo_parser import TodoParser
from .vibespec_logging import log_error_with_context

logger = logging.getLogger("vibespec.workflow")

SESSION_ID_ALPHABET = string.digits + string.ascii_lowercase
SESSION_ID_LENGTH = 12


def generate_session_id() -> str:
    """Random 12-character session id of digits and lowercase letters."""
    return "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(SESSION_ID_LENGTH))


def placeholder_name(session_id: str) -> str:
    return f"spec-{session_id}"


class WorkflowManager:
    """Manages the VibeSpec workflow for all specs below a project root."""

    def __init__(self, root: Path | str, storage_dir: Optional[Path | str] = None):
        """Initialize workflow manager with the project root."""
        self.status_manager = StatusManager.for_root(root, storage_dir)

    @property
    def paths(self):
        return self.status_manager.paths

    # ------------------------------------------------------------------
    # Stage tools
    # ------------------------------------------------------------------

    def workflow_start(self) -> Dict[str, Any]:
        """Open a new session at the goal stage."""
        session_id = generate_session_id()
        try:
            self.status_manager.ensure_metadata_index()
            spec = self.status_manager.create_spec_status(session_id, placeholder_name(session_id))
        except Exception as e:
            return self._failure(e, "workflow_start", "WORKFLOW_START_ERROR",
                                 "Check that the project root exists and is writable")

        logger.info(f"Started workflow session {session_id}")
        return self._step_response(
            spec,
            message="Workflow started. Clarify the feature goal, then call goal_confirmed with a feature_name.",
            next_step="goal_confirmed",
        )

    def goal_confirmed(self, session_id: str, feature_name: str, goal_summary: str) -> Dict[str, Any]:
        """Fix the feature name and advance to requirements."""
        try:
            if not goal_summary or not goal_summary.strip():
                raise InvalidParametersError(
                    "goal_summary cannot be empty",
                    suggestion="Describe the confirmed feature goal in one or two sentences",
                )
            spec = self.status_manager.confirm_goal(session_id, feature_name.strip())
        except Exception as e:
            return self._failure(e, "goal_confirmed", "GOAL_CONFIRM_ERROR",
                                 "Check the session ID and feature name", session_id)

        return self._step_response(
            spec,
            message=f"Goal confirmed for '{spec.name}'. Write {self._deliverable(spec.name, 'requirements')}.",
            next_step="requirements_confirmed",
            extra={"goal_summary": goal_summary.strip()},
        )

    def requirements_confirmed(self, session_id: str, feature_name: str) -> Dict[str, Any]:
        return self._confirm_stage(session_id, feature_name, "requirements", "design_confirmed")

    def design_confirmed(self, session_id: str, feature_name: str) -> Dict[str, Any]:
        return self._confirm_stage(session_id, feature_name, "design", "tasks_confirmed")

    def tasks_confirmed(self, session_id: str, feature_name: str) -> Dict[str, Any]:
        return self._confirm_stage(session_id, feature_name, "tasks", "execute_start")

    def execute_start(self, session_id: str, feature_name: Optional[str] = None) -> Dict[str, Any]:
        """Report the current and upcoming tasks for the execution stage."""
        try:
            spec = self.status_manager.load_spec_status(session_id, feature_name)
            spec = self.status_manager.refresh_task_counts(session_id)
            progress = self.status_manager.get_task_progress(spec.name)
        except Exception as e:
            return self._failure(e, "execute_start", "EXECUTE_START_ERROR",
                                 "Confirm the tasks stage so tasks.md exists", session_id)

        return self._step_response(
            spec,
            message=(
                f"Next task: {progress.current_task.text}" if progress.current_task
                else "All tasks are complete."
            ),
            next_step="update_status",
            extra={
                "task_progress": progress.to_summary(),
                "next_tasks": [item.text for item in progress.next_tasks],
            },
        )

    # ------------------------------------------------------------------
    # Status tools
    # ------------------------------------------------------------------

    def get_status(self, session_id: str, feature_name: Optional[str] = None) -> Dict[str, Any]:
        """Full status for one spec, with checklist progress and deliverable sizes."""
        try:
            spec = self.status_manager.load_spec_status(session_id, feature_name)
            task_progress = None
            if spec.stage in ("tasks", "execution"):
                try:
                    task_progress = self.status_manager.get_task_progress(spec.name).to_summary()
                except NotFoundError:
                    logger.info(f"No tasks.md yet for spec '{spec.name}'")
            file_sizes = self.status_manager.deliverable_sizes(spec.name)
        except Exception as e:
            return self._failure(e, "get_status", "GET_STATUS_ERROR",
                                 "Check if the session ID is correct or use 'list_specs' to see all specs",
                                 session_id)

        return create_success_response(
            ContentType.SPEC_DETAIL,
            {
                "spec": spec.to_dict(),
                "task_progress": task_progress,
                "file_sizes": file_sizes,
            },
            session_id,
        )

    def update_status(
        self,
        session_id: str,
        status: Optional[str] = None,
        stage: Optional[str] = None,
        task_completed: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Apply a caller's status change and confirm what changed."""
        try:
            previous, updated = self.status_manager.apply_update(
                session_id,
                status=status,
                stage=stage,
                task_completed=task_completed,
                notes=notes,
            )
        except Exception as e:
            return self._failure(e, "update_status", "UPDATE_ERROR",
                                 "Check the parameters and try again", session_id)

        changes: List[Dict[str, Any]] = []
        if status is not None:
            changes.append({"field": "status", "value": updated.overall_status})
        if stage is not None:
            changes.append({"field": "stage", "value": updated.stage})
        if task_completed is not None:
            changes.append({
                "field": "tasks_completed",
                "value": f"{updated.tasks_progress.completed_tasks}/{updated.tasks_progress.total_tasks}",
            })
        if notes is not None:
            changes.append({"field": "notes", "value": notes or "(cleared)"})

        return create_success_response(
            ContentType.STATUS_UPDATE,
            {
                "action": "status_updated",
                "spec": {
                    "name": updated.name,
                    "session_id": updated.session_id,
                    "status": updated.overall_status,
                    "previous_status": previous.overall_status,
                    "stage": updated.stage,
                    "updated": updated.updated,
                },
                "changes_applied": changes,
                "notes": updated.notes,
            },
            session_id,
        )

    def list_specs(self, status_filter: str = "all") -> Dict[str, Any]:
        """List spec summaries, most recently updated first."""
        try:
            self.status_manager.ensure_metadata_index()
            specs = self.status_manager.load_all_specs(status_filter)
        except Exception as e:
            return self._failure(e, "list_specs", "LIST_ERROR",
                                 f"Check if {self.paths.specs_dir} exists and has proper permissions")

        return create_success_response(
            ContentType.SPEC_LIST,
            {
                "specs": [spec.to_dict() for spec in specs],
                "filter": status_filter,
                "count": len(specs),
                "summary": summarize(specs),
            },
        )

    def archive(self, session_id: str, action: str = "archive") -> Dict[str, Any]:
        """Archive or restore a spec."""
        try:
            if action == "archive":
                previous, updated = self.status_manager.archive_spec(session_id)
            elif action == "restore":
                previous, updated = self.status_manager.restore_spec(session_id)
            else:
                raise InvalidParametersError(
                    f"Invalid action: {action}",
                    suggestion="Use action 'archive' or 'restore'",
                )
        except Exception as e:
            return self._failure(e, "archive", "ARCHIVE_ERROR",
                                 "Check if the session ID is correct", session_id)

        if action == "archive":
            notes = [
                "Archived specs are excluded from the in_progress list view",
                "Use status_filter 'archived' to see archived specs",
                "All documents and data are preserved",
                "You can restore this spec at any time",
            ]
        else:
            notes = [
                "The spec is active again",
                "You can continue working from where you left off",
                f"Current stage: {updated.stage}",
            ]

        return create_success_response(
            ContentType.ARCHIVE_ACTION,
            {
                "action": action,
                "spec": {
                    "name": updated.name,
                    "session_id": updated.session_id,
                    "previous_status": previous.overall_status,
                    "new_status": updated.overall_status,
                    "stage": updated.stage,
                },
                "timestamp": updated.updated,
                "notes": notes,
            },
            session_id,
        )

    def task_progress(self, session_id: str, feature_name: Optional[str] = None) -> Dict[str, Any]:
        """Parse tasks.md for a spec and report detailed progress."""
        try:
            spec = self.status_manager.load_spec_status(session_id, feature_name)
            content = self.status_manager.store.read_deliverable(spec.name, "tasks")
        except Exception as e:
            return self._failure(e, "task_progress", "TASK_PROGRESS_ERROR",
                                 "Confirm the tasks stage so tasks.md exists", session_id)

        result = TodoParser.parse(content)
        return create_success_response(
            ContentType.TASK_PROGRESS,
            {
                "name": spec.name,
                "progress": result.to_dict(),
                "details": TodoParser.progress_details(result),
                "validation": TodoParser.validate_format(content).to_dict(),
            },
            session_id,
        )

    def get_workflow_guide(self) -> Dict[str, Any]:
        """Describe the five stages in order."""
        return create_success_response(ContentType.WORKFLOW_STEP, {
            "workflow_overview": "Spec workflow: goal -> requirements -> design -> tasks -> execution",
            "steps": [step.to_dict() for step in WORKFLOW_STEPS],
            "storage": str(self.paths.specs_dir),
        })

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _confirm_stage(self, session_id: str, feature_name: str, stage: str, next_tool: str) -> Dict[str, Any]:
        try:
            self.status_manager.load_spec_status(session_id, feature_name)
            spec = self.status_manager.complete_stage(session_id, stage)
        except Exception as e:
            return self._failure(e, f"{stage}_confirmed", f"{stage.upper()}_CONFIRM_ERROR",
                                 "Check the session ID and feature name", session_id)

        current = workflow_step(spec.stage)
        if current.deliverable:
            message = f"{workflow_step(stage).name} confirmed. Next: write {self._deliverable(spec.name, spec.stage)}."
        else:
            message = f"{workflow_step(stage).name} confirmed. Next: {current.name}."
        return self._step_response(spec, message=message, next_step=next_tool)

    def _deliverable(self, name: str, stage: str) -> str:
        path = self.paths.deliverable_path(name, stage)
        try:
            return str(path.relative_to(self.paths.root))
        except ValueError:
            return str(path)

    def _step_response(
        self,
        spec: SpecStatus,
        *,
        message: str,
        next_step: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        step = workflow_step(spec.stage)
        data: Dict[str, Any] = {
            "session_id": spec.session_id,
            "feature_name": spec.name,
            "stage": spec.stage,
            "step": f"{step.step_number}/{len(WORKFLOW_STEPS)}",
            "overall_status": spec.overall_status,
            "next_suggested_step": next_step,
            "workflow_tip": step.description,
            "message": message,
        }
        if extra:
            data.update(extra)
        return create_success_response(ContentType.WORKFLOW_STEP, data, spec.session_id)

    def _failure(
        self,
        error: Exception,
        operation: str,
        fallback_code: str,
        fallback_suggestion: str,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if isinstance(error, VibeSpecError):
            logger.warning(f"{operation} failed [{error.code}]: {error.message}")
        else:
            log_error_with_context(error, {"operation": operation, "session_id": session_id})
        return error_response_from(
            error,
            fallback_code=fallback_code,
            fallback_suggestion=fallback_suggestion,
            session_id=session_id,
        )


def summarize(specs: List[SpecMetadata]) -> Dict[str, int]:
    """Counts per overall status."""
    summary = {"total": len(specs)}
    for status in OVERALL_STATUSES:
        key = "active" if status == "in_progress" else status
        summary[key] = sum(1 for spec in specs if spec.overall_status == status)
    return summary
