"""MCP server exposing the VibeSpec spec workflow and status tools."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

from vibespec.responses import create_error_response, render_yaml
from vibespec.vibespec_logging import configure_from_env
from vibespec.workflow import WorkflowManager

mcp = FastMCP("vibespec")

logger = logging.getLogger("vibespec.server")

PROJECT_MARKER_DIRECTORIES = (".vibedev",)
PROJECT_ROOT_ENV = "VIBESPEC_PROJECT_ROOT"


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    return [cwd, *cwd.parents]


def _locate_workspace_root() -> Optional[Path]:
    for base in _candidate_bases():
        for marker in PROJECT_MARKER_DIRECTORIES:
            if (base / marker).is_dir():
                return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_workspace_root()
    if detected_root:
        return detected_root

    return Path.cwd().resolve()


def _workflow(root: Optional[str]) -> WorkflowManager:
    return WorkflowManager(_resolve_root(root))


def _root_error(error: ValueError) -> str:
    logger.warning(f"Root resolution failed: {error}")
    return render_yaml(create_error_response(
        str(error),
        "INVALID_ROOT",
        f"Pass an existing directory as 'root' or set {PROJECT_ROOT_ENV}",
    ))


@mcp.tool()
def vibedev_specs_workflow_start(root: Optional[str] = None) -> str:
    """STEP 1: Start a new spec workflow session.
    Returns a session_id used by every later call. Clarify the feature goal with the user next."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.workflow_start())


@mcp.tool()
def vibedev_specs_goal_confirmed(
    session_id: str,
    feature_name: str,
    goal_summary: str,
    root: Optional[str] = None,
) -> str:
    """STEP 1 (confirm): Fix the feature name (a slug such as 'user-auth') once the goal is agreed.
    The name cannot change afterwards. Next: write requirements.md."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.goal_confirmed(session_id, feature_name, goal_summary))


@mcp.tool()
def vibedev_specs_requirements_confirmed(session_id: str, feature_name: str, root: Optional[str] = None) -> str:
    """STEP 2: Confirm requirements.md. Next: write design.md."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.requirements_confirmed(session_id, feature_name))


@mcp.tool()
def vibedev_specs_design_confirmed(session_id: str, feature_name: str, root: Optional[str] = None) -> str:
    """STEP 3: Confirm design.md. Next: write tasks.md as a markdown checklist."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.design_confirmed(session_id, feature_name))


@mcp.tool()
def vibedev_specs_tasks_confirmed(session_id: str, feature_name: str, root: Optional[str] = None) -> str:
    """STEP 4: Confirm tasks.md. Records the checklist totals and opens the execution stage."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.tasks_confirmed(session_id, feature_name))


@mcp.tool()
def vibedev_specs_execute_start(
    session_id: str,
    feature_name: Optional[str] = None,
    root: Optional[str] = None,
) -> str:
    """STEP 5: Begin execution. Returns the current task and the next few open tasks."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.execute_start(session_id, feature_name))


@mcp.tool()
def vibedev_specs_get_status(
    session_id: str,
    feature_name: Optional[str] = None,
    root: Optional[str] = None,
) -> str:
    """Return the full status of a spec, its checklist progress and deliverable sizes."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.get_status(session_id, feature_name))


@mcp.tool()
def vibedev_specs_update_status(
    session_id: str,
    status: Optional[str] = None,
    stage: Optional[str] = None,
    task_completed: Optional[int] = None,
    notes: Optional[str] = None,
    root: Optional[str] = None,
) -> str:
    """Update status, stage, completed task count or notes for a spec.
    status: in_progress | completed | paused. Use the archive tool to archive."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.update_status(session_id, status, stage, task_completed, notes))


@mcp.tool()
def vibedev_specs_list(status_filter: str = "all", root: Optional[str] = None) -> str:
    """List specs, most recently updated first.
    status_filter: all | in_progress | completed | paused | archived."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.list_specs(status_filter))


@mcp.tool()
def vibedev_specs_archive(session_id: str, action: str = "archive", root: Optional[str] = None) -> str:
    """Archive a spec, or restore it with action='restore'. Documents are never deleted."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.archive(session_id, action))


@mcp.tool()
def vibedev_specs_task_progress(
    session_id: str,
    feature_name: Optional[str] = None,
    root: Optional[str] = None,
) -> str:
    """Parse tasks.md and report detailed checklist progress and format problems."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.task_progress(session_id, feature_name))


@mcp.tool()
def vibedev_specs_workflow_guide(root: Optional[str] = None) -> str:
    """Describe the five workflow stages and which tool confirms each."""

    try:
        workflow = _workflow(root)
    except ValueError as e:
        return _root_error(e)
    return render_yaml(workflow.get_workflow_guide())


def main() -> None:
    configure_from_env()
    logger.info("Starting VibeSpec MCP server")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
