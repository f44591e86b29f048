"""Data models for VibeSpec status tracking.

This module contains the core data structures used throughout the VibeSpec
system: the per-project status record with its per-stage progress entries,
the metadata index entry, and the ephemeral checklist items produced by the
todo parser.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type

from .errors import InvalidStageError


STAGES = ("goal", "requirements", "design", "tasks", "execution")
STAGE_ALIASES = {"req": "requirements", "exec": "execution"}
STAGE_STATUSES = ("pending", "active", "done")
OVERALL_STATUSES = ("in_progress", "completed", "archived", "paused")


def utc_now() -> str:
    """Current time as an ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> datetime:
    """Parse an ISO-8601 timestamp; unparseable values sort as the oldest."""
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_stage(name: str) -> str:
    """Return the canonical stage name or raise InvalidStageError."""
    key = (name or "").strip().lower()
    key = STAGE_ALIASES.get(key, key)
    if key not in STAGES:
        raise InvalidStageError(
            f"Invalid stage: {name}",
            details={"stage": name, "valid_stages": list(STAGES)},
        )
    return key


def stage_index(name: str) -> int:
    return STAGES.index(name)


# ----------------------------------------------------------------------
# Stage progress entries
# ----------------------------------------------------------------------


@dataclass(slots=True)
class StageProgress:
    """Progress of a simple stage (goal, requirements, design)."""

    status: str = "pending"
    timestamp: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StageProgress":
        return cls(status=data["status"], timestamp=data.get("timestamp") or "")

    def activate(self, timestamp: str) -> None:
        self.status = "active"
        self.timestamp = timestamp

    def mark_done(self, timestamp: str) -> None:
        self.status = "done"
        self.timestamp = timestamp


@dataclass(slots=True)
class TasksStageProgress(StageProgress):
    """Progress of the tasks stage, carrying checklist counters."""

    total_tasks: int = 0
    completed_tasks: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TasksStageProgress":
        return cls(
            status=data["status"],
            timestamp=data.get("timestamp") or "",
            total_tasks=int(data.get("total_tasks", 0)),
            completed_tasks=int(data.get("completed_tasks", 0)),
        )


@dataclass(slots=True)
class ExecutionStageProgress(StageProgress):
    """Progress of the execution stage; ``current_task_index`` is 1-based, 0 before start."""

    current_task_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "current_task_index": self.current_task_index,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionStageProgress":
        return cls(
            status=data["status"],
            timestamp=data.get("timestamp") or "",
            current_task_index=int(data.get("current_task_index", 0)),
        )


STAGE_PROGRESS_TYPES: Dict[str, Type[StageProgress]] = {
    "goal": StageProgress,
    "requirements": StageProgress,
    "design": StageProgress,
    "tasks": TasksStageProgress,
    "execution": ExecutionStageProgress,
}


def default_stages() -> Dict[str, StageProgress]:
    """Fresh pending entries for every stage."""
    return {name: STAGE_PROGRESS_TYPES[name]() for name in STAGES}


def stages_from_dict(data: Mapping[str, Any]) -> Dict[str, StageProgress]:
    """Build the tagged per-stage entries; every stage must be present."""
    if not isinstance(data, Mapping):
        raise ValueError("'stages' must be a mapping")
    stages: Dict[str, StageProgress] = {}
    for name in STAGES:
        entry = data.get(name)
        if isinstance(entry, StageProgress):
            if type(entry) is not STAGE_PROGRESS_TYPES[name]:
                raise ValueError(f"Stage '{name}' has the wrong progress type")
            stages[name] = entry
        elif isinstance(entry, Mapping):
            stages[name] = STAGE_PROGRESS_TYPES[name].from_dict(entry)
        else:
            raise ValueError(f"Missing or malformed entry for stage '{name}'")
    unknown = set(data) - set(STAGES)
    if unknown:
        raise ValueError(f"Unknown stages: {', '.join(sorted(unknown))}")
    return stages


# ----------------------------------------------------------------------
# Status record and index entry
# ----------------------------------------------------------------------


@dataclass(slots=True)
class SpecStatus:
    """Durable status record for one specification project."""

    session_id: str
    name: str
    created: str
    updated: str
    stage: str = "goal"
    overall_status: str = "in_progress"
    notes: Optional[str] = None
    archived_at: Optional[str] = None
    archived_from: Optional[str] = None
    stages: Dict[str, StageProgress] = field(default_factory=default_stages)

    @classmethod
    def create(
        cls,
        session_id: str,
        name: str,
        *,
        stage: str = "goal",
        now: Optional[str] = None,
    ) -> "SpecStatus":
        """New record whose earlier stages are done and ``stage`` is active."""
        stage = normalize_stage(stage)
        now = now or utc_now()
        stages = default_stages()
        current = stage_index(stage)
        for position, stage_name in enumerate(STAGES):
            if position < current:
                stages[stage_name].mark_done(now)
            elif position == current:
                stages[stage_name].activate(now)
        return cls(
            session_id=session_id,
            name=name,
            created=now,
            updated=now,
            stage=stage,
            stages=stages,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "session_id": self.session_id,
            "name": self.name,
            "created": self.created,
            "updated": self.updated,
            "stage": self.stage,
            "overall_status": self.overall_status,
            "notes": self.notes,
            "archived_at": self.archived_at,
            "archived_from": self.archived_from,
            "stages": {name: self.stages[name].to_dict() for name in STAGES},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SpecStatus":
        """Create from dictionary representation.

        Raises ValueError (or KeyError/TypeError) when the mapping is not a
        structurally valid record.
        """
        if not isinstance(data, Mapping):
            raise ValueError("status record must be a mapping")
        missing = [key for key in ("session_id", "name", "created", "updated", "stage", "overall_status", "stages")
                   if key not in data]
        if missing:
            raise ValueError(f"status record is missing fields: {', '.join(missing)}")
        return cls(
            session_id=str(data["session_id"]),
            name=str(data["name"]),
            created=str(data["created"]),
            updated=str(data["updated"]),
            stage=str(data["stage"]),
            overall_status=str(data["overall_status"]),
            notes=data.get("notes"),
            archived_at=data.get("archived_at"),
            archived_from=data.get("archived_from"),
            stages=stages_from_dict(data["stages"]),
        )

    def validate(self) -> List[str]:
        """Validate the record and return any issues."""
        issues = []

        if not self.session_id:
            issues.append("Session ID is required")
        if not self.name:
            issues.append("Name is required")
        if self.stage not in STAGES:
            issues.append(f"Invalid stage: {self.stage}")
        if self.overall_status not in OVERALL_STATUSES:
            issues.append(f"Invalid status: {self.overall_status}")
        if self.notes is not None and not isinstance(self.notes, str):
            issues.append("Notes must be text")
        for name, entry in self.stages.items():
            if entry.status not in STAGE_STATUSES:
                issues.append(f"Invalid status '{entry.status}' for stage '{name}'")
        tasks = self.tasks_progress
        if tasks.total_tasks < 0 or not 0 <= tasks.completed_tasks <= tasks.total_tasks:
            issues.append(
                f"Task counters out of range: {tasks.completed_tasks}/{tasks.total_tasks}"
            )

        return issues

    @property
    def tasks_progress(self) -> TasksStageProgress:
        return self.stages["tasks"]  # type: ignore[return-value]

    @property
    def execution_progress(self) -> ExecutionStageProgress:
        return self.stages["execution"]  # type: ignore[return-value]


@dataclass(slots=True)
class SpecMetadata:
    """Lightweight index entry used for listing and filtering."""

    session_id: str
    name: str
    overall_status: str
    updated: str
    archived_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "name": self.name,
            "overall_status": self.overall_status,
            "updated": self.updated,
            "archived_at": self.archived_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SpecMetadata":
        return cls(
            session_id=str(data["session_id"]),
            name=str(data["name"]),
            overall_status=str(data["overall_status"]),
            updated=str(data["updated"]),
            archived_at=data.get("archived_at"),
        )

    @classmethod
    def from_status(cls, status: SpecStatus) -> "SpecMetadata":
        return cls(
            session_id=status.session_id,
            name=status.name,
            overall_status=status.overall_status,
            updated=status.updated,
            archived_at=status.archived_at,
        )


# ----------------------------------------------------------------------
# Checklist items
# ----------------------------------------------------------------------


class TodoPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TodoFormat(str, Enum):
    DASH_CHECKBOX = "dash_checkbox"          # - [ ]
    ASTERISK_CHECKBOX = "asterisk_checkbox"  # * [ ]
    PLUS_CHECKBOX = "plus_checkbox"          # + [ ]
    NUMBERED_CHECKBOX = "numbered_checkbox"  # 1. [ ]


@dataclass(slots=True)
class TodoItem:
    """One checklist line from a tasks document."""

    id: str
    text: str
    completed: bool
    line_number: int
    indent_level: int
    priority: TodoPriority
    format: TodoFormat
    parent_id: Optional[str] = None
    children: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "text": self.text,
            "completed": self.completed,
            "line_number": self.line_number,
            "indent_level": self.indent_level,
            "priority": self.priority.value,
            "format": self.format.value,
            "parent_id": self.parent_id,
            "children": list(self.children),
        }


@dataclass(slots=True)
class TodoParseResult:
    """Aggregate view over every checklist item in a document."""

    items: List[TodoItem]
    total: int
    completed: int
    percentage: int
    current_task: Optional[TodoItem]
    next_tasks: List[TodoItem]
    by_priority: Dict[TodoPriority, List[TodoItem]]

    def find(self, item_id: str) -> Optional[TodoItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total": self.total,
            "completed": self.completed,
            "percentage": self.percentage,
            "current_task": self.current_task.to_dict() if self.current_task else None,
            "next_tasks": [item.to_dict() for item in self.next_tasks],
            "by_priority": {
                priority.value: [item.text for item in self.by_priority.get(priority, [])]
                for priority in TodoPriority
            },
            "items": [item.to_dict() for item in self.items],
        }

    def to_summary(self) -> Dict[str, Any]:
        """Compact counters for status responses."""
        return {
            "total": self.total,
            "completed": self.completed,
            "percentage": self.percentage,
            "current_task": self.current_task.text if self.current_task else None,
            "current_task_index": (self.items.index(self.current_task) + 1) if self.current_task else None,
        }


# ----------------------------------------------------------------------
# Workflow steps
# ----------------------------------------------------------------------


@dataclass(slots=True)
class WorkflowStep:
    """One stage of the five-stage spec workflow."""

    step_number: int
    stage: str
    name: str
    tool_name: str
    description: str
    deliverable: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_number": self.step_number,
            "stage": self.stage,
            "name": self.name,
            "tool_name": self.tool_name,
            "description": self.description,
            "deliverable": self.deliverable,
        }


WORKFLOW_STEPS = [
    WorkflowStep(
        step_number=1,
        stage="goal",
        name="Goal Confirmation",
        tool_name="workflow_start -> goal_confirmed",
        description="Clarify the feature goal and choose the feature_name",
    ),
    WorkflowStep(
        step_number=2,
        stage="requirements",
        name="Requirements Gathering",
        tool_name="requirements_confirmed",
        description="Write requirements in EARS format",
        deliverable="requirements.md",
    ),
    WorkflowStep(
        step_number=3,
        stage="design",
        name="Design Documentation",
        tool_name="design_confirmed",
        description="Write the technical design from the requirements",
        deliverable="design.md",
    ),
    WorkflowStep(
        step_number=4,
        stage="tasks",
        name="Task Planning",
        tool_name="tasks_confirmed",
        description="Break the design into a checklist of development tasks",
        deliverable="tasks.md",
    ),
    WorkflowStep(
        step_number=5,
        stage="execution",
        name="Task Execution",
        tool_name="execute_start -> update_status",
        description="Work through the checklist and record progress",
    ),
]


def workflow_step(stage: str) -> WorkflowStep:
    return WORKFLOW_STEPS[stage_index(normalize_stage(stage))]
