"""Checklist parsing for tasks documents.

Recognizes checkbox task lines in four list notations, rebuilds the
indentation hierarchy and derives progress metrics. Parsing never fails:
lines that are not checklist items are ignored.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Tuple

from .models import TodoFormat, TodoItem, TodoParseResult, TodoPriority


_PRIORITY = r"!{1,2}|[HML]"
_CHECKBOX = r"\s*\[(?P<mark>[ xX])\]\s*(?:\[(?P<priority>" + _PRIORITY + r")\])?\s*(?P<text>.+)$"


def _matcher(marker: str) -> Pattern[str]:
    return re.compile(r"^(?P<indent>\s*)" + marker + _CHECKBOX, re.IGNORECASE)


@dataclass(slots=True)
class FormatValidation:
    """Advisory diagnostics for a tasks document."""

    is_valid: bool
    issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "issues": list(self.issues),
            "suggestions": list(self.suggestions),
        }


class TodoParser:
    """Parse markdown checklists into TodoItems."""

    # Tried in order; the first matcher that accepts a line wins.
    MATCHERS: Tuple[Tuple[TodoFormat, Pattern[str]], ...] = (
        (TodoFormat.DASH_CHECKBOX, _matcher(r"-")),
        (TodoFormat.ASTERISK_CHECKBOX, _matcher(r"\*")),
        (TodoFormat.PLUS_CHECKBOX, _matcher(r"\+")),
        (TodoFormat.NUMBERED_CHECKBOX, _matcher(r"\d+\.")),
    )

    _TRAILING_PRIORITY = re.compile(r"\s*\[(?P<priority>" + _PRIORITY + r")\]\s*$", re.IGNORECASE)
    _POTENTIAL_TODO = re.compile(r"^\s*(?:[-*+]|\d+\.)\s*\[")
    _LEADING_WHITESPACE = re.compile(r"^(\s*)")

    UPCOMING_LIMIT = 3

    @classmethod
    def parse(cls, content: str) -> TodoParseResult:
        """Parse every checklist item in ``content``."""
        items: List[TodoItem] = []
        for line_number, line in enumerate(content.splitlines(), start=1):
            item = cls.parse_line(line, line_number)
            if item:
                items.append(item)

        cls._build_hierarchy(items)

        total = len(items)
        completed = sum(1 for item in items if item.completed)
        incomplete = [item for item in items if not item.completed]

        return TodoParseResult(
            items=items,
            total=total,
            completed=completed,
            percentage=completion_percentage(completed, total),
            current_task=incomplete[0] if incomplete else None,
            next_tasks=incomplete[1:1 + cls.UPCOMING_LIMIT],
            by_priority={
                priority: [item for item in items if item.priority is priority]
                for priority in TodoPriority
            },
        )

    @classmethod
    def parse_line(cls, line: str, line_number: int) -> Optional[TodoItem]:
        """Parse a single line, returning None when it is not a checklist item."""
        for todo_format, pattern in cls.MATCHERS:
            match = pattern.match(line)
            if not match:
                continue

            text = match.group("text").strip()
            priority_mark = match.group("priority")
            if priority_mark is None:
                trailing = cls._TRAILING_PRIORITY.search(text)
                if trailing and text[: trailing.start()].strip():
                    priority_mark = trailing.group("priority")
                    text = text[: trailing.start()].strip()
            if not text:
                return None

            return TodoItem(
                id=f"todo_{line_number}_{uuid.uuid4().hex[:8]}",
                text=text,
                completed=match.group("mark").lower() == "x",
                line_number=line_number,
                indent_level=len(match.group("indent")) // 2,
                priority=parse_priority(priority_mark),
                format=todo_format,
            )
        return None

    @staticmethod
    def _build_hierarchy(items: List[TodoItem]) -> None:
        """Link items to their parents based on indentation."""
        stack: List[TodoItem] = []
        for item in items:
            while stack and stack[-1].indent_level >= item.indent_level:
                stack.pop()
            if stack:
                parent = stack[-1]
                item.parent_id = parent.id
                parent.children.append(item.id)
            stack.append(item)

    @classmethod
    def validate_format(cls, content: str) -> FormatValidation:
        """Flag malformed checklist markers and odd indentation."""
        issues: List[str] = []
        suggestions: List[str] = []

        for line_number, line in enumerate(content.splitlines(), start=1):
            recognized = cls.parse_line(line, line_number) is not None

            if cls._POTENTIAL_TODO.match(line) and not recognized:
                issues.append(f"Line {line_number}: Malformed TODO format")
                suggestions.append(f'Line {line_number}: Use standard format like "- [ ] task description"')
                continue

            if recognized:
                indent = cls._LEADING_WHITESPACE.match(line).group(1)
                if len(indent) % 2 != 0:
                    issues.append(
                        f"Line {line_number}: Inconsistent indentation (should be multiple of 2 spaces)"
                    )
                    suggestions.append(f"Line {line_number}: Use 2, 4, 6... spaces for indentation")

        return FormatValidation(is_valid=not issues, issues=issues, suggestions=suggestions)

    @staticmethod
    def progress_details(result: TodoParseResult) -> Dict[str, Any]:
        """Summarize remaining work and the current task."""
        high_remaining = sum(
            1 for item in result.by_priority.get(TodoPriority.HIGH, []) if not item.completed
        )
        details: Dict[str, Any] = {
            "completion_rate": (result.completed / result.total) if result.total else 0.0,
            "estimated_remaining_tasks": result.total - result.completed,
            "high_priority_remaining": high_remaining,
            "current_task_details": None,
        }
        current = result.current_task
        if current:
            details["current_task_details"] = {
                "text": current.text,
                "priority": current.priority.value,
                "has_subtasks": bool(current.children),
                "position": result.items.index(current) + 1,
            }
        return details


def parse_priority(mark: Optional[str]) -> TodoPriority:
    if not mark:
        return TodoPriority.MEDIUM
    mark = mark.upper()
    if mark in ("!", "!!", "H"):
        return TodoPriority.HIGH
    if mark == "L":
        return TodoPriority.LOW
    return TodoPriority.MEDIUM


def completion_percentage(completed: int, total: int) -> int:
    """Percentage rounded half-up; 0 for an empty checklist."""
    if total <= 0:
        return 0
    return (completed * 200 + total) // (2 * total)
