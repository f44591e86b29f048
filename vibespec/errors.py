"""Structured errors raised by the VibeSpec status subsystem.

Every error carries a machine-readable ``code``, a human ``message`` and a
``suggestion`` telling the caller how to recover. The tool layer renders these
three fields verbatim in its error envelopes.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class VibeSpecError(Exception):
    """Base class for all status subsystem failures."""

    code = "VIBESPEC_ERROR"
    default_suggestion = "Check the parameters and try again"

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion or self.default_suggestion
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
        }
        if self.details:
            data["details"] = dict(self.details)
        return data


class NotFoundError(VibeSpecError):
    """A project, session or deliverable does not exist."""

    code = "NOT_FOUND"
    default_suggestion = "Use 'list_specs' to see all available specs and their session ids"


class ParseError(VibeSpecError):
    """A structured document on disk could not be parsed."""

    code = "PARSE_ERROR"
    default_suggestion = "Check the YAML syntax of the file or restore it from a backup"


class WriteError(VibeSpecError):
    """A durable write failed; the previous file is left untouched."""

    code = "WRITE_ERROR"
    default_suggestion = "Check file permissions and disk space"


class AccessDeniedError(VibeSpecError):
    """The underlying filesystem refused access."""

    code = "PERMISSION_DENIED"
    default_suggestion = "Check file permissions"


class InvalidStageError(VibeSpecError):
    code = "INVALID_STAGE"
    default_suggestion = "Valid stages are: goal, requirements, design, tasks, execution"


class InvalidStatusError(VibeSpecError):
    code = "INVALID_STATUS"
    default_suggestion = "Valid statuses are: in_progress, completed, archived, paused"


class InvalidTaskCountError(VibeSpecError):
    code = "INVALID_TASK_COUNT"


class InvalidParametersError(VibeSpecError):
    code = "INVALID_PARAMETERS"
    default_suggestion = "Provide status, stage, task_completed, or notes to update"


class AlreadyArchivedError(VibeSpecError):
    code = "ALREADY_ARCHIVED"
    default_suggestion = "Use action 'restore' to reactivate this spec"


class NotArchivedError(VibeSpecError):
    code = "NOT_ARCHIVED"
    default_suggestion = "Only archived specs can be restored"


class FeatureNameMismatchError(VibeSpecError):
    code = "FEATURE_MISMATCH"
