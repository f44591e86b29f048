"""Response envelopes returned by the VibeSpec tools.

Every tool answers with ``{vibespec_format, type, data, metadata}``. Errors
use the same envelope with type ``error`` and ``data`` holding the message,
code and suggestion.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

import yaml

from .errors import VibeSpecError
from .models import utc_now

VIBESPEC_FORMAT = "v1"


class ContentType(str, Enum):
    SPEC_LIST = "spec_list"
    SPEC_DETAIL = "spec_detail"
    STATUS_UPDATE = "status_update"
    ARCHIVE_ACTION = "archive_action"
    WORKFLOW_STEP = "workflow_step"
    TASK_PROGRESS = "task_progress"
    ERROR = "error"


class InvalidResponseError(ValueError):
    """Raised when an envelope does not satisfy the response format."""

    def __init__(self, errors: List[str]):
        super().__init__(f"Invalid VibeSpec response: {'; '.join(errors)}")
        self.errors = errors


def validate_response(response: Dict[str, Any]) -> List[str]:
    """Return the problems with an envelope; empty when valid."""
    errors = []
    if response.get("vibespec_format") != VIBESPEC_FORMAT:
        errors.append(f"vibespec_format must be '{VIBESPEC_FORMAT}'")
    if response.get("type") not in {content_type.value for content_type in ContentType}:
        errors.append(f"Unknown content type: {response.get('type')}")
    if "data" not in response or response["data"] is None:
        errors.append("data is required")
    if response.get("type") == ContentType.ERROR.value:
        data = response.get("data") or {}
        for key in ("message", "code", "suggestion"):
            if not data.get(key):
                errors.append(f"error data requires '{key}'")
    return errors


def create_response(
    content_type: ContentType,
    data: Any,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {"timestamp": utc_now()}
    if session_id:
        metadata["session_id"] = session_id
    response = {
        "vibespec_format": VIBESPEC_FORMAT,
        "type": content_type.value,
        "data": data,
        "metadata": metadata,
    }
    errors = validate_response(response)
    if errors:
        raise InvalidResponseError(errors)
    return response


def create_success_response(
    content_type: ContentType,
    data: Any,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    return create_response(content_type, data, session_id)


def create_error_response(
    message: str,
    code: str,
    suggestion: str,
    context: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {"message": message, "code": code, "suggestion": suggestion}
    if context:
        data["context"] = context
    return create_response(ContentType.ERROR, data, session_id)


def error_response_from(
    error: Exception,
    *,
    fallback_code: str,
    fallback_suggestion: str,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Envelope for any failure; structured errors keep their own code and hint."""
    if isinstance(error, VibeSpecError):
        return create_error_response(
            error.message,
            error.code,
            error.suggestion,
            context=error.details or None,
            session_id=session_id,
        )
    return create_error_response(
        str(error) or type(error).__name__,
        fallback_code,
        fallback_suggestion,
        session_id=session_id,
    )


def is_error(response: Dict[str, Any]) -> bool:
    return response.get("type") == ContentType.ERROR.value


def render_yaml(response: Dict[str, Any]) -> str:
    """Serialize an envelope for the MCP transport."""
    return yaml.safe_dump(response, sort_keys=False, default_flow_style=False, allow_unicode=True, width=1000)
