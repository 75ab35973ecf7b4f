"""
Error handling for the workflow orchestration core.

Provides structured errors with:
- Categorized error codes for every failure class
- User-friendly messages for surfacing in the editor
- Retry determination for transport failures
- Detailed context for diagnosis
"""

from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


class ErrorCode(Enum):
    """
    Enumeration of all error codes raised by the workflow core.

    Organized by category:
    - Validation: a stage gate is not satisfied
    - Persistence: a stage slice or settings write was rejected
    - Generation: a generation job or one of its items failed
    - Restoration: two saved snapshots disagree on a field
    - Model: an edit would break a ProjectModel invariant
    - Transport: the HTTP layer failed
    """

    # Validation
    STAGE_GATE_FAILED = "STAGE_GATE_FAILED"
    INVALID_STAGE = "INVALID_STAGE"

    # Persistence
    STAGE_SAVE_FAILED = "STAGE_SAVE_FAILED"
    SETTINGS_SAVE_FAILED = "SETTINGS_SAVE_FAILED"
    NO_PROJECT_LOADED = "NO_PROJECT_LOADED"

    # Generation
    FLOW_DESIGN_FAILED = "FLOW_DESIGN_FAILED"
    PROMPT_GENERATION_FAILED = "PROMPT_GENERATION_FAILED"
    IMAGE_GENERATION_FAILED = "IMAGE_GENERATION_FAILED"
    VIDEO_GENERATION_FAILED = "VIDEO_GENERATION_FAILED"
    AUDIO_GENERATION_FAILED = "AUDIO_GENERATION_FAILED"

    # Restoration
    RESTORATION_CONFLICT = "RESTORATION_CONFLICT"

    # Model integrity
    UNKNOWN_ENTITY = "UNKNOWN_ENTITY"
    CURRENT_VERSION_DELETE = "CURRENT_VERSION_DELETE"
    INHERITED_FRAME_READ_ONLY = "INHERITED_FRAME_READ_ONLY"
    FOREIGN_VERSION = "FOREIGN_VERSION"
    CONTINUITY_OVERLAP = "CONTINUITY_OVERLAP"

    # Transport
    API_ERROR = "API_ERROR"
    API_TIMEOUT = "API_TIMEOUT"
    API_UNREACHABLE = "API_UNREACHABLE"
    API_MALFORMED_RESPONSE = "API_MALFORMED_RESPONSE"


class WorkflowError(Exception):
    """
    Base exception for workflow errors.

    Provides structured error information including:
    - Error code for categorization
    - Detailed message for logging
    - Context dictionary for debugging
    - User-friendly message for the editor

    Example:
        >>> raise WorkflowError(
        ...     ErrorCode.STAGE_SAVE_FAILED,
        ...     "Failed to save atmosphere settings",
        ...     {"stage": 1}
        ... )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None
    ):
        """
        Initialize workflow error.

        Args:
            code: Error code from ErrorCode enum
            message: Detailed error message for logging
            details: Additional context (stage, ids, values)
            user_message: Optional override for user-friendly message
        """
        self.code = code
        self.message = message
        self.details = details or {}
        self._user_message = user_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for the UI layer.

        Returns:
            Dictionary with error information
        """
        return {
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details,
            "user_message": self.get_user_friendly_message()
        }

    def get_user_friendly_message(self) -> str:
        """
        Returns user-friendly error message.

        If a custom user message was provided, returns that.
        Otherwise, returns a predefined friendly message based on error code.
        """
        if self._user_message:
            return self._user_message

        friendly_messages = {
            ErrorCode.STAGE_GATE_FAILED: "Some requirements for this step are not met yet.",
            ErrorCode.INVALID_STAGE: "That step does not exist.",
            ErrorCode.STAGE_SAVE_FAILED: "Failed to save your progress. Please try again.",
            ErrorCode.SETTINGS_SAVE_FAILED: "Failed to save settings. Your changes are kept locally.",
            ErrorCode.NO_PROJECT_LOADED: "Cannot save - no video is loaded.",
            ErrorCode.FLOW_DESIGN_FAILED: "Failed to generate the flow design. Please try again.",
            ErrorCode.PROMPT_GENERATION_FAILED: "Failed to generate prompts. Please try again.",
            ErrorCode.IMAGE_GENERATION_FAILED: "Failed to generate image. Please try again.",
            ErrorCode.VIDEO_GENERATION_FAILED: "Failed to generate video. Please try again.",
            ErrorCode.AUDIO_GENERATION_FAILED: "Failed to generate audio. Please try again.",
            ErrorCode.RESTORATION_CONFLICT: "Saved data was reconciled.",
            ErrorCode.UNKNOWN_ENTITY: "That item no longer exists.",
            ErrorCode.CURRENT_VERSION_DELETE: "The selected version cannot be deleted.",
            ErrorCode.INHERITED_FRAME_READ_ONLY: "This start frame is inherited from the previous shot.",
            ErrorCode.FOREIGN_VERSION: "That version belongs to a different shot.",
            ErrorCode.CONTINUITY_OVERLAP: "A shot can only belong to one approved sequence.",
            ErrorCode.API_ERROR: "The server rejected the request. Please try again.",
            ErrorCode.API_TIMEOUT: "Request timed out. Please try again.",
            ErrorCode.API_UNREACHABLE: "Server unreachable. Please check your connection.",
            ErrorCode.API_MALFORMED_RESPONSE: "The server sent an unexpected response. Please try again.",
        }

        return friendly_messages.get(
            self.code,
            "An error occurred. Please try again."
        )

    def log_error(self) -> None:
        """
        Log error with appropriate level and context.

        Validation, model and restoration errors are warnings,
        retryable transport errors are warnings, everything else is an error.
        """
        log_data = {
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details
        }

        if self.code in (
            ErrorCode.STAGE_GATE_FAILED,
            ErrorCode.RESTORATION_CONFLICT,
            ErrorCode.UNKNOWN_ENTITY,
            ErrorCode.CURRENT_VERSION_DELETE,
            ErrorCode.INHERITED_FRAME_READ_ONLY,
            ErrorCode.FOREIGN_VERSION,
            ErrorCode.CONTINUITY_OVERLAP,
        ):
            logger.warning("workflow_client_error", **log_data)
        elif should_retry(self):
            logger.warning("workflow_retryable_error", **log_data)
        else:
            logger.error("workflow_error", **log_data)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationFailure(WorkflowError):
    """A stage gate is not satisfied; carries the unmet requirements."""

    def __init__(self, stage: int, unmet: List[str]):
        self.stage = stage
        self.unmet = list(unmet)
        super().__init__(
            ErrorCode.STAGE_GATE_FAILED,
            f"Stage {stage} requirements not met: {'; '.join(self.unmet)}",
            {"stage": stage, "unmet": self.unmet},
        )


class PersistenceFailure(WorkflowError):
    """
    A write was rejected or the server was unreachable.

    The stage transition is aborted and the model is left unchanged.
    """

    def __init__(
        self,
        target: str,
        message: str,
        status_code: Optional[int] = None,
        code: ErrorCode = ErrorCode.STAGE_SAVE_FAILED,
    ):
        self.target = target
        self.status_code = status_code
        details = {"target": target}
        if status_code:
            details["status_code"] = status_code
        super().__init__(code, message, details, user_message=message)


class GenerationFailure(WorkflowError):
    """A generation job (or one item of a batch) reported failure."""

    def __init__(
        self,
        job_key: str,
        message: str,
        item_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.IMAGE_GENERATION_FAILED,
    ):
        self.job_key = job_key
        self.item_id = item_id
        details = {"job_key": job_key}
        if item_id:
            details["item_id"] = item_id
        super().__init__(code, message, details, user_message=message)


class RestorationConflict(WorkflowError):
    """
    Two snapshots disagree on a field.

    Resolved deterministically by the restoration precedence rules; only logged.
    """

    def __init__(self, stage: int, field: str, live: Any, incoming: Any, resolution: str = "incoming"):
        self.stage = stage
        self.field = field
        super().__init__(
            ErrorCode.RESTORATION_CONFLICT,
            f"Stage {stage} snapshot disagrees with live model on '{field}'",
            {
                "stage": stage,
                "field": field,
                "live": live,
                "incoming": incoming,
                "resolution": resolution,
            },
        )


class ModelIntegrityError(WorkflowError):
    """An edit would break a ProjectModel invariant."""

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class ApiError(WorkflowError):
    """
    Error for transport failures.

    Maps HTTP status codes and network failures to error codes.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        path: Optional[str] = None,
        details: Optional[Dict] = None,
        code: Optional[ErrorCode] = None
    ):
        self.status_code = status_code
        error_details = details or {}
        if path:
            error_details["path"] = path
        if status_code:
            error_details["status_code"] = status_code
        if code is None:
            code = ErrorCode.API_ERROR if status_code else ErrorCode.API_UNREACHABLE
        super().__init__(code, message, error_details)


def should_retry(error: Exception) -> bool:
    """
    Determines if an error is transient and the action may be retried.

    Transient errors include:
    - Network timeouts and unreachable servers
    - Rate limiting (429) and server errors (5xx)

    Args:
        error: Exception to check

    Returns:
        True if error is transient, False otherwise

    Example:
        >>> should_retry(ApiError("busy", status_code=503))
        True
        >>> should_retry(ApiError("bad request", status_code=400))
        False
    """
    if isinstance(error, ApiError):
        if error.code == ErrorCode.API_MALFORMED_RESPONSE:
            return False
        if error.status_code is None:
            return True
        return error.status_code == 429 or error.status_code >= 500

    if isinstance(error, WorkflowError):
        return error.code in (ErrorCode.API_TIMEOUT, ErrorCode.API_UNREACHABLE)

    if isinstance(error, (TimeoutError, ConnectionError)):
        return True

    return False
