"""
Workflow pipeline package.

This package contains the orchestration core of the ambient visual workflow:
- Stage controller driving transitions between the seven stages
- Restoration of the live project model from persisted snapshots
- Validation gates, generation job tracking and persistence policies
- Error handling shared by every component
"""

from .error_handler import WorkflowError, ErrorCode, should_retry

__all__ = [
    "WorkflowError",
    "ErrorCode",
    "should_retry",
]
