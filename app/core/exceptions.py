"""
Domain Exceptions Module

Errors raised by the task services. Each carries the HTTP status code the API
layer answers with, so services stay free of FastAPI imports.
"""
from enum import Enum
from typing import Optional


class ForbiddenReason(str, Enum):
    """Why a task mutation was rejected."""
    EDIT_FORBIDDEN = "edit_forbidden"
    STATUS_CHANGE_FORBIDDEN = "status_change_forbidden"
    DELETE_FORBIDDEN = "delete_forbidden"
    VIEW_FORBIDDEN = "view_forbidden"
    COMPLETION_REQUIRES_ASSIGNEE = "completion_requires_assignee"


FORBIDDEN_MESSAGES = {
    ForbiddenReason.EDIT_FORBIDDEN: "You do not have permission to edit this task.",
    ForbiddenReason.STATUS_CHANGE_FORBIDDEN: (
        "You cannot change the status of this task. "
        "Please add a comment to communicate with the task owner."
    ),
    ForbiddenReason.DELETE_FORBIDDEN: "You do not have permission to delete this task.",
    ForbiddenReason.VIEW_FORBIDDEN: "You do not have access to this task.",
    ForbiddenReason.COMPLETION_REQUIRES_ASSIGNEE: (
        "Only the assignee or an admin can mark this task as completed."
    ),
}


class TaskManagementError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class Forbidden(TaskManagementError):
    status_code = 403

    def __init__(self, reason: ForbiddenReason, detail: Optional[str] = None):
        super().__init__(detail or FORBIDDEN_MESSAGES[reason])
        self.reason = reason

    @property
    def code(self) -> str:  # type: ignore[override]
        return self.reason.value


class NotFound(TaskManagementError):
    status_code = 404
    code = "not_found"


class InvalidTaskHierarchy(TaskManagementError):
    """Raised when a subtask would be given children of its own."""
    status_code = 400
    code = "invalid_task_hierarchy"


class SyncNotAvailable(TaskManagementError):
    """Raised by explicit sync endpoints when settings forbid the requested direction."""
    status_code = 400
    code = "sync_not_available"


class ExternalSyncFailure(Exception):
    """
    Any failure talking to the external calendar.

    Never propagated out of a task mutation: the sync orchestrator catches it,
    logs it and turns it into a warning string.
    """


class InvalidTaskData(TaskManagementError):
    """Raised when a partial update would leave the task in an invalid state."""
    status_code = 400
    code = "invalid_task_data"
