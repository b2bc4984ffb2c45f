"""
Progress-Status Reconciliation Module

Pure rules keeping a task's status and progress percentage consistent:

- `reconcile_single_task` turns a requested update into the pair to persist,
  given what the acting user is allowed to do.
- `recompute_parent_aggregate` derives a parent task's progress and status
  from the statuses of its direct subtasks.

Nothing here touches the database; the transaction scripts in
`app.services.tasks` load the inputs and write the outputs.
"""
import math
from dataclasses import dataclass
from typing import Iterable, Optional

from app.core.exceptions import Forbidden, ForbiddenReason
from app.models.task import TaskStatus
from app.services.permissions import ActorCapability

# Highest progress a user who is neither the assignee nor an admin may report
NON_ASSIGNEE_PROGRESS_CAP = 90

# Contribution of each subtask status to its parent's progress.
# CANCELLED subtasks are left out of the aggregate entirely.
STATUS_WEIGHTS = {
    TaskStatus.COMPLETED: 100,
    TaskStatus.IN_REVIEW: 90,
    TaskStatus.IN_PROGRESS: 50,
    TaskStatus.TODO: 0,
}

PARENT_REVIEW_THRESHOLD = 75

_STARTED_STATUSES = (TaskStatus.IN_PROGRESS, TaskStatus.IN_REVIEW, TaskStatus.COMPLETED)


@dataclass(frozen=True)
class TaskState:
    status: TaskStatus
    progress_percentage: int


@dataclass(frozen=True)
class RequestedUpdate:
    progress_percentage: Optional[int] = None
    status: Optional[TaskStatus] = None


@dataclass(frozen=True)
class ParentAggregate:
    progress_percentage: int
    # None means "leave the parent's status as it is"
    status: Optional[TaskStatus]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def derive_status_from_progress(progress: int, current: TaskStatus, capable: bool) -> TaskStatus:
    """First matching threshold wins; 0% never forces a task back to TODO."""
    if progress == 100 and capable:
        return TaskStatus.COMPLETED
    if progress >= NON_ASSIGNEE_PROGRESS_CAP:
        return TaskStatus.IN_REVIEW
    if progress > 0:
        return TaskStatus.IN_PROGRESS
    return current


def reconcile_single_task(
    existing: TaskState,
    requested: RequestedUpdate,
    capability: ActorCapability,
) -> TaskState:
    """
    Compute the status/progress pair to persist for one task.

    Raises:
        Forbidden(STATUS_CHANGE_FORBIDDEN): an explicit status change by an
            actor lacking the status-change capability.
        Forbidden(COMPLETION_REQUIRES_ASSIGNEE): an explicit COMPLETED from
            someone who is neither the assignee nor an admin.
    """
    capable = capability.is_assignee_or_admin
    status = requested.status
    progress = requested.progress_percentage

    if status is not None and status != existing.status and not capability.can_change_status:
        raise Forbidden(ForbiddenReason.STATUS_CHANGE_FORBIDDEN)

    if not capable:
        if status == TaskStatus.COMPLETED:
            raise Forbidden(ForbiddenReason.COMPLETION_REQUIRES_ASSIGNEE)
        if progress is not None and progress > NON_ASSIGNEE_PROGRESS_CAP:
            progress = NON_ASSIGNEE_PROGRESS_CAP

    if status is not None:
        # Explicit status wins over anything derived from progress
        if progress is None:
            if status == TaskStatus.COMPLETED:
                progress = 100
            elif status == TaskStatus.TODO:
                progress = 0
            else:
                progress = existing.progress_percentage
        return TaskState(status=status, progress_percentage=progress)

    if progress is not None:
        return TaskState(
            status=derive_status_from_progress(progress, existing.status, capable),
            progress_percentage=progress,
        )

    return existing


def recompute_parent_aggregate(child_statuses: Iterable[TaskStatus]) -> Optional[ParentAggregate]:
    """
    Aggregate the statuses of a parent's direct subtasks.

    Returns None when no subtask counts toward the aggregate (no children, or
    every child CANCELLED); the parent is then left untouched.
    """
    counted = [TaskStatus(status) for status in child_statuses if TaskStatus(status) in STATUS_WEIGHTS]
    if not counted:
        return None

    mean = sum(STATUS_WEIGHTS[status] for status in counted) / len(counted)
    progress = round_half_up(mean)

    if all(status == TaskStatus.COMPLETED for status in counted):
        return ParentAggregate(progress_percentage=100, status=TaskStatus.COMPLETED)
    if mean >= PARENT_REVIEW_THRESHOLD:
        return ParentAggregate(progress_percentage=progress, status=TaskStatus.IN_REVIEW)
    if any(status in _STARTED_STATUSES for status in counted):
        return ParentAggregate(progress_percentage=progress, status=TaskStatus.IN_PROGRESS)
    return ParentAggregate(progress_percentage=progress, status=None)
