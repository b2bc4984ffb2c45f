"""
Task Endpoints Module

CRUD endpoints for tasks and subtasks. All rules live in app.services.tasks;
these handlers only translate HTTP to service calls. Create and update
responses carry `sync_warnings` when Google Calendar could not be updated;
the mutation itself has succeeded either way.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from app.api import deps
from app.db.session import get_db
from app.models.task import TaskMutationRead, TaskPriority, TaskRead, TaskStatus
from app.models.user import User
from app.schemas.task import TaskCreate, TaskUpdate
from app.services import tasks as task_service
from app.services.google_calendar import CalendarService
from app.services.notifications import NotificationBus

router = APIRouter()


def _parse_statuses(status: Optional[str]) -> Optional[List[TaskStatus]]:
    if not status:
        return None
    try:
        return [TaskStatus(value.strip().upper()) for value in status.split(",") if value.strip()]
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid status filter: {status}")


def _mutation_response(result: task_service.TaskMutationResult) -> TaskMutationRead:
    return TaskMutationRead.model_validate(result.task, update={"sync_warnings": result.warnings})


@router.get("", response_model=List[TaskRead])
def list_tasks(
    skip: int = 0,
    limit: int = 100,
    status: Optional[str] = None,
    priority: Optional[TaskPriority] = None,
    assignee_id: Optional[str] = None,
    team_id: Optional[str] = None,
    parent_id: Optional[int] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """
    Retrieve a paginated list of tasks.

    Admins see all tasks. Other users see tasks they created, are assigned
    to, work on, or that belong to one of their teams. `status` accepts a
    comma-separated list.
    """
    return task_service.list_tasks(
        db,
        current_user,
        status=_parse_statuses(status),
        priority=priority,
        assignee_id=assignee_id,
        team_id=team_id,
        parent_id=parent_id,
        search=search,
        skip=skip,
        limit=limit,
    )


@router.get("/{task_id}", response_model=TaskRead)
def read_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    return task_service.get_task(db, current_user, task_id)


@router.post("", response_model=TaskMutationRead, status_code=201)
def create_task(
    task_in: TaskCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
    calendar: CalendarService = Depends(deps.get_calendar_service),
):
    """
    Create a new task. `parent_id` makes it a subtask of a top-level task.
    """
    result = task_service.create_task(db, current_user, task_in, calendar)
    return _mutation_response(result)


@router.patch("/{task_id}", response_model=TaskMutationRead)
def update_task(
    task_id: int,
    task_in: TaskUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
    calendar: CalendarService = Depends(deps.get_calendar_service),
):
    """
    Partially update a task.

    Progress and status are reconciled against the caller's permissions:
    anyone other than the assignee or an admin is capped at 90% and cannot
    complete the task. Changing the status of a subtask refreshes its
    parent's progress and status in the same transaction.

    Raises:
        403: edit, status-change or completion not allowed
        404: task or referenced user missing
    """
    result = task_service.update_task(db, current_user, task_id, task_in, calendar)
    return _mutation_response(result)


@router.delete("/{task_id}")
def delete_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
    calendar: CalendarService = Depends(deps.get_calendar_service),
    bus: NotificationBus = Depends(deps.get_bus),
):
    """
    Delete a task, its subtasks and their calendar projections.
    """
    warnings = task_service.delete_task(db, current_user, task_id, calendar, bus)
    return {"status": "success", "detail": "Task deleted", "sync_warnings": warnings}


@router.get("/{task_id}/subtasks", response_model=List[TaskRead])
def list_subtasks(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    return task_service.list_subtasks(db, current_user, task_id)


@router.post("/{task_id}/subtasks", response_model=TaskMutationRead, status_code=201)
def create_subtask(
    task_id: int,
    task_in: TaskCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
    calendar: CalendarService = Depends(deps.get_calendar_service),
):
    result = task_service.create_task(db, current_user, task_in.model_copy(update={"parent_id": task_id}), calendar)
    return _mutation_response(result)
