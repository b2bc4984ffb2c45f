"""
Task Transaction Scripts

Every task mutation follows the same order:

1. load the task and compute the actor's capability, rejecting forbidden
   requests before anything is written;
2. reconcile the requested progress/status pair;
3. write the task and, for a subtask whose status changed, its parent's
   recomputed aggregate, all in a single commit;
4. push the result to Google Calendar. Sync runs after the commit and can
   only add warnings to the result, never undo the mutation.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlmodel import Session, col, or_, select

from app.core.config import settings
from app.core.exceptions import Forbidden, ForbiddenReason, InvalidTaskData, InvalidTaskHierarchy, NotFound
from app.core.logging import get_logger
from app.models.activity import Activity, ActivityType
from app.models.base import utcnow
from app.models.event import Event
from app.models.task import Task, TaskCollaborator, TaskStatus, TaskTeamMember, TaskType
from app.models.team import Team, TeamMember, TeamMemberRole
from app.models.user import User
from app.schemas.task import TaskCreate, TaskUpdate, validate_date_range, validate_people_for_type
from app.services.calendar_codec import TASK_SUMMARY_PREFIX
from app.services.calendar_sync import auto_sync_task, delete_synced_task
from app.services.google_calendar import CalendarService
from app.services.notifications import NotificationBus, TaskDeleted
from app.services.permissions import ActorCapability, can_view_task
from app.services.progress import RequestedUpdate, TaskState, reconcile_single_task, recompute_parent_aggregate

logger = get_logger(__name__)

# Columns that cannot be cleared by sending null in a partial update
_NON_NULLABLE_FIELDS = ("title", "priority", "task_type", "all_day")


@dataclass
class TaskMutationResult:
    task: Task
    warnings: List[str] = field(default_factory=list)


# ----------------------------------------------------------------------
# Lookups
# ----------------------------------------------------------------------


def get_team_role(db: Session, user_id: str, team_id: Optional[str]) -> Optional[TeamMemberRole]:
    """The user's role in the task's team, or None when the task has no team or the user is not in it."""
    if not team_id:
        return None
    membership = db.exec(
        select(TeamMember).where(TeamMember.user_id == user_id, TeamMember.team_id == team_id)
    ).first()
    return TeamMemberRole(membership.role) if membership else None


def _get_task_or_404(db: Session, task_id: int) -> Task:
    task = db.get(Task, task_id)
    if not task:
        raise NotFound("Task not found")
    return task


def _require_users(db: Session, user_ids: List[str], label: str) -> None:
    for user_id in user_ids:
        if db.get(User, user_id) is None:
            raise NotFound(f"{label} not found")


def _has_subtasks(db: Session, task_id: int) -> bool:
    return db.exec(select(Task.id).where(Task.parent_id == task_id)).first() is not None


def capability_for(db: Session, actor: User, task: Task) -> ActorCapability:
    return ActorCapability.for_task(actor, task, get_team_role(db, actor.id, task.team_id))


def _log_activity(db: Session, activity_type: ActivityType, actor: User, task_id: int, description: str, **metadata: Any) -> None:
    db.add(
        Activity(
            type=activity_type,
            description=description,
            user_id=actor.id,
            entity_id=task_id,
            entity_type="task",
            metadata_json=metadata or None,
        )
    )


# ----------------------------------------------------------------------
# Transaction steps
# ----------------------------------------------------------------------


def _replace_people(task: Task, team_member_ids: Optional[List[str]], collaborator_ids: Optional[List[str]]) -> None:
    if team_member_ids is not None:
        kept = [member for member in task.team_members if member.user_id in team_member_ids]
        existing = {member.user_id for member in kept}
        task.team_members = kept + [
            TaskTeamMember(user_id=user_id) for user_id in dict.fromkeys(team_member_ids) if user_id not in existing
        ]
    if collaborator_ids is not None:
        kept = [collaborator for collaborator in task.collaborators if collaborator.user_id in collaborator_ids]
        existing = {collaborator.user_id for collaborator in kept}
        task.collaborators = kept + [
            TaskCollaborator(user_id=user_id) for user_id in dict.fromkeys(collaborator_ids) if user_id not in existing
        ]


def update_child(
    db: Session,
    task: Task,
    fields: Dict[str, Any],
    state: TaskState,
    team_member_ids: Optional[List[str]] = None,
    collaborator_ids: Optional[List[str]] = None,
) -> Task:
    """First write of an update: the task's own fields plus its reconciled status/progress."""
    for key, value in fields.items():
        setattr(task, key, value)
    task.status = state.status
    task.progress_percentage = state.progress_percentage
    _replace_people(task, team_member_ids, collaborator_ids)
    task.updated_at = utcnow()
    db.add(task)
    return task


def recompute_and_update_parent_if_needed(db: Session, parent_id: int) -> Optional[Task]:
    """
    Second write of an update: refresh the parent's aggregate from its direct
    subtasks. Returns the parent when it was changed.
    """
    db.flush()
    parent = db.get(Task, parent_id)
    if parent is None:
        return None

    child_statuses = db.exec(select(Task.status).where(Task.parent_id == parent_id)).all()
    aggregate = recompute_parent_aggregate(child_statuses)
    if aggregate is None:
        return None

    parent.progress_percentage = aggregate.progress_percentage
    if aggregate.status is not None:
        parent.status = aggregate.status
    parent.updated_at = utcnow()
    db.add(parent)
    logger.info(
        "task.parent.recomputed",
        extra={
            "task_id": parent_id,
            "progress_percentage": aggregate.progress_percentage,
            "status": parent.status,
        },
    )
    return parent


def _resolve_dates(task: Task, fields: Dict[str, Any]) -> None:
    """
    Merge start/due dates from a partial update with the stored ones.

    A start date that only mirrored the old due date follows the due date
    (including being cleared with it); an independently chosen start date is
    kept. A task with a due date always ends up with a start date.
    """
    if "start_date" not in fields and "due_date" not in fields:
        return

    old_start, old_due = task.start_date, task.due_date
    due = fields["due_date"] if "due_date" in fields else old_due

    if "start_date" in fields:
        start = fields["start_date"]
    elif due is None:
        start = None if old_start == old_due else old_start
    elif old_start is None or old_start == old_due:
        start = due
    else:
        start = old_start

    if start is None and due is not None:
        start = due

    try:
        validate_date_range(start, due)
    except ValueError as exc:
        raise InvalidTaskData(str(exc)) from exc
    fields["start_date"] = start
    fields["due_date"] = due


# ----------------------------------------------------------------------
# Operations
# ----------------------------------------------------------------------


def create_task(db: Session, actor: User, payload: TaskCreate, calendar: CalendarService) -> TaskMutationResult:
    """
    Create a task, or a subtask when `parent_id` is given.

    The assignee and assigning user default to the actor. Adding a subtask
    refreshes the parent's aggregate in the same commit.
    """
    assignee_id = payload.assignee_id or actor.id
    _require_users(db, [assignee_id], "Assignee")
    _require_users(db, payload.team_member_ids, "Team member")
    _require_users(db, payload.collaborator_ids, "Collaborator")

    team_id = payload.team_id
    parent = None
    if payload.parent_id is not None:
        parent = db.get(Task, payload.parent_id)
        if parent is None:
            raise NotFound("Parent task not found")
        if parent.parent_id is not None:
            raise InvalidTaskHierarchy("A subtask cannot have subtasks of its own")
        if not capability_for(db, actor, parent).can_edit:
            raise Forbidden(ForbiddenReason.EDIT_FORBIDDEN)
        team_id = team_id or parent.team_id
    if team_id and db.get(Team, team_id) is None:
        raise NotFound("Team not found")

    # The creator may set the initial status; completion still needs the assignee or an admin
    capability = ActorCapability(
        actor_id=actor.id,
        role=actor.role,
        is_creator=True,
        is_assignee=assignee_id == actor.id,
        can_edit=True,
        can_delete=True,
        can_change_status=True,
    )
    state = reconcile_single_task(
        TaskState(status=TaskStatus.TODO, progress_percentage=0),
        RequestedUpdate(progress_percentage=payload.progress_percentage, status=payload.status),
        capability,
    )

    task = Task(
        title=payload.title,
        description=payload.description,
        status=state.status,
        priority=payload.priority,
        progress_percentage=state.progress_percentage,
        task_type=payload.task_type,
        start_date=payload.start_date or payload.due_date,
        due_date=payload.due_date,
        all_day=payload.all_day,
        location=payload.location,
        meeting_link=payload.meeting_link,
        recurrence=payload.recurrence,
        parent_id=payload.parent_id,
        assignee_id=assignee_id,
        creator_id=actor.id,
        assigned_by_id=payload.assigned_by_id or actor.id,
        team_id=team_id,
    )
    _replace_people(task, payload.team_member_ids, payload.collaborator_ids)

    try:
        db.add(task)
        db.flush()
        if parent is not None:
            parent = recompute_and_update_parent_if_needed(db, parent.id)
        _log_activity(
            db, ActivityType.TASK_CREATED, actor, task.id, f'Created task "{task.title}"',
            task_type=task.task_type, parent_id=task.parent_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(task)
    logger.info("task.created", extra={"task_id": task.id, "user_id": actor.id})

    warnings = auto_sync_task(db, calendar, task, actor.id)
    if parent is not None:
        warnings += auto_sync_task(db, calendar, parent, actor.id)
    return TaskMutationResult(task=task, warnings=warnings)


def update_task(
    db: Session, actor: User, task_id: int, payload: TaskUpdate, calendar: CalendarService
) -> TaskMutationResult:
    task = _get_task_or_404(db, task_id)

    # (1) permissions
    capability = capability_for(db, actor, task)
    if not capability.can_edit:
        raise Forbidden(ForbiddenReason.EDIT_FORBIDDEN)

    fields = payload.model_dump(exclude_unset=True)
    for key in _NON_NULLABLE_FIELDS:
        if key in fields and fields[key] is None:
            del fields[key]
    team_member_ids = fields.pop("team_member_ids", None)
    collaborator_ids = fields.pop("collaborator_ids", None)
    requested = RequestedUpdate(
        progress_percentage=fields.pop("progress_percentage", None),
        status=fields.pop("status", None),
    )

    if (requested.status is not None or requested.progress_percentage is not None) and _has_subtasks(db, task.id):
        raise InvalidTaskHierarchy("Progress and status of a task with subtasks are derived from its subtasks")

    # (2) reconciliation
    state = reconcile_single_task(
        TaskState(status=TaskStatus(task.status), progress_percentage=task.progress_percentage),
        requested,
        capability,
    )

    _resolve_dates(task, fields)
    if fields.get("assignee_id"):
        _require_users(db, [fields["assignee_id"]], "Assignee")
    if "task_type" in fields:
        team_member_ids = team_member_ids if team_member_ids is not None else []
        collaborator_ids = collaborator_ids if collaborator_ids is not None else []
    if team_member_ids is not None or collaborator_ids is not None:
        _require_users(db, (team_member_ids or []) + (collaborator_ids or []), "User")
        try:
            validate_people_for_type(
                TaskType(fields.get("task_type", task.task_type)),
                team_member_ids if team_member_ids is not None else [m.user_id for m in task.team_members],
                collaborator_ids if collaborator_ids is not None else [c.user_id for c in task.collaborators],
            )
        except ValueError as exc:
            raise InvalidTaskData(str(exc)) from exc

    previous_status = task.status
    recompute_parent = requested.status is not None or (
        settings.RECOMPUTE_PARENT_ON_PROGRESS and requested.progress_percentage is not None
    )

    # (3) one transaction for the task and its parent
    parent = None
    try:
        update_child(db, task, fields, state, team_member_ids, collaborator_ids)
        if task.parent_id is not None and recompute_parent:
            parent = recompute_and_update_parent_if_needed(db, task.parent_id)
        _log_activity(
            db, ActivityType.TASK_UPDATED, actor, task.id, f'Updated task "{task.title}"',
            fields=sorted(payload.model_fields_set),
            previous_status=previous_status,
            status=state.status,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(task)
    logger.info("task.updated", extra={"task_id": task.id, "user_id": actor.id, "status": task.status})

    # (4) calendar sync, after commit
    warnings = auto_sync_task(db, calendar, task, actor.id)
    if parent is not None:
        warnings += auto_sync_task(db, calendar, parent, actor.id)
    return TaskMutationResult(task=task, warnings=warnings)


def delete_task(
    db: Session, actor: User, task_id: int, calendar: CalendarService, bus: NotificationBus
) -> List[str]:
    """
    Delete a task (and its subtasks), returning calendar warnings.

    Order: external calendar events first, best-effort; then the task; then
    the actor's local event records that projected it. A TaskDeleted event is
    published once everything is committed.
    """
    task = _get_task_or_404(db, task_id)
    if not capability_for(db, actor, task).can_delete:
        raise Forbidden(ForbiddenReason.DELETE_FORBIDDEN)

    subtasks = db.exec(select(Task).where(Task.parent_id == task_id)).all()
    doomed = list(subtasks) + [task]
    title = task.title
    parent_id = task.parent_id
    external_ids = {t.google_calendar_event_id for t in doomed if t.google_calendar_event_id}

    warnings: List[str] = []
    for doomed_task in doomed:
        warnings += delete_synced_task(db, calendar, doomed_task)

    parent = None
    try:
        doomed_ids = [t.id for t in doomed]
        for linked in db.exec(select(Event).where(col(Event.task_id).in_(doomed_ids))).all():
            linked.task_id = None
            db.add(linked)
        db.flush()

        # Subtasks come first so no row is left pointing at a deleted parent
        for doomed_task in doomed:
            db.delete(doomed_task)
            db.flush()

        projection_filter = Event.title == f"{TASK_SUMMARY_PREFIX}{title}"
        if external_ids:
            projection_filter = or_(projection_filter, col(Event.google_calendar_event_id).in_(external_ids))
        projections = db.exec(select(Event).where(Event.creator_id == actor.id, projection_filter)).all()
        for event in projections:
            db.delete(event)

        if parent_id is not None:
            parent = recompute_and_update_parent_if_needed(db, parent_id)

        _log_activity(
            db, ActivityType.TASK_DELETED, actor, task_id, f'Deleted task "{title}"',
            subtasks_deleted=len(subtasks), projections_deleted=len(projections),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("task.deleted", extra={"task_id": task_id, "user_id": actor.id})
    bus.publish(TaskDeleted(task_id=task_id, user_id=actor.id))

    if parent is not None:
        db.refresh(parent)
        warnings += auto_sync_task(db, calendar, parent, actor.id)
    return warnings


def get_task(db: Session, actor: User, task_id: int) -> Task:
    task = _get_task_or_404(db, task_id)
    is_team_member = any(member.user_id == actor.id for member in task.team_members)
    is_collaborator = any(collaborator.user_id == actor.id for collaborator in task.collaborators)
    if not can_view_task(
        actor.role,
        task.creator_id,
        task.assignee_id,
        actor.id,
        is_team_member,
        is_collaborator,
        get_team_role(db, actor.id, task.team_id),
    ):
        raise Forbidden(ForbiddenReason.VIEW_FORBIDDEN)
    return task


def list_subtasks(db: Session, actor: User, task_id: int) -> List[Task]:
    get_task(db, actor, task_id)
    statement = select(Task).where(Task.parent_id == task_id).order_by(col(Task.created_at), col(Task.id))
    return list(db.exec(statement).all())


def _user_match(search: str):
    pattern = f"%{search}%"
    return select(User.id).where(
        or_(
            col(User.name).ilike(pattern),
            col(User.email).ilike(pattern),
            col(User.first_name).ilike(pattern),
            col(User.last_name).ilike(pattern),
        )
    )


def list_tasks(
    db: Session,
    actor: User,
    status: Optional[List[TaskStatus]] = None,
    priority: Optional[str] = None,
    assignee_id: Optional[str] = None,
    team_id: Optional[str] = None,
    parent_id: Optional[int] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[Task]:
    """
    Tasks visible to the actor, newest first.

    Admins see every task. Everyone else sees tasks they created, are
    assigned to, work on as team member or collaborator, or that belong to
    one of their teams.
    """
    statement = select(Task)

    if not actor.is_privileged:
        team_ids = select(TeamMember.team_id).where(TeamMember.user_id == actor.id)
        member_task_ids = select(TaskTeamMember.task_id).where(TaskTeamMember.user_id == actor.id)
        collaborator_task_ids = select(TaskCollaborator.task_id).where(TaskCollaborator.user_id == actor.id)
        statement = statement.where(
            or_(
                Task.creator_id == actor.id,
                Task.assignee_id == actor.id,
                col(Task.team_id).in_(team_ids),
                col(Task.id).in_(member_task_ids),
                col(Task.id).in_(collaborator_task_ids),
            )
        )

    if status:
        statement = statement.where(col(Task.status).in_([TaskStatus(s).value for s in status]))
    if priority:
        statement = statement.where(Task.priority == priority)
    if assignee_id:
        statement = statement.where(Task.assignee_id == assignee_id)
    if team_id:
        statement = statement.where(Task.team_id == team_id)
    if parent_id is not None:
        statement = statement.where(Task.parent_id == parent_id)
    if search:
        pattern = f"%{search}%"
        people = _user_match(search)
        statement = statement.where(
            or_(
                col(Task.title).ilike(pattern),
                col(Task.description).ilike(pattern),
                col(Task.assignee_id).in_(people),
                col(Task.creator_id).in_(people),
            )
        )

    statement = statement.order_by(col(Task.created_at).desc()).offset(skip).limit(min(limit, 100))
    return list(db.exec(statement).all())
