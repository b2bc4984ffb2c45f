"""
Task Permission Module

Role/relationship predicates deciding who may view, edit, delete or change the
status of a task, and the ActorCapability value object computed once per
request from them. Everything here is pure: callers load the task, the actor
and the actor's team role, then pass plain values in.
"""
from dataclasses import dataclass
from typing import Optional

from app.models.task import Task, TaskType
from app.models.team import TeamMemberRole
from app.models.user import User, UserRole


def is_team_leader(team_role: Optional[TeamMemberRole]) -> bool:
    return team_role == TeamMemberRole.LEADER


def can_edit_task(
    role: UserRole,
    creator_id: str,
    assignee_id: Optional[str],
    actor_id: str,
    team_role: Optional[TeamMemberRole] = None,
) -> bool:
    """Admin, creator, assignee, or a LEADER who leads the task's team."""
    if role == UserRole.ADMIN:
        return True
    if creator_id == actor_id:
        return True
    if assignee_id is not None and assignee_id == actor_id:
        return True
    return role == UserRole.LEADER and is_team_leader(team_role)


def can_delete_task(
    role: UserRole,
    creator_id: str,
    actor_id: str,
    assigned_by_id: Optional[str] = None,
    team_role: Optional[TeamMemberRole] = None,
) -> bool:
    """Admin, creator, the LEADER who assigned it, or a LEADER leading the task's team."""
    if role == UserRole.ADMIN:
        return True
    if creator_id == actor_id:
        return True
    if role == UserRole.LEADER and assigned_by_id == actor_id:
        return True
    return role == UserRole.LEADER and is_team_leader(team_role)


def can_change_task_status(
    role: UserRole,
    creator_id: str,
    assignee_id: Optional[str],
    actor_id: str,
    task_type: TaskType,
    is_team_member: bool,
    is_collaborator: bool,
    team_role: Optional[TeamMemberRole] = None,
) -> bool:
    """
    Stricter than editing: team members and collaborators cannot move a task
    through its workflow, they comment instead.
    """
    if role == UserRole.ADMIN:
        return True
    if creator_id == actor_id:
        return True
    if role == UserRole.LEADER and is_team_leader(team_role):
        return True
    # Direct assignee of an INDIVIDUAL task
    if (
        task_type == TaskType.INDIVIDUAL
        and assignee_id == actor_id
        and not is_team_member
        and not is_collaborator
    ):
        return True
    return False


def can_view_task(
    role: UserRole,
    creator_id: str,
    assignee_id: Optional[str],
    actor_id: str,
    is_team_member: bool,
    is_collaborator: bool,
    team_role: Optional[TeamMemberRole] = None,
) -> bool:
    """Anyone involved in the task, any member of its team, or an admin."""
    if role == UserRole.ADMIN:
        return True
    if actor_id in (creator_id, assignee_id):
        return True
    return is_team_member or is_collaborator or team_role is not None


@dataclass(frozen=True)
class ActorCapability:
    """What the acting user may do to one task."""
    actor_id: str
    role: UserRole
    is_creator: bool = False
    is_assignee: bool = False
    is_team_member: bool = False
    is_collaborator: bool = False
    team_role: Optional[TeamMemberRole] = None
    can_edit: bool = False
    can_delete: bool = False
    can_change_status: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_assignee_or_admin(self) -> bool:
        return self.is_assignee or self.is_admin

    @property
    def can_view(self) -> bool:
        return (
            self.is_admin
            or self.is_creator
            or self.is_assignee
            or self.is_team_member
            or self.is_collaborator
            or self.team_role is not None
        )

    @classmethod
    def for_task(cls, actor: User, task: Task, team_role: Optional[TeamMemberRole] = None) -> "ActorCapability":
        is_team_member = any(member.user_id == actor.id for member in task.team_members)
        is_collaborator = any(collaborator.user_id == actor.id for collaborator in task.collaborators)
        return cls(
            actor_id=actor.id,
            role=actor.role,
            is_creator=task.creator_id == actor.id,
            is_assignee=task.assignee_id is not None and task.assignee_id == actor.id,
            is_team_member=is_team_member,
            is_collaborator=is_collaborator,
            team_role=team_role,
            can_edit=can_edit_task(actor.role, task.creator_id, task.assignee_id, actor.id, team_role),
            can_delete=can_delete_task(actor.role, task.creator_id, actor.id, task.assigned_by_id, team_role),
            can_change_status=can_change_task_status(
                actor.role,
                task.creator_id,
                task.assignee_id,
                actor.id,
                task.task_type,
                is_team_member,
                is_collaborator,
                team_role,
            ),
        )
