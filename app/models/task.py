"""
Task Model Module

This module defines the Task model and its two junction tables:
TaskTeamMember (TEAM tasks) and TaskCollaborator (COLLABORATION tasks).

Tasks form a two-level tree through `parent_id`: a task with a parent is a
subtask and may not have children of its own. Once a task has subtasks its
progress and status are derived from them and never authored directly.
"""
from enum import Enum
from typing import Optional, List
from sqlmodel import SQLModel, Field, Relationship, AutoString
from datetime import datetime

from app.models.base import UTCDateTime, utcnow
from app.models.user import User, UserPublic


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TaskType(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    TEAM = "TEAM"
    COLLABORATION = "COLLABORATION"


class TaskTeamMember(SQLModel, table=True):
    """
    Junction table for TEAM tasks. Every row has role MEMBER; the task's
    creator acts as the leader.
    """
    __tablename__ = "task_team_members"

    task_id: int = Field(foreign_key="tasks.id", primary_key=True)
    user_id: str = Field(foreign_key="users.id", primary_key=True)
    role: str = Field(default="MEMBER")

    user: Optional[User] = Relationship()


class TaskCollaborator(SQLModel, table=True):
    """Junction table for COLLABORATION tasks."""
    __tablename__ = "task_collaborators"

    task_id: int = Field(foreign_key="tasks.id", primary_key=True)
    user_id: str = Field(foreign_key="users.id", primary_key=True)

    user: Optional[User] = Relationship()


class TaskBase(SQLModel):
    """
    Base Task model containing common fields.
    """
    # Basic task information
    title: str = Field(nullable=False)
    description: Optional[str] = None

    # Workflow state - status is derived from progress unless set explicitly
    status: TaskStatus = Field(default=TaskStatus.TODO, sa_type=AutoString)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, sa_type=AutoString)
    progress_percentage: int = Field(default=0, ge=0, le=100)
    task_type: TaskType = Field(default=TaskType.INDIVIDUAL, sa_type=AutoString)

    # Scheduling - aware UTC datetimes
    start_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    due_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    all_day: bool = True

    # Calendar-facing details
    location: Optional[str] = None
    meeting_link: Optional[str] = None
    recurrence: Optional[str] = None  # e.g. "RRULE:FREQ=WEEKLY;BYDAY=MO"

    # Subtask tree (two levels at most)
    parent_id: Optional[int] = Field(default=None, foreign_key="tasks.id", index=True)

    # People
    assignee_id: Optional[str] = Field(default=None, foreign_key="users.id")
    creator_id: str = Field(foreign_key="users.id")
    assigned_by_id: Optional[str] = Field(default=None, foreign_key="users.id")
    team_id: Optional[str] = Field(default=None, foreign_key="teams.id")

    # Google Calendar projection of the task for the user who last synced it
    google_calendar_id: Optional[str] = None
    google_calendar_event_id: Optional[str] = None
    synced_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    # Audit timestamps
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Task(TaskBase, table=True):
    """
    Task table model.
    """
    __tablename__ = "tasks"

    # Primary key
    id: Optional[int] = Field(default=None, primary_key=True)

    assignee: Optional[User] = Relationship(
        sa_relationship_kwargs={"foreign_keys": "[Task.assignee_id]", "lazy": "selectin"}
    )
    creator: Optional[User] = Relationship(
        sa_relationship_kwargs={"foreign_keys": "[Task.creator_id]", "lazy": "selectin"}
    )

    # Junction rows are owned by the task and removed with it
    team_members: List[TaskTeamMember] = Relationship(
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "lazy": "selectin"}
    )
    collaborators: List[TaskCollaborator] = Relationship(
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "lazy": "selectin"}
    )

    @property
    def involved_user_ids(self) -> List[str]:
        """Creator, assignee, team members and collaborators, without duplicates."""
        ids: List[str] = []
        candidates = [self.creator_id, self.assignee_id]
        candidates += [member.user_id for member in self.team_members]
        candidates += [collaborator.user_id for collaborator in self.collaborators]
        for user_id in candidates:
            if user_id and user_id not in ids:
                ids.append(user_id)
        return ids


class TaskTeamMemberRead(SQLModel):
    user_id: str
    role: str
    user: Optional[UserPublic] = None


class TaskCollaboratorRead(SQLModel):
    user_id: str
    user: Optional[UserPublic] = None


class TaskRead(TaskBase):
    """Schema for reading a task with its people."""
    id: int
    assignee: Optional[UserPublic] = None
    creator: Optional[UserPublic] = None
    team_members: List[TaskTeamMemberRead] = []
    collaborators: List[TaskCollaboratorRead] = []


class TaskMutationRead(TaskRead):
    """Task returned from a create/update, plus any non-blocking calendar warnings."""
    sync_warnings: List[str] = []
