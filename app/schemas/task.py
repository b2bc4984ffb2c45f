import re
from datetime import datetime
from typing import List, Optional

from pydantic import AnyUrl, BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from app.core.config import settings
from app.models.base import as_utc
from app.models.task import TaskPriority, TaskStatus, TaskType

# Google Calendar recurrence format
RRULE_PATTERN = re.compile(r"^RRULE:FREQ=(DAILY|WEEKLY|MONTHLY|YEARLY)(;.*)?$")

_url_adapter = TypeAdapter(AnyUrl)


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _check_recurrence(value: Optional[str]) -> Optional[str]:
    if value is not None and not RRULE_PATTERN.match(value):
        raise ValueError("Invalid recurrence rule format")
    return value


def _check_meeting_link(value: Optional[str]) -> Optional[str]:
    if value is not None:
        try:
            _url_adapter.validate_python(value)
        except ValidationError:
            raise ValueError("Must be a valid URL")
    return value


def validate_date_range(start_date: Optional[datetime], due_date: Optional[datetime]) -> None:
    if start_date and due_date:
        if start_date > due_date:
            raise ValueError("Start date must be before or equal to due date")
        if (due_date - start_date).days > settings.MAX_TASK_DURATION_DAYS:
            raise ValueError("Task duration cannot exceed 2 years")


def validate_people_for_type(task_type: TaskType, team_member_ids: List[str], collaborator_ids: List[str]) -> None:
    if task_type == TaskType.TEAM:
        if not team_member_ids:
            raise ValueError("Team tasks must have at least one team member")
        if collaborator_ids:
            raise ValueError("Team tasks cannot have collaborators (use team members instead)")
    elif task_type == TaskType.COLLABORATION:
        if not collaborator_ids:
            raise ValueError("Collaboration tasks must have at least one collaborator")
        if team_member_ids:
            raise ValueError("Collaboration tasks cannot have team members (use collaborators instead)")
    elif team_member_ids or collaborator_ids:
        raise ValueError("Individual tasks cannot have team members or collaborators")


class TaskCreate(BaseModel):
    """Request body for creating a task or a subtask."""
    title: str = Field(min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)

    status: Optional[TaskStatus] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    progress_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    task_type: TaskType = TaskType.INDIVIDUAL

    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    all_day: bool = True

    location: Optional[str] = Field(default=None, max_length=500)
    meeting_link: Optional[str] = None
    recurrence: Optional[str] = None

    parent_id: Optional[int] = None
    assignee_id: Optional[str] = None
    assigned_by_id: Optional[str] = None
    team_id: Optional[str] = None
    team_member_ids: List[str] = Field(default_factory=list, max_length=50)
    collaborator_ids: List[str] = Field(default_factory=list, max_length=50)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("description", "location", "meeting_link", "recurrence", mode="before")
    @classmethod
    def empty_strings_are_unset(cls, v):
        return _blank_to_none(v)

    @field_validator("start_date", "due_date")
    @classmethod
    def normalize_dates(cls, v):
        return as_utc(v)

    @field_validator("recurrence")
    @classmethod
    def validate_recurrence(cls, v):
        return _check_recurrence(v)

    @field_validator("meeting_link")
    @classmethod
    def validate_meeting_link(cls, v):
        return _check_meeting_link(v)

    @model_validator(mode="after")
    def validate_task(self):
        validate_date_range(self.start_date, self.due_date)
        validate_people_for_type(self.task_type, self.team_member_ids, self.collaborator_ids)
        return self


class TaskUpdate(BaseModel):
    """
    Partial update. Only fields present in the request body are applied, so
    an explicit `null` (clearing a value) differs from an omitted field.
    """
    title: Optional[str] = Field(default=None, min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)

    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    progress_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    task_type: Optional[TaskType] = None

    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    all_day: Optional[bool] = None

    location: Optional[str] = Field(default=None, max_length=500)
    meeting_link: Optional[str] = None
    recurrence: Optional[str] = None

    assignee_id: Optional[str] = None
    assigned_by_id: Optional[str] = None
    team_member_ids: Optional[List[str]] = Field(default=None, max_length=50)
    collaborator_ids: Optional[List[str]] = Field(default=None, max_length=50)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("description", "location", "meeting_link", "recurrence", mode="before")
    @classmethod
    def empty_strings_are_unset(cls, v):
        return _blank_to_none(v)

    @field_validator("start_date", "due_date")
    @classmethod
    def normalize_dates(cls, v):
        return as_utc(v)

    @field_validator("recurrence")
    @classmethod
    def validate_recurrence(cls, v):
        return _check_recurrence(v)

    @field_validator("meeting_link")
    @classmethod
    def validate_meeting_link(cls, v):
        return _check_meeting_link(v)

    @model_validator(mode="after")
    def validate_update(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        validate_date_range(self.start_date, self.due_date)
        if self.task_type is not None:
            validate_people_for_type(
                self.task_type,
                self.team_member_ids or [],
                self.collaborator_ids or [],
            )
        return self
