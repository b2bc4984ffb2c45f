from .user import User, UserRole
from .team import Team, TeamMember, TeamMemberRole
from .task import Task, TaskTeamMember, TaskCollaborator, TaskStatus, TaskPriority, TaskType
from .event import Event, EventType
from .calendar_sync import CalendarSyncSettings, UserTaskCalendarSync, SyncDirection
from .activity import Activity, ActivityType

__all__ = [
    "User", "UserRole",
    "Team", "TeamMember", "TeamMemberRole",
    "Task", "TaskTeamMember", "TaskCollaborator", "TaskStatus", "TaskPriority", "TaskType",
    "Event", "EventType",
    "CalendarSyncSettings", "UserTaskCalendarSync", "SyncDirection",
    "Activity", "ActivityType",
]
