"""
Activity Model Module

Append-only audit trail of task mutations.
"""
from enum import Enum
from typing import Optional, Any, Dict
from sqlmodel import SQLModel, Field, JSON, Column, AutoString
from datetime import datetime

from app.models.base import UTCDateTime, utcnow


class ActivityType(str, Enum):
    TASK_CREATED = "TASK_CREATED"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_DELETED = "TASK_DELETED"


class Activity(SQLModel, table=True):
    __tablename__ = "activities"

    id: Optional[int] = Field(default=None, primary_key=True)
    type: ActivityType = Field(sa_type=AutoString)
    description: str
    user_id: str = Field(foreign_key="users.id")

    # Not a foreign key: deleted tasks keep their history
    entity_id: Optional[int] = None
    entity_type: str = "task"
    metadata_json: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
