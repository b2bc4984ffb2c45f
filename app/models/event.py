"""
Event Model Module

Calendar events owned by a user. Events are either authored locally (meetings,
deadlines, reminders, milestones, personal entries) or imported from Google
Calendar, in which case they carry the external event id.
"""
from enum import Enum
from typing import Optional
from sqlmodel import SQLModel, Field, AutoString
from datetime import datetime
from pydantic import field_validator, model_validator

from app.models.base import UTCDateTime, as_utc, utcnow


class EventType(str, Enum):
    MEETING = "MEETING"
    DEADLINE = "DEADLINE"
    REMINDER = "REMINDER"
    MILESTONE = "MILESTONE"
    PERSONAL = "PERSONAL"


class EventBase(SQLModel):
    """
    Base properties for an Event.
    """
    # Basic event information
    title: str = Field(nullable=False)
    description: Optional[str] = None

    # Time range - aware UTC. For all-day events end_time is the last included day.
    start_time: datetime = Field(nullable=False, sa_type=UTCDateTime)
    end_time: datetime = Field(nullable=False, sa_type=UTCDateTime)
    all_day: bool = False

    location: Optional[str] = None
    type: EventType = Field(default=EventType.PERSONAL, sa_type=AutoString)

    # Ownership and links
    creator_id: Optional[str] = Field(default=None, foreign_key="users.id")
    team_id: Optional[str] = Field(default=None, foreign_key="teams.id")
    task_id: Optional[int] = Field(default=None, foreign_key="tasks.id")

    # Google Calendar identity when the event was imported or exported
    google_calendar_id: Optional[str] = None
    google_calendar_event_id: Optional[str] = Field(default=None, index=True)
    synced_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)


class Event(EventBase, table=True):
    """
    Event table model.
    """
    __tablename__ = "events"

    # Primary key
    id: Optional[int] = Field(default=None, primary_key=True)

    created_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=UTCDateTime)


class EventRead(EventBase):
    """Schema for reading an event."""
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EventCreate(SQLModel):
    """Schema for creating an event."""
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    all_day: bool = False
    location: Optional[str] = None
    type: EventType = EventType.PERSONAL
    team_id: Optional[str] = None
    task_id: Optional[int] = None

    @field_validator("type", mode="before")
    @classmethod
    def to_uppercase(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, v):
        return as_utc(v)

    @model_validator(mode="after")
    def check_range(self):
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class EventUpdate(SQLModel):
    """Schema for updating an event."""
    title: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    all_day: Optional[bool] = None
    location: Optional[str] = None
    type: Optional[EventType] = None

    @field_validator("type", mode="before")
    @classmethod
    def to_uppercase(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, v):
        return as_utc(v)
