"""
Calendar Sync Models Module

Per-user Google Calendar sync configuration and the per-user record of which
external event mirrors which task.
"""
from enum import Enum
from typing import Optional
from sqlmodel import SQLModel, Field, AutoString, UniqueConstraint
from datetime import datetime
from pydantic import field_validator

from app.models.base import UTCDateTime, as_utc, utcnow


class SyncDirection(str, Enum):
    TMS_TO_GOOGLE = "TMS_TO_GOOGLE"
    GOOGLE_TO_TMS = "GOOGLE_TO_TMS"
    BOTH = "BOTH"


class CalendarSyncSettings(SQLModel, table=True):
    """
    Sync preferences and OAuth credentials for one user.

    Attributes:
        is_enabled: Master switch; nothing is pushed or pulled while False
        sync_direction: Which way events flow
        sync_task_deadlines / sync_team_events / sync_personal_events / sync_holidays:
            Event-type toggles
        google_calendar_id: Target calendar; None or "primary" means not yet resolved
        google_access_token / google_refresh_token / google_token_expiry: OAuth state
        last_synced_at: Completion time of the last bulk sync
    """
    __tablename__ = "calendar_sync_settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key="users.id", unique=True, index=True)

    is_enabled: bool = False
    sync_direction: SyncDirection = Field(default=SyncDirection.BOTH, sa_type=AutoString)
    sync_task_deadlines: bool = True
    sync_team_events: bool = True
    sync_personal_events: bool = True
    sync_holidays: bool = False

    google_calendar_id: Optional[str] = None
    google_access_token: Optional[str] = None
    google_refresh_token: Optional[str] = None
    google_token_expiry: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    last_synced_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def pushes_to_google(self) -> bool:
        return self.is_enabled and self.sync_direction in (SyncDirection.TMS_TO_GOOGLE, SyncDirection.BOTH)

    @property
    def pulls_from_google(self) -> bool:
        return self.is_enabled and self.sync_direction in (SyncDirection.GOOGLE_TO_TMS, SyncDirection.BOTH)


class UserTaskCalendarSync(SQLModel, table=True):
    """
    The external event mirroring a task in one user's calendar.

    `payload_hash` is the fingerprint of the last payload sent, so an unchanged
    task does not trigger another update call.
    """
    __tablename__ = "user_task_calendar_syncs"
    __table_args__ = (UniqueConstraint("user_id", "task_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    task_id: int = Field(foreign_key="tasks.id", index=True)
    google_calendar_id: str
    google_calendar_event_id: str
    payload_hash: Optional[str] = None
    synced_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class CalendarSyncSettingsRead(SQLModel):
    """Sync settings as returned to the owner; tokens are never exposed."""
    user_id: Optional[str] = None
    is_enabled: bool = False
    sync_direction: SyncDirection = SyncDirection.BOTH
    sync_task_deadlines: bool = True
    sync_team_events: bool = True
    sync_personal_events: bool = True
    sync_holidays: bool = False
    google_calendar_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None


class CalendarSyncSettingsUpdate(SQLModel):
    is_enabled: Optional[bool] = None
    sync_direction: Optional[SyncDirection] = None
    sync_task_deadlines: Optional[bool] = None
    sync_team_events: Optional[bool] = None
    sync_personal_events: Optional[bool] = None
    sync_holidays: Optional[bool] = None
    google_calendar_id: Optional[str] = None
    google_access_token: Optional[str] = None
    google_refresh_token: Optional[str] = None
    google_token_expiry: Optional[datetime] = None
    # Resolve (or create) the dedicated task calendar while saving
    create_tms_calendar: bool = False

    @field_validator("google_token_expiry")
    @classmethod
    def normalize_expiry(cls, v):
        return as_utc(v)
