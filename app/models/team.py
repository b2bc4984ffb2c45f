"""
Team Model Module

Teams and the TeamMember junction table. A user's role inside the team owning a
task feeds the task permission checks.
"""
from enum import Enum
from typing import Optional
from sqlmodel import SQLModel, Field, AutoString
import uuid
from datetime import datetime

from app.models.base import UTCDateTime, utcnow


class TeamMemberRole(str, Enum):
    LEADER = "LEADER"
    MEMBER = "MEMBER"


class Team(SQLModel, table=True):
    __tablename__ = "teams"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(nullable=False)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class TeamMember(SQLModel, table=True):
    """
    Junction table between users and teams, keyed by both ids.
    """
    __tablename__ = "team_members"

    user_id: str = Field(foreign_key="users.id", primary_key=True)
    team_id: str = Field(foreign_key="teams.id", primary_key=True)
    role: TeamMemberRole = Field(default=TeamMemberRole.MEMBER, sa_type=AutoString)
