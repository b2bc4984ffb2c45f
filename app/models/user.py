"""
User Model Module

This module defines the User model and UserRole enumeration for authentication
and authorization throughout the application.
"""
from enum import Enum
from typing import Optional
from sqlmodel import SQLModel, Field, AutoString
import uuid
from datetime import datetime

from app.models.base import UTCDateTime, utcnow


class UserRole(str, Enum):
    """
    Enumeration of user roles defining permission levels in the system.

    - MEMBER: Regular team member, edits their own tasks
    - LEADER: Team leader, manages tasks of the teams they lead
    - ADMIN: Administrator with full access to every task
    """
    MEMBER = "MEMBER"
    LEADER = "LEADER"
    ADMIN = "ADMIN"


class User(SQLModel, table=True):
    """
    User model representing authenticated users in the system.

    Attributes:
        id: Unique identifier (UUID) automatically generated for each user
        email: User's email address, used for authentication (required, unique, indexed)
        password: Hashed password (bcrypt)
        first_name / last_name: Preferred display name parts
        name: Free-form display name used when first/last name are missing
        role: Global UserRole (default: MEMBER)
        created_at: Timestamp when the user account was created
    """
    __tablename__ = "users"

    # Primary key - auto-generated UUID for global uniqueness
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)

    # Authentication fields
    email: str = Field(unique=True, index=True, nullable=False)
    password: Optional[str] = None  # Hashed password (bcrypt)

    # Profile information
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None

    role: UserRole = Field(default=UserRole.MEMBER, sa_type=AutoString)

    # Audit timestamp
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def is_privileged(self) -> bool:
        """Helper to check if user has admin-level roles."""
        return self.role == UserRole.ADMIN

    @property
    def display_name(self) -> str:
        """First + last name, then name, then email."""
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.name or self.email


class UserPublic(SQLModel):
    """Schema for embedding a user inside task responses."""
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None
