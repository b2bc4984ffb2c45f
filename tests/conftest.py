# ruff: noqa: INP001
"""Pytest configuration shared across tests."""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Settings are read at import time; keep tests off any real database or Google account
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["USE_DEDICATED_CALENDAR"] = "true"

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import app.models  # noqa: F401
from app.models.calendar_sync import CalendarSyncSettings, SyncDirection
from app.models.user import User, UserRole
from app.services.google_calendar import CalendarServiceError
from app.services.notifications import NotificationBus


class FakeCalendarService:
    """Records calls instead of talking to Google."""

    def __init__(self):
        self.created = []
        self.updated = []
        self.deleted = []
        self.remote_events = []
        self.missing_event_ids = set()
        self.undeletable_event_ids = set()
        self.listed = []
        self.calendar_lookups = 0
        self.fail = False
        self._next_id = 0

    def _check(self):
        if self.fail:
            raise CalendarServiceError("Google Calendar unavailable", 503)

    def create_event(self, user_id, payload, calendar_id=None):
        self._check()
        self._next_id += 1
        event_id = f"gcal-{self._next_id}"
        self.created.append((user_id, payload, calendar_id))
        return {"id": event_id, **payload}

    def update_event(self, user_id, event_id, payload, calendar_id=None):
        self._check()
        if event_id in self.missing_event_ids:
            raise CalendarServiceError("Not Found", 404)
        self.updated.append((user_id, event_id, payload, calendar_id))
        return {"id": event_id, **payload}

    def delete_event(self, user_id, event_id, calendar_id=None):
        self._check()
        if event_id in self.undeletable_event_ids:
            raise CalendarServiceError("Backend Error", 500)
        self.deleted.append((user_id, event_id, calendar_id))

    def list_events(self, user_id, calendar_id=None, time_min=None, time_max=None, max_results=2500):
        self._check()
        self.listed.append((calendar_id, time_min, time_max, max_results))
        return list(self.remote_events)

    def find_or_create_tms_calendar(self, user_id):
        self._check()
        self.calendar_lookups += 1
        return "tms-calendar"


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture()
def db(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture()
def calendar():
    return FakeCalendarService()


@pytest.fixture()
def bus():
    return NotificationBus()


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make_user(role=UserRole.MEMBER, first_name=None, last_name=None, name=None, email=None, password=None):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            role=role,
            first_name=first_name,
            last_name=last_name,
            name=name,
            password=password,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def admin(make_user):
    return make_user(role=UserRole.ADMIN, first_name="Ada", last_name="Admin")


@pytest.fixture()
def leader(make_user):
    return make_user(role=UserRole.LEADER, first_name="Lee", last_name="Leader")


@pytest.fixture()
def member(make_user):
    return make_user(first_name="Max", last_name="Member")


@pytest.fixture()
def outsider(make_user):
    return make_user(name="Olive Outsider")


@pytest.fixture()
def enable_sync(db):
    def _enable_sync(user, direction=SyncDirection.BOTH, calendar_id="tms-calendar", **overrides):
        fields = {
            "is_enabled": True,
            "sync_direction": direction,
            "google_calendar_id": calendar_id,
            "google_access_token": "access-token",
            "google_refresh_token": "refresh-token",
            "google_token_expiry": datetime(2100, 1, 1, tzinfo=timezone.utc),
        }
        fields.update(overrides)
        sync_settings = CalendarSyncSettings(user_id=user.id, **fields)
        db.add(sync_settings)
        db.commit()
        db.refresh(sync_settings)
        return sync_settings

    return _enable_sync


@pytest.fixture()
def client(db, calendar, bus):
    """TestClient sharing the test session; call `client.act_as(user)` before requests."""
    from fastapi.testclient import TestClient

    from app.api import deps
    from app.db.session import get_db
    from app.main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[deps.get_calendar_service] = lambda: calendar
    app.dependency_overrides[deps.get_bus] = lambda: bus

    test_client = TestClient(app, raise_server_exceptions=False)

    def act_as(user):
        app.dependency_overrides[deps.get_current_active_user] = lambda: user

    test_client.act_as = act_as
    yield test_client
    app.dependency_overrides.clear()
