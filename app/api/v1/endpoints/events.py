"""
Event Endpoints Module

CRUD endpoints for calendar events. Users see and manage the events they
created (including those imported from Google Calendar); administrators see
and manage all of them.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, col, select

from app.api import deps
from app.core.exceptions import ExternalSyncFailure
from app.core.logging import get_logger
from app.db.session import get_db
from app.models.base import utcnow
from app.models.event import Event, EventCreate, EventRead, EventUpdate
from app.models.user import User
from app.services.calendar_sync import get_sync_settings
from app.services.google_calendar import CalendarService

router = APIRouter()
logger = get_logger(__name__)


def _get_owned_event(db: Session, event_id: int, current_user: User) -> Event:
    event = db.get(Event, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    if not current_user.is_privileged and event.creator_id != current_user.id:
        raise HTTPException(status_code=403, detail="Not authorized")
    return event


@router.get("", response_model=List[EventRead])
def list_events(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """
    Retrieve a paginated list of events ordered by start time.
    """
    statement = select(Event)
    if not current_user.is_privileged:
        statement = statement.where(Event.creator_id == current_user.id)
    statement = statement.order_by(col(Event.start_time)).offset(skip).limit(limit)
    return db.exec(statement).all()


@router.get("/{event_id}", response_model=EventRead)
def read_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    return _get_owned_event(db, event_id, current_user)


@router.post("", response_model=EventRead, status_code=201)
def create_event(
    event_in: EventCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """
    Create a new event owned by the current user.

    The event reaches Google Calendar on the next push sync.
    """
    db_event = Event(**event_in.model_dump(), creator_id=current_user.id)
    db.add(db_event)
    db.commit()
    db.refresh(db_event)
    return db_event


@router.patch("/{event_id}", response_model=EventRead)
def update_event(
    event_id: int,
    event_in: EventUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """
    Update an existing event.

    Raises:
        HTTPException 404: If the event doesn't exist
        HTTPException 403: If the user is neither the creator nor an administrator
        HTTPException 400: If the update would end the event before it starts
    """
    event = _get_owned_event(db, event_id, current_user)

    update_data = event_in.model_dump(exclude_unset=True)
    for key in ("title", "start_time", "end_time", "all_day", "type"):
        if key in update_data and update_data[key] is None:
            del update_data[key]
    start_time = update_data.get("start_time", event.start_time)
    end_time = update_data.get("end_time", event.end_time)
    if end_time < start_time:
        raise HTTPException(status_code=400, detail="end_time must not be before start_time")

    for key, value in update_data.items():
        setattr(event, key, value)

    event.updated_at = utcnow()
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


@router.delete("/{event_id}")
def delete_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
    calendar: CalendarService = Depends(deps.get_calendar_service),
):
    """
    Delete an event. When the owner pushes to Google, the
    Google Calendar copy is removed on a best-effort basis.
    """
    event = _get_owned_event(db, event_id, current_user)

    warnings = []
    sync_settings = get_sync_settings(db, event.creator_id) if event.creator_id else None
    if event.google_calendar_event_id and sync_settings and sync_settings.pushes_to_google:
        try:
            calendar.delete_event(event.creator_id, event.google_calendar_event_id, event.google_calendar_id)
        except ExternalSyncFailure as exc:
            logger.warning(
                "calendar.event.delete_failed",
                extra={"event_id": event.id, "user_id": event.creator_id, "error": str(exc)},
            )
            warnings.append(f"Could not remove calendar event: {exc}")

    db.delete(event)
    db.commit()
    return {"status": "success", "detail": "Event deleted", "sync_warnings": warnings}
