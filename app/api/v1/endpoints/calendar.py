"""
Calendar Sync Endpoints Module

Per-user Google Calendar sync settings and the explicit bulk sync actions.
Unlike task mutations, these endpoints exist to talk to Google, so a Calendar
API failure here is answered with 502.
"""
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from app.api import deps
from app.db.session import get_db
from app.models.calendar_sync import CalendarSyncSettingsRead, CalendarSyncSettingsUpdate
from app.models.user import User
from app.services import calendar_sync
from app.services.google_calendar import CalendarService

router = APIRouter()


@router.get("/sync-settings", response_model=CalendarSyncSettingsRead)
def read_sync_settings(
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """
    Current user's sync settings; defaults when sync was never configured.
    """
    sync_settings = calendar_sync.get_sync_settings(db, current_user.id)
    if sync_settings is None:
        return CalendarSyncSettingsRead(user_id=current_user.id)
    return sync_settings


@router.put("/sync-settings", response_model=CalendarSyncSettingsRead)
def update_sync_settings(
    settings_in: CalendarSyncSettingsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
    calendar: CalendarService = Depends(deps.get_calendar_service),
):
    """
    Create or update sync settings. With `create_tms_calendar` (or no calendar
    chosen yet) enabling sync also resolves the dedicated task calendar.
    """
    return calendar_sync.update_sync_settings(db, calendar, current_user.id, settings_in)


@router.delete("/sync-settings")
def disconnect_google_calendar(
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
):
    """
    Disconnect Google Calendar: imported events are removed and tokens cleared.
    """
    deleted = calendar_sync.disconnect(db, current_user.id)
    return {"status": "success", "deleted_events": deleted}


@router.post("/sync-to-google")
def sync_to_google(
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
    calendar: CalendarService = Depends(deps.get_calendar_service),
) -> Dict[str, Any]:
    results = calendar_sync.sync_to_google(db, calendar, current_user.id)
    return {"status": "success", "results": asdict(results)}


@router.post("/sync-from-google")
def sync_from_google(
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
    calendar: CalendarService = Depends(deps.get_calendar_service),
) -> Dict[str, Any]:
    results = calendar_sync.sync_from_google(db, calendar, current_user.id)
    return {"status": "success", "results": asdict(results)}


@router.post("/cleanup-duplicates")
def cleanup_duplicate_task_events(
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
    calendar: CalendarService = Depends(deps.get_calendar_service),
) -> Dict[str, Any]:
    """
    Remove task events from the task calendar that no longer belong to a synced task.
    """
    results = calendar_sync.cleanup_orphaned_task_events(db, calendar, current_user.id)
    return {"status": "success", "results": asdict(results)}


@router.get("/holidays")
def read_holidays(
    country: Optional[str] = Query(default=None, min_length=2),
    year: Optional[int] = Query(default=None, ge=1970, le=9999),
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user),
    calendar: CalendarService = Depends(deps.get_calendar_service),
) -> Dict[str, Any]:
    holidays = calendar_sync.list_holidays(db, calendar, current_user.id, country=country, year=year)
    return {"holidays": holidays}
