"""
Calendar Sync Orchestrator Module

Decides when a task or event is pushed to, updated in, or removed from a
user's Google Calendar, and imports external events back as PERSONAL events.

Task mutations call `auto_sync_task` / `delete_synced_task` only after their
own transaction has committed. Neither raises: every calendar failure is
logged and returned as a warning string, so a mutation never fails because
Google is unreachable. The bulk endpoints (`sync_to_google`,
`sync_from_google`) collect per-item failures into SyncResults instead.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlmodel import Session, col, or_, select

from app.core.config import settings
from app.core.exceptions import ExternalSyncFailure, NotFound, SyncNotAvailable
from app.core.logging import get_logger
from app.models.base import utcnow
from app.models.calendar_sync import (
    CalendarSyncSettings,
    CalendarSyncSettingsUpdate,
    UserTaskCalendarSync,
)
from app.models.event import Event, EventType
from app.models.task import Task, TaskCollaborator, TaskTeamMember
from app.services.calendar_codec import (
    TASK_SUMMARY_PREFIX,
    calendar_event_to_task,
    event_to_calendar_event,
    payload_fingerprint,
    task_to_calendar_event,
)
from app.services.google_calendar import CalendarService, CalendarServiceError

logger = get_logger(__name__)


class SyncOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    SKIPPED = "skipped"


@dataclass
class SyncResults:
    """Counters returned by the bulk sync endpoints."""
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def record(self, outcome: SyncOutcome) -> None:
        if outcome == SyncOutcome.CREATED:
            self.created += 1
        elif outcome == SyncOutcome.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1


def get_sync_settings(db: Session, user_id: str) -> Optional[CalendarSyncSettings]:
    return db.exec(select(CalendarSyncSettings).where(CalendarSyncSettings.user_id == user_id)).first()


def resolve_calendar_id(db: Session, calendar: CalendarService, sync_settings: CalendarSyncSettings) -> str:
    """
    Target calendar for pushes. With USE_DEDICATED_CALENDAR an unset or
    "primary" calendar is replaced by the dedicated task calendar, and the
    resolved id is stored on the settings row.
    """
    calendar_id = sync_settings.google_calendar_id
    if settings.USE_DEDICATED_CALENDAR and (not calendar_id or calendar_id == "primary"):
        calendar_id = calendar.find_or_create_tms_calendar(sync_settings.user_id)
        sync_settings.google_calendar_id = calendar_id
        sync_settings.updated_at = utcnow()
        db.add(sync_settings)
    return calendar_id or settings.DEFAULT_CALENDAR_ID


def _sync_record(db: Session, user_id: str, task_id: int) -> Optional[UserTaskCalendarSync]:
    return db.exec(
        select(UserTaskCalendarSync).where(
            UserTaskCalendarSync.user_id == user_id,
            UserTaskCalendarSync.task_id == task_id,
        )
    ).first()


def _drop_projection(
    db: Session, calendar: CalendarService, task: Task, record: UserTaskCalendarSync, is_trigger: bool
) -> None:
    calendar.delete_event(record.user_id, record.google_calendar_event_id, record.google_calendar_id)
    if is_trigger and task.google_calendar_event_id == record.google_calendar_event_id:
        task.google_calendar_id = None
        task.google_calendar_event_id = None
        task.synced_at = None
        db.add(task)
    db.delete(record)


def sync_task_for_user(
    db: Session,
    calendar: CalendarService,
    task: Task,
    user_id: str,
    is_trigger: bool = False,
) -> SyncOutcome:
    """
    Bring one user's calendar projection of `task` up to date.

    Nothing happens unless the user has sync enabled, pushes to Google and
    syncs task deadlines. A task without a due date has no projection, so an
    existing one is deleted. An update is skipped when the payload is
    byte-for-byte what was sent last time.

    Raises ExternalSyncFailure on calendar errors; callers decide whether
    that is fatal.
    """
    sync_settings = get_sync_settings(db, user_id)
    if not sync_settings or not sync_settings.pushes_to_google or not sync_settings.sync_task_deadlines:
        return SyncOutcome.SKIPPED

    record = _sync_record(db, user_id, task.id)

    if task.due_date is None:
        if record is None:
            return SyncOutcome.SKIPPED
        _drop_projection(db, calendar, task, record, is_trigger)
        db.commit()
        logger.info("calendar.task.unsynced", extra={"task_id": task.id, "user_id": user_id})
        return SyncOutcome.DELETED

    calendar_id = resolve_calendar_id(db, calendar, sync_settings)
    payload = task_to_calendar_event(task)
    fingerprint = payload_fingerprint(payload)

    outcome = SyncOutcome.CREATED
    if record is not None and record.google_calendar_id == calendar_id:
        if record.payload_hash == fingerprint:
            db.commit()
            return SyncOutcome.UNCHANGED
        try:
            calendar.update_event(user_id, record.google_calendar_event_id, payload, calendar_id)
            outcome = SyncOutcome.UPDATED
        except CalendarServiceError as exc:
            if exc.status_code not in (404, 410):
                raise
            # Removed on the Google side; recreate below
            logger.info(
                "calendar.task.recreate",
                extra={"task_id": task.id, "user_id": user_id, "event_id": record.google_calendar_event_id},
            )
    elif record is not None:
        # Target calendar changed since the last push
        try:
            calendar.delete_event(user_id, record.google_calendar_event_id, record.google_calendar_id)
        except ExternalSyncFailure as exc:
            logger.warning(
                "calendar.task.stale_event_delete_failed",
                extra={"task_id": task.id, "user_id": user_id, "error": str(exc)},
            )

    if outcome == SyncOutcome.CREATED:
        created = calendar.create_event(user_id, payload, calendar_id)
        if record is None:
            record = UserTaskCalendarSync(
                user_id=user_id,
                task_id=task.id,
                google_calendar_id=calendar_id,
                google_calendar_event_id=created["id"],
            )
        record.google_calendar_event_id = created["id"]

    now = utcnow()
    record.google_calendar_id = calendar_id
    record.payload_hash = fingerprint
    record.synced_at = now
    db.add(record)

    if is_trigger:
        task.google_calendar_id = calendar_id
        task.google_calendar_event_id = record.google_calendar_event_id
        task.synced_at = now
        db.add(task)

    db.commit()
    logger.info(
        "calendar.task.synced",
        extra={"task_id": task.id, "user_id": user_id, "outcome": outcome.value},
    )
    return outcome


def auto_sync_task(db: Session, calendar: CalendarService, task: Task, trigger_user_id: str) -> List[str]:
    """
    Sync `task` for the user who changed it, then for everyone else involved.

    Returns one warning per user whose sync failed; never raises.
    """
    warnings: List[str] = []
    user_ids = [trigger_user_id] + [uid for uid in task.involved_user_ids if uid != trigger_user_id]
    task_id = task.id

    for user_id in user_ids:
        try:
            sync_task_for_user(db, calendar, task, user_id, is_trigger=user_id == trigger_user_id)
        except ExternalSyncFailure as exc:
            db.rollback()
            logger.warning(
                "calendar.task.sync_failed",
                extra={"task_id": task_id, "user_id": user_id, "error": str(exc)},
            )
            warnings.append(f"Calendar sync failed for user {user_id}: {exc}")
        except Exception as exc:
            db.rollback()
            logger.exception("calendar.task.sync_error", extra={"task_id": task_id, "user_id": user_id})
            warnings.append(f"Calendar sync failed for user {user_id}: {exc}")
    return warnings


def delete_synced_task(db: Session, calendar: CalendarService, task: Task) -> List[str]:
    """
    Remove every user's calendar projection of `task`.

    External deletes are best-effort; the local sync records are always
    removed so the task itself can be deleted. The caller commits.
    """
    warnings: List[str] = []
    records = db.exec(select(UserTaskCalendarSync).where(UserTaskCalendarSync.task_id == task.id)).all()
    for record in records:
        try:
            calendar.delete_event(record.user_id, record.google_calendar_event_id, record.google_calendar_id)
        except ExternalSyncFailure as exc:
            logger.warning(
                "calendar.task.delete_failed",
                extra={"task_id": task.id, "user_id": record.user_id, "error": str(exc)},
            )
            warnings.append(f"Could not remove calendar event for user {record.user_id}: {exc}")
        db.delete(record)
    return warnings


# ----------------------------------------------------------------------
# Bulk sync
# ----------------------------------------------------------------------


def _require_settings(db: Session, user_id: str) -> CalendarSyncSettings:
    sync_settings = get_sync_settings(db, user_id)
    if not sync_settings or not sync_settings.is_enabled:
        raise SyncNotAvailable("Google Calendar sync is not enabled")
    return sync_settings


def _should_push_event(event: Event, sync_settings: CalendarSyncSettings) -> bool:
    if event.type == EventType.PERSONAL and not sync_settings.sync_personal_events:
        return False
    if event.team_id and not sync_settings.sync_team_events:
        return False
    if event.type == EventType.DEADLINE and not sync_settings.sync_task_deadlines:
        return False
    return True


def _involved_tasks(db: Session, user_id: str) -> List[Task]:
    member_task_ids = select(TaskTeamMember.task_id).where(TaskTeamMember.user_id == user_id)
    collaborator_task_ids = select(TaskCollaborator.task_id).where(TaskCollaborator.user_id == user_id)
    statement = select(Task).where(
        col(Task.due_date).is_not(None),
        or_(
            Task.creator_id == user_id,
            Task.assignee_id == user_id,
            col(Task.id).in_(member_task_ids),
            col(Task.id).in_(collaborator_task_ids),
        ),
    )
    return list(db.exec(statement).all())


def sync_to_google(db: Session, calendar: CalendarService, user_id: str) -> SyncResults:
    """Push the user's own events and every dated task they are involved in."""
    sync_settings = _require_settings(db, user_id)
    if not sync_settings.pushes_to_google:
        raise SyncNotAvailable("Sync direction is set to import only")

    calendar_id = resolve_calendar_id(db, calendar, sync_settings)
    db.commit()
    results = SyncResults()

    since = sync_settings.last_synced_at
    events = db.exec(select(Event).where(Event.creator_id == user_id)).all()
    for event in events:
        if event.google_calendar_event_id and since and event.updated_at and event.updated_at <= since:
            continue
        if not _should_push_event(event, sync_settings):
            results.skipped += 1
            continue
        try:
            payload = event_to_calendar_event(event)
            if event.google_calendar_event_id:
                calendar.update_event(user_id, event.google_calendar_event_id, payload, event.google_calendar_id or calendar_id)
                results.updated += 1
            else:
                created = calendar.create_event(user_id, payload, calendar_id)
                event.google_calendar_id = calendar_id
                event.google_calendar_event_id = created["id"]
                results.created += 1
            event.synced_at = utcnow()
            db.add(event)
            db.commit()
        except ExternalSyncFailure as exc:
            db.rollback()
            logger.warning("calendar.event.push_failed", extra={"event_id": event.id, "user_id": user_id, "error": str(exc)})
            results.failed += 1
            results.errors.append(f"{event.title}: {exc}")

    if sync_settings.sync_task_deadlines:
        for task in _involved_tasks(db, user_id):
            title = task.title
            try:
                results.record(
                    sync_task_for_user(db, calendar, task, user_id, is_trigger=task.creator_id == user_id)
                )
            except ExternalSyncFailure as exc:
                db.rollback()
                logger.warning("calendar.task.push_failed", extra={"task_id": task.id, "user_id": user_id, "error": str(exc)})
                results.failed += 1
                results.errors.append(f"{TASK_SUMMARY_PREFIX}{title}: {exc}")

    sync_settings = get_sync_settings(db, user_id)
    sync_settings.last_synced_at = utcnow()
    db.add(sync_settings)
    db.commit()
    logger.info(
        "calendar.push.completed",
        extra={"user_id": user_id, "created": results.created, "updated": results.updated, "failed": results.failed},
    )
    return results


def _is_task_projection(db: Session, user_id: str, external: dict) -> bool:
    if (external.get("summary") or "").startswith(TASK_SUMMARY_PREFIX):
        return True
    record = db.exec(
        select(UserTaskCalendarSync).where(
            UserTaskCalendarSync.user_id == user_id,
            UserTaskCalendarSync.google_calendar_event_id == external["id"],
        )
    ).first()
    return record is not None


def sync_from_google(db: Session, calendar: CalendarService, user_id: str) -> SyncResults:
    """
    Import external events as PERSONAL events, upserting by external id.

    Events that are projections of local tasks are skipped; tasks are owned
    here and only ever flow outwards.
    """
    sync_settings = _require_settings(db, user_id)
    if not sync_settings.pulls_from_google:
        raise SyncNotAvailable("Sync direction is set to export only")

    calendar_id = sync_settings.google_calendar_id or settings.DEFAULT_CALENDAR_ID
    now = utcnow()
    window = timedelta(days=settings.CALENDAR_IMPORT_WINDOW_DAYS)
    external_events = calendar.list_events(user_id, calendar_id, time_min=now - window, time_max=now + window)

    results = SyncResults()
    for external in external_events:
        if not external.get("id") or _is_task_projection(db, user_id, external):
            results.skipped += 1
            continue
        try:
            fields = calendar_event_to_task(external, user_id, calendar_id)
            existing = db.exec(
                select(Event).where(
                    Event.google_calendar_event_id == external["id"],
                    Event.creator_id == user_id,
                )
            ).first()
            if existing:
                for key in ("title", "description", "start_time", "end_time", "all_day", "location"):
                    setattr(existing, key, fields[key])
                existing.synced_at = utcnow()
                existing.updated_at = utcnow()
                db.add(existing)
                results.updated += 1
            else:
                db.add(Event(**fields, synced_at=utcnow()))
                results.created += 1
            db.commit()
        except (KeyError, ValueError) as exc:
            db.rollback()
            logger.warning(
                "calendar.event.import_failed",
                extra={"user_id": user_id, "external_id": external.get("id"), "error": str(exc)},
            )
            results.failed += 1
            results.errors.append(f"{external.get('summary') or 'Untitled'}: {exc}")

    sync_settings = get_sync_settings(db, user_id)
    sync_settings.last_synced_at = utcnow()
    db.add(sync_settings)
    db.commit()
    logger.info(
        "calendar.pull.completed",
        extra={"user_id": user_id, "created": results.created, "updated": results.updated, "skipped": results.skipped},
    )
    return results


# ----------------------------------------------------------------------
# Maintenance and read-only views
# ----------------------------------------------------------------------

CLEANUP_LOOKBACK = timedelta(days=90)
CLEANUP_LOOKAHEAD = timedelta(days=365)
HOLIDAY_CALENDAR_SUFFIX = "#holiday@group.v.calendar.google.com"
MAX_HOLIDAYS = 100


@dataclass
class CleanupResults:
    """Counters returned by the orphaned task event cleanup."""
    total_events: int = 0
    tracked_events: int = 0
    orphaned: int = 0
    deleted: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def cleanup_orphaned_task_events(db: Session, calendar: CalendarService, user_id: str) -> CleanupResults:
    """
    Delete task events in the user's task calendar that no sync record points to.

    Only events whose summary carries the task prefix are candidates, so
    anything the user created by hand is left alone. These are leftovers of
    interrupted syncs or of tasks removed while Google was unreachable.
    """
    sync_settings = _require_settings(db, user_id)
    calendar_id = resolve_calendar_id(db, calendar, sync_settings)
    db.commit()

    now = utcnow()
    external_events = calendar.list_events(
        user_id, calendar_id, time_min=now - CLEANUP_LOOKBACK, time_max=now + CLEANUP_LOOKAHEAD
    )
    tracked = set(
        db.exec(
            select(UserTaskCalendarSync.google_calendar_event_id).where(UserTaskCalendarSync.user_id == user_id)
        ).all()
    )

    results = CleanupResults(total_events=len(external_events), tracked_events=len(tracked))
    for external in external_events:
        event_id = external.get("id")
        if not event_id or event_id in tracked:
            continue
        if not (external.get("summary") or "").startswith(TASK_SUMMARY_PREFIX):
            continue
        results.orphaned += 1
        try:
            calendar.delete_event(user_id, event_id, calendar_id)
            results.deleted += 1
        except ExternalSyncFailure as exc:
            logger.warning(
                "calendar.cleanup.delete_failed",
                extra={"user_id": user_id, "event_id": event_id, "error": str(exc)},
            )
            results.failed += 1
            results.errors.append(f"{external.get('summary')}: {exc}")

    db.commit()
    logger.info(
        "calendar.cleanup.completed",
        extra={"user_id": user_id, "orphaned": results.orphaned, "deleted": results.deleted, "failed": results.failed},
    )
    return results


def holiday_calendar_id(country: str) -> str:
    return f"{country}{HOLIDAY_CALENDAR_SUFFIX}"


def list_holidays(
    db: Session,
    calendar: CalendarService,
    user_id: str,
    country: Optional[str] = None,
    year: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    Public holidays for one calendar year, read from Google's regional
    holiday calendar.

    Returns an empty list when the user has not opted into holidays or the
    calendar cannot be read; a missing holiday strip is never an error.
    """
    sync_settings = get_sync_settings(db, user_id)
    if not sync_settings or not sync_settings.is_enabled or not sync_settings.sync_holidays:
        return []

    year = year or utcnow().year
    calendar_id = holiday_calendar_id(country or settings.HOLIDAY_CALENDAR_COUNTRY)
    try:
        external_events = calendar.list_events(
            user_id,
            calendar_id,
            time_min=datetime(year, 1, 1, tzinfo=timezone.utc),
            time_max=datetime(year, 12, 31, 23, 59, 59, tzinfo=timezone.utc),
            max_results=MAX_HOLIDAYS,
        )
        # Persist a token refreshed by the listing
        db.commit()
    except ExternalSyncFailure as exc:
        logger.info(
            "calendar.holidays.unavailable",
            extra={"user_id": user_id, "calendar_id": calendar_id, "error": str(exc)},
        )
        return []

    holidays = []
    for external in external_events:
        start = external.get("start") or {}
        holidays.append(
            {
                "id": external.get("id"),
                "title": external.get("summary"),
                "date": start.get("date") or start.get("dateTime"),
                "description": external.get("description"),
                "is_holiday": True,
            }
        )
    return holidays


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------


def update_sync_settings(
    db: Session, calendar: CalendarService, user_id: str, payload: CalendarSyncSettingsUpdate
) -> CalendarSyncSettings:
    """Create or update the user's settings; optionally resolve the dedicated calendar."""
    sync_settings = get_sync_settings(db, user_id) or CalendarSyncSettings(user_id=user_id)
    data = payload.model_dump(exclude_unset=True)
    create_tms_calendar = data.pop("create_tms_calendar", False)
    for key, value in data.items():
        setattr(sync_settings, key, value)
    sync_settings.updated_at = utcnow()
    db.add(sync_settings)
    db.commit()

    if sync_settings.is_enabled and (create_tms_calendar or not sync_settings.google_calendar_id):
        try:
            sync_settings.google_calendar_id = calendar.find_or_create_tms_calendar(user_id)
        except ExternalSyncFailure as exc:
            logger.warning("calendar.tms_calendar.unavailable", extra={"user_id": user_id, "error": str(exc)})
            sync_settings.google_calendar_id = sync_settings.google_calendar_id or settings.DEFAULT_CALENDAR_ID
        db.add(sync_settings)
        db.commit()

    db.refresh(sync_settings)
    return sync_settings


def disconnect(db: Session, user_id: str) -> int:
    """
    Forget the user's Google connection: remove events that carry an external
    id, drop task sync records, clear tokens. Returns the number of events
    removed.
    """
    sync_settings = get_sync_settings(db, user_id)
    if not sync_settings:
        raise NotFound("Calendar sync settings not found")

    events = db.exec(
        select(Event).where(Event.creator_id == user_id, col(Event.google_calendar_event_id).is_not(None))
    ).all()
    for event in events:
        db.delete(event)
    for record in db.exec(select(UserTaskCalendarSync).where(UserTaskCalendarSync.user_id == user_id)).all():
        db.delete(record)

    sync_settings.is_enabled = False
    sync_settings.google_access_token = None
    sync_settings.google_refresh_token = None
    sync_settings.google_token_expiry = None
    sync_settings.google_calendar_id = None
    sync_settings.last_synced_at = None
    sync_settings.updated_at = utcnow()
    db.add(sync_settings)
    db.commit()

    logger.info("calendar.disconnected", extra={"user_id": user_id, "deleted_events": len(events)})
    return len(events)
