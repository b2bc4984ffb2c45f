# ruff: noqa: INP001

from datetime import datetime, timezone

import pytest
from sqlmodel import select

from app.core.exceptions import NotFound, SyncNotAvailable
from app.models.calendar_sync import CalendarSyncSettings, CalendarSyncSettingsUpdate, SyncDirection, UserTaskCalendarSync
from app.models.event import Event, EventType
from app.models.task import Task
from app.services import calendar_sync
from app.services.calendar_sync import SyncOutcome

UTC = timezone.utc


@pytest.fixture()
def make_task(db):
    def _make_task(creator, assignee=None, title="Quarterly review", due_date=datetime(2024, 9, 30, tzinfo=UTC)):
        task = Task(
            title=title,
            creator_id=creator.id,
            assignee_id=(assignee or creator).id,
            start_date=due_date,
            due_date=due_date,
        )
        db.add(task)
        db.commit()
        db.refresh(task)
        return task

    return _make_task


def records(db):
    return db.exec(select(UserTaskCalendarSync)).all()


def test_nothing_happens_without_push_settings(db, calendar, enable_sync, make_task, member, outsider):
    task = make_task(member)
    assert calendar_sync.sync_task_for_user(db, calendar, task, member.id) == SyncOutcome.SKIPPED

    enable_sync(outsider, direction=SyncDirection.GOOGLE_TO_TMS)
    assert calendar_sync.sync_task_for_user(db, calendar, task, outsider.id) == SyncOutcome.SKIPPED

    assert calendar.created == []


def test_deadline_toggle_disables_task_push(db, calendar, enable_sync, make_task, member):
    enable_sync(member, sync_task_deadlines=False)
    task = make_task(member)
    assert calendar_sync.sync_task_for_user(db, calendar, task, member.id) == SyncOutcome.SKIPPED


def test_create_then_unchanged_then_update(db, calendar, enable_sync, make_task, member):
    enable_sync(member)
    task = make_task(member)

    assert calendar_sync.sync_task_for_user(db, calendar, task, member.id, is_trigger=True) == SyncOutcome.CREATED
    assert calendar_sync.sync_task_for_user(db, calendar, task, member.id, is_trigger=True) == SyncOutcome.UNCHANGED
    assert calendar.updated == []

    task.title = "Quarterly review (moved)"
    db.add(task)
    db.commit()
    assert calendar_sync.sync_task_for_user(db, calendar, task, member.id, is_trigger=True) == SyncOutcome.UPDATED

    (_, event_id, payload, calendar_id), = calendar.updated
    assert event_id == "gcal-1"
    assert calendar_id == "tms-calendar"
    assert payload["summary"] == "[Task] Quarterly review (moved)"
    assert task.google_calendar_event_id == "gcal-1"
    assert len(records(db)) == 1


def test_clearing_due_date_removes_projection(db, calendar, enable_sync, make_task, member):
    enable_sync(member)
    task = make_task(member)
    calendar_sync.sync_task_for_user(db, calendar, task, member.id, is_trigger=True)

    task.due_date = None
    task.start_date = None
    db.add(task)
    db.commit()

    assert calendar_sync.sync_task_for_user(db, calendar, task, member.id, is_trigger=True) == SyncOutcome.DELETED
    assert calendar.deleted == [(member.id, "gcal-1", "tms-calendar")]
    assert records(db) == []
    assert task.google_calendar_event_id is None


def test_primary_calendar_is_replaced_by_dedicated_calendar(db, calendar, enable_sync, make_task, member):
    sync_settings = enable_sync(member, calendar_id="primary")
    task = make_task(member)

    calendar_sync.sync_task_for_user(db, calendar, task, member.id)

    assert calendar.calendar_lookups == 1
    assert calendar.created[0][2] == "tms-calendar"
    db.refresh(sync_settings)
    assert sync_settings.google_calendar_id == "tms-calendar"


def test_event_deleted_on_google_is_recreated(db, calendar, enable_sync, make_task, member):
    enable_sync(member)
    task = make_task(member)
    calendar_sync.sync_task_for_user(db, calendar, task, member.id)
    calendar.missing_event_ids.add("gcal-1")

    task.title = "Quarterly review v2"
    db.add(task)
    db.commit()

    assert calendar_sync.sync_task_for_user(db, calendar, task, member.id) == SyncOutcome.CREATED
    (record,) = records(db)
    assert record.google_calendar_event_id == "gcal-2"


def test_changed_target_calendar_moves_the_event(db, calendar, enable_sync, make_task, member):
    sync_settings = enable_sync(member)
    task = make_task(member)
    calendar_sync.sync_task_for_user(db, calendar, task, member.id)

    sync_settings.google_calendar_id = "work-calendar"
    db.add(sync_settings)
    db.commit()

    assert calendar_sync.sync_task_for_user(db, calendar, task, member.id) == SyncOutcome.CREATED
    assert calendar.deleted == [(member.id, "gcal-1", "tms-calendar")]
    (record,) = records(db)
    assert (record.google_calendar_id, record.google_calendar_event_id) == ("work-calendar", "gcal-2")


def test_auto_sync_covers_every_involved_user(db, calendar, enable_sync, make_task, member, outsider):
    enable_sync(member)
    enable_sync(outsider)
    task = make_task(member, assignee=outsider)

    warnings = calendar_sync.auto_sync_task(db, calendar, task, outsider.id)

    assert warnings == []
    assert [user_id for user_id, _, _ in calendar.created] == [outsider.id, member.id]
    # The triggering user's event id is mirrored on the task
    assert task.google_calendar_event_id == "gcal-1"


def test_auto_sync_turns_failures_into_warnings(db, calendar, enable_sync, make_task, member):
    enable_sync(member)
    task = make_task(member)
    calendar.fail = True

    warnings = calendar_sync.auto_sync_task(db, calendar, task, member.id)

    assert len(warnings) == 1
    assert warnings[0].startswith(f"Calendar sync failed for user {member.id}")
    assert records(db) == []


def test_delete_synced_task_is_best_effort(db, calendar, enable_sync, make_task, member):
    enable_sync(member)
    task = make_task(member)
    calendar_sync.sync_task_for_user(db, calendar, task, member.id)
    calendar.fail = True

    warnings = calendar_sync.delete_synced_task(db, calendar, task)
    db.commit()

    assert len(warnings) == 1
    assert records(db) == []


# ----------------------------------------------------------------------
# Bulk sync
# ----------------------------------------------------------------------


def test_bulk_sync_requires_enabled_settings(db, calendar, enable_sync, member, outsider):
    with pytest.raises(SyncNotAvailable):
        calendar_sync.sync_to_google(db, calendar, member.id)

    enable_sync(member, direction=SyncDirection.GOOGLE_TO_TMS)
    with pytest.raises(SyncNotAvailable):
        calendar_sync.sync_to_google(db, calendar, member.id)

    enable_sync(outsider, direction=SyncDirection.TMS_TO_GOOGLE)
    with pytest.raises(SyncNotAvailable):
        calendar_sync.sync_from_google(db, calendar, outsider.id)


def test_direction_flags():
    both = CalendarSyncSettings(user_id="u1", is_enabled=True)
    assert both.pushes_to_google and both.pulls_from_google

    export_only = CalendarSyncSettings(user_id="u1", is_enabled=True, sync_direction=SyncDirection.TMS_TO_GOOGLE)
    assert export_only.pushes_to_google and not export_only.pulls_from_google

    disabled = CalendarSyncSettings(user_id="u1", sync_direction=SyncDirection.GOOGLE_TO_TMS)
    assert not disabled.pulls_from_google


def test_sync_to_google_pushes_events_and_tasks(db, calendar, enable_sync, make_task, member):
    enable_sync(member)
    make_task(member)
    make_task(member, title="Someday", due_date=None)
    event = Event(
        title="Dentist", start_time=datetime(2024, 9, 1, 9, tzinfo=UTC), end_time=datetime(2024, 9, 1, 10, tzinfo=UTC),
        creator_id=member.id, type=EventType.PERSONAL,
    )
    db.add(event)
    db.commit()

    results = calendar_sync.sync_to_google(db, calendar, member.id)

    assert (results.created, results.updated, results.failed) == (2, 0, 0)
    db.refresh(event)
    assert event.google_calendar_event_id is not None

    again = calendar_sync.sync_to_google(db, calendar, member.id)
    assert (again.created, again.updated, again.skipped) == (0, 0, 1)


def test_sync_to_google_respects_event_toggles(db, calendar, enable_sync, member):
    enable_sync(member, sync_personal_events=False)
    db.add(
        Event(
            title="Gym", start_time=datetime(2024, 9, 1, 18, tzinfo=UTC), end_time=datetime(2024, 9, 1, 19, tzinfo=UTC),
            creator_id=member.id, type=EventType.PERSONAL,
        )
    )
    db.commit()

    results = calendar_sync.sync_to_google(db, calendar, member.id)

    assert (results.created, results.skipped) == (0, 1)


def test_sync_to_google_collects_failures(db, calendar, enable_sync, make_task, member):
    enable_sync(member)
    make_task(member)
    calendar.fail = True

    results = calendar_sync.sync_to_google(db, calendar, member.id)

    assert results.failed == 1
    assert results.errors[0].startswith("[Task] Quarterly review")


def test_sync_from_google_skips_task_projections_and_upserts(db, calendar, enable_sync, make_task, member):
    enable_sync(member)
    task = make_task(member)
    calendar_sync.sync_task_for_user(db, calendar, task, member.id)

    calendar.remote_events = [
        {"id": "gcal-1", "summary": "Renamed in Google", "start": {"date": "2024-09-30"}},
        {"id": "other", "summary": "[Task] Someone else's task", "start": {"date": "2024-09-30"}},
        {
            "id": "lunch",
            "summary": "Lunch",
            "start": {"dateTime": "2024-09-02T12:00:00Z"},
            "end": {"dateTime": "2024-09-02T13:00:00Z"},
        },
        {"id": "broken", "summary": "No start"},
    ]

    results = calendar_sync.sync_from_google(db, calendar, member.id)
    assert (results.created, results.updated, results.skipped, results.failed) == (1, 0, 2, 1)

    calendar.remote_events[2]["summary"] = "Team lunch"
    again = calendar_sync.sync_from_google(db, calendar, member.id)
    assert (again.created, again.updated) == (0, 1)

    (imported,) = db.exec(select(Event)).all()
    assert imported.title == "Team lunch"
    assert imported.type == EventType.PERSONAL
    assert imported.start_time == datetime(2024, 9, 2, 12, tzinfo=UTC)
    assert db.exec(select(CalendarSyncSettings)).one().last_synced_at is not None


# ----------------------------------------------------------------------
# Orphaned task events and holidays
# ----------------------------------------------------------------------


def test_cleanup_deletes_only_untracked_task_events(db, calendar, enable_sync, make_task, member):
    enable_sync(member)
    calendar_sync.sync_task_for_user(db, calendar, make_task(member), member.id)
    calendar.deleted.clear()

    calendar.remote_events = [
        {"id": "gcal-1", "summary": "[Task] Quarterly review"},
        {"id": "left-over", "summary": "[Task] Old offsite"},
        {"id": "stuck", "summary": "[Task] Stuck"},
        {"id": "lunch", "summary": "Lunch"},
        {"summary": "[Task] No id"},
    ]
    calendar.undeletable_event_ids = {"stuck"}

    results = calendar_sync.cleanup_orphaned_task_events(db, calendar, member.id)

    assert (results.total_events, results.tracked_events, results.orphaned) == (5, 1, 2)
    assert (results.deleted, results.failed) == (1, 1)
    assert calendar.deleted == [(member.id, "left-over", "tms-calendar")]
    assert [record.google_calendar_event_id for record in records(db)] == ["gcal-1"]


def test_cleanup_resolves_task_calendar_and_requires_sync(db, calendar, enable_sync, member, outsider):
    with pytest.raises(SyncNotAvailable):
        calendar_sync.cleanup_orphaned_task_events(db, calendar, outsider.id)

    enable_sync(member, calendar_id="primary")
    calendar_sync.cleanup_orphaned_task_events(db, calendar, member.id)

    assert calendar.calendar_lookups == 1
    assert calendar.listed[0][0] == "tms-calendar"


def test_holidays_require_opt_in(db, calendar, enable_sync, member, outsider):
    enable_sync(member)
    calendar.remote_events = [{"id": "h1", "summary": "New Year's Day", "start": {"date": "2025-01-01"}}]

    assert calendar_sync.list_holidays(db, calendar, member.id) == []
    assert calendar_sync.list_holidays(db, calendar, outsider.id) == []
    assert calendar.listed == []


def test_holidays_come_from_the_regional_calendar(db, calendar, enable_sync, member):
    enable_sync(member, sync_holidays=True)
    calendar.remote_events = [
        {"id": "h1", "summary": "New Year's Day", "start": {"date": "2025-01-01"}},
        {"id": "h2", "summary": "Labor Day", "start": {"date": "2025-05-01"}, "description": "Public holiday"},
    ]

    holidays = calendar_sync.list_holidays(db, calendar, member.id, country="en.usa", year=2025)

    assert holidays[0] == {
        "id": "h1",
        "title": "New Year's Day",
        "date": "2025-01-01",
        "description": None,
        "is_holiday": True,
    }
    assert holidays[1]["description"] == "Public holiday"
    ((calendar_id, time_min, time_max, max_results),) = calendar.listed
    assert calendar_id == "en.usa#holiday@group.v.calendar.google.com"
    assert time_min == datetime(2025, 1, 1, tzinfo=UTC)
    assert time_max.year == 2025 and time_max.month == 12 and time_max.day == 31
    assert max_results == 100


def test_holidays_are_empty_when_calendar_fails(db, calendar, enable_sync, member):
    enable_sync(member, sync_holidays=True)
    calendar.fail = True

    assert calendar_sync.list_holidays(db, calendar, member.id) == []


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------


def test_enabling_sync_resolves_dedicated_calendar(db, calendar, member):
    sync_settings = calendar_sync.update_sync_settings(
        db, calendar, member.id, CalendarSyncSettingsUpdate(is_enabled=True, google_access_token="token")
    )
    assert sync_settings.google_calendar_id == "tms-calendar"
    assert sync_settings.sync_direction == SyncDirection.BOTH


def test_enabling_sync_falls_back_to_primary(db, calendar, member):
    calendar.fail = True
    sync_settings = calendar_sync.update_sync_settings(
        db, calendar, member.id, CalendarSyncSettingsUpdate(is_enabled=True)
    )
    assert sync_settings.google_calendar_id == "primary"


def test_disconnect_forgets_google(db, calendar, enable_sync, make_task, member):
    enable_sync(member)
    task = make_task(member)
    calendar_sync.sync_task_for_user(db, calendar, task, member.id)
    db.add(
        Event(
            title="Imported", start_time=datetime(2024, 9, 1, tzinfo=UTC), end_time=datetime(2024, 9, 1, tzinfo=UTC),
            creator_id=member.id, google_calendar_event_id="ext-1",
        )
    )
    db.add(
        Event(
            title="Local",
            start_time=datetime(2024, 9, 1, tzinfo=UTC),
            end_time=datetime(2024, 9, 1, tzinfo=UTC),
            creator_id=member.id,
        )
    )
    db.commit()

    assert calendar_sync.disconnect(db, member.id) == 1

    assert [event.title for event in db.exec(select(Event)).all()] == ["Local"]
    assert records(db) == []
    sync_settings = calendar_sync.get_sync_settings(db, member.id)
    assert not sync_settings.is_enabled
    assert sync_settings.google_access_token is None
    assert sync_settings.google_refresh_token is None


def test_disconnect_without_settings(db, member):
    with pytest.raises(NotFound):
        calendar_sync.disconnect(db, member.id)
