"""
Calendar Event Codec Module

Pure translation between local tasks/events and Google Calendar event
payloads. No I/O: the sync orchestrator decides when to call the API.

Wire shape produced and consumed:

    {
        "summary": str,
        "description": str,                       # optional
        "start": {"date": "YYYY-MM-DD"} | {"dateTime": RFC3339, "timeZone": "UTC"},
        "end":   same as start,
        "colorId": "2" | "5" | "6" | "11" | ...,   # optional
        "location": str,                          # optional
        "recurrence": [str],                      # optional
    }

All-day events use an exclusive end date: an event covering Jan 10-12 ends on
Jan 13. Encoding adds that day; decoding removes it again.
"""
import hashlib
import json
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from app.models.base import as_utc, utcnow
from app.models.event import EventType
from app.models.task import TaskPriority

TASK_SUMMARY_PREFIX = "[Task] "
EVENT_TIME_ZONE = "UTC"
UNTITLED_EVENT = "Untitled Event"

PRIORITY_COLORS = {
    TaskPriority.LOW: "2",
    TaskPriority.MEDIUM: "5",
    TaskPriority.HIGH: "6",
    TaskPriority.URGENT: "11",
}

EVENT_TYPE_COLORS = {
    EventType.MEETING: "9",
    EventType.DEADLINE: "11",
    EventType.REMINDER: "5",
    EventType.MILESTONE: "10",
    EventType.PERSONAL: "3",
}


def format_rfc3339(value: datetime) -> str:
    """UTC timestamp with millisecond precision and a Z suffix."""
    value = as_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_google_datetime(value: str) -> datetime:
    """Parse an RFC3339 `dateTime` into an aware UTC datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(value))


def parse_google_date(value: str) -> datetime:
    return datetime.combine(date.fromisoformat(value), time.min, tzinfo=timezone.utc)


def person_name(user: Any) -> Optional[str]:
    """First + last name, then name, then email."""
    if user is None:
        return None
    first_name = getattr(user, "first_name", None)
    last_name = getattr(user, "last_name", None)
    if first_name and last_name:
        return f"{first_name} {last_name}"
    return getattr(user, "name", None) or getattr(user, "email", None)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _names(links: Optional[List[Any]]) -> List[str]:
    names = []
    for link in links or []:
        name = person_name(getattr(link, "user", None))
        if name:
            names.append(name)
    return names


def build_task_description(task: Any) -> str:
    """
    Meeting link first, then Status / Priority / Progress / Type / Assignee /
    Creator / Team Members / Collaborators, skipping anything absent.
    """
    lines: List[str] = []
    if task.meeting_link:
        lines.append(f"Meeting Link: {task.meeting_link}")
    if task.status is not None:
        lines.append(f"Status: {_enum_value(task.status)}")
    if task.priority is not None:
        lines.append(f"Priority: {_enum_value(task.priority)}")
    if task.progress_percentage is not None:
        lines.append(f"Progress: {task.progress_percentage}%")
    if task.task_type is not None:
        lines.append(f"Type: {_enum_value(task.task_type)}")

    assignee = person_name(getattr(task, "assignee", None))
    if assignee:
        lines.append(f"Assignee: {assignee}")
    creator = person_name(getattr(task, "creator", None))
    if creator:
        lines.append(f"Creator: {creator}")

    team_members = _names(getattr(task, "team_members", None))
    if team_members:
        lines.append(f"Team Members: {', '.join(team_members)}")
    collaborators = _names(getattr(task, "collaborators", None))
    if collaborators:
        lines.append(f"Collaborators: {', '.join(collaborators)}")

    return "\n".join(lines)


def _all_day_boundaries(start: datetime, last_day: datetime) -> Dict[str, Dict[str, str]]:
    return {
        "start": {"date": start.date().isoformat()},
        "end": {"date": (last_day + timedelta(days=1)).date().isoformat()},
    }


def _timed_boundaries(start: datetime, end: datetime) -> Dict[str, Dict[str, str]]:
    return {
        "start": {"dateTime": format_rfc3339(start), "timeZone": EVENT_TIME_ZONE},
        "end": {"dateTime": format_rfc3339(end), "timeZone": EVENT_TIME_ZONE},
    }


def task_to_calendar_event(task: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Project a task onto a Google Calendar event payload.

    Deterministic for any task that has a start or due date; `now` is only
    consulted for undated tasks.
    """
    start_date = as_utc(task.start_date) if task.start_date else None
    due_date = as_utc(task.due_date) if task.due_date else None

    start_time = start_date or due_date or as_utc(now or utcnow())
    end_time = due_date or start_time + timedelta(hours=1)

    payload: Dict[str, Any] = {
        "summary": TASK_SUMMARY_PREFIX + task.title,
        "description": build_task_description(task),
    }

    if task.all_day:
        payload.update(_all_day_boundaries(start_time, end_time))
    else:
        if start_date and due_date:
            # Date-range task: stretch to the very end of the due day
            end_time = datetime.combine(due_date.date(), time(23, 59, 59, 999000), tzinfo=timezone.utc)
        payload.update(_timed_boundaries(start_time, end_time))

    color = PRIORITY_COLORS.get(TaskPriority(task.priority)) if task.priority is not None else None
    if color:
        payload["colorId"] = color
    if task.location:
        payload["location"] = task.location
    if task.recurrence:
        payload["recurrence"] = [task.recurrence]

    return payload


def event_to_calendar_event(event: Any) -> Dict[str, Any]:
    """Project a locally authored Event onto a Google Calendar payload."""
    payload: Dict[str, Any] = {
        "summary": event.title,
        "description": event.description or "",
    }
    start_time = as_utc(event.start_time)
    end_time = as_utc(event.end_time)
    if event.all_day:
        payload.update(_all_day_boundaries(start_time, end_time))
    else:
        payload.update(_timed_boundaries(start_time, end_time))

    color = EVENT_TYPE_COLORS.get(EventType(event.type)) if event.type is not None else None
    if color:
        payload["colorId"] = color
    if getattr(event, "location", None):
        payload["location"] = event.location
    return payload


def calendar_event_to_task(event: Dict[str, Any], owner_id: str, calendar_id: str = "primary") -> Dict[str, Any]:
    """
    Turn an external event into the fields of a local PERSONAL Event.

    Task-specific fields are not reconstructed; the external event knows
    nothing about priority or assignees.
    """
    start = event.get("start") or {}
    end = event.get("end") or {}
    all_day = "dateTime" not in start

    if all_day:
        start_time = parse_google_date(start["date"])
        end_value = end.get("date")
        if end_value:
            # Exclusive end date back to the last included day
            end_time = parse_google_date(end_value) - timedelta(days=1)
            if end_time < start_time:
                end_time = start_time
        else:
            end_time = start_time
    else:
        start_time = parse_google_datetime(start["dateTime"])
        end_value = end.get("dateTime")
        end_time = parse_google_datetime(end_value) if end_value else start_time

    return {
        "title": event.get("summary") or UNTITLED_EVENT,
        "description": event.get("description") or "",
        "start_time": start_time,
        "end_time": end_time,
        "all_day": all_day,
        "location": event.get("location"),
        "type": EventType.PERSONAL,
        "creator_id": owner_id,
        "google_calendar_id": calendar_id,
        "google_calendar_event_id": event.get("id"),
    }


def payload_fingerprint(payload: Dict[str, Any]) -> str:
    """Stable hash of a payload; equal payloads always hash equal."""
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
