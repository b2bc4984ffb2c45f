"""
Google Calendar Client Module

Thin synchronous client for the Google Calendar v3 REST API, authenticated
with the OAuth tokens stored on each user's CalendarSyncSettings row.

Only the calls the sync orchestrator needs are implemented: event create /
update / delete / list, calendar listing, and resolving the dedicated task
calendar. Every HTTP or transport failure surfaces as CalendarServiceError.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import httpx
from sqlmodel import Session, select

from app.core.config import settings
from app.core.exceptions import ExternalSyncFailure
from app.core.logging import get_logger
from app.models.base import as_utc, utcnow
from app.models.calendar_sync import CalendarSyncSettings
from app.services.calendar_codec import EVENT_TIME_ZONE, format_rfc3339

logger = get_logger(__name__)

# Largest page the events.list endpoint accepts
MAX_PAGE_SIZE = 2500


class CalendarServiceError(ExternalSyncFailure):
    """A Calendar API call failed; status_code is None for transport errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CalendarService(Protocol):
    """Operations the sync orchestrator needs from an external calendar."""

    def create_event(self, user_id: str, payload: Dict[str, Any], calendar_id: Optional[str] = None) -> Dict[str, Any]:
        ...

    def update_event(
        self, user_id: str, event_id: str, payload: Dict[str, Any], calendar_id: Optional[str] = None
    ) -> Dict[str, Any]:
        ...

    def delete_event(self, user_id: str, event_id: str, calendar_id: Optional[str] = None) -> None:
        ...

    def list_events(
        self,
        user_id: str,
        calendar_id: Optional[str] = None,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
        max_results: int = MAX_PAGE_SIZE,
    ) -> List[Dict[str, Any]]:
        ...

    def find_or_create_tms_calendar(self, user_id: str) -> str:
        ...


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return payload.get("error_description") or error
    return response.reason_phrase


class GoogleCalendarService:
    """
    Google Calendar API client bound to one database session.

    Access tokens are refreshed with the stored refresh token when they are
    expired or when the API answers 401, and the new token is written back to
    the user's settings row.
    """

    def __init__(self, db: Session, http_client: Optional[httpx.Client] = None):
        self.db = db
        self._http = http_client or httpx.Client(timeout=settings.GOOGLE_REQUEST_TIMEOUT_SECONDS)
        self._owns_http = http_client is None

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def _settings_for(self, user_id: str) -> CalendarSyncSettings:
        sync_settings = self.db.exec(
            select(CalendarSyncSettings).where(CalendarSyncSettings.user_id == user_id)
        ).first()
        if not sync_settings or not (sync_settings.google_access_token or sync_settings.google_refresh_token):
            raise CalendarServiceError("Google Calendar is not connected for this user")
        return sync_settings

    def _refresh_access_token(self, sync_settings: CalendarSyncSettings) -> str:
        if not sync_settings.google_refresh_token:
            raise CalendarServiceError("Google access token expired and no refresh token is stored", 401)
        try:
            response = self._http.post(
                settings.GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID or "",
                    "client_secret": settings.GOOGLE_CLIENT_SECRET or "",
                    "refresh_token": sync_settings.google_refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise CalendarServiceError(f"Token refresh request failed: {exc}") from exc

        if response.status_code >= 300:
            raise CalendarServiceError(
                f"Token refresh failed ({response.status_code}): {_error_message(response)}",
                response.status_code,
            )

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise CalendarServiceError("Token refresh response has no access_token")

        expires_in = int(payload.get("expires_in") or 3600)
        sync_settings.google_access_token = access_token
        sync_settings.google_token_expiry = utcnow() + timedelta(seconds=expires_in)
        sync_settings.updated_at = utcnow()
        # Flush only: the caller owns the transaction and commits or rolls back with its own work
        self.db.add(sync_settings)
        self.db.flush()
        logger.info("calendar.token.refreshed", extra={"user_id": sync_settings.user_id})
        return access_token

    def _access_token(self, sync_settings: CalendarSyncSettings) -> str:
        expiry = as_utc(sync_settings.google_token_expiry)
        if sync_settings.google_access_token and (expiry is None or expiry > utcnow()):
            return sync_settings.google_access_token
        return self._refresh_access_token(sync_settings)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _send(self, method: str, url: str, token: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._http.request(method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs)
        except httpx.HTTPError as exc:
            raise CalendarServiceError(f"Google Calendar request failed: {exc}") from exc

    def _request(
        self,
        user_id: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        allow_missing: bool = False,
    ) -> Dict[str, Any]:
        sync_settings = self._settings_for(user_id)
        url = f"{settings.GOOGLE_CALENDAR_API_URL}{path}"

        response = self._send(method, url, self._access_token(sync_settings), params=params, json=json_body)
        if response.status_code == 401:
            # Stored expiry can be stale; refresh once and retry
            token = self._refresh_access_token(sync_settings)
            response = self._send(method, url, token, params=params, json=json_body)

        if allow_missing and response.status_code in (404, 410):
            return {}
        if response.status_code >= 300:
            raise CalendarServiceError(
                f"Google Calendar API request failed ({response.status_code}): {_error_message(response)}",
                response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    @staticmethod
    def _calendar_path(calendar_id: Optional[str]) -> str:
        return quote(calendar_id or settings.DEFAULT_CALENDAR_ID, safe="")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def create_event(self, user_id: str, payload: Dict[str, Any], calendar_id: Optional[str] = None) -> Dict[str, Any]:
        return self._request(user_id, "POST", f"/calendars/{self._calendar_path(calendar_id)}/events", json_body=payload)

    def update_event(
        self, user_id: str, event_id: str, payload: Dict[str, Any], calendar_id: Optional[str] = None
    ) -> Dict[str, Any]:
        path = f"/calendars/{self._calendar_path(calendar_id)}/events/{quote(event_id, safe='')}"
        return self._request(user_id, "PUT", path, json_body=payload)

    def delete_event(self, user_id: str, event_id: str, calendar_id: Optional[str] = None) -> None:
        # An event already removed on the Google side counts as deleted
        path = f"/calendars/{self._calendar_path(calendar_id)}/events/{quote(event_id, safe='')}"
        self._request(user_id, "DELETE", path, allow_missing=True)

    def list_events(
        self,
        user_id: str,
        calendar_id: Optional[str] = None,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
        max_results: int = MAX_PAGE_SIZE,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": min(max_results, MAX_PAGE_SIZE),
        }
        if time_min is not None:
            params["timeMin"] = format_rfc3339(time_min)
        if time_max is not None:
            params["timeMax"] = format_rfc3339(time_max)

        events: List[Dict[str, Any]] = []
        path = f"/calendars/{self._calendar_path(calendar_id)}/events"
        while True:
            payload = self._request(user_id, "GET", path, params=params)
            events.extend(item for item in payload.get("items", []) if isinstance(item, dict))
            page_token = payload.get("nextPageToken")
            if not page_token or len(events) >= max_results:
                break
            params["pageToken"] = page_token
        return events[:max_results]

    # ------------------------------------------------------------------
    # Calendars
    # ------------------------------------------------------------------

    def list_calendars(self, user_id: str) -> List[Dict[str, Any]]:
        payload = self._request(user_id, "GET", "/users/me/calendarList")
        return [item for item in payload.get("items", []) if isinstance(item, dict)]

    def find_or_create_tms_calendar(self, user_id: str) -> str:
        """Return the id of the user's dedicated task calendar, creating it on first use."""
        for calendar in self.list_calendars(user_id):
            if calendar.get("summary") == settings.TMS_CALENDAR_NAME:
                return calendar["id"]

        created = self._request(
            user_id,
            "POST",
            "/calendars",
            json_body={
                "summary": settings.TMS_CALENDAR_NAME,
                "description": "Tasks synced from the task management system",
                "timeZone": EVENT_TIME_ZONE,
            },
        )
        logger.info("calendar.tms_calendar.created", extra={"user_id": user_id, "calendar_id": created.get("id")})
        return created["id"]
