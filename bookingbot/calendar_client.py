"""
Google Calendar client.
Talks to the Calendar v3 REST API with httpx, using one business's OAuth tokens.
"""

import json
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from bookingbot.clock import business_tz, parse_iso
from bookingbot.config import config
from bookingbot.errors import CollaboratorUnavailable
from bookingbot.logging_config import get_logger

logger = get_logger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"

REMINDER_MINUTES = 60
HTTP_TIMEOUT_SECONDS = 15.0


class CalendarEvent(BaseModel):
    """A timed external calendar event, in business-local wall-clock time."""
    id: str
    summary: Optional[str] = None
    start: datetime
    end: Optional[datetime] = None

    @property
    def duration_minutes(self) -> Optional[int]:
        if self.end is None or self.end <= self.start:
            return None
        return int((self.end - self.start).total_seconds() // 60)


def load_credentials(blob: Optional[str]) -> Dict[str, Any]:
    """Parse the stored credential blob; an unreadable blob counts as disconnected."""
    if not blob:
        return {}
    try:
        data = json.loads(blob)
    except (TypeError, ValueError):
        logger.warning("calendar_credentials_unreadable")
        return {}
    return data if isinstance(data, dict) else {}


def build_authorization_url(business_id: int) -> str:
    """Google consent URL; the business id travels in ``state``."""
    params = {
        "client_id": config.GOOGLE_CLIENT_ID,
        "redirect_uri": config.GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": CALENDAR_SCOPE,
        "access_type": "offline",
        "prompt": "consent",
        "state": str(business_id),
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


async def exchange_code(code: str) -> Dict[str, Any]:
    """Exchange an OAuth authorization code for tokens."""
    try:
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": config.GOOGLE_CLIENT_ID,
                    "client_secret": config.GOOGLE_CLIENT_SECRET,
                    "redirect_uri": config.GOOGLE_REDIRECT_URI,
                    "grant_type": "authorization_code",
                },
            )
    except httpx.HTTPError as e:
        raise CollaboratorUnavailable("calendar", f"token exchange failed: {e}") from e

    if response.status_code != 200:
        logger.error("calendar_token_exchange_failed", status_code=response.status_code, body=response.text)
        raise CollaboratorUnavailable("calendar", "token exchange rejected")

    tokens = response.json()
    expires_in = tokens.pop("expires_in", None)
    if expires_in:
        tokens["expiry_date"] = int((time.time() + int(expires_in)) * 1000)
    return tokens


class GoogleCalendarClient:
    """
    Calendar access scoped to one business.

    Build a fresh instance per operation; refreshed tokens are handed to
    ``on_token_refresh`` so the caller can persist them.
    """

    def __init__(
        self,
        credentials: Dict[str, Any],
        calendar_id: str = "primary",
        timezone: Optional[str] = None,
        on_token_refresh: Optional[Callable[[Dict[str, Any]], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = dict(credentials)
        self.calendar_id = calendar_id or "primary"
        self.timezone = timezone or config.BUSINESS_TIMEZONE
        self.on_token_refresh = on_token_refresh
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS, transport=self._transport)

    def _token_expired(self) -> bool:
        expiry_ms = self.credentials.get("expiry_date")
        if not expiry_ms:
            return False
        # Refresh a minute early
        return time.time() * 1000 >= int(expiry_ms) - 60_000

    async def _refresh_access_token(self) -> None:
        refresh_token = self.credentials.get("refresh_token")
        if not refresh_token:
            raise CollaboratorUnavailable("calendar", "access token expired and no refresh token stored")

        try:
            async with self._client() as client:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": config.GOOGLE_CLIENT_ID,
                        "client_secret": config.GOOGLE_CLIENT_SECRET,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
        except httpx.HTTPError as e:
            raise CollaboratorUnavailable("calendar", f"token refresh failed: {e}") from e

        if response.status_code != 200:
            logger.error("calendar_token_refresh_failed", status_code=response.status_code, body=response.text)
            raise CollaboratorUnavailable("calendar", "token refresh rejected")

        tokens = response.json()
        self.credentials["access_token"] = tokens["access_token"]
        self.credentials["expiry_date"] = int((time.time() + int(tokens.get("expires_in", 3600))) * 1000)
        logger.info("calendar_token_refreshed", calendar_id=self.calendar_id)

        if self.on_token_refresh:
            self.on_token_refresh(dict(self.credentials))

    async def _request(self, method: str, path: str, ignore_statuses: tuple = (), **kwargs) -> httpx.Response:
        if self._token_expired():
            await self._refresh_access_token()

        url = f"{GOOGLE_CALENDAR_API}/calendars/{self.calendar_id}{path}"
        headers = {"Authorization": f"Bearer {self.credentials.get('access_token', '')}"}

        try:
            async with self._client() as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise CollaboratorUnavailable("calendar", f"{method} {path} failed: {e}") from e

        if response.status_code >= 400 and response.status_code not in ignore_statuses:
            logger.error(
                "calendar_request_failed",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise CollaboratorUnavailable("calendar", f"{method} {path} returned {response.status_code}")

        return response

    def _event_time(self, value: datetime) -> Dict[str, str]:
        return {"dateTime": value.replace(tzinfo=None).isoformat(), "timeZone": self.timezone}

    async def list_events(self, time_min: datetime, time_max: datetime) -> List[CalendarEvent]:
        """List timed events between two local times. All-day events are skipped."""
        tz = business_tz()
        params = {
            "timeMin": time_min.replace(tzinfo=tz).isoformat(),
            "timeMax": time_max.replace(tzinfo=tz).isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "timeZone": self.timezone,
            "maxResults": 250,
        }

        events: List[CalendarEvent] = []
        while True:
            response = await self._request("GET", "/events", params=params)
            data = response.json()
            for item in data.get("items", []):
                start = (item.get("start") or {}).get("dateTime")
                if not start or item.get("status") == "cancelled":
                    continue
                end = (item.get("end") or {}).get("dateTime")
                events.append(CalendarEvent(
                    id=item["id"],
                    summary=item.get("summary"),
                    start=parse_iso(start),
                    end=parse_iso(end) if end else None,
                ))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        return events

    async def insert_event(self, summary: str, description: str, start: datetime, end: datetime) -> str:
        """Create an event with a popup reminder; returns the event id."""
        body = {
            "summary": summary,
            "description": description,
            "start": self._event_time(start),
            "end": self._event_time(end),
            "reminders": {
                "useDefault": False,
                "overrides": [{"method": "popup", "minutes": REMINDER_MINUTES}],
            },
        }
        response = await self._request("POST", "/events", json=body)
        event_id = response.json()["id"]
        logger.info("calendar_event_created", event_id=event_id)
        return event_id

    async def patch_event(self, event_id: str, start: datetime, end: datetime) -> None:
        body = {"start": self._event_time(start), "end": self._event_time(end)}
        await self._request("PATCH", f"/events/{event_id}", json=body)
        logger.info("calendar_event_updated", event_id=event_id)

    async def delete_event(self, event_id: str) -> None:
        # Already gone on the Google side counts as deleted
        await self._request("DELETE", f"/events/{event_id}", ignore_statuses=(404, 410))
        logger.info("calendar_event_deleted", event_id=event_id)
