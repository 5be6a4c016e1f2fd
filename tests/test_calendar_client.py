"""
Tests for the Google Calendar REST client, using httpx.MockTransport.
"""

import asyncio
import json
import time
from datetime import datetime
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from bookingbot.calendar_client import (
    GoogleCalendarClient,
    build_authorization_url,
    load_credentials,
)
from bookingbot.errors import CollaboratorUnavailable


def make_client(handler, **credentials):
    creds = {"access_token": "tok", "refresh_token": "refresh"}
    creds.update(credentials)
    return GoogleCalendarClient(creds, calendar_id="primary", transport=httpx.MockTransport(handler))


def test_list_events_skips_all_day_and_cancelled_and_paginates():
    pages = {
        None: {
            "items": [
                {"id": "a", "summary": "תספורת", "start": {"dateTime": "2030-03-04T10:00:00+02:00"},
                 "end": {"dateTime": "2030-03-04T10:45:00+02:00"}},
                {"id": "holiday", "start": {"date": "2030-03-05"}, "end": {"date": "2030-03-06"}},
            ],
            "nextPageToken": "p2",
        },
        "p2": {
            "items": [
                {"id": "gone", "status": "cancelled", "start": {"dateTime": "2030-03-04T12:00:00+02:00"}},
                {"id": "b", "start": {"dateTime": "2030-03-04T08:00:00Z"}},
            ],
        },
    }
    seen = []

    def handler(request):
        seen.append(request)
        assert request.headers["Authorization"] == "Bearer tok"
        return httpx.Response(200, json=pages[request.url.params.get("pageToken")])

    events = asyncio.run(make_client(handler).list_events(datetime(2030, 3, 4), datetime(2030, 4, 3)))

    assert [e.id for e in events] == ["a", "b"]
    assert events[0].start == datetime(2030, 3, 4, 10, 0)
    assert events[0].duration_minutes == 45
    # 08:00Z is 10:00 in Jerusalem (winter time)
    assert events[1].start == datetime(2030, 3, 4, 10, 0)
    assert events[1].duration_minutes is None
    assert seen[0].url.params["singleEvents"] == "true"


def test_insert_event_sets_timezone_and_reminder():
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "evt-42"})

    event_id = asyncio.run(make_client(handler).insert_event(
        "תור - דנה", "לקוח: דנה", datetime(2030, 3, 4, 15, 0), datetime(2030, 3, 4, 15, 30)
    ))

    body = captured["body"]
    assert event_id == "evt-42"
    assert body["start"] == {"dateTime": "2030-03-04T15:00:00", "timeZone": "Asia/Jerusalem"}
    assert body["reminders"]["overrides"] == [{"method": "popup", "minutes": 60}]


def test_patch_event():
    captured = {}

    def handler(request):
        captured["method"] = request.method
        captured["path"] = request.url.path
        return httpx.Response(200, json={"id": "evt-1"})

    asyncio.run(make_client(handler).patch_event("evt-1", datetime(2030, 3, 5, 9, 0), datetime(2030, 3, 5, 9, 30)))

    assert captured["method"] == "PATCH"
    assert captured["path"].endswith("/calendars/primary/events/evt-1")


@pytest.mark.parametrize("status", [204, 404, 410])
def test_delete_event_tolerates_already_deleted(status):
    asyncio.run(make_client(lambda request: httpx.Response(status)).delete_event("evt-1"))


def test_http_errors_become_collaborator_unavailable():
    with pytest.raises(CollaboratorUnavailable):
        asyncio.run(make_client(lambda request: httpx.Response(500, text="boom")).delete_event("evt-1"))

    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(CollaboratorUnavailable):
        asyncio.run(make_client(handler).list_events(datetime(2030, 3, 4), datetime(2030, 4, 3)))


def test_expired_token_is_refreshed_and_persisted():
    persisted = []

    def handler(request):
        if request.url.host == "oauth2.googleapis.com":
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["refresh_token"]
            assert form["refresh_token"] == ["refresh"]
            return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})
        assert request.headers["Authorization"] == "Bearer fresh"
        return httpx.Response(200, json={"items": []})

    client = GoogleCalendarClient(
        {"access_token": "stale", "refresh_token": "refresh", "expiry_date": int(time.time() * 1000) - 1000},
        transport=httpx.MockTransport(handler),
        on_token_refresh=persisted.append,
    )
    asyncio.run(client.list_events(datetime(2030, 3, 4), datetime(2030, 4, 3)))

    assert persisted[0]["access_token"] == "fresh"
    assert persisted[0]["refresh_token"] == "refresh"


def test_expired_token_without_refresh_token():
    client = GoogleCalendarClient(
        {"access_token": "stale", "expiry_date": 1},
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"items": []})),
    )
    with pytest.raises(CollaboratorUnavailable):
        asyncio.run(client.list_events(datetime(2030, 3, 4), datetime(2030, 4, 3)))


def test_load_credentials_tolerates_garbage():
    assert load_credentials(None) == {}
    assert load_credentials("not json") == {}
    assert load_credentials('["list"]') == {}
    assert load_credentials('{"access_token": "a"}') == {"access_token": "a"}


def test_build_authorization_url_carries_business_id():
    url = urlparse(build_authorization_url(7))
    params = parse_qs(url.query)
    assert url.netloc == "accounts.google.com"
    assert params["state"] == ["7"]
    assert params["access_type"] == ["offline"]
    assert params["client_id"] == ["client-id"]
