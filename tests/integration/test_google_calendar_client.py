import re
from datetime import UTC, datetime, timedelta

import pytest

from app.services.calendar.google_client import GoogleCalendarError, GoogleCalendarService

EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"
FIRST_PAGE = re.compile(re.escape(EVENTS_URL) + r"\?(?!.*pageToken=)")
SECOND_PAGE = re.compile(re.escape(EVENTS_URL) + r"\?.*pageToken=page-2")

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=UTC)
WINDOW = (NOW - timedelta(days=7), NOW + timedelta(days=30))


@pytest.mark.asyncio
async def test_list_events_success(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="GET",
        url=FIRST_PAGE,
        json={
            "items": [
                {
                    "id": "event-1",
                    "status": "confirmed",
                    "summary": "Standup",
                    "start": {"dateTime": "2024-06-11T10:00:00Z"},
                    "end": {"dateTime": "2024-06-11T10:30:00Z"},
                    "updated": "2024-06-09T08:00:00Z",
                }
            ]
        },
    )

    events, dropped = await service.list_events("token", *WINDOW)
    await service.close()

    assert dropped == 0
    assert len(events) == 1
    assert events[0].id == "event-1"
    assert events[0].summary == "Standup"

    request = httpx_mock.get_request()
    assert request.headers["Authorization"] == "Bearer token"
    assert request.url.params["singleEvents"] == "true"
    assert request.url.params["orderBy"] == "startTime"
    assert request.url.params["timeMin"] == WINDOW[0].isoformat()
    assert request.url.params["timeMax"] == WINDOW[1].isoformat()


@pytest.mark.asyncio
async def test_list_events_follows_pagination(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="GET",
        url=FIRST_PAGE,
        json={"items": [{"id": "a", "start": {"date": "2024-06-12"}}], "nextPageToken": "page-2"},
    )
    httpx_mock.add_response(
        method="GET",
        url=SECOND_PAGE,
        json={"items": [{"id": "b", "start": {"date": "2024-06-13"}}]},
    )

    events, _ = await service.list_events("token", *WINDOW)
    await service.close()

    assert [e.id for e in events] == ["a", "b"]
    assert len(httpx_mock.get_requests()) == 2


@pytest.mark.asyncio
async def test_list_events_drops_malformed_items(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="GET",
        url=FIRST_PAGE,
        json={
            "items": [
                {"summary": "no id"},
                {"id": "ok", "start": {"dateTime": "2024-06-11T10:00:00Z"}},
                {"id": "bad-start", "start": {"dateTime": "not a date"}},
            ]
        },
    )

    events, dropped = await service.list_events("token", *WINDOW)
    await service.close()

    assert [e.id for e in events] == ["ok"]
    assert dropped == 2


@pytest.mark.asyncio
async def test_list_events_error_mapping(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="GET",
        url=FIRST_PAGE,
        status_code=401,
        json={"error": {"code": 401, "message": "Invalid Credentials"}},
    )

    with pytest.raises(GoogleCalendarError) as exc:
        await service.list_events("token", *WINDOW)

    await service.close()

    assert exc.value.status_code == 401
    assert "authorization" in str(exc.value).lower()


@pytest.mark.asyncio
async def test_create_event_returns_provider_id(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="POST",
        url=EVENTS_URL,
        json={"id": "remote-1", "summary": "Visita", "start": {"dateTime": "2024-06-11T10:00:00Z"}},
    )

    payload = {
        "summary": "Visita",
        "start": {"dateTime": "2024-06-11T10:00:00+00:00", "timeZone": "UTC"},
        "end": {"dateTime": "2024-06-11T11:00:00+00:00", "timeZone": "UTC"},
        "extendedProperties": {"private": {"crmEventId": "local-1"}},
    }
    created = await service.create_event("token", payload)
    await service.close()

    assert created.id == "remote-1"
    sent = httpx_mock.get_request()
    assert sent.method == "POST"
    assert b"crmEventId" in sent.content


@pytest.mark.asyncio
async def test_create_event_rejected(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="POST",
        url=EVENTS_URL,
        status_code=403,
        json={"error": {"code": 403, "message": "Forbidden"}},
    )

    with pytest.raises(GoogleCalendarError) as exc:
        await service.create_event("token", {"summary": "x"})

    await service.close()

    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_create_event_is_sent_once_on_server_error(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="POST",
        url=EVENTS_URL,
        status_code=503,
        json={"error": {"code": 503, "message": "Backend Error"}},
    )

    with pytest.raises(GoogleCalendarError) as exc:
        await service.create_event("token", {"summary": "Visita"})

    await service.close()

    assert exc.value.status_code == 503
    posts = [r for r in httpx_mock.get_requests() if r.method == "POST"]
    assert len(posts) == 1


@pytest.mark.asyncio
async def test_list_events_null_items_is_an_empty_page(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(method="GET", url=FIRST_PAGE, json={"items": None})

    events, dropped = await service.list_events("token", *WINDOW)
    await service.close()

    assert events == []
    assert dropped == 0


@pytest.mark.asyncio
async def test_list_events_non_object_body(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(method="GET", url=FIRST_PAGE, json=["not", "an", "object"])

    with pytest.raises(GoogleCalendarError):
        await service.list_events("token", *WINDOW)

    await service.close()
