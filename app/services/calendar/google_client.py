"""
Google Calendar v3 client used by the reconciliation engine.

Lists events for a time window (following nextPageToken) and creates events.
Raw items are validated into ExternalEvent here; malformed items are dropped
and counted.
"""

import asyncio
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import ExternalEvent

logger = get_logger(__name__)

CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_PRIMARY = "primary"

LIST_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 2
TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})

_STATUS_MESSAGES = {
    400: "Calendar rejected the request as malformed.",
    401: "Calendar authorization expired. Please reconnect.",
    403: "Calendar access denied or quota exhausted.",
    404: "Calendar or event not found.",
    429: "Calendar rate limit reached.",
}


class GoogleCalendarError(Exception):
    """A Calendar API call failed; status_code is None for transport errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}


def _headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}


def _describe_failure(response: httpx.Response) -> GoogleCalendarError:
    try:
        body = response.json()
    except ValueError:
        body = None

    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        error = {}
    provider_message = error.get("message") or response.reason_phrase or "unknown error"

    status = response.status_code
    if status in _STATUS_MESSAGES:
        message = _STATUS_MESSAGES[status]
    elif status >= 500:
        message = "Google Calendar service temporarily unavailable."
    else:
        message = f"Calendar error: {provider_message}"

    return GoogleCalendarError(
        message,
        error_code=str(error.get("code", status)),
        status_code=status,
        details=body if isinstance(body, dict) else {},
    )


class GoogleCalendarService:
    """
    Async client for the Calendar events endpoints.

    Holds one pooled httpx.AsyncClient; the bearer token is passed per call.
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout or settings.CALENDAR_REQUEST_TIMEOUT
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _send(
        self, method: str, url: str, retry: bool = True, **kwargs
    ) -> httpx.Response:
        """
        Send a request, retrying transient statuses and transport errors.

        retry=False sends exactly once. Event inserts are not idempotent.
        """
        attempts = LIST_ATTEMPTS if retry else 1
        attempt = 1
        while True:
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                if attempt >= attempts:
                    raise
                reason = type(e).__name__
            else:
                if response.status_code not in TRANSIENT_STATUSES or attempt >= attempts:
                    return response
                reason = f"HTTP {response.status_code}"

            delay = BACKOFF_BASE_SECONDS ** attempt
            logger.debug("Calendar request retry", attempt=attempt, reason=reason, delay=delay)
            await asyncio.sleep(delay)
            attempt += 1

    @staticmethod
    def _decode(response: httpx.Response, operation: str) -> Any:
        """
        JSON body of a 2xx response.

        Raises:
            GoogleCalendarError: non-2xx status or unparseable body
        """
        if not response.is_success:
            error = _describe_failure(response)
            logger.error(
                "Calendar API call failed",
                operation=operation,
                status_code=error.status_code,
                error_code=error.error_code,
            )
            raise error
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            logger.error("Calendar API returned invalid JSON", operation=operation, error=str(e))
            raise GoogleCalendarError(
                f"Invalid {operation} response body", status_code=response.status_code
            ) from e

    @staticmethod
    def _parse_items(items: list[Any]) -> tuple[list[ExternalEvent], int]:
        events: list[ExternalEvent] = []
        dropped = 0
        for item in items:
            try:
                events.append(ExternalEvent.model_validate(item))
            except ValidationError as e:
                dropped += 1
                logger.warning(
                    "Dropping malformed calendar event",
                    event_id=item.get("id") if isinstance(item, dict) else None,
                    error_count=e.error_count(),
                )
        return events, dropped

    async def list_events(
        self,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
        calendar_id: str = CALENDAR_PRIMARY,
        max_results: int | None = None,
        max_pages: int | None = None,
    ) -> tuple[list[ExternalEvent], int]:
        """
        List events in [time_min, time_max) with recurring events expanded.

        Args:
            access_token: Valid OAuth access token
            time_min: Window start (timezone-aware)
            time_max: Window end (timezone-aware)
            max_results: Page size
            max_pages: Upper bound on pages followed

        Returns:
            (events, dropped): validated events and the number of malformed items

        Raises:
            GoogleCalendarError: If any page request fails
        """
        url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events"
        max_pages = max_pages or settings.CALENDAR_SYNC_MAX_PAGES
        params: dict[str, Any] = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": max_results or settings.CALENDAR_SYNC_MAX_RESULTS,
        }

        logger.info(
            "Listing calendar events",
            calendar_id=calendar_id,
            time_min=params["timeMin"],
            time_max=params["timeMax"],
        )

        events: list[ExternalEvent] = []
        dropped = 0
        for page in range(1, max_pages + 1):
            try:
                response = await self._send("GET", url, headers=_headers(access_token), params=params)
            except httpx.HTTPError as e:
                logger.error("Network error listing events", calendar_id=calendar_id, error=str(e))
                raise GoogleCalendarError(f"Failed to list events: {e}") from e

            data = self._decode(response, "list_events")
            if not isinstance(data, dict):
                raise GoogleCalendarError(
                    f"Unexpected list_events body: {type(data).__name__}",
                    status_code=response.status_code,
                )

            page_events, page_dropped = self._parse_items(data.get("items") or [])
            events.extend(page_events)
            dropped += page_dropped

            next_token = data.get("nextPageToken")
            if not next_token:
                break
            if page == max_pages:
                logger.warning(
                    "Calendar event listing truncated at page limit",
                    calendar_id=calendar_id,
                    max_pages=max_pages,
                )
                break
            params["pageToken"] = next_token

        logger.info(
            "Calendar events listed",
            calendar_id=calendar_id,
            event_count=len(events),
            dropped_count=dropped,
        )
        return events, dropped

    async def create_event(
        self,
        access_token: str,
        payload: dict,
        calendar_id: str = CALENDAR_PRIMARY,
    ) -> ExternalEvent:
        """
        Create an event from a JSON body shaped like the provider's event resource.

        Sent once. A failure is left for the next scheduled run.

        Raises:
            GoogleCalendarError: If creation fails or the reply lacks an event id
        """
        url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events"
        try:
            response = await self._send(
                "POST", url, retry=False, headers=_headers(access_token), json=payload
            )
        except httpx.HTTPError as e:
            logger.error("Network error creating event", summary=payload.get("summary"), error=str(e))
            raise GoogleCalendarError(f"Failed to create event: {e}") from e

        data = self._decode(response, "create_event")
        try:
            event = ExternalEvent.model_validate(data)
        except ValidationError as e:
            raise GoogleCalendarError("Created event response has no usable id") from e

        logger.info("Calendar event created", event_id=event.id)
        return event


google_calendar_service = GoogleCalendarService()
