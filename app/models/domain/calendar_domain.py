# app/models/domain/calendar_domain.py
"""
Calendar Domain Models
External events are validated at the provider boundary; local events mirror
rows of calendar_events; SyncOutcome collects the counts of one reconciliation run.
"""

from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_EVENT_DURATION = timedelta(hours=1)
CRM_EVENT_ID_PROPERTY = "crmEventId"


class EventDateTime(BaseModel):
    """Provider start/end object: either a dateTime or an all-day date."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date_time: datetime | None = Field(None, alias="dateTime")
    all_day: date | None = Field(None, alias="date")
    time_zone: str | None = Field(None, alias="timeZone")

    def resolve(self) -> datetime | None:
        """Timezone-aware instant, or None when neither field is present."""
        if self.date_time is not None:
            if self.date_time.tzinfo is not None:
                return self.date_time
            return self.date_time.replace(tzinfo=self._zone())
        if self.all_day is not None:
            return datetime.combine(self.all_day, time.min, tzinfo=UTC)
        return None

    def _zone(self):
        if self.time_zone:
            try:
                return ZoneInfo(self.time_zone)
            except (ZoneInfoNotFoundError, ValueError):
                pass
        return UTC


class ExternalEvent(BaseModel):
    """Read-only projection of one provider event for the sync window."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    summary: str | None = None
    description: str | None = None
    location: str | None = None
    status: str | None = None
    start: EventDateTime | None = None
    end: EventDateTime | None = None
    updated: datetime | None = None
    color_id: str | None = Field(None, alias="colorId")
    extended_properties: dict[str, Any] | None = Field(None, alias="extendedProperties")

    @property
    def start_at(self) -> datetime | None:
        return self.start.resolve() if self.start else None

    @property
    def end_at(self) -> datetime | None:
        return self.end.resolve() if self.end else None

    @property
    def is_all_day(self) -> bool:
        return bool(self.start and self.start.date_time is None and self.start.all_day is not None)

    @property
    def color_tag(self) -> str | None:
        return f"color-{self.color_id}" if self.color_id else None

    @property
    def crm_event_id(self) -> str | None:
        """Local event id stamped on events this service exported."""
        private = (self.extended_properties or {}).get("private") or {}
        return private.get(CRM_EVENT_ID_PROPERTY)


class EventFields(BaseModel):
    """Fields overwritten on a local event by import or update."""

    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    location: str | None = None
    color: str | None = None  # "color-<provider colorId>"

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class LocalEvent(BaseModel):
    """A calendar entry or task deadline owned by the CRM."""

    id: str
    user_id: str
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    location: str | None = None
    color: str | None = None
    event_type: str = "meeting"
    external_event_id: str | None = None
    updated_at: datetime | None = None

    @property
    def is_synced(self) -> bool:
        return self.external_event_id is not None

    def effective_end(self) -> datetime:
        """Task-derived entries carry no end; they occupy a default slot."""
        if self.end_time is not None and self.end_time > self.start_time:
            return self.end_time
        return self.start_time + DEFAULT_EVENT_DURATION

    def to_export_payload(self, timezone_str: str = "UTC") -> dict:
        """JSON body for creating this event on the provider."""
        payload = {
            "summary": self.title,
            "description": self.description or "",
            "start": {"dateTime": self.start_time.isoformat(), "timeZone": timezone_str},
            "end": {"dateTime": self.effective_end().isoformat(), "timeZone": timezone_str},
            "extendedProperties": {"private": {CRM_EVENT_ID_PROPERTY: self.id}},
        }
        if self.location:
            payload["location"] = self.location
        return payload


class SyncOutcome:
    """Counts of one user's reconciliation run. Never persisted."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.started_at = datetime.now(UTC)
        self.finished_at: datetime | None = None
        self.imported = 0
        self.updated = 0
        self.skipped = 0
        self.ignored = 0  # unmappable or malformed provider events
        self.exported = 0
        self.failed = 0
        self.fetch_error: str | None = None
        self.errors: list[str] = []

    def record_failure(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)

    def finalize(self) -> "SyncOutcome":
        self.finished_at = datetime.now(UTC)
        return self

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "imported": self.imported,
            "updated": self.updated,
            "skipped": self.skipped,
            "ignored": self.ignored,
            "exported": self.exported,
            "failed": self.failed,
            "fetch_error": self.fetch_error,
            "errors": list(self.errors),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
        }
