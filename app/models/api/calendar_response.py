# app/models/api/calendar_response.py
"""
Calendar API response models.
Used by routes for output formatting.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.domain.calendar_domain import SyncOutcome


class SyncOutcomeResponse(BaseModel):
    """Result of a manual "sync now" run."""

    success: bool = Field(..., description="Whether the reconciliation run completed")
    imported: int = Field(default=0, description="Provider events created locally")
    updated: int = Field(default=0, description="Local events overwritten by newer provider data")
    skipped: int = Field(default=0, description="Provider events left unchanged")
    ignored: int = Field(default=0, description="Provider events that could not be mapped")
    exported: int = Field(default=0, description="Local events created at the provider")
    failed: int = Field(default=0, description="Per-event failures")
    fetch_error: str | None = Field(None, description="Why the import phase was abandoned")
    errors: list[str] = Field(default_factory=list, description="Per-event error messages")
    error: str | None = Field(None, description="Why the whole run aborted")
    reauth_required: bool = Field(default=False, description="User must reconnect the calendar")
    duration_seconds: float | None = Field(None, description="Run duration")

    @classmethod
    def from_outcome(cls, outcome: SyncOutcome) -> "SyncOutcomeResponse":
        return cls(
            success=True,
            imported=outcome.imported,
            updated=outcome.updated,
            skipped=outcome.skipped,
            ignored=outcome.ignored,
            exported=outcome.exported,
            failed=outcome.failed,
            fetch_error=outcome.fetch_error,
            errors=list(outcome.errors),
            duration_seconds=round(outcome.duration_seconds, 3),
        )

    @classmethod
    def from_error(cls, error: str, reauth_required: bool = False) -> "SyncOutcomeResponse":
        return cls(success=False, error=error, reauth_required=reauth_required)


class CalendarStatusResponse(BaseModel):
    """Response for calendar connection status."""

    connected: bool = Field(..., description="Whether an active credential exists")
    sync_enabled: bool = Field(default=False, description="Included in scheduled runs")
    token_expiry: datetime | None = Field(None, description="When the access token expires")
    is_expired: bool = Field(default=False, description="Access token already expired")
    can_refresh: bool = Field(default=False, description="A refresh token is stored")
    last_sync_at: datetime | None = Field(None, description="Last completed sync")


class DisconnectResponse(BaseModel):
    """Response for calendar disconnect."""

    success: bool = Field(..., description="Whether a credential was deactivated")
    message: str = Field(..., description="Result message")
