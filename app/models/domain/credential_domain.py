# models/domain/credential_domain.py
"""
External-calendar credential domain model.
One active credential per (user, integration type); tokens are held decrypted here.
"""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel

IntegrationType = Literal["google_calendar"]
GOOGLE_CALENDAR: IntegrationType = "google_calendar"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class TokenSet(BaseModel):
    """Tokens produced by an OAuth handshake or a refresh exchange."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


class Credential(BaseModel):
    """Domain model for a stored calendar credential (decrypted)."""

    user_id: str
    integration_type: IntegrationType = GOOGLE_CALENDAR
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    is_active: bool = True
    sync_enabled: bool = True
    last_sync_at: datetime | None = None
    updated_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """
        Check the expiry against wall-clock now.

        No skew buffer is applied; a token that expires a moment after this
        check is still used as-is.
        """
        if not self.expires_at:
            return False
        now = now or datetime.now(UTC)
        return _as_utc(self.expires_at) <= _as_utc(now)

    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def to_status_dict(self) -> dict:
        """Connection status without any token material."""
        return {
            "connected": self.is_active,
            "integration_type": self.integration_type,
            "sync_enabled": self.sync_enabled,
            "token_expiry": self.expires_at.isoformat() if self.expires_at else None,
            "is_expired": self.is_expired(),
            "can_refresh": self.can_refresh(),
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
        }
