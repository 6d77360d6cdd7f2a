"""
Error taxonomy for calendar reconciliation.

User-level errors abort one user's run and are caught by the scheduler.
Event-level errors are caught and counted by the reconciliation engine.
"""


class CalendarSyncError(Exception):
    """Base exception for calendar sync operations."""

    def __init__(self, message: str, user_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.user_id = user_id
        self.recoverable = recoverable


class CredentialExpiredError(CalendarSyncError):
    """Access token expired and cannot be refreshed; the user must reconnect."""

    def __init__(self, message: str, user_id: str | None = None):
        super().__init__(message, user_id=user_id, recoverable=False)


class TokenRefreshError(CalendarSyncError):
    """Refresh exchange failed (network or non-2xx); retried on the next scheduled run."""


class ProviderFetchError(CalendarSyncError):
    """Listing external events failed; import/update is abandoned for this run."""


class ExportError(CalendarSyncError):
    """A single local event could not be created remotely."""

    def __init__(self, message: str, user_id: str | None = None, local_event_id: str | None = None):
        super().__init__(message, user_id=user_id)
        self.local_event_id = local_event_id


class EventMappingSkip(Exception):
    """External event cannot be placed on a timeline; ignored, not counted as failure."""

    def __init__(self, external_event_id: str | None, reason: str):
        super().__init__(reason)
        self.external_event_id = external_event_id
        self.reason = reason
