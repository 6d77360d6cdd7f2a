"""
Calendar reconciliation engine.

For one user: resolve a valid access token, pull provider events for the sync
window and import or update their local counterparts (last writer wins by
timestamp), then push every unsynced local event to the provider.
Per-event errors are counted in the SyncOutcome; per-user errors are raised.
"""

from datetime import UTC, datetime, timedelta

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import (
    DEFAULT_EVENT_DURATION,
    EventFields,
    ExternalEvent,
    LocalEvent,
    SyncOutcome,
)
from app.models.domain.credential_domain import GOOGLE_CALENDAR
from app.repositories.credential_repository import CredentialRepository, credential_repository
from app.repositories.event_repository import EventRepository, event_repository
from app.services.calendar.errors import (
    CalendarSyncError,
    EventMappingSkip,
    ExportError,
    ProviderFetchError,
)
from app.services.calendar.google_client import (
    GoogleCalendarError,
    GoogleCalendarService,
    google_calendar_service,
)
from app.services.token_refresher import TokenRefresher, token_refresher

logger = get_logger(__name__)

DEFAULT_EVENT_TITLE = "Sem título"


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def map_external_event(event: ExternalEvent) -> EventFields:
    """
    Map provider fields onto local event fields.

    Raises:
        EventMappingSkip: the event has neither a dateTime nor an all-day date
    """
    start = event.start_at
    if start is None:
        raise EventMappingSkip(event.id, "event has no start dateTime or date")

    end = event.end_at
    if end is None or end <= start:
        end = start + DEFAULT_EVENT_DURATION

    return EventFields(
        title=(event.summary or "").strip() or DEFAULT_EVENT_TITLE,
        description=event.description or None,
        start_time=start,
        end_time=end,
        location=event.location or None,
        color=event.color_tag,
    )


def is_external_newer(external_updated: datetime | None, local_modified: datetime | None) -> bool:
    """Strictly newer only; equal timestamps keep the local copy."""
    if external_updated is None:
        return False
    if local_modified is None:
        return True
    return _as_utc(external_updated) > _as_utc(local_modified)


class CalendarSyncService:
    """Reconciles one user's CRM calendar with their Google Calendar."""

    def __init__(
        self,
        credential_store: CredentialRepository | None = None,
        event_store: EventRepository | None = None,
        refresher: TokenRefresher | None = None,
        calendar_client: GoogleCalendarService | None = None,
        integration_type: str = GOOGLE_CALENDAR,
    ):
        self.credential_store = credential_store or credential_repository
        self.event_store = event_store or event_repository
        self.refresher = refresher or token_refresher
        self.calendar_client = calendar_client or google_calendar_service
        self.integration_type = integration_type

    def sync_window(self, now: datetime) -> tuple[datetime, datetime]:
        past_days, future_days = settings.get_sync_window_days()
        return now - timedelta(days=past_days), now + timedelta(days=future_days)

    async def sync_user(self, user_id: str, now: datetime | None = None) -> SyncOutcome:
        """
        Run one reconciliation pass for `user_id`.

        Raises:
            CredentialExpiredError: user must reconnect
            TokenRefreshError: refresh failed; next scheduled run retries
            CalendarSyncError: no active credential
        """
        now = now or datetime.now(UTC)
        outcome = SyncOutcome(user_id)

        credential = await self.credential_store.get(user_id, self.integration_type)
        if credential is None:
            raise CalendarSyncError(
                "Google Calendar not connected", user_id=user_id, recoverable=False
            )

        access_token = await self.refresher.ensure_valid(credential, now=now)

        try:
            await self._import_phase(user_id, access_token, now, outcome)
        except ProviderFetchError as e:
            outcome.fetch_error = str(e)
            logger.warning(
                "Import phase aborted, continuing with export", user_id=user_id, error=str(e)
            )

        await self._export_phase(user_id, access_token, outcome)

        if outcome.fetch_error is None:
            try:
                await self.credential_store.mark_synced(user_id, self.integration_type)
            except Exception as e:
                logger.warning("Failed to stamp last sync time", user_id=user_id, error=str(e))

        outcome.finalize()
        logger.info("Calendar sync completed", **outcome.to_dict())
        return outcome

    async def _import_phase(
        self, user_id: str, access_token: str, now: datetime, outcome: SyncOutcome
    ) -> None:
        time_min, time_max = self.sync_window(now)
        try:
            external_events, dropped = await self.calendar_client.list_events(
                access_token, time_min=time_min, time_max=time_max
            )
        except GoogleCalendarError as e:
            raise ProviderFetchError(
                f"Failed to fetch provider events: {e}", user_id=user_id
            ) from e
        outcome.ignored += dropped

        synced = await self.event_store.list_synced(user_id)

        for external_event in external_events:
            try:
                await self._reconcile_event(user_id, external_event, synced, outcome)
            except Exception as e:
                logger.error(
                    "Failed to reconcile provider event",
                    user_id=user_id,
                    external_event_id=external_event.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                outcome.record_failure(f"import {external_event.id}: {e}")

    async def _reconcile_event(
        self,
        user_id: str,
        external_event: ExternalEvent,
        synced: dict[str, datetime],
        outcome: SyncOutcome,
    ) -> None:
        try:
            fields = map_external_event(external_event)
        except EventMappingSkip as skip:
            outcome.ignored += 1
            logger.debug(
                "Provider event ignored", external_event_id=skip.external_event_id, reason=skip.reason
            )
            return

        if external_event.id not in synced:
            if external_event.crm_event_id:
                # Our own export whose link write was lost; never import it back
                outcome.skipped += 1
                return

            local_id = await self.event_store.insert_imported(user_id, fields, external_event.id)
            if local_id is None:
                outcome.skipped += 1
                return
            synced[external_event.id] = datetime.now(UTC)
            outcome.imported += 1
            return

        if not is_external_newer(external_event.updated, synced[external_event.id]):
            outcome.skipped += 1
            return

        if await self.event_store.update_by_external_id(user_id, external_event.id, fields):
            outcome.updated += 1
        else:
            outcome.skipped += 1

    async def _export_phase(self, user_id: str, access_token: str, outcome: SyncOutcome) -> None:
        pending = await self.event_store.list_unsynced(user_id)
        if not pending:
            return

        logger.info("Exporting unsynced events", user_id=user_id, pending_count=len(pending))
        for local_event in pending:
            try:
                if await self._export_event(user_id, access_token, local_event):
                    outcome.exported += 1
            except ExportError as e:
                outcome.record_failure(str(e))

    async def _export_event(self, user_id: str, access_token: str, local_event: LocalEvent) -> bool:
        """
        Create the remote copy and link it locally.

        Returns False when another run linked the local event first; the
        remote copy created here is then orphaned.
        """
        payload = local_event.to_export_payload(settings.CALENDAR_DEFAULT_TIMEZONE)
        try:
            created = await self.calendar_client.create_event(access_token, payload)
        except GoogleCalendarError as e:
            logger.warning(
                "Event export failed", user_id=user_id, local_event_id=local_event.id, error=str(e)
            )
            raise ExportError(
                f"export {local_event.id}: {e}", user_id=user_id, local_event_id=local_event.id
            ) from e

        try:
            linked = await self.event_store.attach_external_id(user_id, local_event.id, created.id)
        except Exception as e:
            logger.error(
                "Exported event could not be linked locally",
                user_id=user_id,
                local_event_id=local_event.id,
                external_event_id=created.id,
                error=str(e),
            )
            raise ExportError(
                f"link {local_event.id} -> {created.id}: {e}",
                user_id=user_id,
                local_event_id=local_event.id,
            ) from e

        if not linked:
            logger.warning(
                "Remote event orphaned, local event was linked by another run",
                user_id=user_id,
                local_event_id=local_event.id,
                orphaned_external_event_id=created.id,
            )
        return linked


calendar_sync_service = CalendarSyncService()
