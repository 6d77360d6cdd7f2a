"""
Postgres repository for CRM calendar entries (calendar_events).

The (user_id, external_event_id) unique constraint makes imports idempotent
when a scheduled run and a manual "sync now" overlap.
"""

from datetime import datetime

from app.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import EventFields, LocalEvent

logger = get_logger(__name__)

_EVENT_COLUMNS = """
    id, user_id, title, description, start_time, end_time, location, color,
    event_type, external_event_id, updated_at
"""


def _to_local_event(row: dict) -> LocalEvent:
    return LocalEvent(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        title=row["title"],
        description=row.get("description"),
        start_time=row["start_time"],
        end_time=row.get("end_time"),
        location=row.get("location"),
        color=row.get("color"),
        event_type=row.get("event_type") or "meeting",
        external_event_id=row.get("external_event_id"),
        updated_at=row.get("updated_at"),
    )


class EventRepository:
    """Local event store used by the reconciliation engine."""

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_synced(self, user_id: str) -> dict[str, datetime]:
        """External event id -> last-modified for every synchronized local event."""
        query = """
            SELECT external_event_id, updated_at
            FROM calendar_events
            WHERE user_id = %s AND external_event_id IS NOT NULL
        """
        rows = await fetch_all(query, (user_id,))
        return {row["external_event_id"]: row["updated_at"] for row in rows}

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_unsynced(self, user_id: str) -> list[LocalEvent]:
        query = f"""
            SELECT {_EVENT_COLUMNS}
            FROM calendar_events
            WHERE user_id = %s AND external_event_id IS NULL
            ORDER BY start_time
        """
        rows = await fetch_all(query, (user_id,))
        return [_to_local_event(row) for row in rows]

    async def insert_imported(
        self, user_id: str, fields: EventFields, external_event_id: str
    ) -> str | None:
        """
        Insert an event pulled from the provider.

        Returns the new local id, or None when another run already imported it.
        """
        query = """
            INSERT INTO calendar_events (
                user_id, title, description, start_time, end_time, location, color,
                event_type, external_event_id, created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, 'meeting', %s, NOW(), NOW())
            ON CONFLICT (user_id, external_event_id) DO NOTHING
            RETURNING id
        """
        row = await fetch_one(
            query,
            (
                user_id,
                fields.title,
                fields.description,
                fields.start_time,
                fields.end_time,
                fields.location,
                fields.color,
                external_event_id,
            ),
        )
        return str(row["id"]) if row else None

    async def update_by_external_id(
        self, user_id: str, external_event_id: str, fields: EventFields
    ) -> bool:
        """Overwrite every mapped field and refresh last-modified."""
        query = """
            UPDATE calendar_events
            SET title = %s,
                description = %s,
                start_time = %s,
                end_time = %s,
                location = %s,
                color = %s,
                updated_at = NOW()
            WHERE user_id = %s AND external_event_id = %s
        """
        affected = await execute_query(
            query,
            (
                fields.title,
                fields.description,
                fields.start_time,
                fields.end_time,
                fields.location,
                fields.color,
                user_id,
                external_event_id,
            ),
        )
        return affected > 0

    async def attach_external_id(
        self, user_id: str, local_event_id: str, external_event_id: str
    ) -> bool:
        """Link an exported event to its provider id; never overwrites an existing link."""
        query = """
            UPDATE calendar_events
            SET external_event_id = %s, updated_at = NOW()
            WHERE id = %s AND user_id = %s AND external_event_id IS NULL
        """
        affected = await execute_query(query, (external_event_id, local_event_id, user_id))
        if not affected:
            logger.warning(
                "Exported event was already linked",
                user_id=user_id,
                local_event_id=local_event_id,
                external_event_id=external_event_id,
            )
        return affected > 0


event_repository = EventRepository()
