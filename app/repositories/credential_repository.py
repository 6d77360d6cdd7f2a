"""
Postgres repository for external-calendar credentials (user_integrations).

Tokens are Fernet-encrypted at rest. Rows are never hard-deleted; disconnecting
only clears is_active so the history stays auditable.
"""

from app.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.credential_domain import GOOGLE_CALENDAR, Credential, TokenSet
from app.services.infrastructure.encryption_service import (
    decrypt_oauth_tokens,
    encrypt_oauth_tokens,
)

logger = get_logger(__name__)


class CredentialRepository:
    """Credential store: get / upsert / deactivate plus scheduler lookups."""

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get(self, user_id: str, integration_type: str = GOOGLE_CALENDAR) -> Credential | None:
        """Active credential or None. Expired credentials are still returned."""
        query = """
            SELECT user_id, integration_type, access_token, refresh_token, token_expiry,
                   is_active, sync_enabled, last_sync_at, updated_at
            FROM user_integrations
            WHERE user_id = %s AND integration_type = %s AND is_active
        """
        row = await fetch_one(query, (user_id, integration_type))
        if not row:
            logger.debug("No active credential", user_id=user_id, integration_type=integration_type)
            return None

        access_token, refresh_token = decrypt_oauth_tokens(
            encrypted_access=row["access_token"], encrypted_refresh=row.get("refresh_token")
        )
        return Credential(
            user_id=str(row["user_id"]),
            integration_type=row["integration_type"],
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=row.get("token_expiry"),
            is_active=row["is_active"],
            sync_enabled=row["sync_enabled"],
            last_sync_at=row.get("last_sync_at"),
            updated_at=row.get("updated_at"),
        )

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def upsert(
        self, user_id: str, integration_type: str, tokens: TokenSet
    ) -> None:
        """
        Create or overwrite the active credential.

        A missing refresh token in `tokens` keeps the stored one, since
        refresh responses usually omit it.
        """
        encrypted_access, encrypted_refresh = encrypt_oauth_tokens(
            access_token=tokens.access_token, refresh_token=tokens.refresh_token
        )
        query = """
            INSERT INTO user_integrations (
                user_id, integration_type, access_token, refresh_token,
                token_expiry, is_active, sync_enabled, updated_at
            ) VALUES (%s, %s, %s, %s, %s, TRUE, TRUE, NOW())
            ON CONFLICT (user_id, integration_type) WHERE is_active
            DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = COALESCE(EXCLUDED.refresh_token, user_integrations.refresh_token),
                token_expiry = EXCLUDED.token_expiry,
                updated_at = NOW()
        """
        await execute_query(
            query,
            (user_id, integration_type, encrypted_access, encrypted_refresh, tokens.expires_at),
        )
        logger.info(
            "Credential stored",
            user_id=user_id,
            integration_type=integration_type,
            has_refresh_token=bool(tokens.refresh_token),
            expires_at=tokens.expires_at.isoformat() if tokens.expires_at else None,
        )

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def update_tokens(self, user_id: str, integration_type: str, tokens: TokenSet) -> bool:
        """
        Write refreshed tokens onto the active credential in place.

        Returns False when no active row exists (disconnected mid-run); never
        creates one.
        """
        encrypted_access, encrypted_refresh = encrypt_oauth_tokens(
            access_token=tokens.access_token, refresh_token=tokens.refresh_token
        )
        query = """
            UPDATE user_integrations
            SET access_token = %s,
                refresh_token = COALESCE(%s, refresh_token),
                token_expiry = %s,
                updated_at = NOW()
            WHERE user_id = %s AND integration_type = %s AND is_active
        """
        affected = await execute_query(
            query,
            (encrypted_access, encrypted_refresh, tokens.expires_at, user_id, integration_type),
        )
        return affected > 0

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def deactivate(self, user_id: str, integration_type: str = GOOGLE_CALENDAR) -> bool:
        """Soft-delete the active credential. Returns False when none was active."""
        query = """
            UPDATE user_integrations
            SET is_active = FALSE, sync_enabled = FALSE, updated_at = NOW()
            WHERE user_id = %s AND integration_type = %s AND is_active
        """
        affected = await execute_query(query, (user_id, integration_type))
        logger.info(
            "Credential deactivated",
            user_id=user_id,
            integration_type=integration_type,
            affected_rows=affected,
        )
        return affected > 0

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_active_user_ids(self, integration_type: str = GOOGLE_CALENDAR) -> list[str]:
        query = """
            SELECT user_id
            FROM user_integrations
            WHERE integration_type = %s AND is_active AND sync_enabled
            ORDER BY user_id
        """
        rows = await fetch_all(query, (integration_type,))
        return [str(row["user_id"]) for row in rows]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def mark_synced(self, user_id: str, integration_type: str = GOOGLE_CALENDAR) -> None:
        query = """
            UPDATE user_integrations
            SET last_sync_at = NOW()
            WHERE user_id = %s AND integration_type = %s AND is_active
        """
        await execute_query(query, (user_id, integration_type))


credential_repository = CredentialRepository()
