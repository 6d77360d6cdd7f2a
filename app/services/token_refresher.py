"""
Token Refresher for external-calendar credentials.
Decides whether a stored access token is stale and, if so, exchanges the
refresh token for a new one and writes it back to the credential store.
"""

import asyncio
from datetime import UTC, datetime

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.credential_domain import Credential
from app.repositories.credential_repository import CredentialRepository, credential_repository
from app.services.calendar.errors import CredentialExpiredError, TokenRefreshError
from app.services.google_oauth_service import (
    GoogleOAuthError,
    GoogleOAuthService,
    google_oauth_service,
)

logger = get_logger(__name__)


class TokenRefresher:
    """
    Produces a usable access token for one credential.

    Expiry is compared against wall-clock now with no skew buffer, so a token
    that lapses mid-run is still sent once; the provider's 401 then surfaces
    as a fetch failure and the next run refreshes it.
    """

    def __init__(
        self,
        store: CredentialRepository | None = None,
        oauth_client: GoogleOAuthService | None = None,
        timeout_seconds: float | None = None,
    ):
        self.store = store or credential_repository
        self.oauth_client = oauth_client or google_oauth_service
        self.timeout_seconds = timeout_seconds or settings.CALENDAR_REQUEST_TIMEOUT

    async def ensure_valid(self, credential: Credential, now: datetime | None = None) -> str:
        """
        Return an access token that is not expired as of `now`.

        Raises:
            CredentialExpiredError: expired with no usable refresh token, or the
                credential was deactivated before the new token was stored
            TokenRefreshError: the refresh exchange or write-back failed
        """
        user_id = credential.user_id
        now = now or datetime.now(UTC)

        if not credential.is_expired(now):
            return credential.access_token

        if not credential.refresh_token:
            logger.warning("Access token expired and no refresh token stored", user_id=user_id)
            raise CredentialExpiredError(
                "Calendar access expired - re-authentication required", user_id=user_id
            )

        logger.info(
            "Access token expired, refreshing",
            user_id=user_id,
            expired_at=credential.expires_at.isoformat() if credential.expires_at else None,
        )

        try:
            token_response = await asyncio.wait_for(
                self.oauth_client.refresh_access_token(credential.refresh_token),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            logger.error("Token refresh timed out", user_id=user_id, timeout=self.timeout_seconds)
            raise TokenRefreshError(
                f"Token refresh timed out after {self.timeout_seconds}s", user_id=user_id
            ) from e
        except GoogleOAuthError as e:
            if e.is_invalid_grant:
                logger.warning("Refresh token rejected by provider", user_id=user_id)
                raise CredentialExpiredError(
                    f"Refresh token rejected: {e}", user_id=user_id
                ) from e
            logger.error(
                "Token refresh failed",
                user_id=user_id,
                error=str(e),
                error_code=e.error_code,
                status_code=e.status_code,
            )
            raise TokenRefreshError(f"Token refresh failed: {e}", user_id=user_id) from e

        tokens = token_response.to_token_set()
        try:
            stored = await self.store.update_tokens(user_id, credential.integration_type, tokens)
        except Exception as e:
            logger.error(
                "Failed to store refreshed token",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TokenRefreshError(f"Failed to store refreshed token: {e}", user_id=user_id) from e

        if not stored:
            logger.warning("Credential disconnected during refresh", user_id=user_id)
            raise CredentialExpiredError(
                "Calendar disconnected - re-authentication required", user_id=user_id
            )

        logger.info(
            "Token refresh successful",
            user_id=user_id,
            new_expires_at=tokens.expires_at.isoformat() if tokens.expires_at else None,
        )
        return tokens.access_token


token_refresher = TokenRefresher()
