"""
Google OAuth token endpoint client.
Exchanges a stored refresh token for a fresh Calendar access token.
"""

from datetime import UTC, datetime, timedelta

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger, token_preview
from app.models.domain.credential_domain import TokenSet

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Google answers this when the refresh token was revoked or has expired
INVALID_GRANT = "invalid_grant"

_GRANT_ERROR_MESSAGES = {
    INVALID_GRANT: "Calendar authorization was revoked or expired. Please reconnect Google Calendar.",
    "invalid_client": "Google OAuth client credentials were rejected.",
    "unauthorized_client": "Google OAuth client may not use the refresh grant.",
}


class GoogleOAuthError(Exception):
    """The token exchange failed. error_code is Google's `error` field when present."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}

    @property
    def is_invalid_grant(self) -> bool:
        return self.error_code == INVALID_GRANT


class TokenResponse:
    """Access token grant as returned by the token endpoint."""

    def __init__(self, data: dict):
        self.access_token: str | None = data.get("access_token")
        self.refresh_token: str | None = data.get("refresh_token")
        self.token_type: str = data.get("token_type") or "Bearer"
        self.expires_in = data.get("expires_in")
        self.expires_at: datetime | None = (
            datetime.now(UTC) + timedelta(seconds=int(self.expires_in))
            if self.expires_in
            else None
        )

    def to_token_set(self) -> TokenSet:
        return TokenSet(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
        )


class GoogleOAuthService:
    """
    Refresh-grant client for the Google OAuth 2.0 token endpoint.

    The consent handshake happens elsewhere and lands in the credential store.
    Each exchange is a single POST; a failed refresh ends the user's run.
    """

    def __init__(self, client_id: str | None = None, client_secret: str | None = None):
        self.client_id = client_id or settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_CLIENT_SECRET
        self.timeout = settings.CALENDAR_REQUEST_TIMEOUT
        missing = [
            name
            for name, value in (
                ("GOOGLE_CLIENT_ID", self.client_id),
                ("GOOGLE_CLIENT_SECRET", self.client_secret),
            )
            if not value
        ]
        if missing:
            raise GoogleOAuthError(f"{', '.join(missing)} not configured")

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Exchange `refresh_token` for a new access token.

        Returns:
            TokenResponse: the refresh token is carried over when Google does
            not rotate it

        Raises:
            GoogleOAuthError: transport failure, non-2xx answer or unusable body
        """
        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        preview = token_preview(refresh_token)
        logger.info("Refreshing calendar access token", refresh_token_preview=preview)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(GOOGLE_TOKEN_URL, data=form)
        except httpx.RequestError as e:
            logger.error(
                "Token endpoint unreachable",
                refresh_token_preview=preview,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GoogleOAuthError(f"Network error during token refresh: {e}") from e

        grant = self._parse_grant(response)
        if not grant.refresh_token:
            grant.refresh_token = refresh_token

        logger.info(
            "Calendar access token refreshed",
            expires_in=grant.expires_in,
            rotated_refresh_token=grant.refresh_token != refresh_token,
        )
        return grant

    @staticmethod
    def _parse_grant(response: httpx.Response) -> TokenResponse:
        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success:
            error_code = body.get("error") if isinstance(body, dict) else None
            logger.error(
                "Token refresh rejected",
                status_code=response.status_code,
                error_code=error_code,
                error_description=body.get("error_description") if isinstance(body, dict) else None,
            )
            raise GoogleOAuthError(
                _GRANT_ERROR_MESSAGES.get(
                    error_code, f"Token refresh failed (HTTP {response.status_code})"
                ),
                error_code=error_code,
                status_code=response.status_code,
                response_data=body if isinstance(body, dict) else None,
            )

        if not isinstance(body, dict):
            raise GoogleOAuthError(
                "Token endpoint returned a non-JSON body", status_code=response.status_code
            )

        grant = TokenResponse(body)
        if not grant.access_token:
            raise GoogleOAuthError(
                "Token endpoint response has no access_token", status_code=response.status_code
            )
        return grant


google_oauth_service = GoogleOAuthService()
