"""
Tests for access-token refresh decisions.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from app.models.domain.credential_domain import Credential
from app.services.calendar.errors import CredentialExpiredError, TokenRefreshError
from app.services.google_oauth_service import GoogleOAuthError, TokenResponse
from app.services.token_refresher import TokenRefresher

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=UTC)


class FakeOAuthClient:
    def __init__(self, response: dict | None = None, error: Exception | None = None, delay: float = 0):
        self.response = response or {"access_token": "new-access", "expires_in": 3600}
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        self.calls.append(refresh_token)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        token_response = TokenResponse(self.response)
        if not token_response.refresh_token:
            token_response.refresh_token = refresh_token
        return token_response


def _credential(store, **overrides) -> Credential:
    values = {
        "access_token": "old-access",
        "refresh_token": "refresh-1",
        "expires_at": NOW - timedelta(minutes=5),
    }
    values.update(overrides)
    return store.add("user-1", **values)


@pytest.mark.asyncio
async def test_valid_token_returned_without_network(credential_store):
    oauth = FakeOAuthClient()
    refresher = TokenRefresher(store=credential_store, oauth_client=oauth)

    credential = _credential(credential_store, expires_at=NOW + timedelta(minutes=1))

    token = await refresher.ensure_valid(credential, now=NOW)

    assert token == "old-access"
    assert oauth.calls == []
    assert credential_store.token_updates == []


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_stored(credential_store):
    oauth = FakeOAuthClient()
    refresher = TokenRefresher(store=credential_store, oauth_client=oauth)

    token = await refresher.ensure_valid(_credential(credential_store), now=NOW)

    assert token == "new-access"
    assert oauth.calls == ["refresh-1"]
    user_id, tokens = credential_store.token_updates[0]
    assert user_id == "user-1"
    assert tokens.access_token == "new-access"
    assert tokens.refresh_token == "refresh-1"
    assert tokens.expires_at is not None


@pytest.mark.asyncio
async def test_expiry_exactly_now_counts_as_expired(credential_store):
    oauth = FakeOAuthClient()
    refresher = TokenRefresher(store=credential_store, oauth_client=oauth)

    await refresher.ensure_valid(_credential(credential_store, expires_at=NOW), now=NOW)

    assert oauth.calls == ["refresh-1"]


@pytest.mark.asyncio
async def test_expired_without_refresh_token(credential_store):
    refresher = TokenRefresher(store=credential_store, oauth_client=FakeOAuthClient())

    with pytest.raises(CredentialExpiredError) as exc:
        await refresher.ensure_valid(_credential(credential_store, refresh_token=None), now=NOW)

    assert exc.value.recoverable is False
    assert exc.value.user_id == "user-1"


@pytest.mark.asyncio
async def test_invalid_grant_means_reconnect(credential_store):
    oauth = FakeOAuthClient(error=GoogleOAuthError("revoked", error_code="invalid_grant", status_code=400))
    refresher = TokenRefresher(store=credential_store, oauth_client=oauth)

    with pytest.raises(CredentialExpiredError):
        await refresher.ensure_valid(_credential(credential_store), now=NOW)

    assert credential_store.token_updates == []


@pytest.mark.asyncio
async def test_other_provider_errors_are_refresh_errors(credential_store):
    oauth = FakeOAuthClient(error=GoogleOAuthError("boom", error_code="server_error", status_code=503))
    refresher = TokenRefresher(store=credential_store, oauth_client=oauth)

    with pytest.raises(TokenRefreshError) as exc:
        await refresher.ensure_valid(_credential(credential_store), now=NOW)

    assert exc.value.recoverable is True


@pytest.mark.asyncio
async def test_refresh_timeout(credential_store):
    oauth = FakeOAuthClient(delay=1)
    refresher = TokenRefresher(store=credential_store, oauth_client=oauth, timeout_seconds=0.01)

    with pytest.raises(TokenRefreshError):
        await refresher.ensure_valid(_credential(credential_store), now=NOW)


@pytest.mark.asyncio
async def test_store_failure_after_refresh(credential_store):
    credential_store.fail_writes = True
    refresher = TokenRefresher(store=credential_store, oauth_client=FakeOAuthClient())

    with pytest.raises(TokenRefreshError):
        await refresher.ensure_valid(_credential(credential_store), now=NOW)


@pytest.mark.asyncio
async def test_refreshed_token_replaces_stored_access_token(credential_store):
    refresher = TokenRefresher(store=credential_store, oauth_client=FakeOAuthClient())

    await refresher.ensure_valid(_credential(credential_store), now=NOW)

    stored = credential_store.credentials["user-1"]
    assert stored.access_token == "new-access"
    assert stored.refresh_token == "refresh-1"
    assert stored.is_active is True
    assert credential_store.upserts == []


@pytest.mark.asyncio
async def test_disconnect_during_refresh_does_not_reconnect(credential_store):
    credential = _credential(credential_store)

    class DisconnectingOAuthClient(FakeOAuthClient):
        async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
            await credential_store.deactivate("user-1")
            return await super().refresh_access_token(refresh_token)

    refresher = TokenRefresher(store=credential_store, oauth_client=DisconnectingOAuthClient())

    with pytest.raises(CredentialExpiredError) as exc:
        await refresher.ensure_valid(credential, now=NOW)

    assert exc.value.recoverable is False
    stored = credential_store.credentials["user-1"]
    assert stored.is_active is False
    assert stored.access_token == "old-access"
    assert await credential_store.list_active_user_ids() == []
