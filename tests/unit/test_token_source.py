"""Unit tests for PersistingTokenSource and credential conversion."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import google.auth.exceptions
import pytest

from google_mcp.auth.models import OAuthToken
from google_mcp.auth.token_source import (
    GOOGLE_TOKEN_URI,
    PersistingTokenSource,
    credentials_to_token,
    token_to_credentials,
)
from google_mcp.auth.token_storage import TokenStorage
from google_mcp.errors import TokenRefreshError, TokenStoreError


def _refreshing_credentials(new_token: str = "refreshed_access_token") -> MagicMock:
    """Credentials that are invalid until refresh() swaps in a new token."""
    creds = MagicMock()
    creds.token = "expired_access_token"
    creds.refresh_token = "test_refresh_token"
    creds.expiry = None
    creds.scopes = ["https://www.googleapis.com/auth/drive"]
    creds.valid = False

    def refresh(request: object) -> None:
        creds.token = new_token
        creds.expiry = datetime.now(timezone.utc) + timedelta(hours=1)
        creds.valid = True

    creds.refresh.side_effect = refresh
    return creds


@pytest.mark.unit
class TestCredentialsConversion:
    """Tests for credentials_to_token and token_to_credentials."""

    def test_should_convert_credentials_to_token(self, mock_google_credentials: MagicMock) -> None:
        """Verify Credentials fields map onto OAuthToken."""
        token = credentials_to_token(mock_google_credentials)

        assert token.access_token == "mock_access_token"
        assert token.refresh_token == "mock_refresh_token"
        assert token.scopes == ["https://www.googleapis.com/auth/drive"]

    def test_should_default_expiry_to_one_hour(self, mock_google_credentials: MagicMock) -> None:
        """Verify a missing expiry defaults to roughly an hour from now."""
        mock_google_credentials.expiry = None

        token = credentials_to_token(mock_google_credentials)

        remaining = token.expiry - datetime.now(timezone.utc)
        assert timedelta(minutes=59) < remaining <= timedelta(hours=1)

    def test_should_handle_naive_expiry(self, mock_google_credentials: MagicMock) -> None:
        """Verify google-auth's naive UTC expiry becomes timezone-aware."""
        mock_google_credentials.expiry = datetime(2030, 1, 1, 12, 0, 0)

        token = credentials_to_token(mock_google_credentials)

        assert token.expiry == datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def test_should_convert_token_to_credentials(self, valid_token: OAuthToken) -> None:
        """Verify OAuthToken maps onto refreshable Credentials."""
        creds = token_to_credentials(valid_token, client_id="cid", client_secret="secret")

        assert creds.token == valid_token.access_token
        assert creds.refresh_token == valid_token.refresh_token
        assert creds.client_id == "cid"
        assert creds.token_uri == GOOGLE_TOKEN_URI
        assert creds.expiry.tzinfo is None
        assert creds.valid is True


@pytest.mark.unit
class TestPersistingTokenSource:
    """Tests for PersistingTokenSource.token()."""

    def test_should_return_valid_token_without_refresh(
        self, token_storage: TokenStorage, mock_google_credentials: MagicMock
    ) -> None:
        """Verify a valid token is returned as is and nothing is written."""
        source = PersistingTokenSource(mock_google_credentials, token_storage, "work")

        assert source.token() == "mock_access_token"
        mock_google_credentials.refresh.assert_not_called()
        assert not token_storage.token_path.exists()

    def test_should_refresh_and_persist_expired_token(
        self, token_storage: TokenStorage, expired_token: OAuthToken
    ) -> None:
        """Verify a refreshed token is written through to the store."""
        token_storage.put_account("work", expired_token, email="me@example.com")
        creds = _refreshing_credentials()
        source = PersistingTokenSource(creds, token_storage, "work")

        assert source.token() == "refreshed_access_token"

        reloaded = TokenStorage(token_path=token_storage.token_path)
        account = reloaded.get_account("work")
        assert account.token.access_token == "refreshed_access_token"
        assert account.token.refresh_token == "test_refresh_token"
        assert account.email == "me@example.com"

    def test_should_persist_only_when_token_changes(
        self, token_storage: TokenStorage, expired_token: OAuthToken
    ) -> None:
        """Verify repeated calls with an unchanged token do not rewrite the store."""
        token_storage.put_account("work", expired_token)
        source = PersistingTokenSource(_refreshing_credentials(), token_storage, "work")

        with patch.object(token_storage, "update_token", wraps=token_storage.update_token) as spy:
            source.token()
            source.token()

        assert spy.call_count == 1

    def test_should_raise_refresh_error(
        self, token_storage: TokenStorage, expired_token: OAuthToken
    ) -> None:
        """Verify a failed refresh surfaces as TokenRefreshError with a re-auth hint."""
        token_storage.put_account("work", expired_token)
        creds = _refreshing_credentials()
        creds.refresh.side_effect = google.auth.exceptions.RefreshError("invalid_grant")
        source = PersistingTokenSource(creds, token_storage, "work")

        with pytest.raises(TokenRefreshError, match="google-mcp auth add work"):
            source.token()

        assert token_storage.get_account("work").token.access_token == "expired_access_token"

    def test_should_return_token_when_persist_fails(
        self,
        token_storage: TokenStorage,
        expired_token: OAuthToken,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Verify a failed write-through is logged and the token still returned."""
        token_storage.put_account("work", expired_token)
        source = PersistingTokenSource(_refreshing_credentials(), token_storage, "work")

        with patch.object(
            token_storage, "update_token", side_effect=TokenStoreError("disk full")
        ):
            assert source.token() == "refreshed_access_token"

        assert "Could not persist refreshed token" in caplog.text

    def test_should_not_resurrect_removed_account(
        self, token_storage: TokenStorage, expired_token: OAuthToken
    ) -> None:
        """Verify refreshing after removal does not add the account back."""
        token_storage.put_account("work", expired_token)
        source = PersistingTokenSource(_refreshing_credentials(), token_storage, "work")
        token_storage.remove_account("work")

        assert source.token() == "refreshed_access_token"
        assert token_storage.list_accounts() == {}

    @pytest.mark.asyncio
    async def test_should_provide_async_token(
        self, token_storage: TokenStorage, mock_google_credentials: MagicMock
    ) -> None:
        """Verify atoken() returns the same token as token()."""
        source = PersistingTokenSource(mock_google_credentials, token_storage, "work")
        assert await source.atoken() == "mock_access_token"
