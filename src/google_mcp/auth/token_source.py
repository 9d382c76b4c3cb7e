"""Per-account access token source with write-through refresh.

PersistingTokenSource wraps a google-auth Credentials object for one account.
Each call to token() refreshes the access token when it has expired and, if
the access token changed, writes the new token back to the TokenStorage.

Persisting a refreshed token is best-effort: if the write fails the caller
still receives the refreshed token and the failure is logged. The refreshed
token is then lost on restart, and a rotated refresh token may have to be
re-authorized with 'google-mcp auth add'.
"""

import asyncio
import logging
import threading
from datetime import datetime, timedelta, timezone

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from google_mcp.auth.models import OAuthToken
from google_mcp.auth.token_storage import TokenStorage
from google_mcp.errors import AccountNotFoundError, ConfigurationError, TokenRefreshError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"  # nosec B105 - public endpoint


def credentials_to_token(credentials: Credentials, scopes: list[str] | None = None) -> OAuthToken:
    """Convert google-auth Credentials to OAuthToken.

    Args:
        credentials: Google OAuth2 credentials.
        scopes: Granted scopes. Defaults to the credentials' scopes.

    Returns:
        OAuthToken with all credential data.
    """
    if credentials.expiry:
        expiry = credentials.expiry
        # google-auth uses naive UTC datetimes
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
    else:
        # Default to 1 hour expiration
        expiry = datetime.now(timezone.utc) + timedelta(hours=1)

    if scopes is None:
        scopes = list(credentials.scopes or [])

    return OAuthToken(  # nosec B106 - "Bearer" is OAuth token type, not a password
        access_token=credentials.token,
        refresh_token=credentials.refresh_token,
        token_type="Bearer",
        expiry=expiry,
        scopes=scopes,
    )


def token_to_credentials(
    token: OAuthToken,
    client_id: str | None = None,
    client_secret: str | None = None,
    token_uri: str = GOOGLE_TOKEN_URI,
    scopes: list[str] | None = None,
) -> Credentials:
    """Convert OAuthToken to google-auth Credentials.

    Args:
        token: Stored OAuth token.
        client_id: OAuth client ID, required for refresh.
        client_secret: OAuth client secret, required for refresh.
        token_uri: Token endpoint used for refresh.
        scopes: Scopes to request on refresh. Defaults to the token's scopes.

    Returns:
        Google OAuth2 credentials.
    """
    expiry = None
    if token.expiry is not None:
        expiry = token.expiry.astimezone(timezone.utc).replace(tzinfo=None)

    return Credentials(
        token=token.access_token,
        refresh_token=token.refresh_token,
        token_uri=token_uri,
        client_id=client_id,
        client_secret=client_secret,
        scopes=scopes or token.scopes or None,
        expiry=expiry,
    )


class PersistingTokenSource:
    """Access token source for one account that persists refreshed tokens.

    Attributes:
        name: Account name the source belongs to.

    Example:
        ```python
        source = manager.token_source("work")
        headers = {"Authorization": f"Bearer {source.token()}"}
        ```
    """

    def __init__(self, credentials: Credentials, storage: TokenStorage, name: str) -> None:
        """Initialize the token source.

        Args:
            credentials: Base refresher holding the account's current token.
            storage: Token storage that refreshed tokens are written to.
            name: Account name to persist under.
        """
        self.name = name
        self._credentials = credentials
        self._storage = storage
        self._current = credentials.token
        self._lock = threading.Lock()

    def token(self) -> str:
        """Get a valid access token, refreshing and persisting if needed.

        Returns:
            Access token string.

        Raises:
            TokenRefreshError: If the token is expired and cannot be refreshed.
        """
        with self._lock:
            if not self._credentials.valid:
                logger.info(f"Refreshing access token for account {self.name!r}")
                try:
                    self._credentials.refresh(Request())
                except google.auth.exceptions.GoogleAuthError as e:
                    raise TokenRefreshError(
                        f"refreshing token for account {self.name!r}: {e}. "
                        f"Run 'google-mcp auth add {self.name}' to re-authorize."
                    ) from e

            access_token = self._credentials.token
            if access_token != self._current:
                self._current = access_token
                self._persist()
            return access_token

    async def atoken(self) -> str:
        """Async variant of token(); runs the refresh in an executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.token)

    def _persist(self) -> None:
        token = credentials_to_token(self._credentials)
        try:
            self._storage.update_token(self.name, token)
        except (ConfigurationError, AccountNotFoundError) as e:
            # Best-effort: the refreshed token is still returned to the caller.
            logger.warning(
                f"Could not persist refreshed token for account {self.name!r}; "
                f"it will be lost on restart: {e}"
            )
