"""OAuth manager for multi-account Google authentication.

OAuth client credentials are read directly from the Google Cloud Console
credentials.json file (installed or web application client); per-account
tokens are kept in TokenStorage.

The authorization flow for a new account:

1. Load the client credentials into a google-auth-oauthlib Flow.
2. Bind a loopback callback listener on an OS-assigned port and show the
   authorization URL to the operator.
3. Wait for exactly one callback, a timeout, or cancellation.
4. Exchange the authorization code for a token.
5. Commit the account to TokenStorage.
"""

import asyncio
import json
import logging
import os
import secrets
import threading
import webbrowser
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from google_mcp.auth.callback_server import OAuthCallbackServer
from google_mcp.auth.models import OAuthToken
from google_mcp.auth.token_source import (
    GOOGLE_TOKEN_URI,
    PersistingTokenSource,
    credentials_to_token,
    token_to_credentials,
)
from google_mcp.auth.token_storage import ALL_ACCOUNTS, TokenStorage
from google_mcp.errors import (
    AuthorizationCancelledError,
    AuthorizationError,
    ConfigurationError,
)

logger = logging.getLogger(__name__)

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.settings.basic",
]
DRIVE_SCOPES = [
    "https://www.googleapis.com/auth/drive",
]
CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
]
USERINFO_EMAIL_SCOPE = "https://www.googleapis.com/auth/userinfo.email"

# Scopes requested by 'auth add' when none are given
DEFAULT_SCOPES = [*GMAIL_SCOPES, *DRIVE_SCOPES, *CALENDAR_SCOPES, USERINFO_EMAIL_SCOPE]

USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

# Seconds to wait for the operator to finish consent
DEFAULT_AUTH_TIMEOUT = 300.0

CREDENTIALS_HELP_URL = "https://console.cloud.google.com/apis/credentials"

# Google adds "openid" to userinfo.email grants and lets users uncheck scopes
# on the consent screen; oauthlib rejects any such change unless relaxed.
RELAX_TOKEN_SCOPE_ENV = "OAUTHLIB_RELAX_TOKEN_SCOPE"
_relax_scope_lock = threading.Lock()


class OAuthManager:
    """OAuth authentication manager for multiple Google accounts.

    Handles the authorization flow for new accounts and hands out
    refreshing token sources for existing ones.

    Attributes:
        storage: Token storage holding every account.
        credentials_file: Path to the Google OAuth client descriptor.

    Example:
        ```python
        storage = TokenStorage(settings.token_path)
        manager = OAuthManager(storage, settings.credentials_file)

        # Add an account (opens a browser)
        await manager.authenticate("work")

        # Use it
        source = manager.token_source("work")
        access_token = source.token()
        ```
    """

    def __init__(self, storage: TokenStorage, credentials_file: Path | None = None) -> None:
        """Initialize OAuth manager.

        Args:
            storage: Token storage instance.
            credentials_file: Google credentials.json. Defaults to
                credentials.json next to the token file.
        """
        self.storage = storage
        self.credentials_file = credentials_file or storage.credentials_dir / "credentials.json"

    @property
    def token_path(self) -> Path:
        """Path to the tokens.json file."""
        return self.storage.token_path

    # ------------------------------------------------------------------
    # Client credentials
    # ------------------------------------------------------------------

    def load_client_config(self) -> dict[str, Any]:
        """Read and validate the OAuth client descriptor.

        Returns:
            Parsed credentials.json content.

        Raises:
            ConfigurationError: If the file is missing, unreadable, or not a
                Google OAuth client descriptor.
        """
        try:
            content = self.credentials_file.read_text()
        except FileNotFoundError:
            raise ConfigurationError(
                f"credentials file not found at {self.credentials_file}\n\n"
                f"Download it from {CREDENTIALS_HELP_URL} and place it there, "
                "or use --credentials to specify a different path"
            ) from None
        except OSError as e:
            raise ConfigurationError(f"reading credentials file: {e}") from e

        try:
            config = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"parsing credentials file {self.credentials_file}: {e}"
            ) from e

        client = self._client_info(config)
        if not client.get("client_id") or not client.get("client_secret"):
            raise ConfigurationError(
                f"credentials file {self.credentials_file} is missing client_id or client_secret"
            )
        return config

    def _client_info(self, config: Any) -> dict[str, Any]:
        if isinstance(config, dict):
            for client_type in ("installed", "web"):
                client = config.get(client_type)
                if isinstance(client, dict):
                    return client
        raise ConfigurationError(
            f"credentials file {self.credentials_file} is not an OAuth client descriptor "
            "(expected an 'installed' or 'web' section); "
            f"create a Desktop app client at {CREDENTIALS_HELP_URL}"
        )

    def _create_flow(self, scopes: list[str]) -> Flow:
        config = self.load_client_config()
        try:
            return Flow.from_client_config(config, scopes=scopes)
        except ValueError as e:
            raise ConfigurationError(
                f"parsing credentials file {self.credentials_file}: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Authorization flow
    # ------------------------------------------------------------------

    async def authenticate(
        self,
        name: str,
        scopes: list[str] | None = None,
        *,
        timeout: float | None = DEFAULT_AUTH_TIMEOUT,
        open_browser: bool = True,
        on_url: Callable[[str], None] | None = None,
    ) -> OAuthToken:
        """Run the OAuth2 authorization code flow for a named account.

        The account is stored only after the token exchange succeeds, so a
        failed or cancelled run leaves the store unchanged.

        Args:
            name: Account label (e.g. "personal", "work").
            scopes: OAuth scopes to request. Uses DEFAULT_SCOPES if not specified.
            timeout: Seconds to wait for the callback. None waits indefinitely.
            open_browser: Open the authorization URL in a browser.
            on_url: Called with the authorization URL. Defaults to printing it.

        Returns:
            The stored OAuthToken.

        Raises:
            ValueError: If name is empty or the reserved selector "all".
            ConfigurationError: If the client credentials are missing or invalid.
            AuthorizationError: If consent is denied or the exchange fails.
            AuthorizationCancelledError: If the timeout elapses first.
        """
        if not name:
            raise ValueError("account name is required")
        if name == ALL_ACCOUNTS:
            raise ValueError(f"'{ALL_ACCOUNTS}' is reserved and cannot be used as an account name")
        if scopes is None:
            scopes = DEFAULT_SCOPES

        flow = self._create_flow(scopes)
        state = secrets.token_urlsafe(32)

        with OAuthCallbackServer(expected_state=state) as callback:
            flow.redirect_uri = callback.redirect_uri
            auth_url, _ = flow.authorization_url(
                access_type="offline",
                prompt="consent",
                state=state,
            )
            self._announce(name, auth_url, on_url, open_browser)
            code = await self._await_callback(callback, timeout)

        loop = asyncio.get_running_loop()
        credentials = await loop.run_in_executor(None, self._exchange_code, flow, code)
        granted = credentials.granted_scopes or credentials.scopes or scopes
        if set(granted) != set(scopes):
            logger.info(f"Account {name!r} granted scopes differ from requested: {sorted(granted)}")
        token = credentials_to_token(credentials, list(granted))

        self.storage.put_account(name, token)
        logger.info(f"Account {name!r} authenticated successfully")
        return token

    def _announce(
        self,
        name: str,
        auth_url: str,
        on_url: Callable[[str], None] | None,
        open_browser: bool,
    ) -> None:
        if on_url is not None:
            on_url(auth_url)
        else:
            print(f"\nOpen this URL in your browser to authorize account {name!r}:\n")
            print(auth_url)
            print("\nWaiting for authorization...")
        if open_browser:
            webbrowser.open(auth_url)

    async def _await_callback(self, callback: OAuthCallbackServer, timeout: float | None) -> str:
        """Wait for the callback in a worker thread, honoring timeout and cancellation.

        The worker is always stopped and joined before returning, so the
        caller can close the listener safely.
        """
        stop = threading.Event()
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, callback.wait, stop)
        try:
            code = await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            raise AuthorizationCancelledError(
                f"timed out after {timeout:g}s waiting for authorization"
            ) from None
        finally:
            stop.set()
            await asyncio.wait({future})

        if code is None:
            raise AuthorizationCancelledError("authorization was cancelled")
        return code

    def _exchange_code(self, flow: Flow, code: str) -> Credentials:
        """Exchange the authorization code for credentials (blocking).

        Scope checking is relaxed for the duration of the exchange so a grant
        that differs from the request is accepted and recorded as granted.
        """
        with _relax_scope_lock:
            previous = os.environ.get(RELAX_TOKEN_SCOPE_ENV)
            os.environ[RELAX_TOKEN_SCOPE_ENV] = "1"
            try:
                flow.fetch_token(code=code)
            except Exception as e:
                raise AuthorizationError(f"exchanging auth code for token: {e}") from e
            finally:
                if previous is None:
                    os.environ.pop(RELAX_TOKEN_SCOPE_ENV, None)
                else:
                    os.environ[RELAX_TOKEN_SCOPE_ENV] = previous
        return flow.credentials

    # ------------------------------------------------------------------
    # Token access
    # ------------------------------------------------------------------

    def token_source(self, name: str, scopes: list[str] | None = None) -> PersistingTokenSource:
        """Get a refreshing token source for a named account.

        Args:
            name: Account name.
            scopes: Scopes to request on refresh. Defaults to the granted scopes.

        Returns:
            Token source that refreshes expired tokens and persists them.

        Raises:
            AccountNotFoundError: If the account is not configured.
            ConfigurationError: If the client credentials are missing or invalid.
        """
        account = self.storage.get_account(name)
        client = self._client_info(self.load_client_config())

        credentials = token_to_credentials(
            account.token,
            client_id=client["client_id"],
            client_secret=client["client_secret"],
            token_uri=client.get("token_uri", GOOGLE_TOKEN_URI),
            scopes=scopes,
        )
        return PersistingTokenSource(credentials, self.storage, name)

    async def fetch_email(self, name: str) -> str:
        """Look up an account's email address and record it.

        Requires the userinfo.email scope.

        Returns:
            The email address, or "" if the response carried none.

        Raises:
            httpx.HTTPError: If the userinfo request fails.
        """
        access_token = await self.token_source(name).atoken()
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0)) as client:
            response = await client.get(
                USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            email: str = response.json().get("email", "")

        if email:
            self.storage.set_email(name, email)
        return email
