"""Multi-account OAuth authentication for google-mcp.

This package manages named Google accounts: the interactive authorization
flow, durable token storage, account selector resolution, and access tokens
that refresh and persist themselves.

Quick Start:
    ```python
    from google_mcp.auth import OAuthManager, TokenStorage

    storage = TokenStorage(settings.token_path)
    manager = OAuthManager(storage, settings.credentials_file)

    # Add an account
    await manager.authenticate("work")

    # Fan out over accounts
    for name in storage.resolve_accounts("all"):
        access_token = manager.token_source(name).token()
    ```
"""

from google_mcp.auth.models import (
    Account,
    OAuthToken,
    TokenRecord,
    TokenStatus,
)
from google_mcp.auth.oauth_manager import DEFAULT_SCOPES, OAuthManager
from google_mcp.auth.token_source import PersistingTokenSource
from google_mcp.auth.token_storage import ALL_ACCOUNTS, TokenStorage

__all__ = [
    "ALL_ACCOUNTS",
    "DEFAULT_SCOPES",
    "Account",
    "OAuthManager",
    "OAuthToken",
    "PersistingTokenSource",
    "TokenRecord",
    "TokenStatus",
    "TokenStorage",
]
