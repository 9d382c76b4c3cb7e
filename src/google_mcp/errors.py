"""Exception hierarchy for google-mcp.

Every failure raised by the credential manager and the local filesystem
sandbox derives from GoogleMCPError, so tool handlers and CLI commands can
report them uniformly while still matching on the specific type.
"""


class GoogleMCPError(Exception):
    """Base class for all google-mcp errors."""


class ConfigurationError(GoogleMCPError):
    """Missing or malformed configuration (client credentials, config file, config dir)."""


class TokenStoreError(ConfigurationError):
    """The durable token record could not be read, parsed, or written."""


class AccountError(GoogleMCPError):
    """Base class for account selector failures."""


class AccountNotFoundError(AccountError):
    """The named account is not configured."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"account {name!r} not found; run 'google-mcp auth add {name}' first")


class NoAccountsConfiguredError(AccountError):
    """Selector 'all' was used but no accounts are configured."""

    def __init__(self) -> None:
        super().__init__("no accounts configured; run 'google-mcp auth add <name>' first")


class AuthorizationError(GoogleMCPError):
    """The interactive authorization flow failed (denied consent, bad callback, exchange)."""


class AuthorizationCancelledError(AuthorizationError):
    """The authorization flow timed out before a callback arrived."""


class TokenRefreshError(GoogleMCPError):
    """An expired access token could not be refreshed."""


class SandboxError(GoogleMCPError):
    """A local filesystem operation was rejected or failed."""


class LocalAccessDisabledError(SandboxError):
    """No sandbox directories are configured."""

    def __init__(self) -> None:
        super().__init__(
            "local file access is not enabled (use --allow-read-dir or --allow-write-dir)"
        )


__all__ = [
    "AccountError",
    "AccountNotFoundError",
    "AuthorizationCancelledError",
    "AuthorizationError",
    "ConfigurationError",
    "GoogleMCPError",
    "LocalAccessDisabledError",
    "NoAccountsConfiguredError",
    "SandboxError",
    "TokenRefreshError",
    "TokenStoreError",
]
