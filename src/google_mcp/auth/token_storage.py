"""Multi-account OAuth token storage for google-mcp.

Tokens for every configured account live in a single JSON record:

    <config_dir>/tokens.json   (mode 0600, directory mode 0700)

The TokenStorage object is the single source of truth for account data. It
is constructed once at startup and handed to every consumer; consumers only
ever see copies of the stored accounts. Every mutation is applied in memory
and persisted while holding the exclusive side of a reader/writer lock, so a
reload, an account commit, a token refresh and an account removal never
interleave.
"""

import logging
import os
import tempfile
from contextlib import suppress
from pathlib import Path

from pydantic import ValidationError

from google_mcp.auth.locking import ReadWriteLock
from google_mcp.auth.models import Account, OAuthToken, TokenRecord, TokenStatus
from google_mcp.config import default_config_dir
from google_mcp.errors import (
    AccountNotFoundError,
    ConfigurationError,
    NoAccountsConfiguredError,
    TokenStoreError,
)

logger = logging.getLogger(__name__)

TOKEN_FILE_NAME = "tokens.json"

# Reserved account selector that fans out to every configured account.
ALL_ACCOUNTS = "all"


def get_token_path(config_dir: Path | None = None) -> Path:
    """Get the token storage path.

    Args:
        config_dir: Configuration directory. Defaults to the XDG location.

    Returns:
        Path to tokens.json inside the configuration directory.
    """
    return (config_dir or default_config_dir()) / TOKEN_FILE_NAME


class TokenStorage:
    """Thread-safe, file-backed store of named Google accounts.

    Attributes:
        token_path: Path to the tokens.json file.
        credentials_dir: Directory holding tokens.json.

    Example:
        ```python
        storage = TokenStorage(Path("~/.config/google-mcp/tokens.json").expanduser())

        storage.put_account("work", token)
        storage.resolve_accounts("all")     # ["work"]
        storage.list_accounts()             # {"work": ""}
        storage.remove_account("work")
        ```
    """

    def __init__(self, token_path: Path | None = None) -> None:
        """Initialize token storage and load the durable record.

        Args:
            token_path: Custom path for tokens.json. Defaults to
                <config_dir>/tokens.json.

        Raises:
            TokenStoreError: If an existing record cannot be read or parsed.
        """
        self.token_path = token_path or get_token_path()
        self.credentials_dir = self.token_path.parent
        self._lock = ReadWriteLock()
        self._record = TokenRecord()
        self.load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Reload the record from disk, replacing the in-memory state.

        A missing file yields an empty store.

        Raises:
            TokenStoreError: If the file exists but is unreadable or malformed.
        """
        with self._lock.write():
            self._record = self._read_record()
        logger.debug(f"Loaded {len(self._record.accounts)} account(s) from {self.token_path}")

    def save(self) -> None:
        """Persist the current in-memory state.

        Raises:
            TokenStoreError: If the record cannot be written.
        """
        with self._lock.write():
            self._save()

    def _read_record(self) -> TokenRecord:
        try:
            content = self.token_path.read_text()
        except FileNotFoundError:
            return TokenRecord()
        except OSError as e:
            raise TokenStoreError(f"reading tokens from {self.token_path}: {e}") from e

        try:
            return TokenRecord.model_validate_json(content)
        except ValidationError as e:
            raise TokenStoreError(f"parsing tokens in {self.token_path}: {e}") from e

    def _ensure_credentials_dir(self) -> None:
        """Create the configuration directory with owner-only access if needed."""
        if self.credentials_dir.exists():
            return
        try:
            self.credentials_dir.mkdir(parents=True, mode=0o700)
        except OSError as e:
            raise ConfigurationError(
                f"cannot create config directory {self.credentials_dir}: {e}\n\n"
                "Create it manually or pass --config-dir to use a different location."
            ) from e

    def _save(self) -> None:
        """Write the record atomically. Caller must hold the write lock."""
        self._ensure_credentials_dir()
        content = self._record.model_dump_json(indent=2)

        # mkstemp creates the file with mode 0600, so the token never exists
        # on disk with wider permissions.
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.credentials_dir, prefix=".tokens-", suffix=".tmp"
            )
        except OSError as e:
            raise TokenStoreError(f"writing tokens to {self.token_path}: {e}") from e

        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.token_path)
        except OSError as e:
            with suppress(OSError):
                os.unlink(tmp_name)
            raise TokenStoreError(f"writing tokens to {self.token_path}: {e}") from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_accounts(self) -> dict[str, str]:
        """List configured accounts.

        Returns:
            Mapping of account name to email (empty if not yet resolved).
        """
        with self._lock.read():
            return {name: acct.email for name, acct in sorted(self._record.accounts.items())}

    def get_account(self, name: str) -> Account:
        """Get a copy of a stored account.

        Raises:
            AccountNotFoundError: If the account is not configured.
        """
        with self._lock.read():
            account = self._record.accounts.get(name)
            if account is None:
                raise AccountNotFoundError(name)
            return account.model_copy(deep=True)

    def resolve_accounts(self, selector: str) -> list[str]:
        """Resolve an account selector into concrete account names.

        Args:
            selector: An account name, or "all" for every configured account.
                Any other value is looked up as a literal name.

        Returns:
            A single-element list for a name, every account name for "all".

        Raises:
            AccountNotFoundError: If a named account is not configured.
            NoAccountsConfiguredError: If "all" is used with an empty store.
        """
        with self._lock.read():
            if selector == ALL_ACCOUNTS:
                if not self._record.accounts:
                    raise NoAccountsConfiguredError()
                return sorted(self._record.accounts)
            if selector not in self._record.accounts:
                raise AccountNotFoundError(selector)
            return [selector]

    def get_status(self, name: str) -> TokenStatus:
        """Get the status of an account's token.

        Returns:
            MISSING if the account is absent, EXPIRED if the access token has
            expired but can be refreshed, INVALID if it has expired without a
            refresh token, VALID otherwise.
        """
        with self._lock.read():
            account = self._record.accounts.get(name)
            if account is None:
                return TokenStatus.MISSING
            if account.token.is_expired():
                if account.token.refresh_token:
                    return TokenStatus.EXPIRED
                return TokenStatus.INVALID
            return TokenStatus.VALID

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def put_account(self, name: str, token: OAuthToken, email: str = "") -> None:
        """Insert or overwrite an account and persist.

        If persisting fails the previous in-memory state is restored, so a
        partially committed account is never visible.

        Raises:
            TokenStoreError: If the record cannot be written.
        """
        with self._lock.write():
            previous = self._record.accounts.get(name)
            self._record.accounts[name] = Account(email=email, token=token)
            try:
                self._save()
            except ConfigurationError:
                if previous is None:
                    del self._record.accounts[name]
                else:
                    self._record.accounts[name] = previous
                raise
        logger.info(f"Stored account {name!r}")

    def update_token(self, name: str, token: OAuthToken) -> None:
        """Replace the token of an existing account and persist.

        The in-memory token is updated even if persisting fails, since it is
        the freshest valid credential.

        Raises:
            AccountNotFoundError: If the account was removed meanwhile.
            TokenStoreError: If the record cannot be written.
        """
        with self._lock.write():
            account = self._record.accounts.get(name)
            if account is None:
                raise AccountNotFoundError(name)
            account.token = token
            self._save()

    def set_email(self, name: str, email: str) -> None:
        """Record the resolved email address of an account and persist.

        Raises:
            AccountNotFoundError: If the account is not configured.
            TokenStoreError: If the record cannot be written.
        """
        with self._lock.write():
            account = self._record.accounts.get(name)
            if account is None:
                raise AccountNotFoundError(name)
            if account.email == email:
                return
            account.email = email
            self._save()

    def remove_account(self, name: str) -> None:
        """Remove an account and persist.

        Raises:
            AccountNotFoundError: If the account is not configured. The store
                is left untouched.
            TokenStoreError: If the record cannot be written. The account is
                kept in memory.
        """
        with self._lock.write():
            account = self._record.accounts.pop(name, None)
            if account is None:
                raise AccountNotFoundError(name)
            try:
                self._save()
            except ConfigurationError:
                self._record.accounts[name] = account
                raise
        logger.info(f"Removed account {name!r}")
