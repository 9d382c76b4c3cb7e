"""Shared pytest fixtures for google-mcp tests.

This module provides reusable fixtures for OAuth tokens, token storage,
client credentials, and sandboxed local directories.
"""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from google_mcp.auth.models import OAuthToken

# =============================================================================
# Token Fixtures
# =============================================================================


@pytest.fixture
def valid_token() -> OAuthToken:
    """Create a valid, non-expired OAuth token."""
    return OAuthToken(
        access_token="test_access_token_abc123",
        refresh_token="test_refresh_token_xyz789",
        expiry=datetime.now(timezone.utc) + timedelta(hours=1),
        scopes=[
            "https://www.googleapis.com/auth/gmail.modify",
            "https://www.googleapis.com/auth/drive",
        ],
        token_type="Bearer",
    )


@pytest.fixture
def expired_token() -> OAuthToken:
    """Create an expired OAuth token that can be refreshed."""
    return OAuthToken(
        access_token="expired_access_token",
        refresh_token="test_refresh_token",
        expiry=datetime.now(timezone.utc) - timedelta(hours=1),
        scopes=["https://www.googleapis.com/auth/drive"],
        token_type="Bearer",
    )


# =============================================================================
# Token Storage Fixtures
# =============================================================================


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Create a temporary configuration directory."""
    path = tmp_path / "google-mcp"
    path.mkdir(parents=True, mode=0o700)
    return path


@pytest.fixture
def temp_token_path(config_dir: Path) -> Path:
    """Get the path for a temporary tokens.json file."""
    return config_dir / "tokens.json"


@pytest.fixture
def token_storage(temp_token_path: Path):
    """Create a TokenStorage instance with temporary storage."""
    from google_mcp.auth.token_storage import TokenStorage

    return TokenStorage(token_path=temp_token_path)


# =============================================================================
# OAuth Manager Fixtures
# =============================================================================


@pytest.fixture
def credentials_file(config_dir: Path) -> Path:
    """Write an installed-app OAuth client descriptor."""
    path = config_dir / "credentials.json"
    path.write_text(
        json.dumps(
            {
                "installed": {
                    "client_id": "test-client-id.apps.googleusercontent.com",
                    "client_secret": "test-client-secret",
                    "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                    "token_uri": "https://oauth2.googleapis.com/token",
                    "redirect_uris": ["http://localhost"],
                }
            }
        )
    )
    return path


@pytest.fixture
def oauth_manager(token_storage, credentials_file: Path):
    """Create an OAuthManager with temporary storage and client credentials."""
    from google_mcp.auth.oauth_manager import OAuthManager

    return OAuthManager(storage=token_storage, credentials_file=credentials_file)


# =============================================================================
# Mock Google Credentials
# =============================================================================


@pytest.fixture
def mock_google_credentials() -> MagicMock:
    """Create a mock Google OAuth2 Credentials object."""
    mock_creds = MagicMock()
    mock_creds.token = "mock_access_token"
    mock_creds.refresh_token = "mock_refresh_token"
    mock_creds.expiry = datetime.now(timezone.utc) + timedelta(hours=1)
    mock_creds.expired = False
    mock_creds.valid = True
    mock_creds.scopes = ["https://www.googleapis.com/auth/drive"]
    mock_creds.granted_scopes = None
    return mock_creds


# =============================================================================
# Local Filesystem Fixtures
# =============================================================================


@pytest.fixture
def read_dir(tmp_path: Path) -> Path:
    """Create a read-only sandbox directory with a few files."""
    path = tmp_path / "read"
    path.mkdir()
    (path / "notes.txt").write_text("hello from read\n")
    (path / "sub").mkdir()
    (path / "sub" / "nested.txt").write_text("nested\n")
    return path


@pytest.fixture
def write_dir(tmp_path: Path) -> Path:
    """Create a read-write sandbox directory."""
    path = tmp_path / "write"
    path.mkdir()
    (path / "draft.txt").write_text("hello from write\n")
    return path


@pytest.fixture
def outside_dir(tmp_path: Path) -> Path:
    """Create a directory outside every sandbox root."""
    path = tmp_path / "outside"
    path.mkdir()
    (path / "secret.txt").write_text("top secret\n")
    return path


@pytest.fixture
def local_fs(read_dir: Path, write_dir: Path):
    """Create a LocalFS over one read-only and one read-write directory."""
    from google_mcp.localfs import AccessMode, LocalFS, SandboxDir

    fs = LocalFS(
        [
            SandboxDir(path=read_dir, mode=AccessMode.READ_ONLY),
            SandboxDir(path=write_dir, mode=AccessMode.READ_WRITE),
        ]
    )
    yield fs
    fs.close()


# =============================================================================
# CLI Test Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
