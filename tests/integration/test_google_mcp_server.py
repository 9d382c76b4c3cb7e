"""Integration tests for the google-mcp MCP server.

Tools run against a real TokenStorage and LocalFS sandbox. Google API calls
go through an httpx.MockTransport, and access tokens come from mocked token
sources.
"""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from google_mcp.auth.models import OAuthToken
from google_mcp.auth.token_storage import TokenStorage
from google_mcp.errors import (
    AccountNotFoundError,
    ConfigurationError,
    LocalAccessDisabledError,
    SandboxError,
)
from google_mcp.localfs import LocalFS
from google_mcp.server.google_mcp_server import MAX_LOCAL_READ, GoogleMCPServer, is_likely_text
from google_mcp.server.tool_filter import ToolFilter


def _token_source(access_token: str) -> MagicMock:
    source = MagicMock()
    source.atoken = AsyncMock(return_value=access_token)
    return source


@pytest.fixture
def accounts(token_storage: TokenStorage, valid_token: OAuthToken) -> TokenStorage:
    """Store two accounts."""
    token_storage.put_account("work", valid_token)
    token_storage.put_account("personal", valid_token)
    return token_storage


@pytest.fixture
def mock_manager() -> MagicMock:
    """OAuth manager whose token sources hand out '<name>-token'."""
    manager = MagicMock()
    manager.token_source.side_effect = lambda name: _token_source(f"{name}-token")
    return manager


def _make_server(
    storage: TokenStorage,
    manager: MagicMock,
    local_fs: LocalFS | None,
    handler: Callable[[httpx.Request], httpx.Response] | None = None,
    tool_filter: ToolFilter | None = None,
) -> GoogleMCPServer:
    server = GoogleMCPServer(storage, manager, local_fs, tool_filter)
    if handler is not None:
        server._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return server


# =============================================================================
# Tool Registration
# =============================================================================


@pytest.mark.integration
class TestToolRegistration:
    """Tests for the advertised tool list."""

    def test_should_hide_local_tools_when_sandbox_disabled(
        self, accounts: TokenStorage, mock_manager: MagicMock
    ) -> None:
        """Verify local file tools are not offered without allowed directories."""
        server = _make_server(accounts, mock_manager, None)

        names = [tool.name for tool in server.list_tool_definitions()]

        assert names == ["accounts_list", "gmail_get_profile"]

    def test_should_list_allowed_dirs_in_descriptions(
        self, accounts: TokenStorage, mock_manager: MagicMock, local_fs: LocalFS, write_dir: Path
    ) -> None:
        """Verify local tools are offered and describe the allowed directories."""
        server = _make_server(accounts, mock_manager, local_fs)

        tools = {tool.name: tool for tool in server.list_tool_definitions()}

        assert {"list_local_files", "read_local_file", "drive_upload_file", "drive_download_file"} <= set(tools)
        assert f"{write_dir.resolve()} (read-write)" in tools["read_local_file"].description
        assert "(read-only)" not in tools["drive_download_file"].description

    @pytest.mark.asyncio
    async def test_should_reject_unknown_tool(
        self, accounts: TokenStorage, mock_manager: MagicMock
    ) -> None:
        """Verify unknown tool names raise."""
        server = _make_server(accounts, mock_manager, None)

        with pytest.raises(ValueError, match="Unknown tool"):
            await server._dispatch_tool("nope", {})


# =============================================================================
# Tool Filtering
# =============================================================================


@pytest.mark.integration
class TestToolFiltering:
    """Tests for --read-only, --enable and --disable on the server."""

    def test_should_expose_only_read_only_tools(
        self, accounts: TokenStorage, mock_manager: MagicMock, local_fs: LocalFS
    ) -> None:
        """Verify read-only mode drops the Drive transfer tools."""
        server = _make_server(accounts, mock_manager, local_fs, tool_filter=ToolFilter(read_only=True))

        names = [tool.name for tool in server.list_tool_definitions()]

        assert names == ["accounts_list", "gmail_get_profile", "list_local_files", "read_local_file"]

    @pytest.mark.asyncio
    async def test_should_refuse_calls_to_filtered_tools(
        self, accounts: TokenStorage, mock_manager: MagicMock, local_fs: LocalFS, write_dir: Path
    ) -> None:
        """Verify a hidden tool cannot be called directly."""
        server = _make_server(accounts, mock_manager, local_fs, tool_filter=ToolFilter(read_only=True))

        with pytest.raises(ValueError, match="Unknown tool"):
            await server._dispatch_tool(
                "drive_download_file",
                {"account": "work", "file_id": "f1", "save_to": "out.bin"},
            )

        mock_manager.token_source.assert_not_called()
        assert not (write_dir / "out.bin").exists()

    def test_should_apply_enable_list(
        self, accounts: TokenStorage, mock_manager: MagicMock
    ) -> None:
        """Verify only whitelisted tools are exposed."""
        server = _make_server(
            accounts, mock_manager, None, tool_filter=ToolFilter(enable=["accounts_list"])
        )

        assert [tool.name for tool in server.list_tool_definitions()] == ["accounts_list"]

    def test_should_reject_unknown_tool_in_filter(
        self, accounts: TokenStorage, mock_manager: MagicMock
    ) -> None:
        """Verify a filter naming a tool the server does not offer fails construction."""
        with pytest.raises(ConfigurationError, match="unknown tool 'read_local_file'"):
            _make_server(
                accounts, mock_manager, None, tool_filter=ToolFilter(disable=["read_local_file"])
            )


# =============================================================================
# Account Tools
# =============================================================================


@pytest.mark.integration
class TestAccountTools:
    """Integration tests for account tools."""

    @pytest.mark.asyncio
    async def test_accounts_list(self, accounts: TokenStorage, mock_manager: MagicMock) -> None:
        """Test listing accounts returns names in order."""
        server = _make_server(accounts, mock_manager, None)

        result = await server._dispatch_tool("accounts_list", {})

        assert result["accounts"] == [
            {"name": "personal", "email": ""},
            {"name": "work", "email": ""},
        ]

    @pytest.mark.asyncio
    async def test_accounts_list_empty(
        self, token_storage: TokenStorage, mock_manager: MagicMock
    ) -> None:
        """Test listing with no accounts points at 'auth add'."""
        server = _make_server(token_storage, mock_manager, None)

        result = await server._dispatch_tool("accounts_list", {})

        assert result["accounts"] == []
        assert "google-mcp auth add" in result["message"]

    @pytest.mark.asyncio
    async def test_gmail_get_profile_all_accounts(
        self, accounts: TokenStorage, mock_manager: MagicMock
    ) -> None:
        """Test 'all' fans out and records each account's email."""
        seen_tokens: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            token = request.headers["Authorization"].removeprefix("Bearer ")
            seen_tokens.append(token)
            name = token.removesuffix("-token")
            return httpx.Response(
                200,
                json={"emailAddress": f"{name}@example.com", "messagesTotal": 3, "threadsTotal": 2},
            )

        server = _make_server(accounts, mock_manager, None, handler)

        result = await server._dispatch_tool("gmail_get_profile", {"account": "all"})

        assert seen_tokens == ["personal-token", "work-token"]
        assert [p["email"] for p in result["profiles"]] == [
            "personal@example.com",
            "work@example.com",
        ]
        assert accounts.list_accounts() == {
            "personal": "personal@example.com",
            "work": "work@example.com",
        }

    @pytest.mark.asyncio
    async def test_gmail_get_profile_reports_partial_failure(
        self, accounts: TokenStorage, mock_manager: MagicMock
    ) -> None:
        """Test a failing account is reported inline when fanning out."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers["Authorization"] == "Bearer work-token":
                return httpx.Response(401, json={"error": "unauthorized"})
            return httpx.Response(200, json={"emailAddress": "me@example.com"})

        server = _make_server(accounts, mock_manager, None, handler)

        result = await server._dispatch_tool("gmail_get_profile", {"account": "all"})

        personal, work = result["profiles"]
        assert personal["email"] == "me@example.com"
        assert work["account"] == "work"
        assert "401" in work["error"]

    @pytest.mark.asyncio
    async def test_gmail_get_profile_unknown_account(
        self, accounts: TokenStorage, mock_manager: MagicMock
    ) -> None:
        """Test an unknown account raises before any request."""
        server = _make_server(accounts, mock_manager, None)

        with pytest.raises(AccountNotFoundError):
            await server._dispatch_tool("gmail_get_profile", {"account": "ghost"})

        mock_manager.token_source.assert_not_called()

    @pytest.mark.asyncio
    async def test_token_source_is_built_per_request(
        self, accounts: TokenStorage, mock_manager: MagicMock
    ) -> None:
        """Test each request builds a fresh token source from the store."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"emailAddress": "me@example.com"})

        server = _make_server(accounts, mock_manager, None, handler)

        await server._dispatch_tool("gmail_get_profile", {"account": "work"})
        await server._dispatch_tool("gmail_get_profile", {"account": "work"})

        assert mock_manager.token_source.call_count == 2
        mock_manager.token_source.assert_called_with("work")


# =============================================================================
# Local File Tools
# =============================================================================


@pytest.mark.integration
class TestLocalFileTools:
    """Integration tests for sandboxed local file tools."""

    @pytest.mark.asyncio
    async def test_list_local_files(
        self, accounts: TokenStorage, mock_manager: MagicMock, local_fs: LocalFS
    ) -> None:
        """Test listing the root of the first allowed directory."""
        server = _make_server(accounts, mock_manager, local_fs)

        result = await server._dispatch_tool("list_local_files", {})

        assert [e["name"] for e in result["entries"]] == ["notes.txt", "sub"]

    @pytest.mark.asyncio
    async def test_read_local_file_text(
        self, accounts: TokenStorage, mock_manager: MagicMock, local_fs: LocalFS
    ) -> None:
        """Test reading a text file returns its content."""
        server = _make_server(accounts, mock_manager, local_fs)

        result = await server._dispatch_tool("read_local_file", {"path": "notes.txt"})

        assert result["content"] == "hello from read\n"
        assert result["truncated"] is False

    @pytest.mark.asyncio
    async def test_read_local_file_binary(
        self, accounts: TokenStorage, mock_manager: MagicMock, local_fs: LocalFS, read_dir: Path
    ) -> None:
        """Test binary files are reported by size only."""
        (read_dir / "image.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR")
        server = _make_server(accounts, mock_manager, local_fs)

        result = await server._dispatch_tool("read_local_file", {"path": "image.png"})

        assert result["binary"] is True
        assert result["size"] == 16
        assert "content" not in result

    @pytest.mark.asyncio
    async def test_read_local_file_truncates(
        self, accounts: TokenStorage, mock_manager: MagicMock, local_fs: LocalFS, read_dir: Path
    ) -> None:
        """Test large text files are truncated."""
        (read_dir / "big.txt").write_text("a" * (MAX_LOCAL_READ + 10))
        server = _make_server(accounts, mock_manager, local_fs)

        result = await server._dispatch_tool("read_local_file", {"path": "big.txt"})

        assert result["truncated"] is True
        assert len(result["content"]) == MAX_LOCAL_READ

    @pytest.mark.asyncio
    async def test_read_local_file_escape_is_reported(
        self, accounts: TokenStorage, mock_manager: MagicMock, local_fs: LocalFS
    ) -> None:
        """Test paths escaping the sandbox are refused."""
        server = _make_server(accounts, mock_manager, local_fs)

        with pytest.raises(SandboxError):
            await server._dispatch_tool("read_local_file", {"path": "../outside/secret.txt"})

    @pytest.mark.asyncio
    async def test_local_tools_fail_when_disabled(
        self, accounts: TokenStorage, mock_manager: MagicMock
    ) -> None:
        """Test local tools refuse access without allowed directories."""
        server = _make_server(accounts, mock_manager, None)

        with pytest.raises(LocalAccessDisabledError):
            await server._dispatch_tool("list_local_files", {})


# =============================================================================
# Drive Transfer Tools
# =============================================================================


@pytest.mark.integration
class TestDriveTransferTools:
    """Integration tests for Drive upload and download."""

    @pytest.mark.asyncio
    async def test_drive_upload_file(
        self, accounts: TokenStorage, mock_manager: MagicMock, local_fs: LocalFS
    ) -> None:
        """Test uploading a sandboxed file sends metadata and content."""
        captured: dict[str, Any] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["content_type"] = request.headers["Content-Type"]
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = request.content
            return httpx.Response(
                200, json={"id": "file_123", "name": "report.txt", "mimeType": "text/plain"}
            )

        server = _make_server(accounts, mock_manager, local_fs, handler)

        result = await server._dispatch_tool(
            "drive_upload_file",
            {"account": "work", "local_path": "notes.txt", "name": "report.txt", "folder_id": "f1"},
        )

        assert result["id"] == "file_123"
        assert captured["url"].startswith("https://www.googleapis.com/upload/drive/v3/files")
        assert "uploadType=multipart" in captured["url"]
        assert captured["content_type"].startswith("multipart/related; boundary=")
        assert captured["auth"] == "Bearer work-token"
        assert b"hello from read\n" in captured["body"]
        assert json.dumps({"name": "report.txt", "parents": ["f1"]}).encode() in captured["body"]
        assert b"Content-Type: text/plain" in captured["body"]

    @pytest.mark.asyncio
    async def test_drive_upload_requires_single_account(
        self, accounts: TokenStorage, mock_manager: MagicMock, local_fs: LocalFS
    ) -> None:
        """Test 'all' is rejected for uploads."""
        server = _make_server(accounts, mock_manager, local_fs)

        with pytest.raises(ValueError, match="single account"):
            await server._dispatch_tool(
                "drive_upload_file", {"account": "all", "local_path": "notes.txt"}
            )

    @pytest.mark.asyncio
    async def test_drive_download_file(
        self, accounts: TokenStorage, mock_manager: MagicMock, local_fs: LocalFS, write_dir: Path
    ) -> None:
        """Test downloading writes into the read-write directory."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["alt"] == "media"
            assert request.url.path == "/drive/v3/files/file_123"
            return httpx.Response(200, content=b"downloaded bytes")

        server = _make_server(accounts, mock_manager, local_fs, handler)

        result = await server._dispatch_tool(
            "drive_download_file",
            {"account": "personal", "file_id": "file_123", "save_to": "out.bin"},
        )

        assert result["size"] == len(b"downloaded bytes")
        assert (write_dir / "out.bin").read_bytes() == b"downloaded bytes"

    @pytest.mark.asyncio
    async def test_drive_download_cannot_escape(
        self,
        accounts: TokenStorage,
        mock_manager: MagicMock,
        local_fs: LocalFS,
        outside_dir: Path,
    ) -> None:
        """Test downloads cannot be written outside the sandbox."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"pwned")

        server = _make_server(accounts, mock_manager, local_fs, handler)

        with pytest.raises(SandboxError):
            await server._dispatch_tool(
                "drive_download_file",
                {"account": "work", "file_id": "x", "save_to": "../outside/secret.txt"},
            )

        assert (outside_dir / "secret.txt").read_text() == "top secret\n"


@pytest.mark.unit
class TestIsLikelyText:
    """Tests for the text/binary heuristic."""

    def test_should_accept_plain_text(self) -> None:
        """Verify ordinary text is text."""
        assert is_likely_text(b"hello\nworld\t!\r\n") is True

    def test_should_reject_nul_bytes(self) -> None:
        """Verify any NUL byte marks data as binary."""
        assert is_likely_text(b"hello\x00world") is False

    def test_should_reject_mostly_unprintable(self) -> None:
        """Verify data under the printable threshold is binary."""
        assert is_likely_text(bytes(range(1, 32)) * 4) is False

    def test_should_accept_empty(self) -> None:
        """Verify empty files count as text."""
        assert is_likely_text(b"") is True
