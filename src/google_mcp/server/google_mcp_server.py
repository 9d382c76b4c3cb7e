"""Google MCP server for agent integration.

This MCP server exposes Google account tools over stdio. Every tool that
talks to a Google API takes an ``account`` selector (an account name or
"all") that is resolved against TokenStorage; access tokens come from a
PersistingTokenSource built for each request, which refreshes an expired
token and persists it.

Tools that touch the local disk go through the LocalFS sandbox and are only
useful when allowed directories are configured. A ToolFilter can narrow
the exposed tools further, for example to read-only tools.
"""

import asyncio
import json
import logging
import mimetypes
import secrets
from pathlib import PurePosixPath
from typing import Any

import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool, ToolAnnotations

from google_mcp.auth import OAuthManager, TokenStorage
from google_mcp.errors import GoogleMCPError, SandboxError
from google_mcp.localfs import AccessMode, LocalFS
from google_mcp.server.tool_filter import ToolFilter

logger = logging.getLogger(__name__)

SERVER_NAME = "google-mcp"

# Google API base URLs
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"
DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"

# read_local_file returns at most this many bytes of text
MAX_LOCAL_READ = 512 * 1024

ACCOUNT_PROPERTY = {
    "type": "string",
    "description": "Account name, or 'all' for every configured account",
}

READ_ONLY = ToolAnnotations(readOnlyHint=True)


def is_likely_text(data: bytes) -> bool:
    """Check whether data looks like text.

    Returns False for data containing NUL bytes or with fewer than 85%
    printable ASCII characters.
    """
    if not data:
        return True
    printable = 0
    for b in data:
        if b == 0:
            return False
        if b in (9, 10, 13) or 32 <= b < 127:
            printable += 1
    return printable / len(data) > 0.85


class GoogleMCPServer:
    """MCP server for Google account and local file tools.

    Attributes:
        server: MCP Server instance.
        storage: TokenStorage holding every configured account.
        manager: OAuthManager handing out token sources.
        local_fs: Sandboxed local filesystem access.
    """

    def __init__(
        self,
        storage: TokenStorage,
        manager: OAuthManager,
        local_fs: LocalFS | None = None,
        tool_filter: ToolFilter | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            storage: Token storage shared with the manager.
            manager: OAuth manager for token sources.
            local_fs: Local filesystem sandbox. None disables local file tools.
            tool_filter: Restricts the exposed tools. None exposes all of them.

        Raises:
            ConfigurationError: If the filter names unknown tools.
        """
        self.server = Server(SERVER_NAME)
        self.storage = storage
        self.manager = manager
        self.local_fs = local_fs or LocalFS()
        self._http_client: httpx.AsyncClient | None = None
        self._tools = (tool_filter or ToolFilter()).apply(self._all_tool_definitions())
        self._setup_handlers()

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create shared HTTP client with connection pooling."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                http2=True,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                timeout=httpx.Timeout(30.0, connect=10.0),
            )
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client and release resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # Tool registration
    # ------------------------------------------------------------------

    def _allowed_dirs_description(self, writable_only: bool = False) -> str:
        lines = [
            f"  - {d.path} ({d.mode.value})"
            for d in self.local_fs.dirs()
            if not writable_only or d.mode is AccessMode.READ_WRITE
        ]
        if not lines:
            return ""
        return "\n\nAllowed local directories:\n" + "\n".join(lines)

    def _all_tool_definitions(self) -> list[Tool]:
        """Build the unfiltered tool list. Local file tools appear only when enabled."""
        tools = [
            Tool(
                name="accounts_list",
                annotations=READ_ONLY,
                description=(
                    "List all configured Google accounts. "
                    "Use this to discover available account names."
                ),
                inputSchema={"type": "object", "properties": {}, "required": []},
            ),
            Tool(
                name="gmail_get_profile",
                annotations=READ_ONLY,
                description=(
                    "Get the Gmail profile (email address, message and thread counts). "
                    "Set account to 'all' to query every account."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {"account": ACCOUNT_PROPERTY},
                    "required": ["account"],
                },
            ),
        ]

        if not self.local_fs.enabled:
            return tools

        tools.extend(
            [
                Tool(
                    name="list_local_files",
                    annotations=READ_ONLY,
                    description=(
                        "List files in an allowed local directory. Paths are relative to "
                        "an allowed directory; omit path or use '.' to list the root."
                        + self._allowed_dirs_description()
                    ),
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "path": {
                                "type": "string",
                                "description": "Relative path within an allowed directory",
                            },
                        },
                        "required": [],
                    },
                ),
                Tool(
                    name="read_local_file",
                    annotations=READ_ONLY,
                    description=(
                        "Read a text file from an allowed local directory. "
                        "Binary files are reported by size only. Content is truncated at 512 KB."
                        + self._allowed_dirs_description()
                    ),
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "path": {
                                "type": "string",
                                "description": "Relative path to a file within an allowed directory",
                            },
                        },
                        "required": ["path"],
                    },
                ),
                Tool(
                    name="drive_upload_file",
                    description=(
                        "Upload a local file from an allowed directory to Google Drive."
                        + self._allowed_dirs_description()
                    ),
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "account": {"type": "string", "description": "Account name"},
                            "local_path": {
                                "type": "string",
                                "description": "Relative path of the local file",
                            },
                            "name": {
                                "type": "string",
                                "description": "Drive file name (default: local file name)",
                            },
                            "folder_id": {
                                "type": "string",
                                "description": "Parent folder ID (optional)",
                            },
                        },
                        "required": ["account", "local_path"],
                    },
                ),
                Tool(
                    name="drive_download_file",
                    description=(
                        "Download a Google Drive file into an allowed read-write local directory."
                        + self._allowed_dirs_description(writable_only=True)
                    ),
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "account": {"type": "string", "description": "Account name"},
                            "file_id": {"type": "string", "description": "Drive file ID"},
                            "save_to": {
                                "type": "string",
                                "description": "Relative path to write within a read-write directory",
                            },
                        },
                        "required": ["account", "file_id", "save_to"],
                    },
                ),
            ]
        )
        return tools

    def list_tool_definitions(self) -> list[Tool]:
        """The tools this server exposes, after filtering."""
        return list(self._tools)

    def _setup_handlers(self) -> None:
        """Register MCP tool handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """Return list of available tools."""
            return self.list_tool_definitions()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            """Handle tool calls."""
            try:
                result = await self._dispatch_tool(name, arguments or {})
                return [TextContent(type="text", text=json.dumps(result, indent=2))]
            except Exception as e:
                logger.exception(f"Error calling tool {name}")
                return [
                    TextContent(
                        type="text",
                        text=json.dumps({"error": str(e)}, indent=2),
                    )
                ]

    async def _dispatch_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Dispatch tool call to appropriate handler.

        Raises:
            ValueError: If tool name is not recognized.
        """
        handlers = {
            "accounts_list": self._accounts_list,
            "gmail_get_profile": self._gmail_get_profile,
            "list_local_files": self._list_local_files,
            "read_local_file": self._read_local_file,
            "drive_upload_file": self._drive_upload_file,
            "drive_download_file": self._drive_download_file,
        }

        handler = handlers.get(name)
        if handler is None or name not in {tool.name for tool in self._tools}:
            raise ValueError(f"Unknown tool: {name}")

        return await handler(arguments)

    # ------------------------------------------------------------------
    # Authenticated requests
    # ------------------------------------------------------------------

    async def _get_access_token(self, account: str) -> str:
        """Get a valid access token for an account, refreshing if necessary.

        The token source is built from the store on every call, so a token
        refreshed by an earlier request is picked up here.

        Raises:
            AccountNotFoundError: If the account is not configured.
            TokenRefreshError: If an expired token cannot be refreshed.
        """
        source = self.manager.token_source(account)
        return await source.atoken()

    async def _make_raw_request(
        self,
        account: str,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
    ) -> httpx.Response:
        """Make an authenticated HTTP request returning the raw response.

        Raises:
            httpx.HTTPStatusError: If the request fails.
        """
        access_token = await self._get_access_token(account)
        client = await self._get_http_client()

        request_headers = {"Authorization": f"Bearer {access_token}"}
        if headers:
            request_headers.update(headers)

        response = await client.request(
            method=method,
            url=url,
            params=params,
            content=content,
            headers=request_headers,
            timeout=timeout,
        )
        response.raise_for_status()
        return response

    async def _make_request(
        self,
        account: str,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request and decode the JSON response."""
        response = await self._make_raw_request(
            account, method, url, params=params, headers={"Accept": "application/json"}
        )
        result: dict[str, Any] = response.json()
        return result

    def _single_account(self, selector: str) -> str:
        accounts = self.storage.resolve_accounts(selector)
        if len(accounts) != 1:
            raise ValueError("this tool requires a single account name, not 'all'")
        return accounts[0]

    async def _run_blocking(self, func: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    # ------------------------------------------------------------------
    # Account tools
    # ------------------------------------------------------------------

    async def _accounts_list(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """List configured accounts."""
        accounts = self.storage.list_accounts()
        if not accounts:
            return {
                "accounts": [],
                "message": "No accounts configured. Run 'google-mcp auth add <name>' to add one.",
            }
        return {"accounts": [{"name": name, "email": email} for name, email in accounts.items()]}

    async def _gmail_get_profile(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Get the Gmail profile of one or more accounts.

        Records each account's email address as a side effect. With more
        than one account, per-account failures are reported inline.
        """
        accounts = self.storage.resolve_accounts(arguments.get("account", ""))
        multi_account = len(accounts) > 1

        profiles = []
        for account in accounts:
            try:
                profile = await self._make_request(
                    account, "GET", f"{GMAIL_API_BASE}/users/me/profile"
                )
            except (GoogleMCPError, httpx.HTTPError) as e:
                if not multi_account:
                    raise
                profiles.append({"account": account, "error": str(e)})
                continue

            email = profile.get("emailAddress", "")
            if email:
                try:
                    self.storage.set_email(account, email)
                except GoogleMCPError as e:
                    logger.warning(f"Could not record email for account {account!r}: {e}")
            profiles.append(
                {
                    "account": account,
                    "email": email,
                    "messages_total": profile.get("messagesTotal"),
                    "threads_total": profile.get("threadsTotal"),
                }
            )

        return {"profiles": profiles}

    # ------------------------------------------------------------------
    # Local file tools
    # ------------------------------------------------------------------

    async def _list_local_files(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """List an allowed local directory."""
        path = arguments.get("path", "")
        entries, directory = await self._run_blocking(self.local_fs.list_dir, path)
        return {
            "directory": directory,
            "path": path or ".",
            "entries": [entry.model_dump() for entry in entries],
        }

    async def _read_local_file(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Read a text file from an allowed local directory."""
        path = arguments.get("path", "")
        if not path:
            raise SandboxError("path is required")

        data, directory = await self._run_blocking(self.local_fs.read_file, path)

        if not is_likely_text(data):
            return {
                "directory": directory,
                "path": path,
                "binary": True,
                "size": len(data),
                "message": "Binary file; use drive_upload_file to transfer it.",
            }

        truncated = len(data) > MAX_LOCAL_READ
        return {
            "directory": directory,
            "path": path,
            "content": data[:MAX_LOCAL_READ].decode("utf-8", errors="replace"),
            "truncated": truncated,
        }

    async def _drive_upload_file(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Upload a sandboxed local file to Google Drive."""
        account = self._single_account(arguments.get("account", ""))
        local_path = arguments["local_path"]
        name = arguments.get("name") or PurePosixPath(local_path).name
        folder_id = arguments.get("folder_id")

        data, directory = await self._run_blocking(self.local_fs.read_file, local_path)
        mime_type = mimetypes.guess_type(name)[0] or "application/octet-stream"

        metadata: dict[str, Any] = {"name": name}
        if folder_id:
            metadata["parents"] = [folder_id]

        boundary = secrets.token_hex(16)
        body = b"\r\n".join(
            [
                f"--{boundary}".encode(),
                b"Content-Type: application/json; charset=UTF-8",
                b"",
                json.dumps(metadata).encode(),
                f"--{boundary}".encode(),
                f"Content-Type: {mime_type}".encode(),
                b"",
                data,
                f"--{boundary}--".encode(),
            ]
        )

        response = await self._make_raw_request(
            account,
            "POST",
            f"{DRIVE_UPLOAD_BASE}/files",
            params={"uploadType": "multipart", "fields": "id,name,mimeType,size"},
            content=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            timeout=120.0,
        )
        result = response.json()

        return {
            "status": "uploaded",
            "account": account,
            "source": f"{directory}/{local_path}",
            "id": result.get("id"),
            "name": result.get("name"),
            "mimeType": result.get("mimeType"),
        }

    async def _drive_download_file(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Download a Drive file into a read-write local directory."""
        account = self._single_account(arguments.get("account", ""))
        file_id = arguments["file_id"]
        save_to = arguments["save_to"]

        response = await self._make_raw_request(
            account,
            "GET",
            f"{DRIVE_API_BASE}/files/{file_id}",
            params={"alt": "media"},
            timeout=120.0,
        )
        data = response.content
        directory = await self._run_blocking(self.local_fs.write_file, save_to, data)

        return {
            "status": "downloaded",
            "account": account,
            "file_id": file_id,
            "saved_to": f"{directory}/{save_to}",
            "size": len(data),
        }

    async def run(self) -> None:
        """Run the MCP server using stdio transport."""
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
        finally:
            await self.close()


def main(settings=None) -> None:
    """Entry point for the google-mcp MCP server."""
    from google_mcp.server import create_server

    server = create_server(settings)
    try:
        asyncio.run(server.run())
    finally:
        server.local_fs.close()


if __name__ == "__main__":
    main()
