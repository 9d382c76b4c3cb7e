"""MCP server implementation for google-mcp.

Provides tools across configured Google accounts and, when enabled, a
sandboxed set of local directories:

Account Tools:
- List configured accounts
- Gmail profile lookup (one account or "all")

Local File Tools (only with --allow-read-dir / --allow-write-dir):
- List and read files in allowed directories
- Upload local files to Drive
- Download Drive files into read-write directories

Tool filtering: --read-only, --enable or --disable (see ToolFilter)

Transport: Stdio (for Claude Desktop)
Authentication: OAuth 2.0 per named account with automatic token refresh
"""

from google_mcp.server.google_mcp_server import (
    GoogleMCPServer,
    main,
)
from google_mcp.server.tool_filter import ToolFilter


def create_server(settings=None) -> GoogleMCPServer:
    """Create and configure a google-mcp server.

    Args:
        settings: Resolved Settings. Loaded from the environment and
            config.yaml when not given.

    Returns:
        GoogleMCPServer: Configured server instance ready to run.

    Raises:
        ConfigurationError: If settings or the token store cannot be loaded,
            or the tool filter is invalid.
        SandboxError: If an allowed directory is missing or not a directory.

    Example:
        >>> server = create_server(load_settings(allow_read_dirs=["~/Documents"]))
        >>> asyncio.run(server.run())
    """
    from google_mcp.auth import OAuthManager, TokenStorage
    from google_mcp.config import load_settings
    from google_mcp.errors import ConfigurationError
    from google_mcp.localfs import LocalFS

    if settings is None:
        settings = load_settings()

    storage = TokenStorage(settings.token_path)
    manager = OAuthManager(storage, settings.credentials_file)
    local_fs = LocalFS(settings.sandbox_dirs())
    tool_filter = ToolFilter(
        read_only=settings.read_only,
        enable=settings.enable_tools,
        disable=settings.disable_tools,
    )
    try:
        return GoogleMCPServer(storage, manager, local_fs, tool_filter)
    except ConfigurationError:
        local_fs.close()
        raise


__all__ = ["create_server", "GoogleMCPServer", "ToolFilter", "main"]
