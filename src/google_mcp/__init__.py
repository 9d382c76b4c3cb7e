"""google-mcp: multi-account Google MCP server.

Connects Claude to Gmail and Drive across several named Google accounts,
with opt-in sandboxed access to local directories.
"""

from google_mcp.__version__ import __version__

__all__ = ["__version__"]
