"""Sandboxed local filesystem access for google-mcp tools.

Quick Start:
    ```python
    from google_mcp.localfs import AccessMode, LocalFS, SandboxDir

    fs = LocalFS([
        SandboxDir(path=Path("/srv/shared"), mode=AccessMode.READ_ONLY),
        SandboxDir(path=Path("/srv/outbox"), mode=AccessMode.READ_WRITE),
    ])
    data, root = fs.read_file("report.pdf")
    fs.write_file("report-copy.pdf", data)
    fs.close()
    ```
"""

from google_mcp.localfs.models import AccessMode, DirEntry, SandboxDir
from google_mcp.localfs.sandbox import LocalFS

__all__ = [
    "AccessMode",
    "DirEntry",
    "LocalFS",
    "SandboxDir",
]
