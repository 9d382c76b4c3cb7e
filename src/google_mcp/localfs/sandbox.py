"""Sandboxed local filesystem access for MCP tools.

All local file access by tool handlers goes through a LocalFS instance that
confines every operation to a fixed, ordered set of allowed directories.
With no directories configured every operation fails: local file access is
opt-in only.

Containment is enforced on every call, never cached:

- the requested path is joined to the directory's real path and fully
  resolved (symlinks and ``..`` included);
- the result must lie inside the directory's real path, compared by path
  components rather than string prefix;
- the directory handle opened at construction must still refer to the same
  directory;
- the resolved target is opened with O_NOFOLLOW.

A path that escapes one directory is only rejected for that directory; the
next directory is tried. A symlink that stays inside its own directory is
followed normally.
"""

import logging
import os
import stat
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, TypeVar

from google_mcp.errors import LocalAccessDisabledError, SandboxError
from google_mcp.localfs.models import AccessMode, DirEntry, SandboxDir

logger = logging.getLogger(__name__)

T = TypeVar("T")

_O_DIRECTORY = getattr(os, "O_DIRECTORY", 0)
_O_NOFOLLOW = getattr(os, "O_NOFOLLOW", 0)
_O_BINARY = getattr(os, "O_BINARY", 0)
_O_NONBLOCK = getattr(os, "O_NONBLOCK", 0)

# Mode for files created by write_file.
FILE_MODE = 0o644


@dataclass(frozen=True)
class _OpenDir:
    """An allowed directory with its open handle."""

    path: Path
    mode: AccessMode
    fd: int
    dev: int
    ino: int


def _open_dir(entry: SandboxDir) -> _OpenDir:
    try:
        real = Path(entry.path).expanduser().resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise SandboxError(f"allowed dir {str(entry.path)!r}: {e}") from e

    if not real.is_dir():
        raise SandboxError(f"allowed dir {str(entry.path)!r}: not a directory")

    try:
        fd = os.open(real, os.O_RDONLY | _O_DIRECTORY)
    except OSError as e:
        raise SandboxError(f"allowed dir {str(entry.path)!r}: {e}") from e

    st = os.fstat(fd)
    return _OpenDir(path=real, mode=entry.mode, fd=fd, dev=st.st_dev, ino=st.st_ino)


def _open_regular(target: Path, flags: int, mode: int = 0o777) -> int:
    """Open target without following a final symlink; only regular files.

    O_NONBLOCK keeps FIFOs and device nodes from blocking the open.
    """
    fd = os.open(target, flags | _O_NOFOLLOW | _O_NONBLOCK | _O_BINARY, mode)
    try:
        if not stat.S_ISREG(os.fstat(fd).st_mode):
            raise OSError(f"{target} is not a regular file")
        if _O_NONBLOCK:
            os.set_blocking(fd, True)
    except OSError:
        os.close(fd)
        raise
    return fd


class LocalFS:
    """Gate for local file access through a set of allowed directories.

    Attributes are immutable after construction, so one instance may be
    shared by concurrent tool handlers.

    Example:
        ```python
        with LocalFS([SandboxDir(path=Path("~/Documents"), mode=AccessMode.READ_ONLY)]) as fs:
            data, root = fs.read_file("notes/todo.txt")
        ```
    """

    def __init__(self, dirs: Sequence[SandboxDir] = ()) -> None:
        """Open every allowed directory.

        Args:
            dirs: Allowed directories in search order. Empty disables access.

        Raises:
            SandboxError: If any entry does not exist or is not a directory.
                Handles opened before the failure are released.
        """
        opened: list[_OpenDir] = []
        try:
            for entry in dirs:
                opened.append(_open_dir(entry))
        except SandboxError:
            for d in opened:
                os.close(d.fd)
            raise

        self._dirs: tuple[_OpenDir, ...] = tuple(opened)
        self._closed = False
        for d in self._dirs:
            logger.info(f"Local file access enabled: {d.path} ({d.mode.value})")

    def __enter__(self) -> "LocalFS":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def enabled(self) -> bool:
        """True if any directories are configured."""
        return bool(self._dirs)

    def dirs(self) -> list[SandboxDir]:
        """The configured directories, as resolved absolute paths."""
        return [SandboxDir(path=d.path, mode=d.mode) for d in self._dirs]

    def close(self) -> None:
        """Release all directory handles. Later operations fail.

        Raises:
            SandboxError: If a handle could not be closed (all are attempted).
        """
        if self._closed:
            return
        self._closed = True

        first_error: OSError | None = None
        for d in self._dirs:
            try:
                os.close(d.fd)
            except OSError as e:
                first_error = first_error or e
        if first_error is not None:
            raise SandboxError(f"closing allowed directories: {first_error}") from first_error

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _check_usable(self, path: str, allow_empty: bool = False) -> None:
        if not self._dirs:
            raise LocalAccessDisabledError()
        if self._closed:
            raise SandboxError("local file access has been closed")
        if not path and not allow_empty:
            raise SandboxError("path is required")

    @staticmethod
    def _resolve(d: _OpenDir, path: str) -> Path:
        """Resolve a relative path inside one allowed directory.

        Raises:
            SandboxError: If the directory was replaced or the path escapes it.
        """
        try:
            st = os.stat(d.path)
        except OSError as e:
            raise SandboxError(f"allowed dir {d.path} is unavailable: {e}") from e
        if (st.st_dev, st.st_ino) != (d.dev, d.ino):
            raise SandboxError(f"allowed dir {d.path} was replaced")

        try:
            target = (d.path / path).resolve()
        except (OSError, RuntimeError) as e:
            raise SandboxError(f"resolving {path!r} in {d.path}: {e}") from e

        if not target.is_relative_to(d.path):
            raise SandboxError(f"path {path!r} escapes allowed dir {d.path}")
        return target

    def _try_dirs(
        self,
        verb: str,
        path: str,
        op: Callable[[Path], T],
        writable: bool = False,
    ) -> tuple[T, str]:
        """Run op on the first directory where path resolves and op succeeds."""
        last_error: Exception | None = None
        for d in self._dirs:
            if writable and d.mode is not AccessMode.READ_WRITE:
                last_error = SandboxError(f"directory {d.path} is read-only")
                continue
            try:
                target = self._resolve(d, path)
                return op(target), str(d.path)
            except (SandboxError, OSError) as e:
                logger.debug(f"cannot {verb} {path!r} in {d.path}: {e}")
                last_error = e

        raise SandboxError(f"cannot {verb} {path!r}: {last_error}") from last_error

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def read_file(self, path: str) -> tuple[bytes, str]:
        """Read a file from the first allowed directory that has it.

        Args:
            path: Path relative to an allowed directory.

        Returns:
            Tuple of (file contents, directory that satisfied the request).

        Raises:
            LocalAccessDisabledError: If no directories are configured.
            SandboxError: If no directory can satisfy the request.
        """
        self._check_usable(path)

        def read(target: Path) -> bytes:
            fd = _open_regular(target, os.O_RDONLY)
            with os.fdopen(fd, "rb") as f:
                return f.read()

        return self._try_dirs("read", path, read)

    def open_file(self, path: str) -> tuple[BinaryIO, str]:
        """Open a file for streaming reads. The caller must close it.

        Returns:
            Tuple of (binary file object, directory that satisfied the request).
        """
        self._check_usable(path)

        def open_(target: Path) -> BinaryIO:
            fd = _open_regular(target, os.O_RDONLY)
            return os.fdopen(fd, "rb")

        return self._try_dirs("open", path, open_)

    def write_file(self, path: str, data: bytes) -> str:
        """Write a file into the first read-write directory that accepts it.

        The file is created (mode 0644) or truncated. Parent directories are
        not created.

        Returns:
            The directory the file was written to.

        Raises:
            LocalAccessDisabledError: If no directories are configured.
            SandboxError: If no read-write directory can take the path.
        """
        self._check_usable(path)

        def write(target: Path) -> None:
            fd = _open_regular(target, os.O_WRONLY | os.O_CREAT, FILE_MODE)
            os.ftruncate(fd, 0)
            with os.fdopen(fd, "wb") as f:
                f.write(data)

        _, directory = self._try_dirs("write", path, write, writable=True)
        return directory

    def stat(self, path: str) -> tuple[os.stat_result, str]:
        """Stat a path in the first allowed directory that has it."""
        self._check_usable(path)
        return self._try_dirs("stat", path, lambda target: os.stat(target, follow_symlinks=False))

    def list_dir(self, path: str = "") -> tuple[list[DirEntry], str]:
        """List a directory in the first allowed directory that has it.

        Args:
            path: Relative directory path. Empty or "." lists the root.

        Returns:
            Tuple of (entries sorted by name, directory that satisfied the request).
        """
        self._check_usable(path, allow_empty=True)

        def list_(target: Path) -> list[DirEntry]:
            entries = []
            with os.scandir(target) as it:
                for entry in it:
                    st = entry.stat(follow_symlinks=False)
                    entries.append(
                        DirEntry(
                            name=entry.name,
                            is_dir=entry.is_dir(follow_symlinks=False),
                            size=st.st_size,
                        )
                    )
            return sorted(entries, key=lambda e: e.name)

        return self._try_dirs("list", path or ".", list_)
