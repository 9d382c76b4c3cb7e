"""Data models for sandboxed local filesystem access."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class AccessMode(str, Enum):
    """Access level granted on an allowed directory."""

    READ_ONLY = "read-only"
    READ_WRITE = "read-write"


class SandboxDir(BaseModel):
    """An administrator-approved directory and its access mode."""

    path: Path = Field(..., description="Directory path (resolved to absolute)")
    mode: AccessMode = Field(default=AccessMode.READ_ONLY, description="Access mode")


class DirEntry(BaseModel):
    """One child of a listed directory."""

    name: str
    is_dir: bool
    size: int
