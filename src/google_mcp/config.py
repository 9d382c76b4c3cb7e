"""Configuration loading for google-mcp.

Settings are merged from, in order of precedence:

1. Explicit arguments (CLI options)
2. Environment variables (GOOGLE_MCP_CONFIG_DIR, GOOGLE_MCP_CREDENTIALS,
   GOOGLE_MCP_LOG_LEVEL)
3. An optional YAML file at <config_dir>/config.yaml
4. Defaults

Example config.yaml:
    ```yaml
    credentials_file: ~/Downloads/client_secret.json
    log_level: DEBUG
    allow_read_dirs:
      - ~/Documents
    allow_write_dirs:
      - ~/Downloads/google-mcp
    read_only: true
    disable_tools:
      - gmail_get_profile
    ```
"""

import logging
import os
from collections.abc import Iterable
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from google_mcp.errors import ConfigurationError
from google_mcp.localfs.models import AccessMode, SandboxDir

logger = logging.getLogger(__name__)

APP_NAME = "google-mcp"
CONFIG_FILE_NAME = "config.yaml"
CREDENTIALS_FILE_NAME = "credentials.json"

CONFIG_DIR_ENV = "GOOGLE_MCP_CONFIG_DIR"
CREDENTIALS_ENV = "GOOGLE_MCP_CREDENTIALS"
LOG_LEVEL_ENV = "GOOGLE_MCP_LOG_LEVEL"


def default_config_dir() -> Path:
    """Get the default configuration directory.

    Returns:
        $XDG_CONFIG_HOME/google-mcp, or ~/.config/google-mcp when
        XDG_CONFIG_HOME is unset.
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / APP_NAME


class FileConfig(BaseModel):
    """Keys accepted in config.yaml."""

    credentials_file: Path | None = None
    log_level: str | None = None
    allow_read_dirs: list[Path] = Field(default_factory=list)
    allow_write_dirs: list[Path] = Field(default_factory=list)
    read_only: bool = False
    enable_tools: list[str] = Field(default_factory=list)
    disable_tools: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class Settings(BaseModel):
    """Resolved runtime settings.

    Attributes:
        config_dir: Directory holding tokens.json and config.yaml.
        credentials_file: Google OAuth client descriptor (credentials.json).
        allow_read_dirs: Directories exposed read-only to tools.
        allow_write_dirs: Directories exposed read-write to tools.
        log_level: Logging level name.
        read_only: Expose only read-only MCP tools.
        enable_tools: MCP tools to expose (whitelist).
        disable_tools: MCP tools to hide (blacklist).
    """

    config_dir: Path
    credentials_file: Path
    allow_read_dirs: list[Path] = Field(default_factory=list)
    allow_write_dirs: list[Path] = Field(default_factory=list)
    log_level: str = "INFO"
    read_only: bool = False
    enable_tools: list[str] = Field(default_factory=list)
    disable_tools: list[str] = Field(default_factory=list)

    @property
    def token_path(self) -> Path:
        """Path to tokens.json."""
        return self.config_dir / "tokens.json"

    def sandbox_dirs(self) -> list[SandboxDir]:
        """Sandbox entries in search order: read-only dirs first, then read-write."""
        dirs = [SandboxDir(path=p, mode=AccessMode.READ_ONLY) for p in self.allow_read_dirs]
        dirs.extend(SandboxDir(path=p, mode=AccessMode.READ_WRITE) for p in self.allow_write_dirs)
        return dirs


def _load_config_file(path: Path) -> FileConfig:
    """Load config.yaml if it exists.

    Raises:
        ConfigurationError: If the file is not valid YAML or has unknown keys.
    """
    if not path.exists():
        return FileConfig()

    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"reading config file {path}: {e}") from e

    if data is None:
        return FileConfig()
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")

    try:
        return FileConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid config file {path}: {e}") from e


def _expand(paths: Iterable[Path | str]) -> list[Path]:
    return [Path(p).expanduser() for p in paths]


def load_settings(
    config_dir: Path | str | None = None,
    credentials_file: Path | str | None = None,
    allow_read_dirs: Iterable[Path | str] = (),
    allow_write_dirs: Iterable[Path | str] = (),
    log_level: str | None = None,
    read_only: bool = False,
    enable_tools: Iterable[str] = (),
    disable_tools: Iterable[str] = (),
) -> Settings:
    """Resolve settings from arguments, environment, config file and defaults.

    Directory and tool lists given as arguments extend those from
    config.yaml; read_only is on if either source turns it on.

    Args:
        config_dir: Configuration directory override.
        credentials_file: Path to credentials.json override.
        allow_read_dirs: Extra read-only sandbox directories.
        allow_write_dirs: Extra read-write sandbox directories.
        log_level: Logging level override.
        read_only: Expose only read-only MCP tools.
        enable_tools: Extra MCP tools to whitelist.
        disable_tools: Extra MCP tools to blacklist.

    Returns:
        Resolved Settings.

    Raises:
        ConfigurationError: If config.yaml is malformed.
    """
    dir_value = config_dir or os.environ.get(CONFIG_DIR_ENV)
    resolved_dir = Path(dir_value).expanduser() if dir_value else default_config_dir()

    file_config = _load_config_file(resolved_dir / CONFIG_FILE_NAME)

    creds_value = (
        credentials_file or os.environ.get(CREDENTIALS_ENV) or file_config.credentials_file
    )
    resolved_creds = (
        Path(creds_value).expanduser() if creds_value else resolved_dir / CREDENTIALS_FILE_NAME
    )

    level = log_level or os.environ.get(LOG_LEVEL_ENV) or file_config.log_level or "INFO"

    settings = Settings(
        config_dir=resolved_dir,
        credentials_file=resolved_creds,
        allow_read_dirs=_expand(file_config.allow_read_dirs) + _expand(allow_read_dirs),
        allow_write_dirs=_expand(file_config.allow_write_dirs) + _expand(allow_write_dirs),
        log_level=level.upper(),
        read_only=read_only or file_config.read_only,
        enable_tools=[*file_config.enable_tools, *enable_tools],
        disable_tools=[*file_config.disable_tools, *disable_tools],
    )
    logger.debug(f"Resolved settings: config_dir={settings.config_dir}")
    return settings
