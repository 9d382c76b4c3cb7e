"""Command-line interface for google-mcp."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import click
import httpx

from google_mcp.__version__ import __version__
from google_mcp.config import Settings, load_settings
from google_mcp.errors import GoogleMCPError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _load_settings(ctx: click.Context, **overrides: Any) -> Settings:
    """Resolve settings from the group options plus command overrides.

    Also configures logging, which always goes to stderr.
    """
    options = ctx.find_root().obj or {}
    try:
        settings = load_settings(
            config_dir=options.get("config_dir"),
            credentials_file=options.get("credentials"),
            log_level=options.get("log_level"),
            **overrides,
        )
    except GoogleMCPError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT, stream=sys.stderr)
    return settings


def _open_manager(settings: Settings) -> Any:
    from google_mcp.auth import OAuthManager, TokenStorage

    try:
        storage = TokenStorage(settings.token_path)
    except GoogleMCPError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)
    return OAuthManager(storage, settings.credentials_file)


def _split_names(values: tuple[str, ...]) -> list[str]:
    """Flatten repeated and comma-separated option values."""
    return [name.strip() for value in values for name in value.split(",") if name.strip()]


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Configuration directory (default: ~/.config/google-mcp)",
)
@click.option(
    "--credentials",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to the Google OAuth credentials.json",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (default: INFO)",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_dir: Path | None,
    credentials: Path | None,
    log_level: str | None,
) -> None:
    """google-mcp - Connect Claude to several Google accounts.

    Manage accounts with 'google-mcp auth' and start the MCP server with
    'google-mcp mcp'. Each account is stored under a short name (e.g.
    "work", "personal") that tools use to pick an account, or "all" to
    query every account.
    """
    ctx.obj = {
        "config_dir": config_dir,
        "credentials": credentials,
        "log_level": log_level,
    }


# ----------------------------------------------------------------------
# auth
# ----------------------------------------------------------------------


@main.group()
def auth() -> None:
    """Manage Google accounts."""


@auth.command("add")
@click.argument("name")
@click.option(
    "--scopes",
    multiple=True,
    help="OAuth scope to request (repeatable; default: Gmail, Drive, Calendar, email)",
)
@click.option(
    "--timeout",
    type=float,
    default=300.0,
    show_default=True,
    help="Seconds to wait for authorization",
)
@click.option("--no-browser", is_flag=True, help="Print the URL instead of opening a browser")
@click.pass_context
def auth_add(
    ctx: click.Context,
    name: str,
    scopes: tuple[str, ...],
    timeout: float,
    no_browser: bool,
) -> None:
    """Authorize a Google account and store it as NAME.

    Opens the Google consent page and waits for the redirect on a local
    port. Re-adding an existing NAME replaces its token.

    Requires a Desktop app OAuth client saved as credentials.json in the
    config directory (or passed with --credentials).
    """
    settings = _load_settings(ctx)
    manager = _open_manager(settings)

    click.echo(f"Starting OAuth authentication flow for account {name!r}...")
    try:
        asyncio.run(
            manager.authenticate(
                name,
                list(scopes) or None,
                timeout=timeout,
                open_browser=not no_browser,
            )
        )
    except (GoogleMCPError, ValueError) as e:
        click.echo(f"❌ Authentication failed: {e}")
        sys.exit(1)

    email = ""
    try:
        email = asyncio.run(manager.fetch_email(name))
    except (GoogleMCPError, httpx.HTTPError) as e:
        logger.warning(f"Could not look up email for account {name!r}: {e}")

    suffix = f" ({email})" if email else ""
    click.echo(f"✓ Account {name!r}{suffix} added successfully!")
    click.echo(f"Token stored at: {manager.token_path}")


@auth.command("list")
@click.pass_context
def auth_list(ctx: click.Context) -> None:
    """List configured accounts."""
    settings = _load_settings(ctx)
    manager = _open_manager(settings)

    accounts = manager.storage.list_accounts()
    if not accounts:
        click.echo("No accounts configured.")
        click.echo("Run 'google-mcp auth add <name>' to add one.")
        return

    for name, email in accounts.items():
        click.echo(f"{name} ({email})" if email else name)


@auth.command("remove")
@click.argument("name")
@click.pass_context
def auth_remove(ctx: click.Context, name: str) -> None:
    """Remove the account NAME."""
    settings = _load_settings(ctx)
    manager = _open_manager(settings)

    try:
        manager.storage.remove_account(name)
    except GoogleMCPError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)
    click.echo(f"✓ Account {name!r} removed.")


# ----------------------------------------------------------------------
# mcp
# ----------------------------------------------------------------------


@main.command()
@click.option(
    "--allow-read-dir",
    "allow_read_dirs",
    multiple=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory tools may read from (repeatable)",
)
@click.option(
    "--allow-write-dir",
    "allow_write_dirs",
    multiple=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory tools may read from and write to (repeatable)",
)
@click.option("--read-only", is_flag=True, help="Only expose read-only tools (no mutations)")
@click.option(
    "--enable",
    "enable_tools",
    multiple=True,
    help="Tool names to expose (repeatable or comma-separated)",
)
@click.option(
    "--disable",
    "disable_tools",
    multiple=True,
    help="Tool names to hide (repeatable or comma-separated)",
)
@click.pass_context
def mcp(
    ctx: click.Context,
    allow_read_dirs: tuple[Path, ...],
    allow_write_dirs: tuple[Path, ...],
    read_only: bool,
    enable_tools: tuple[str, ...],
    disable_tools: tuple[str, ...],
) -> None:
    """Start the MCP server for Claude Desktop integration.

    Local file tools are only available when at least one directory is
    allowed. Read-only directories are searched before read-write ones.
    --enable and --disable are mutually exclusive.

    This command is typically invoked by Claude Desktop via the MCP protocol.
    """
    from google_mcp.server import main as server_main

    if enable_tools and disable_tools:
        raise click.UsageError("--enable and --disable are mutually exclusive")

    settings = _load_settings(
        ctx,
        allow_read_dirs=allow_read_dirs,
        allow_write_dirs=allow_write_dirs,
        read_only=read_only,
        enable_tools=_split_names(enable_tools),
        disable_tools=_split_names(disable_tools),
    )

    try:
        click.echo("Starting google-mcp server...", err=True)
        server_main(settings)
    except KeyboardInterrupt:
        click.echo("\nServer stopped.", err=True)
    except GoogleMCPError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)


# ----------------------------------------------------------------------
# doctor
# ----------------------------------------------------------------------


@main.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Check installation, credentials and account status.

    Verifies:
    1. Python dependencies installed
    2. OAuth client credentials present and well-formed
    3. Token status of every configured account
    """
    from google_mcp.auth import TokenStatus

    click.echo("google-mcp Status:")
    click.echo("")

    click.echo("Dependencies:")
    try:
        import google.auth  # noqa: F401
        import google_auth_oauthlib  # noqa: F401
        import mcp  # noqa: F401

        click.echo("  ✓ google-auth installed")
        click.echo("  ✓ google-auth-oauthlib installed")
        click.echo("  ✓ mcp installed")
    except ImportError as e:
        click.echo(f"  ❌ Missing dependency: {e}")
        sys.exit(1)

    click.echo("")

    settings = _load_settings(ctx)
    manager = _open_manager(settings)
    ok = True

    click.echo("Credentials:")
    click.echo(f"  Client file: {manager.credentials_file}")
    try:
        manager.load_client_config()
        click.echo("  ✓ OAuth client configured")
    except GoogleMCPError as e:
        ok = False
        click.echo(f"  ❌ {e}")

    click.echo("")
    click.echo("Accounts:")
    click.echo(f"  Token file: {manager.token_path}")

    accounts = manager.storage.list_accounts()
    if not accounts:
        click.echo("  ❌ No accounts configured")
        click.echo("")
        click.echo("Run 'google-mcp auth add <name>' to add one.")
        sys.exit(1)

    for name, email in accounts.items():
        label = f"{name} ({email})" if email else name
        status = manager.storage.get_status(name)
        if status == TokenStatus.VALID:
            click.echo(f"  ✓ {label}: authenticated")
        elif status == TokenStatus.EXPIRED:
            click.echo(f"  ⚠️  {label}: token expired (refreshes automatically on use)")
        else:
            ok = False
            click.echo(f"  ❌ {label}: token invalid; run 'google-mcp auth add {name}'")

    click.echo("")

    if ok:
        click.echo("✓ Ready to use!")
    else:
        click.echo("❌ Setup incomplete. See the messages above.")
        sys.exit(1)


if __name__ == "__main__":
    main()
