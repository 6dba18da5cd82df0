"""Unified CLI for highnoon-rtc using Click."""

import sys

import click
from loguru import logger

from highnoon_rtc.exceptions import HighNoonError
from highnoon_rtc.rtc_client import run_client
from highnoon_rtc.rtc_host import run_host


@click.group()
def cli():
    pass


def _resolve_credentials(project_id, api_token):
    """Resolve credentials or exit with an error."""
    from highnoon_rtc.auth.credentials import get_project_credentials

    project_id, api_token = get_project_credentials(project_id, api_token)
    if not project_id or not api_token:
        logger.error("Missing credentials")
        logger.error(
            "Run 'highnoon-rtc login' or set HIGHNOON_PROJECT_ID and HIGHNOON_API_TOKEN"
        )
        sys.exit(1)
    return project_id, api_token


# =============================================================================
# Auth Commands
# =============================================================================


@cli.command()
@click.option("--project-id", "-p", type=str, required=True, help="HighNoon project id.")
@click.option(
    "--api-token",
    "-t",
    type=str,
    required=True,
    prompt=True,
    hide_input=True,
    help="HighNoon API token. Prompted for when omitted.",
)
def login(project_id, api_token):
    """Store project credentials for later commands.

    Credentials are saved to ~/.highnoon-rtc/credentials.json, readable by
    the owner only.

    Example:
        highnoon-rtc login --project-id proj_123
    """
    from highnoon_rtc.auth.credentials import save_project_credentials

    try:
        save_project_credentials(project_id, api_token)
    except IOError as e:
        logger.error(f"Login failed: {e}")
        sys.exit(1)

    click.echo(f"Logged in to project {project_id}")


@cli.command()
def logout():
    """Clear stored credentials."""
    from highnoon_rtc.auth.credentials import clear_credentials, is_logged_in

    if not is_logged_in():
        click.echo("Not currently logged in")
        return

    clear_credentials()
    click.echo("Logged out successfully")


@cli.command()
def status():
    """Show stored credentials and the active relay configuration."""
    from highnoon_rtc.auth.credentials import CREDENTIALS_PATH, get_credentials
    from highnoon_rtc.config import get_config

    config = get_config()
    creds = get_credentials()

    click.echo(f"Environment: {config.environment}")
    click.echo(f"Relay: {config.signaling_websocket}")
    click.echo(f"Config file: {config.config_file or 'none'}")
    click.echo(f"Request timeout: {config.request_timeout}s")

    if creds.get("project_id") and creds.get("api_token"):
        token = creds["api_token"]
        click.echo(f"Project: {creds['project_id']}")
        click.echo(f"API token: {token[:4]}...{token[-4:] if len(token) > 8 else ''}")
    else:
        click.echo(f"Not logged in (no credentials in {CREDENTIALS_PATH})")


# =============================================================================
# Session Commands
# =============================================================================


@cli.command()
@click.option("--project-id", "-p", type=str, required=False, help="HighNoon project id.")
@click.option("--api-token", "-t", type=str, required=False, help="HighNoon API token.")
@click.option(
    "--channel-name",
    "-c",
    type=str,
    required=False,
    help="Data channel name. A random name is used when omitted.",
)
@click.option("--debug", is_flag=True, default=False, help="Show session diagnostics.")
@click.option(
    "--signalling",
    "-s",
    type=str,
    required=False,
    help="Relay websocket URL. Overrides config file and environment.",
)
def host(project_id, api_token, channel_name, debug, signalling):
    """Create a room and accept clients until interrupted.

    Example:
        highnoon-rtc host --channel-name game
    """
    project_id, api_token = _resolve_credentials(project_id, api_token)

    try:
        run_host(
            project_id,
            api_token,
            channel_name=channel_name,
            show_debug=debug,
            signalling=signalling,
        )
    except HighNoonError as e:
        logger.error(f"Host failed: {e}")
        sys.exit(1)


@cli.command()
@click.argument("room_id")
@click.option("--project-id", "-p", type=str, required=False, help="HighNoon project id.")
@click.option("--api-token", "-t", type=str, required=False, help="HighNoon API token.")
@click.option("--user-id", "-u", type=str, required=False, help="User id prefix.")
@click.option(
    "--message",
    "-m",
    type=str,
    required=False,
    help="Message sent to the host after joining.",
)
@click.option("--debug", is_flag=True, default=False, help="Show session diagnostics.")
@click.option(
    "--signalling",
    "-s",
    type=str,
    required=False,
    help="Relay websocket URL. Overrides config file and environment.",
)
def client(room_id, project_id, api_token, user_id, message, debug, signalling):
    """Join ROOM_ID and log incoming traffic until interrupted.

    Example:
        highnoon-rtc client ROOM_ID --user-id alice --message hello
    """
    project_id, api_token = _resolve_credentials(project_id, api_token)

    try:
        run_client(
            room_id,
            project_id,
            api_token,
            user_id=user_id,
            message=message,
            show_debug=debug,
            signalling=signalling,
        )
    except HighNoonError as e:
        logger.error(f"Client failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
