"""Credential file management for HighNoon-RTC.

Stores credentials in ~/.highnoon-rtc/credentials.json with the schema:
{
    "project_id": "proj_xxx",
    "api_token": "hn_xxx..."
}
"""

import json
import os
import stat
from pathlib import Path
from typing import Any, Optional

from loguru import logger

# Credentials file location
CREDENTIALS_DIR = Path.home() / ".highnoon-rtc"
CREDENTIALS_PATH = CREDENTIALS_DIR / "credentials.json"

# Environment variables checked before the credentials file
ENV_PROJECT_ID = "HIGHNOON_PROJECT_ID"
ENV_API_TOKEN = "HIGHNOON_API_TOKEN"


def _ensure_credentials_dir() -> None:
    """Ensure the credentials directory exists with proper permissions."""
    if not CREDENTIALS_DIR.exists():
        CREDENTIALS_DIR.mkdir(parents=True, mode=0o700)
        logger.debug(f"Created credentials directory: {CREDENTIALS_DIR}")


def get_credentials() -> dict[str, Any]:
    """Load credentials from file.

    Returns:
        Credentials dictionary, or empty dict if file doesn't exist.
    """
    if not CREDENTIALS_PATH.exists():
        return {}

    try:
        with open(CREDENTIALS_PATH) as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Failed to load credentials: {e}")
        return {}


def save_credentials(credentials: dict[str, Any]) -> None:
    """Save credentials to file with restrictive permissions.

    Args:
        credentials: Credentials dictionary to save.
    """
    _ensure_credentials_dir()

    # Write to temp file first, then rename (atomic)
    temp_path = CREDENTIALS_PATH.with_suffix(".tmp")

    try:
        with open(temp_path, "w") as f:
            json.dump(credentials, f, indent=2)

        # Owner read/write only
        os.chmod(temp_path, stat.S_IRUSR | stat.S_IWUSR)

        temp_path.rename(CREDENTIALS_PATH)
        logger.debug(f"Saved credentials to {CREDENTIALS_PATH}")

    except IOError as e:
        logger.error(f"Failed to save credentials: {e}")
        if temp_path.exists():
            temp_path.unlink()
        raise


def clear_credentials() -> None:
    """Remove the credentials file."""
    if CREDENTIALS_PATH.exists():
        CREDENTIALS_PATH.unlink()
        logger.info("Credentials cleared")
    else:
        logger.debug("No credentials to clear")


def save_project_credentials(project_id: str, api_token: str) -> None:
    """Store the project id and API token, keeping any other keys."""
    creds = get_credentials()
    creds["project_id"] = project_id
    creds["api_token"] = api_token
    save_credentials(creds)


def get_project_credentials(
    project_id: Optional[str] = None,
    api_token: Optional[str] = None,
) -> tuple[Optional[str], Optional[str]]:
    """Resolve the project id and API token.

    Explicit values win, then environment variables, then the credentials
    file. Each value is resolved independently.

    Returns:
        ``(project_id, api_token)``; either may be None.
    """
    creds = get_credentials()
    project_id = project_id or os.environ.get(ENV_PROJECT_ID) or creds.get("project_id")
    api_token = api_token or os.environ.get(ENV_API_TOKEN) or creds.get("api_token")
    return project_id, api_token


def is_logged_in() -> bool:
    """Check whether both credentials are stored.

    Returns:
        True if the credentials file holds a project id and an API token.
    """
    creds = get_credentials()
    return bool(creds.get("project_id") and creds.get("api_token"))
