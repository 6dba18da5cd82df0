"""Authentication module for HighNoon-RTC.

This module provides:
- credentials: Load/save credentials from ~/.highnoon-rtc/credentials.json
"""

from highnoon_rtc.auth.credentials import (
    get_credentials,
    save_credentials,
    clear_credentials,
    save_project_credentials,
    get_project_credentials,
    is_logged_in,
    CREDENTIALS_PATH,
)

__all__ = [
    "get_credentials",
    "save_credentials",
    "clear_credentials",
    "save_project_credentials",
    "get_project_credentials",
    "is_logged_in",
    "CREDENTIALS_PATH",
]
