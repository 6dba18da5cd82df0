"""Configuration management for HighNoon-RTC.

This module handles two kinds of configuration:

1. ``SessionOptions``: the immutable per-session settings a Host or Client is
   constructed with (credentials, channel name, ICE hints, ...).
2. ``Config``: process-wide defaults loaded from multiple sources with the
   following priority:

   1. Explicit arguments (``signalling_override``, CLI options)
   2. Environment variables (HIGHNOON_RTC_SIGNALING_WS)
   3. TOML configuration file
   4. Default values (production environment)

Configuration files are loaded from:
- highnoon-rtc.toml in current working directory
- ~/.highnoon-rtc/config.toml

Environment selection via HIGHNOON_RTC_ENV (development, staging, production).
Defaults to production if not set.
"""

import os
import tomllib
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from loguru import logger

from highnoon_rtc.exceptions import ConfigurationError

# Default production relay URL
DEFAULT_SIGNALING_WEBSOCKET = "wss://service.gethighnoon.com"

# Relay round trips (join, room creation, roster query) give up after this.
DEFAULT_REQUEST_TIMEOUT = 10.0

# Public STUN hints used when none are given.
DEFAULT_ICE_SERVERS = [
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:stun1.l.google.com:19302"},
    {"urls": "stun:stun2.l.google.com:19302"},
]

# Valid environment names
VALID_ENVIRONMENTS = {"development", "staging", "production"}

# Valid session roles
VALID_ROLES = {"host", "client"}


def random_suffix(length: int) -> str:
    """Short random identifier fragment."""
    return uuid.uuid4().hex[:length]


@dataclass(frozen=True)
class SessionOptions:
    """Per-session configuration for a Host or Client.

    Attributes:
        project_id: Relay project identifier. Required.
        api_token: Relay API token. Required.
        channel_name: Data channel label. Prefixed with the role.
        show_debug: Promote session diagnostics to INFO level.
        ice_servers: ICE server hints passed to the negotiation capability.
        signalling_override: Alternate relay endpoint.
        user_id: Preferred user id (Clients append a random suffix).
        request_timeout: Seconds before a relay round trip times out.
    """

    project_id: str
    api_token: str
    channel_name: Optional[str] = None
    show_debug: bool = False
    ice_servers: List[dict] = field(
        default_factory=lambda: [dict(s) for s in DEFAULT_ICE_SERVERS]
    )
    signalling_override: Optional[str] = None
    user_id: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    def __post_init__(self):
        """Validate credentials after initialization."""
        if not self.project_id:
            raise ConfigurationError("project_id is required")
        if not self.api_token:
            raise ConfigurationError("api_token is required")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")

    def channel_label(self, role: str) -> str:
        """Data channel label for the given role.

        Args:
            role: "host" or "client".

        Returns:
            ``{role}-{channel_name}`` when a name was given, otherwise
            ``highnoon-{role}-{random}``.
        """
        if role not in VALID_ROLES:
            raise ConfigurationError(f"Unknown session role: {role}")
        if self.channel_name:
            return f"{role}-{self.channel_name}"
        return f"highnoon-{role}-{random_suffix(8)}"

    def signalling_url(self) -> str:
        """Relay endpoint for this session."""
        if self.signalling_override:
            return self.signalling_override
        return get_config().signaling_websocket

    @classmethod
    def from_config(
        cls,
        project_id: str,
        api_token: str,
        config: Optional["Config"] = None,
        **overrides,
    ) -> "SessionOptions":
        """Build options using ``Config`` for unspecified defaults.

        Args:
            project_id: Relay project identifier.
            api_token: Relay API token.
            config: Config to read defaults from (global config if omitted).
            **overrides: Any other ``SessionOptions`` field.

        Returns:
            SessionOptions instance.
        """
        config = config or get_config()
        overrides = {k: v for k, v in overrides.items() if v is not None}
        overrides.setdefault("request_timeout", config.request_timeout)
        overrides.setdefault("show_debug", config.show_debug)
        return cls(project_id=project_id, api_token=api_token, **overrides)


class Config:
    """Configuration manager for HighNoon-RTC."""

    def __init__(self):
        """Initialize configuration with defaults."""
        self.signaling_websocket: str = DEFAULT_SIGNALING_WEBSOCKET
        self.request_timeout: float = DEFAULT_REQUEST_TIMEOUT
        self.show_debug: bool = False
        self.environment: str = "production"
        self.config_file: Optional[Path] = None
        self._config_data: dict = {}

    def load(self) -> None:
        """Load configuration from all sources.

        Priority order:
        1. Environment variables (HIGHNOON_RTC_SIGNALING_WS)
        2. TOML configuration file
        3. Default values
        """
        self.environment = self._get_environment()

        config_file = self._find_config_file()
        if config_file:
            self._load_config_file(config_file)

        self._apply_env_overrides()

    def _get_environment(self) -> str:
        """Get the current environment from HIGHNOON_RTC_ENV.

        Returns:
            Environment name (development, staging, or production).
            Defaults to production if not set or invalid.
        """
        env = os.getenv("HIGHNOON_RTC_ENV", "production").lower()
        if env not in VALID_ENVIRONMENTS:
            logger.warning(
                f"Invalid HIGHNOON_RTC_ENV value '{env}'. "
                f"Valid values are: {', '.join(sorted(VALID_ENVIRONMENTS))}. "
                f"Defaulting to 'production'."
            )
            env = "production"
        return env

    def _find_config_file(self) -> Optional[Path]:
        """Find the configuration file.

        Searches in order:
        1. highnoon-rtc.toml in current working directory
        2. ~/.highnoon-rtc/config.toml

        Returns:
            Path to config file if found, None otherwise.
        """
        cwd_config = Path.cwd() / "highnoon-rtc.toml"
        if cwd_config.exists():
            logger.info(f"Loading config from {cwd_config}")
            return cwd_config

        home_config = Path.home() / ".highnoon-rtc" / "config.toml"
        if home_config.exists():
            logger.info(f"Loading config from {home_config}")
            return home_config

        logger.debug("No config file found, using defaults")
        return None

    def _load_config_file(self, config_file: Path) -> None:
        """Load configuration from TOML file.

        Args:
            config_file: Path to the TOML configuration file.
        """
        try:
            with open(config_file, "rb") as f:
                self._config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(
                f"Failed to load config file {config_file}: {e}. Using defaults."
            )
            return

        self.config_file = config_file

        # Session defaults shared by every environment
        session = self._config_data.get("session", {})
        if "request_timeout" in session:
            try:
                timeout = float(session["request_timeout"])
            except (TypeError, ValueError):
                logger.warning(
                    f"Ignoring invalid request_timeout: {session['request_timeout']!r}"
                )
            else:
                if timeout > 0:
                    self.request_timeout = timeout
                else:
                    logger.warning(f"Ignoring non-positive request_timeout: {timeout}")
        if "show_debug" in session:
            self.show_debug = bool(session["show_debug"])

        environments = self._config_data.get("environments", {})
        env_config = environments.get(self.environment, {})

        if not env_config:
            logger.debug(
                f"No configuration found for environment '{self.environment}' "
                f"in {config_file}, using defaults"
            )
            return

        if "signaling_websocket" in env_config:
            self.signaling_websocket = env_config["signaling_websocket"]
            logger.debug(
                f"Loaded signaling_websocket from config: {self.signaling_websocket}"
            )

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides.

        Environment variables take precedence over config file settings
        but are overridden by explicit options (handled by caller).
        """
        ws_override = os.getenv("HIGHNOON_RTC_SIGNALING_WS")
        if ws_override:
            self.signaling_websocket = ws_override
            logger.info(
                f"Overriding signaling_websocket from env: {self.signaling_websocket}"
            )


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Loads configuration on first call.

    Returns:
        Global Config instance.
    """
    global _config
    if _config is None:
        _config = Config()
        _config.load()
    return _config


def reload_config() -> Config:
    """Reload configuration from sources.

    Useful for testing or runtime reconfiguration.

    Returns:
        Reloaded Config instance.
    """
    global _config
    _config = Config()
    _config.load()
    return _config
