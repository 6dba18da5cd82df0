"""Tests for SessionOptions and the TOML/environment configuration."""

import pytest

from highnoon_rtc.config import (
    DEFAULT_ICE_SERVERS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SIGNALING_WEBSOCKET,
    Config,
    SessionOptions,
)
from highnoon_rtc.exceptions import ConfigurationError


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    """Isolate config discovery from the real working and home directories."""
    home = tmp_path / "home"
    home.mkdir()
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    monkeypatch.delenv("HIGHNOON_RTC_ENV", raising=False)
    monkeypatch.delenv("HIGHNOON_RTC_SIGNALING_WS", raising=False)
    return work


def load_config():
    config = Config()
    config.load()
    return config


# =============================================================================
# SessionOptions
# =============================================================================


class TestSessionOptions:
    """Per-session option validation."""

    def test_defaults(self):
        options = SessionOptions("proj", "token")

        assert options.request_timeout == DEFAULT_REQUEST_TIMEOUT
        assert options.ice_servers == DEFAULT_ICE_SERVERS
        assert options.ice_servers is not DEFAULT_ICE_SERVERS
        assert not options.show_debug

    @pytest.mark.parametrize(
        "project_id, api_token", [("", "token"), ("proj", ""), (None, "token")]
    )
    def test_missing_credentials(self, project_id, api_token):
        with pytest.raises(ConfigurationError):
            SessionOptions(project_id, api_token)

    def test_non_positive_timeout(self):
        with pytest.raises(ConfigurationError):
            SessionOptions("proj", "token", request_timeout=0)

    def test_channel_label(self):
        named = SessionOptions("proj", "token", channel_name="game")
        unnamed = SessionOptions("proj", "token")

        assert named.channel_label("host") == "host-game"
        assert unnamed.channel_label("client").startswith("highnoon-client-")

    def test_channel_label_rejects_unknown_role(self):
        with pytest.raises(ConfigurationError):
            SessionOptions("proj", "token").channel_label("observer")

    def test_signalling_override(self):
        options = SessionOptions("proj", "token", signalling_override="ws://local")

        assert options.signalling_url() == "ws://local"

    def test_from_config_uses_config_defaults(self, clean_env):
        config = Config()
        config.request_timeout = 3.0
        config.show_debug = True

        options = SessionOptions.from_config(
            "proj", "token", config=config, channel_name="game", user_id=None
        )

        assert options.request_timeout == 3.0
        assert options.show_debug
        assert options.channel_name == "game"
        assert options.user_id is None

    def test_from_config_explicit_values_win(self, clean_env):
        config = Config()
        config.request_timeout = 3.0

        options = SessionOptions.from_config(
            "proj", "token", config=config, request_timeout=1.5
        )

        assert options.request_timeout == 1.5


# =============================================================================
# Config
# =============================================================================


class TestConfig:
    """Config discovery and precedence."""

    def test_defaults_without_file(self, clean_env):
        config = load_config()

        assert config.environment == "production"
        assert config.signaling_websocket == DEFAULT_SIGNALING_WEBSOCKET
        assert config.config_file is None

    def test_cwd_file(self, clean_env, monkeypatch):
        (clean_env / "highnoon-rtc.toml").write_text(
            "[session]\n"
            "request_timeout = 4\n"
            "show_debug = true\n"
            "\n"
            "[environments.development]\n"
            'signaling_websocket = "ws://localhost:8080"\n'
        )
        monkeypatch.setenv("HIGHNOON_RTC_ENV", "development")

        config = load_config()

        assert config.signaling_websocket == "ws://localhost:8080"
        assert config.request_timeout == 4.0
        assert config.show_debug
        assert config.config_file == clean_env / "highnoon-rtc.toml"

    def test_home_file(self, clean_env, tmp_path):
        config_dir = tmp_path / "home" / ".highnoon-rtc"
        config_dir.mkdir()
        (config_dir / "config.toml").write_text(
            '[environments.production]\nsignaling_websocket = "wss://home.test"\n'
        )

        config = load_config()

        assert config.signaling_websocket == "wss://home.test"

    def test_env_override_wins(self, clean_env, monkeypatch):
        (clean_env / "highnoon-rtc.toml").write_text(
            '[environments.production]\nsignaling_websocket = "wss://file.test"\n'
        )
        monkeypatch.setenv("HIGHNOON_RTC_SIGNALING_WS", "wss://env.test")

        config = load_config()

        assert config.signaling_websocket == "wss://env.test"

    def test_invalid_environment_falls_back(self, clean_env, monkeypatch):
        monkeypatch.setenv("HIGHNOON_RTC_ENV", "moon")

        assert load_config().environment == "production"

    def test_invalid_file_uses_defaults(self, clean_env):
        (clean_env / "highnoon-rtc.toml").write_text("this is = = not toml")

        config = load_config()

        assert config.signaling_websocket == DEFAULT_SIGNALING_WEBSOCKET
        assert config.config_file is None

    def test_invalid_timeout_is_ignored(self, clean_env):
        (clean_env / "highnoon-rtc.toml").write_text(
            '[session]\nrequest_timeout = "soon"\n'
        )

        assert load_config().request_timeout == DEFAULT_REQUEST_TIMEOUT
