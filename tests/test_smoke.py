"""Smoke tests for the highnoon-rtc package.

These tests verify that the installed package is structurally sound: all
subpackages importable and the CLI entry point reachable. They are
intentionally lightweight and fast.
"""

from click.testing import CliRunner

from highnoon_rtc.cli import cli


# ── Subpackage imports ────────────────────────────────────────────────────────


class TestSubpackageImports:
    """Each highnoon_rtc subpackage must be importable without error."""

    def test_import_package(self):
        """The public API must be importable from the top-level package."""
        from highnoon_rtc import ClientSession, HostSession, SessionOptions  # noqa: F401

    def test_import_core(self):
        from highnoon_rtc.core.session import SessionCore  # noqa: F401
        from highnoon_rtc.core.transport import RelayTransport  # noqa: F401

    def test_import_host(self):
        from highnoon_rtc.host.host_class import HostSession  # noqa: F401

    def test_import_client(self):
        from highnoon_rtc.client.client_class import ClientSession  # noqa: F401

    def test_import_auth(self):
        import highnoon_rtc.auth  # noqa: F401

    def test_import_capability(self):
        """The aiortc capability must import with aiortc installed."""
        from highnoon_rtc.capability import AiortcCapability  # noqa: F401
        from highnoon_rtc.negotiation import is_webrtc_available

        assert is_webrtc_available()


# ── CLI entry point ───────────────────────────────────────────────────────────


class TestCLIEntryPoint:
    """The CLI entry point must be reachable and respond to --help."""

    def test_main_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("host", "client", "login", "logout", "status"):
            assert command in result.output

    def test_host_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["host", "--help"])
        assert result.exit_code == 0

    def test_client_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["client", "--help"])
        assert result.exit_code == 0
