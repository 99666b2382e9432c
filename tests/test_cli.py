"""Tests for the command-line interface."""

import pytest
from typer.testing import CliRunner

from short_render import __version__
from short_render.cli import app
from short_render.logging import LogConfig, configure_logging

runner = CliRunner()


@pytest.fixture(autouse=True)
def usage_env(tmp_path, monkeypatch):
    """Point the ledger at a temporary directory and drop remote credentials."""
    for name in (
        "CLOUDFLARE_ACCOUNT_ID",
        "CLOUDFLARE_API_TOKEN",
        "SHORT_RENDER_LIMITS_FILE",
        "SHOTSTACK_SANDBOX_API_KEY",
        "SHOTSTACK_SANDBOX_OWNER_ID",
        "SHOTSTACK_PRODUCTION_API_KEY",
        "SHOTSTACK_PRODUCTION_OWNER_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SHORT_RENDER_USAGE_DIR", str(tmp_path / "usage"))
    yield tmp_path / "usage"
    configure_logging(LogConfig())


class TestGlobalOptions:
    """Tests for the top-level callback."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"short-render version {__version__}" in result.output

    def test_help(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "usage" in result.output
        assert "render" in result.output


class TestLocateCommand:
    """Tests for the locate command."""

    def test_invalid_reference(self):
        result = runner.invoke(app, ["locate", "https://vimeo.com/12345"])

        assert result.exit_code == 1
        assert "invalid_reference" in result.output


class TestTimelineCommand:
    """Tests for the timeline command."""

    def test_timeline(self):
        result = runner.invoke(
            app,
            ["timeline", "the quick brown fox jumps over the lazy dog", "--duration", "30"],
        )

        assert result.exit_code == 0
        assert "the quick brown fox jumps over" in result.output
        assert "the lazy dog" in result.output

    def test_no_captions(self):
        result = runner.invoke(
            app, ["timeline", "hello world", "--duration", "10", "--no-captions"]
        )

        assert result.exit_code == 0
        assert "No captions" in result.output


class TestComposeCommand:
    """Tests for the compose command."""

    def test_compose(self):
        result = runner.invoke(
            app,
            [
                "compose",
                "https://cdn.example/v.mp4",
                "hello world",
                "--duration",
                "10",
                "--start",
                "5",
            ],
        )

        assert result.exit_code == 0
        assert '"fit": "crop"' in result.output
        assert '"src": "https://cdn.example/v.mp4"' in result.output
        assert '"text": "hello world"' in result.output


class TestRenderCommand:
    """Tests for the render command."""

    def test_missing_credentials(self):
        result = runner.invoke(
            app, ["render", "https://youtu.be/abc", "hello", "--duration", "10"]
        )

        assert result.exit_code == 1
        assert "configuration" in result.output


class TestUsageCommands:
    """Tests for the usage sub-commands."""

    def test_record_and_daily(self, usage_env):
        result = runner.invoke(
            app,
            ["usage", "record", "openai", "script-generation", "--cost", "0.25", "--tokens", "900"],
        )

        assert result.exit_code == 0
        assert "Recorded" in result.output
        assert list(usage_env.glob("usage-logs/daily/*.json"))

        result = runner.invoke(app, ["usage", "daily"])

        assert result.exit_code == 0
        assert "openai" in result.output
        assert "900" in result.output

    def test_record_unknown_service(self):
        result = runner.invoke(app, ["usage", "record", "myspace", "post"])

        assert result.exit_code == 1
        assert "Unknown service" in result.output

    def test_record_rejects_zero_requests(self):
        result = runner.invoke(app, ["usage", "record", "openai", "x", "--requests", "0"])

        assert result.exit_code != 0

    def test_daily_empty(self):
        result = runner.invoke(app, ["usage", "daily", "--date", "2024-02-05"])

        assert result.exit_code == 0
        assert "No usage recorded for 2024-02-05" in result.output

    def test_daily_invalid_date(self):
        result = runner.invoke(app, ["usage", "daily", "--date", "05/02/2024"])

        assert result.exit_code == 1

    def test_monthly(self):
        runner.invoke(app, ["usage", "record", "heygen", "avatar-video"])

        result = runner.invoke(app, ["usage", "monthly"])

        assert result.exit_code == 0
        assert "heygen" in result.output

    def test_monthly_invalid(self):
        result = runner.invoke(app, ["usage", "monthly", "--month", "2024-13"])

        assert result.exit_code == 1
        assert "Invalid month" in result.output

    def test_status(self):
        result = runner.invoke(app, ["usage", "status"])

        assert result.exit_code == 0
        assert "heygen" in result.output
        assert "ok" in result.output

    def test_capacity(self):
        result = runner.invoke(app, ["usage", "capacity"])

        assert result.exit_code == 0
        assert "heygen" in result.output
        assert "Items remaining: 20" in result.output
