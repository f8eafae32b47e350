"""Unit tests for settings module."""

import os

import pytest

from switchboard.settings import Settings, parse_chat_ids


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all SWITCHBOARD_ and TELEGRAM_ env vars for clean tests."""
    for key in list(os.environ.keys()):
        if key.startswith("SWITCHBOARD_") or key.startswith("TELEGRAM_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestBoolSettings:
    """Test boolean environment variable parsing."""

    def test_autostart_default_true(self, clean_env) -> None:
        """Autostart defaults to True."""
        assert Settings.autostart() is True

    def test_autostart_false_values(self, clean_env) -> None:
        """Autostart is disabled by non-true values."""
        for value in ["0", "false", "no"]:
            clean_env.setenv("SWITCHBOARD_AUTOSTART", value)
            assert Settings.autostart() is False


class TestIntSettings:
    """Test integer environment variable parsing."""

    def test_port_default(self, clean_env) -> None:
        """Port defaults to 8790."""
        assert Settings.port() == 8790

    def test_port_invalid_returns_default(self, clean_env) -> None:
        """Invalid port falls back to default."""
        clean_env.setenv("SWITCHBOARD_PORT", "not_a_number")
        assert Settings.port() == 8790

    def test_idle_timeout(self, clean_env) -> None:
        """Idle timeout defaults to 60 minutes and can be changed."""
        assert Settings.idle_timeout_minutes() == 60
        clean_env.setenv("SWITCHBOARD_IDLE_TIMEOUT_MINUTES", "15")
        assert Settings.idle_timeout_minutes() == 15

    def test_timing_defaults(self, clean_env) -> None:
        """Poll and typing timings have sensible defaults."""
        assert Settings.poll_timeout() == 30
        assert Settings.poll_backoff() == 5.0
        assert Settings.typing_interval() == 4.0
        assert Settings.idle_warning_minutes() == 5


class TestStringSettings:
    """Test string environment variable parsing."""

    def test_log_level_uppercased(self, clean_env) -> None:
        clean_env.setenv("SWITCHBOARD_LOG_LEVEL", "debug")
        assert Settings.log_level() == "DEBUG"

    def test_data_dir_absolute(self, clean_env, tmp_path) -> None:
        """Data dir from env is made absolute."""
        clean_env.setenv("SWITCHBOARD_DATA_DIR", str(tmp_path / "d"))
        assert Settings.data_dir() == str(tmp_path / "d")

    def test_host_default(self, clean_env) -> None:
        assert Settings.host() == "127.0.0.1"


class TestTelegramCredentials:
    """Unprefixed Telegram settings."""

    def test_allowed_chat_ids(self, clean_env) -> None:
        """Chat IDs are parsed from a comma-separated list."""
        clean_env.setenv("TELEGRAM_ALLOWED_CHAT_IDS", "123, -100456")
        assert Settings.telegram_allowed_chat_ids() == [123, -100456]

    def test_invalid_chat_ids_skipped(self) -> None:
        """Non-numeric entries are ignored."""
        assert parse_chat_ids("1,abc,,2") == [1, 2]
