"""
Tests for configuration and logging setup.
"""

import json
import logging

import pytest
import structlog
from pydantic import ValidationError

from tasreplay.common_logging import configure_logging, resolve_level
from tasreplay.config import ConfigManager, MouseOffset, PlaybackSettings


@pytest.mark.fast
@pytest.mark.unit
class TestPlaybackSettings:
    """Test environment-driven settings."""

    def test_defaults(self, monkeypatch) -> None:
        for name in ("FRAME_PERIOD_MS", "X_OFFSET", "Y_OFFSET", "SUPPRESS_REPEATED_MOUSE_MOVES"):
            monkeypatch.delenv(f"TASREPLAY_{name}", raising=False)

        settings = PlaybackSettings()

        assert settings.frame_period_ms == 16
        assert settings.x_offset == 0
        assert settings.suppress_repeated_mouse_moves is False

    def test_environment_override(self, monkeypatch) -> None:
        monkeypatch.setenv("TASREPLAY_FRAME_PERIOD_MS", "33")
        monkeypatch.setenv("TASREPLAY_X_OFFSET", "-12")
        monkeypatch.setenv("TASREPLAY_SUPPRESS_REPEATED_MOUSE_MOVES", "true")

        settings = PlaybackSettings()

        assert settings.frame_period_ms == 33
        assert settings.x_offset == -12
        assert settings.suppress_repeated_mouse_moves is True

    @pytest.mark.parametrize("period", [0, -1])
    def test_period_must_be_positive(self, period) -> None:
        with pytest.raises(ValidationError):
            PlaybackSettings(frame_period_ms=period)


@pytest.mark.fast
@pytest.mark.unit
class TestConfigManager:
    """Test the mouse offset holder."""

    def test_offset_starts_from_settings(self) -> None:
        config = ConfigManager(PlaybackSettings(x_offset=5, y_offset=-3))

        assert config.mouse_offset == MouseOffset(5, -3)

    def test_set_and_reset_offset(self) -> None:
        config = ConfigManager(PlaybackSettings(x_offset=1, y_offset=2))

        config.set_mouse_offset(100, 200)
        assert config.mouse_offset.apply(1, 1) == (101, 201)

        config.reset()
        assert config.mouse_offset == MouseOffset(1, 2)

    def test_get_all_config(self) -> None:
        config = ConfigManager(PlaybackSettings(frame_period_ms=20))
        config.set_mouse_offset(7, 8)

        everything = config.get_all_config()

        assert everything["settings"]["frame_period_ms"] == 20
        assert everything["mouse_offset"] == {"x": 7, "y": 8}


@pytest.mark.fast
@pytest.mark.unit
class TestLogging:
    """Test logging configuration."""

    def test_resolve_level(self) -> None:
        assert resolve_level("debug") == logging.DEBUG
        assert resolve_level("WARNING") == logging.WARNING
        assert resolve_level(logging.ERROR) == logging.ERROR

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            resolve_level("LOUD")

    def test_json_output(self, capsys) -> None:
        configure_logging("INFO", json_output=True)

        structlog.get_logger("tasreplay.test").info("Loaded playback", instructions=3)

        event = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert event["event"] == "Loaded playback"
        assert event["instructions"] == 3
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_level_filters_events(self, capsys) -> None:
        configure_logging("WARNING")
        logger = structlog.get_logger("tasreplay.test")

        logger.info("quiet")
        logger.warning("loud")

        err = capsys.readouterr().err
        assert "quiet" not in err
        assert "loud" in err
