"""
Configuration management for TAS playback.

This module provides the process-wide configuration used by the compiler and
the scheduler:

- PlaybackSettings: defaults read from the environment (``TASREPLAY_*``)
- MouseOffset: the global (x, y) offset added to every absolute mouse target
- ConfigManager: owns both and exposes thread-safe offset updates

The offset is deliberately process-wide: a host sets it once (for example
from the position of the target window) before compiling or replaying.
"""

import threading
from dataclasses import dataclass
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlaybackSettings(BaseSettings):
    """Environment-driven defaults for playback and logging."""

    model_config = SettingsConfigDict(env_prefix="TASREPLAY_", extra="ignore")

    frame_period_ms: int = Field(default=16, gt=0)
    x_offset: int = 0
    y_offset: int = 0
    suppress_repeated_mouse_moves: bool = False
    log_level: str = "INFO"
    log_json: bool = False


@dataclass(frozen=True)
class MouseOffset:
    """Offset applied to absolute mouse coordinates at compile time."""

    x: int = 0
    y: int = 0

    def apply(self, x: int, y: int) -> tuple[int, int]:
        return (self.x + x, self.y + y)


class ConfigManager:
    """
    Central configuration holder.

    Settings are loaded once at construction; the mouse offset starts from the
    settings and can be changed at any time with set_mouse_offset().
    """

    def __init__(self, settings: PlaybackSettings | None = None):
        self.settings = settings or PlaybackSettings()
        self._lock = threading.Lock()
        self._offset = MouseOffset(self.settings.x_offset, self.settings.y_offset)

    @property
    def mouse_offset(self) -> MouseOffset:
        """Snapshot of the current mouse offset."""
        with self._lock:
            return self._offset

    def set_mouse_offset(self, x: int, y: int) -> None:
        """
        Replace the global mouse offset.

        Args:
            x: Offset added to every MX value
            y: Offset added to every MY value
        """
        with self._lock:
            self._offset = MouseOffset(int(x), int(y))

    def reset(self) -> None:
        """Restore the offset configured by the settings."""
        self.set_mouse_offset(self.settings.x_offset, self.settings.y_offset)

    def get_all_config(self) -> dict[str, Any]:
        """
        Get all configuration as a dictionary.

        Returns:
            Settings values plus the live mouse offset
        """
        offset = self.mouse_offset
        return {
            "settings": self.settings.model_dump(),
            "mouse_offset": {"x": offset.x, "y": offset.y},
        }


# Global configuration instance
CONFIG = ConfigManager()

__all__ = ["PlaybackSettings", "MouseOffset", "ConfigManager", "CONFIG"]
