"""
Input sink capability and in-process sinks.

The core never talks to an operating-system input API. A host supplies an
object implementing InputSink; the sinks here record, log or track the
events for tests, previews and dry runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class InputSink(Protocol):
    """Receiver of synthetic input events."""

    def move_mouse_to(self, x: int, y: int) -> None:
        """Move the pointer to an absolute position."""
        ...

    def press_mouse_button(self, code: int) -> None:
        """Press a mouse button."""
        ...

    def release_mouse_button(self, code: int) -> None:
        """Release a mouse button."""
        ...

    def press_key(self, code: int) -> None:
        """Press a key."""
        ...

    def release_key(self, code: int) -> None:
        """Release a key."""
        ...


class RecordingInputSink:
    """Appends every event to ``events`` as ``(name, *args)`` tuples."""

    def __init__(self):
        self.events: list[tuple] = []

    def move_mouse_to(self, x: int, y: int) -> None:
        self.events.append(("move", x, y))

    def press_mouse_button(self, code: int) -> None:
        self.events.append(("press_button", code))

    def release_mouse_button(self, code: int) -> None:
        self.events.append(("release_button", code))

    def press_key(self, code: int) -> None:
        self.events.append(("press_key", code))

    def release_key(self, code: int) -> None:
        self.events.append(("release_key", code))

    def clear(self) -> None:
        self.events.clear()


class LoggingInputSink:
    """Dry-run sink that only logs events at debug level."""

    def move_mouse_to(self, x: int, y: int) -> None:
        logger.debug("move_mouse_to", x=x, y=y)

    def press_mouse_button(self, code: int) -> None:
        logger.debug("press_mouse_button", code=code)

    def release_mouse_button(self, code: int) -> None:
        logger.debug("release_mouse_button", code=code)

    def press_key(self, code: int) -> None:
        logger.debug("press_key", code=code)

    def release_key(self, code: int) -> None:
        logger.debug("release_key", code=code)


@dataclass(frozen=True)
class InputState:
    """Held inputs after an instruction was applied."""

    mouse_position: tuple[int, int] | None = None
    held_buttons: frozenset[int] = field(default_factory=frozenset)
    held_keys: frozenset[int] = field(default_factory=frozenset)


class InputStateTracker:
    """
    Sink that keeps the current held state instead of emitting events.

    Pressing a held control or releasing a free one is a no-op, mirroring
    how a real device behaves.
    """

    def __init__(self):
        self.mouse_position: tuple[int, int] | None = None
        self.held_buttons: set[int] = set()
        self.held_keys: set[int] = set()

    def move_mouse_to(self, x: int, y: int) -> None:
        self.mouse_position = (x, y)

    def press_mouse_button(self, code: int) -> None:
        self.held_buttons.add(code)

    def release_mouse_button(self, code: int) -> None:
        self.held_buttons.discard(code)

    def press_key(self, code: int) -> None:
        self.held_keys.add(code)

    def release_key(self, code: int) -> None:
        self.held_keys.discard(code)

    def snapshot(self) -> InputState:
        return InputState(
            self.mouse_position, frozenset(self.held_buttons), frozenset(self.held_keys)
        )

    def reset(self) -> None:
        self.mouse_position = None
        self.held_buttons.clear()
        self.held_keys.clear()
