"""
Delta compilation of raw instructions.

An InstructionCompiler turns a RawInstruction and its predecessor into a
CompiledInstruction holding only what changed: keys and mouse buttons to press
or release, plus an optional absolute mouse target. Replaying the deltas in
order from an all-released state reproduces the held state of every line.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from .config import CONFIG, ConfigManager, MouseOffset
from .instruction_fields import NO_INPUT, FieldKind, RawInstruction, is_no_input, parse_field
from .playback_exceptions import IncompatibleInstructionError, InvalidValueError

if TYPE_CHECKING:
    from .input_sink import InputSink

logger = structlog.get_logger(__name__)

_COORDINATE = re.compile(r"-?\d+")


@dataclass(frozen=True)
class CompiledInstruction:
    """
    State changes for one frame.

    A code never appears in both the press and the release set of the same
    device.
    """

    mouse_target: tuple[int, int] | None = None
    buttons_to_press: frozenset[int] = frozenset()
    buttons_to_release: frozenset[int] = frozenset()
    keys_to_press: frozenset[int] = frozenset()
    keys_to_release: frozenset[int] = frozenset()

    @property
    def is_empty(self) -> bool:
        return self.mouse_target is None and not (
            self.buttons_to_press
            or self.buttons_to_release
            or self.keys_to_press
            or self.keys_to_release
        )

    def apply(self, sink: InputSink) -> None:
        """
        Send this instruction to an input sink.

        Order: mouse move, button presses, button releases, key presses, key
        releases. Codes within a set are sent in ascending order.
        """
        if self.mouse_target is not None:
            sink.move_mouse_to(*self.mouse_target)
        for code in sorted(self.buttons_to_press):
            sink.press_mouse_button(code)
        for code in sorted(self.buttons_to_release):
            sink.release_mouse_button(code)
        for code in sorted(self.keys_to_press):
            sink.press_key(code)
        for code in sorted(self.keys_to_release):
            sink.release_key(code)

    def __str__(self) -> str:
        parts = []
        if self.mouse_target is not None:
            parts.append(f"move={self.mouse_target}")
        for label, codes in (
            ("press_buttons", self.buttons_to_press),
            ("release_buttons", self.buttons_to_release),
            ("press_keys", self.keys_to_press),
            ("release_keys", self.keys_to_release),
        ):
            if codes:
                parts.append(f"{label}={sorted(codes)}")
        return f"[CompiledInstruction {' '.join(parts) or 'noop'}]"


def parse_coordinate(name: str, value: str) -> int | None:
    """
    Parse a mouse coordinate.

    Returns:
        The integer coordinate, or None for a no-input sentinel

    Raises:
        InvalidValueError: If the value is neither a sentinel nor an integer
    """
    if value in NO_INPUT:
        return None
    if not _COORDINATE.fullmatch(value):
        raise InvalidValueError(name, value)
    return int(value)


class InstructionCompiler:
    """
    Compiles raw instructions into deltas against their predecessor.

    The mouse offset is read from the global configuration on every compile
    unless one is injected. Mouse moves are emitted whenever both coordinates
    are present; with suppress_repeated_mouse_moves a move to the same raw
    coordinates as the predecessor is dropped.
    """

    def __init__(
        self,
        offset: MouseOffset | None = None,
        suppress_repeated_mouse_moves: bool | None = None,
        config: ConfigManager | None = None,
    ):
        self._config = config or CONFIG
        self._offset = offset
        if suppress_repeated_mouse_moves is None:
            suppress_repeated_mouse_moves = self._config.settings.suppress_repeated_mouse_moves
        self.suppress_repeated_mouse_moves = suppress_repeated_mouse_moves

    @property
    def offset(self) -> MouseOffset:
        return self._offset if self._offset is not None else self._config.mouse_offset

    def compile(
        self, current: RawInstruction, previous: RawInstruction | None = None
    ) -> CompiledInstruction:
        """
        Compile one instruction.

        Args:
            current: Instruction to compile
            previous: Its predecessor, or None for the first instruction
                (treated as all fields released)

        Returns:
            The delta as a CompiledInstruction

        Raises:
            IncompatibleInstructionError: If previous has a different field set
            UnknownFieldError: If a field name is outside the vocabulary
            UnknownKeyError: If a key field names an unknown key
            InvalidValueError: If a coordinate is not an integer or sentinel
        """
        if previous is not None and previous.field_names != current.field_names:
            raise IncompatibleInstructionError(
                f"{current.describe_location()}: fields {sorted(current.field_names)} "
                f"do not match predecessor fields {sorted(previous.field_names)}"
            )

        x = y = None
        buttons_to_press: set[int] = set()
        buttons_to_release: set[int] = set()
        keys_to_press: set[int] = set()
        keys_to_release: set[int] = set()

        for name, value in current.entries:
            field = parse_field(name)
            if field.kind is FieldKind.MOUSE_X:
                x = parse_coordinate(name, value)
                continue
            if field.kind is FieldKind.MOUSE_Y:
                y = parse_coordinate(name, value)
                continue

            prior = previous.get(name) if previous is not None else None
            if value == prior:
                continue
            if field.kind is FieldKind.KEY:
                press, release = keys_to_press, keys_to_release
            else:
                press, release = buttons_to_press, buttons_to_release
            if is_no_input(value):
                if not is_no_input(prior):
                    release.add(field.code)
            else:
                press.add(field.code)

        mouse_target = None
        if x is not None and y is not None and not self._repeats_position(previous, x, y):
            mouse_target = self.offset.apply(x, y)

        return CompiledInstruction(
            mouse_target,
            frozenset(buttons_to_press),
            frozenset(buttons_to_release),
            frozenset(keys_to_press),
            frozenset(keys_to_release),
        )

    def _repeats_position(self, previous: RawInstruction | None, x: int, y: int) -> bool:
        if not self.suppress_repeated_mouse_moves or previous is None:
            return False
        if "MX" not in previous or "MY" not in previous:
            return False
        return (
            parse_coordinate("MX", previous["MX"]) == x
            and parse_coordinate("MY", previous["MY"]) == y
        )


def compile_sequence(
    instructions: Iterable[RawInstruction],
    compiler: InstructionCompiler | None = None,
) -> tuple[CompiledInstruction, ...]:
    """
    Compile a whole sequence pairwise.

    The first instruction is compiled against the implicit all-released
    predecessor, every later one against the instruction before it. Any
    error aborts the whole compile.
    """
    compiler = compiler or InstructionCompiler()
    compiled = []
    previous = None
    for instruction in instructions:
        compiled.append(compiler.compile(instruction, previous))
        previous = instruction
    logger.debug("Compiled sequence", instructions=len(compiled), offset=compiler.offset)
    return tuple(compiled)


__all__ = [
    "NO_INPUT",
    "RawInstruction",
    "CompiledInstruction",
    "InstructionCompiler",
    "compile_sequence",
    "parse_coordinate",
]
