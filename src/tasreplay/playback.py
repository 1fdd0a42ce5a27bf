"""
Playback orchestration.

Playback ties the parser, the cache and the instruction compiler together:

    playback = Playback.load("main.tas", cache=cache, require_type=True)
    compiled = playback.compile()
    PlaybackScheduler(sink).start(compiled)
"""

from __future__ import annotations

import os
from collections.abc import Iterator, Sequence

import structlog

from .file_cache import FileCache
from .input_sink import InputState, InputStateTracker
from .instruction_fields import RawInstruction
from .instructions import CompiledInstruction, InstructionCompiler, compile_sequence, parse_coordinate
from .structural_parser import FileType, ParsedUnit, StructuralParser

logger = structlog.get_logger(__name__)


class CompiledPlayback:
    """Delta-compiled instruction sequence, ready for a scheduler."""

    def __init__(self, instructions: Sequence[CompiledInstruction], path: str | None = None):
        self.instructions = tuple(instructions)
        self.path = path

    def __iter__(self) -> Iterator[CompiledInstruction]:
        return iter(self.instructions)

    def __len__(self) -> int:
        return len(self.instructions)

    def __getitem__(self, index: int) -> CompiledInstruction:
        return self.instructions[index]

    def preview(self) -> list[InputState]:
        """Held state after each instruction, replayed from an all-released start."""
        tracker = InputStateTracker()
        states = []
        for instruction in self.instructions:
            instruction.apply(tracker)
            states.append(tracker.snapshot())
        return states

    def __repr__(self) -> str:
        return f"CompiledPlayback(path={self.path!r}, instructions={len(self)})"


class Playback:
    """
    Parsed, fully expanded RawInstruction sequence of one file.

    Parsing is cached per file through the FileCache, so loading the same
    path twice shares the same instruction tuple.
    """

    def __init__(
        self,
        instructions: Sequence[RawInstruction],
        path: str | None = None,
        file_type: FileType | None = None,
    ):
        self.instructions = tuple(instructions)
        self.path = path
        self.file_type = file_type

    @classmethod
    def from_unit(cls, unit: ParsedUnit) -> Playback:
        return cls(unit.instructions, unit.path, unit.file_type)

    @classmethod
    def load(
        cls,
        path: str | os.PathLike,
        cache: FileCache | None = None,
        require_type: bool = False,
    ) -> Playback:
        """
        Parse a file (through the cache) into a Playback.

        Args:
            path: File to load
            cache: Shared cache; a private one is used when omitted
            require_type: Demand a ``!TYPE:`` declaration on the root file

        Raises:
            InvalidFileFormatError, MalformedFormatError, UnknownFieldError,
            UnknownKeyError, ResourceUnavailableError
        """
        unit = StructuralParser(cache).parse_file(path, require_type=require_type)
        logger.info("Loaded playback", path=unit.path, instructions=len(unit))
        return cls.from_unit(unit)

    @classmethod
    def from_text(
        cls,
        text: str,
        path: str | os.PathLike | None = None,
        cache: FileCache | None = None,
        require_type: bool = False,
    ) -> Playback:
        """Parse in-memory text; INCLUDE paths resolve next to path."""
        unit = StructuralParser(cache).parse_text(text, path, require_type=require_type)
        return cls.from_unit(unit)

    def __iter__(self) -> Iterator[RawInstruction]:
        return iter(self.instructions)

    def __len__(self) -> int:
        return len(self.instructions)

    @property
    def frame_count(self) -> int:
        return len(self.instructions)

    def compile(self, compiler: InstructionCompiler | None = None) -> CompiledPlayback:
        """
        Delta-compile the whole sequence.

        Raises:
            InstructionError: On the first instruction that fails to compile
        """
        return CompiledPlayback(compile_sequence(self.instructions, compiler), self.path)

    def mouse_bounds(self) -> tuple[int, int] | None:
        """
        Largest raw MX and MY values in the sequence.

        Returns:
            (max_x, max_y), or None when either axis never has a coordinate
        """
        max_x = max_y = None
        for instruction in self.instructions:
            if "MX" in instruction:
                x = parse_coordinate("MX", instruction["MX"])
                if x is not None and (max_x is None or x > max_x):
                    max_x = x
            if "MY" in instruction:
                y = parse_coordinate("MY", instruction["MY"])
                if y is not None and (max_y is None or y > max_y):
                    max_y = y
        if max_x is None or max_y is None:
            return None
        return (max_x, max_y)

    def __repr__(self) -> str:
        return f"Playback(path={self.path!r}, instructions={len(self)})"
