"""
Structural parser for TAS files.

A file starts with its header lines and continues with an indented body:

    !TYPE: DEFAULT
    !FORMAT: <MX> <MY> <KA>
    10 20 .
    REPEAT 3
        . . A
    INCLUDE intro.tas
    # comments and blank lines are skipped

The parser walks the body with a LineCursor, one block per indentation level,
and returns a flat tuple of RawInstruction with every REPEAT and INCLUDE
already expanded. Included files are parsed through the FileCache so each
canonical path is parsed once and shared.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import structlog

from .file_cache import FileCache, canonical_path, read_source
from .instruction_fields import RawInstruction
from .instruction_format import FormatSpec, compile_format
from .playback_exceptions import InvalidFileFormatError

logger = structlog.get_logger(__name__)

TYPE_PREFIX = "!TYPE: "
FORMAT_PREFIX = "!FORMAT: "
INCLUDE_PREFIX = "INCLUDE "
REPEAT_PREFIX = "REPEAT "
INDENT_WIDTH = 4

_REPEAT_COUNT = re.compile(r"\d+")


class FileType(Enum):
    """Declared type of a TAS file."""

    DEFAULT = "DEFAULT"
    FRAGMENT = "FRAGMENT"


@dataclass(frozen=True)
class SourceLine:
    """A significant (non-blank, non-comment) line."""

    number: int
    indent: int
    content: str

    @property
    def level(self) -> int | None:
        """Indentation level, or None when the indent is not a multiple of 4."""
        if self.indent % INDENT_WIDTH:
            return None
        return self.indent // INDENT_WIDTH


def parse_repeat_count(text: str) -> int | None:
    """Non-negative decimal REPEAT count, or None when the text is not one."""
    text = text.strip()
    return int(text) if _REPEAT_COUNT.fullmatch(text) else None


def is_skipped(content: str) -> bool:
    """Blank lines and ``#`` comments carry no structure."""
    return not content or content.startswith("#")


def measure_line(number: int, raw: str) -> SourceLine:
    """Expand tabs to 4 columns each and split indentation from content."""
    expanded = raw.replace("\t", " " * INDENT_WIDTH)
    content = expanded.lstrip()
    return SourceLine(number, len(expanded) - len(content), content.rstrip())


class LineCursor:
    """
    Index-based cursor over the lines of one file.

    peek() looks at the next significant line without consuming it, so a
    block that meets a shallower line can return and leave that line for its
    caller.
    """

    def __init__(self, lines: list[str], start: int = 0):
        self._lines = lines
        self._index = start

    @property
    def index(self) -> int:
        return self._index

    def peek(self) -> SourceLine | None:
        index = self._index
        while index < len(self._lines):
            line = measure_line(index + 1, self._lines[index])
            if not is_skipped(line.content):
                return line
            index += 1
        return None

    def advance(self) -> SourceLine:
        line = self.peek()
        if line is None:
            raise IndexError("no more lines")
        self._index = line.number
        return line


@dataclass(frozen=True)
class HeaderLines:
    """Raw header text as found at the top of a file."""

    type_text: str | None
    type_line: int | None
    format_text: str | None
    format_line: int
    body_start: int


def split_header(lines: list[str]) -> HeaderLines:
    """
    Locate the header lines without validating them.

    ``!TYPE:`` may only appear on line 1; ``!FORMAT:`` follows it (line 2) or
    stands alone on line 1. A missing declaration is reported as None.
    """
    type_text = type_line = None
    index = 0
    if lines and lines[0].startswith(TYPE_PREFIX):
        type_text = lines[0][len(TYPE_PREFIX) :].rstrip()
        type_line = 1
        index = 1

    format_text = None
    if index < len(lines) and lines[index].startswith(FORMAT_PREFIX):
        format_text = lines[index][len(FORMAT_PREFIX) :].rstrip()
        body_start = index + 1
    else:
        body_start = index

    return HeaderLines(type_text, type_line, format_text, index + 1, body_start)


@dataclass(frozen=True)
class FileHeader:
    """Validated header of a parsed file."""

    file_type: FileType | None
    format: FormatSpec


@dataclass(frozen=True)
class ParsedUnit:
    """
    Fully expanded content of one file.

    Owned by the FileCache once parsed and shared by every inclusion site.
    """

    path: str | None
    header: FileHeader
    instructions: tuple[RawInstruction, ...]

    @property
    def file_type(self) -> FileType | None:
        return self.header.file_type

    @property
    def format(self) -> FormatSpec:
        return self.header.format

    def __len__(self) -> int:
        return len(self.instructions)


def parse_header(lines: list[str], path: str | None = None) -> tuple[FileHeader, int]:
    """
    Validate the header lines.

    Returns:
        The header and the index of the first body line

    Raises:
        InvalidFileFormatError: On a bad type or a missing format declaration
        MalformedFormatError: If the format itself is invalid
    """
    raw = split_header(lines)

    file_type = None
    if raw.type_text is not None:
        try:
            file_type = FileType(raw.type_text)
        except ValueError:
            raise InvalidFileFormatError(
                f"invalid type in type declaration: {raw.type_text!r}", path, raw.type_line
            ) from None

    if raw.format_text is None:
        raise InvalidFileFormatError(
            "invalid or missing format declaration", path, raw.format_line
        )

    spec = compile_format(raw.format_text, path, raw.format_line)
    return FileHeader(file_type, spec), raw.body_start


@dataclass(frozen=True)
class _BlockContext:
    path: str | None
    base_dir: Path
    header: FileHeader


class StructuralParser:
    """
    Parses TAS files into flat RawInstruction sequences.

    Every file reached through INCLUDE goes through the shared FileCache; an
    INCLUDE chain that comes back to a file still being parsed is rejected.
    """

    def __init__(self, cache: FileCache | None = None):
        self.cache = cache if cache is not None else FileCache()

    def parse_file(self, path: str | os.PathLike, require_type: bool = False) -> ParsedUnit:
        """
        Parse a file through the cache.

        Args:
            path: File to parse
            require_type: Demand a ``!TYPE:`` line (root files of a full
                playback); included files never require one

        Returns:
            The shared ParsedUnit for the file's canonical path

        Raises:
            InvalidFileFormatError: On any structural error in the file or in
                a file it includes
            MalformedFormatError: If a format declaration is invalid
            ResourceUnavailableError: If a file cannot be read
        """
        unit = self.cache.get_or_parse(path, self._parse_path)
        if require_type and unit.file_type is None:
            raise InvalidFileFormatError("invalid or missing type declaration", unit.path, 1)
        return unit

    def parse_text(
        self,
        text: str,
        path: str | os.PathLike | None = None,
        require_type: bool = False,
    ) -> ParsedUnit:
        """
        Parse in-memory text without caching it.

        INCLUDE paths resolve relative to the directory of path, or to the
        working directory when no path is given. Included files are still
        cached.
        """
        source = str(path) if path is not None else None
        unit = self._parse_lines(text.splitlines(), source)
        if require_type and unit.file_type is None:
            raise InvalidFileFormatError("invalid or missing type declaration", source, 1)
        return unit

    def _parse_path(self, key: str) -> ParsedUnit:
        unit = self._parse_lines(read_source(key).splitlines(), key)
        logger.debug("Parsed file", path=key, instructions=len(unit))
        return unit

    def _parse_lines(self, lines: list[str], path: str | None) -> ParsedUnit:
        header, body_start = parse_header(lines, path)
        base_dir = Path(path).parent if path is not None else Path.cwd()
        context = _BlockContext(path, base_dir, header)

        cursor = LineCursor(lines, body_start)
        instructions = self._read_block(cursor, 0, context)

        return ParsedUnit(path, header, tuple(instructions))

    def _read_block(
        self, cursor: LineCursor, level: int, context: _BlockContext
    ) -> list[RawInstruction]:
        output: list[RawInstruction] = []

        while True:
            line = cursor.peek()
            if line is None:
                break
            if line.level is None or line.level > level:
                raise InvalidFileFormatError("invalid indentation", context.path, line.number)
            if line.level < level:
                break
            cursor.advance()

            content = line.content
            if content.startswith(INCLUDE_PREFIX):
                output.extend(self._include(content[len(INCLUDE_PREFIX) :].strip(), line, context))
            elif content.startswith(REPEAT_PREFIX):
                count_text = content[len(REPEAT_PREFIX) :]
                repeat = parse_repeat_count(count_text)
                if repeat is None:
                    raise InvalidFileFormatError(
                        f"invalid REPEAT count: {count_text.strip()!r}", context.path, line.number
                    )
                # The block is always parsed so REPEAT 0 still validates it
                block = self._read_block(cursor, level + 1, context)
                output.extend(block * repeat)
            else:
                instruction = context.header.format.match(content, context.path, line.number)
                if instruction is None:
                    raise InvalidFileFormatError(
                        f"line does not match format {context.header.format.source!r}: {content!r}",
                        context.path,
                        line.number,
                    )
                output.append(instruction)

        return output

    def _include(
        self, target: str, line: SourceLine, context: _BlockContext
    ) -> tuple[RawInstruction, ...]:
        if context.header.file_type is FileType.FRAGMENT:
            raise InvalidFileFormatError(
                "fragment files cannot contain INCLUDE", context.path, line.number
            )
        if not target:
            raise InvalidFileFormatError("INCLUDE without a path", context.path, line.number)

        include_path = canonical_path(context.base_dir / target)
        logger.debug("Including file", path=context.path, line=line.number, target=include_path)
        return self.parse_file(include_path).instructions
