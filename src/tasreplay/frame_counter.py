"""
Frame counting over raw TAS text.

This pass reads the text directly instead of the parsed instructions, so it
can size and annotate files that do not parse. Counting law:

- blank and comment lines contribute 0
- a data line contributes 1 (its content is not checked against the format)
- ``INCLUDE path`` contributes the frame count of the included file; in a
  FRAGMENT file, which may not include others, it makes the file
  indeterminate
- ``REPEAT n`` contributes n times the count of its nested block
- bad indentation, a bad REPEAT count or a missing header makes the whole
  file indeterminate (None), and None propagates through every enclosing
  REPEAT and INCLUDE

File results are memoized in the FileCache by canonical path.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import structlog

from .file_cache import FileCache, canonical_path, read_source
from .playback_exceptions import ResourceUnavailableError
from .structural_parser import (
    INCLUDE_PREFIX,
    REPEAT_PREFIX,
    FileType,
    LineCursor,
    is_skipped,
    measure_line,
    parse_repeat_count,
    split_header,
)

logger = structlog.get_logger(__name__)


class LineKind(Enum):
    HEADER = "header"
    BLANK = "blank"
    COMMENT = "comment"
    DATA = "data"
    REPEAT = "repeat"
    INCLUDE = "include"
    ERROR = "error"


@dataclass(frozen=True)
class LineFrameInfo:
    """
    Frame information for one source line.

    value is the 1-based frame index of a data line (within the first
    iteration of every enclosing REPEAT) or the frame count of an included
    file; other lines carry None.
    """

    line_number: int
    kind: LineKind
    value: int | None = None

    @property
    def label(self) -> str:
        """Gutter text: the value, ``ERR`` for errors, blank otherwise."""
        if self.kind is LineKind.ERROR:
            return "ERR"
        if not self.value:
            return ""
        return str(self.value)


def _body_start(lines: list[str]) -> int | None:
    """Index of the first body line, or None when the header is unusable."""
    header = split_header(lines)
    if header.format_text is None:
        return None
    if header.type_text is not None and header.type_text not in {t.value for t in FileType}:
        return None
    return header.body_start


def _is_fragment(lines: list[str]) -> bool:
    return split_header(lines).type_text == FileType.FRAGMENT.value


class FrameCounter:
    """
    Counts the frames a file or text expands to.

    Example:
        counter = FrameCounter(cache)
        counter.count_file("main.tas")   # 120, or None when indeterminate
    """

    def __init__(self, cache: FileCache | None = None):
        self.cache = cache if cache is not None else FileCache()

    def count_file(self, path: str | os.PathLike) -> int | None:
        """
        Frame count of a file, memoized by canonical path.

        Returns:
            Number of frames, or None when the file cannot be counted

        Raises:
            ResourceUnavailableError: If the file or an included file cannot be read
        """
        return self.cache.get_or_count(path, self._count_path)

    def count_text(self, text: str, base_dir: str | os.PathLike | None = None) -> int | None:
        """
        Frame count of in-memory text (not memoized).

        Args:
            text: File content including its header
            base_dir: Directory INCLUDE paths resolve against (default: cwd)
        """
        lines = text.splitlines()
        start = _body_start(lines)
        if start is None:
            return None
        base = Path(base_dir) if base_dir is not None else Path.cwd()
        return self._count_block(LineCursor(lines, start), 0, base, _is_fragment(lines))

    def _count_path(self, key: str) -> int | None:
        result = self.count_text(read_source(key), Path(key).parent)
        logger.debug("Counted frames", path=key, frames=result)
        return result

    def _count_block(
        self, cursor: LineCursor, level: int, base_dir: Path, fragment: bool
    ) -> int | None:
        total = 0
        while True:
            line = cursor.peek()
            if line is None:
                break
            if line.level is None or line.level > level:
                return None
            if line.level < level:
                break
            cursor.advance()

            content = line.content
            if content.startswith(INCLUDE_PREFIX):
                if fragment:
                    return None
                target = content[len(INCLUDE_PREFIX) :].strip()
                included = self.count_file(base_dir / target) if target else None
                if included is None:
                    return None
                total += included
            elif content.startswith(REPEAT_PREFIX):
                repeat = parse_repeat_count(content[len(REPEAT_PREFIX) :])
                if repeat is None:
                    return None
                block = self._count_block(cursor, level + 1, base_dir, fragment)
                if block is None:
                    return None
                total += repeat * block
            else:
                total += 1
        return total

    def annotate(
        self, text: str, base_dir: str | os.PathLike | None = None
    ) -> list[LineFrameInfo]:
        """
        Per-line frame information for a progress gutter.

        Unlike count_text, a bad line only marks that line as an error; the
        rest of the text is still annotated. Without a usable header every
        line is an error. An INCLUDE in a fragment, or one whose count is
        indeterminate, is an error and adds no frames.

        Args:
            text: File content including its header
            base_dir: Directory INCLUDE paths resolve against (default: cwd)

        Returns:
            One LineFrameInfo per line of text, in order
        """
        lines = text.splitlines()
        start = _body_start(lines)
        if start is None:
            return [LineFrameInfo(n, LineKind.ERROR) for n in range(1, len(lines) + 1)]

        base = Path(base_dir) if base_dir is not None else Path.cwd()
        fragment = _is_fragment(lines)
        result = [LineFrameInfo(n, LineKind.HEADER) for n in range(1, start + 1)]

        # Open blocks as (level, frames before the block, repeat count)
        blocks: list[tuple[int, int, int]] = [(0, 0, 1)]
        position = 0

        for index in range(start, len(lines)):
            line = measure_line(index + 1, lines[index])
            if is_skipped(line.content):
                kind = LineKind.COMMENT if line.content else LineKind.BLANK
                result.append(LineFrameInfo(line.number, kind))
                continue

            level = line.level
            if level is None or level > blocks[-1][0]:
                result.append(LineFrameInfo(line.number, LineKind.ERROR))
                continue
            while level < blocks[-1][0]:
                _, block_start, repeat = blocks.pop()
                position = block_start + repeat * (position - block_start)

            content = line.content
            if content.startswith(INCLUDE_PREFIX):
                included = (
                    None
                    if fragment
                    else self._annotate_include(content[len(INCLUDE_PREFIX) :].strip(), base)
                )
                if included is None:
                    result.append(LineFrameInfo(line.number, LineKind.ERROR))
                else:
                    position += included
                    result.append(LineFrameInfo(line.number, LineKind.INCLUDE, included))
            elif content.startswith(REPEAT_PREFIX):
                repeat = parse_repeat_count(content[len(REPEAT_PREFIX) :])
                if repeat is None:
                    result.append(LineFrameInfo(line.number, LineKind.ERROR))
                else:
                    blocks.append((level + 1, position, repeat))
                    result.append(LineFrameInfo(line.number, LineKind.REPEAT))
            else:
                position += 1
                result.append(LineFrameInfo(line.number, LineKind.DATA, position))

        return result

    def _annotate_include(self, target: str, base_dir: Path) -> int | None:
        if not target:
            return None
        path = canonical_path(base_dir / target)
        try:
            return self.count_file(path)
        except ResourceUnavailableError as e:
            logger.warning("Included file unavailable", path=path, error=str(e))
            return None
