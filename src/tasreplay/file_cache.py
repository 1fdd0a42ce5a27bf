"""
File Cache

Memoizes parsed TAS files and their frame counts by canonical path. One
cache instance is shared by every parse, include and count that belongs
together (typically one editor session or one command invocation).

Entries are never refreshed from disk on their own: a host calls clear()
when files may have changed.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from .playback_exceptions import InvalidFileFormatError, ResourceUnavailableError

if TYPE_CHECKING:
    from .structural_parser import ParsedUnit

logger = structlog.get_logger(__name__)


def canonical_path(path: str | os.PathLike) -> str:
    """Resolve a path to the absolute, symlink-free form used as cache key."""
    return str(Path(path).resolve())


def read_source(path: str | os.PathLike) -> str:
    """
    Read a TAS file as UTF-8 text.

    Raises:
        ResourceUnavailableError: If the file is missing, unreadable or not UTF-8
    """
    try:
        return Path(path).read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise ResourceUnavailableError(f"Cannot read {path}: {e}", path=str(path)) from e


class FileCache:
    """
    Thread-safe memo of parsed units and frame counts.

    All work runs behind one re-entrant lock: the thread that misses performs
    the parse (recursing through INCLUDE chains under the same lock) while
    other threads wait, so each canonical path is parsed at most once.
    Cached values are immutable and shared by every inclusion site.

    Example:
        cache = FileCache()
        unit = StructuralParser(cache).parse_file("main.tas")
        ...
        cache.clear()  # after the files changed on disk
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._units: dict[str, ParsedUnit] = {}
        self._frame_counts: dict[str, int | None] = {}
        self._parsing: list[str] = []
        self._counting: list[str] = []
        self._stats = {
            "parse_hits": 0,
            "parse_misses": 0,
            "count_hits": 0,
            "count_misses": 0,
            "clears": 0,
        }

    def get_or_parse(self, path: str | os.PathLike, parse: Callable[[str], ParsedUnit]) -> ParsedUnit:
        """
        Return the cached unit for path, parsing it on first use.

        Args:
            path: File path, canonicalized before lookup
            parse: Called with the canonical path on a miss

        Returns:
            The shared ParsedUnit

        Raises:
            InvalidFileFormatError: If path is already being parsed further up
                the INCLUDE chain
        """
        key = canonical_path(path)
        with self._lock:
            unit = self._units.get(key)
            if unit is not None:
                self._stats["parse_hits"] += 1
                logger.debug("Parse cache hit", path=key)
                return unit

            if key in self._parsing:
                chain = " -> ".join(self._parsing[self._parsing.index(key) :] + [key])
                raise InvalidFileFormatError(f"INCLUDE cycle: {chain}", path=self._parsing[-1])

            self._stats["parse_misses"] += 1
            self._parsing.append(key)
            try:
                unit = parse(key)
            finally:
                self._parsing.pop()

            self._units[key] = unit
            return unit

    def get_or_count(
        self, path: str | os.PathLike, count: Callable[[str], int | None]
    ) -> int | None:
        """
        Return the memoized frame count for path, computing it on first use.

        Indeterminate results (None) are memoized like numbers. A path that is
        already being counted further up the chain is indeterminate.
        """
        key = canonical_path(path)
        with self._lock:
            if key in self._frame_counts:
                self._stats["count_hits"] += 1
                return self._frame_counts[key]

            if key in self._counting:
                logger.warning("INCLUDE cycle while counting frames", path=key)
                return None

            self._stats["count_misses"] += 1
            self._counting.append(key)
            try:
                result = count(key)
            finally:
                self._counting.pop()

            self._frame_counts[key] = result
            return result

    def is_parsed(self, path: str | os.PathLike) -> bool:
        with self._lock:
            return canonical_path(path) in self._units

    def clear(self) -> int:
        """
        Drop every parsed unit and frame count.

        Returns:
            Number of entries removed
        """
        with self._lock:
            count = len(self._units) + len(self._frame_counts)
            self._units.clear()
            self._frame_counts.clear()
            self._stats["clears"] += 1
        logger.info("File cache cleared", entries=count)
        return count

    def get_stats(self) -> dict[str, Any]:
        """Hit/miss counters plus current sizes."""
        with self._lock:
            return {
                **self._stats,
                "parsed_files": len(self._units),
                "counted_files": len(self._frame_counts),
            }
