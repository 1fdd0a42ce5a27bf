"""
Format compiler for ``!FORMAT:`` declarations.

A format is literal text with ``<name>`` placeholders, for example
``<MX> <MY> <K1> <K2>``. compile_format() turns it into a FormatSpec whose
matcher accepts a data line only when every placeholder resolves to a
non-empty token of word characters, ``-`` or ``.``, separated by exactly the
declared literal text. Trailing whitespace on the line is tolerated.

Placeholders are classified at compile time (see instruction_fields), so a
format naming an unknown field fails before any data line is read.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .instruction_fields import Field, RawInstruction, parse_field
from .playback_exceptions import MalformedFormatError

# Anything between angle brackets that looks like an attempt at a placeholder
_PLACEHOLDER = re.compile(r"<([A-Za-z0-9_]*)>")

# One field token; non-greedy so literal separators win
_TOKEN = r"([\w.\-]+?)"


@dataclass(frozen=True)
class FormatSpec:
    """
    Compiled ``!FORMAT:`` declaration.

    Attributes:
        source: The format text as declared
        fields: Classified fields in declaration order
        pattern: Generated line matcher (one group per field)
    """

    source: str
    fields: tuple[Field, ...]
    pattern: re.Pattern

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def match(
        self,
        line: str,
        source: str | None = None,
        line_number: int | None = None,
    ) -> RawInstruction | None:
        """
        Extract field values from one data line.

        Args:
            line: Data line content without leading indentation
            source: File the line came from, kept for error reporting
            line_number: 1-based line number, kept for error reporting

        Returns:
            RawInstruction with values in declared order, or None when the
            line does not match the format
        """
        match = self.pattern.fullmatch(line)
        if match is None:
            return None
        values = tuple(zip(self.field_names, match.groups()))
        return RawInstruction(values, source, line_number)


def compile_format(
    format_string: str,
    path: str | None = None,
    line_number: int | None = None,
) -> FormatSpec:
    """
    Compile a format declaration into a FormatSpec.

    Args:
        format_string: Text after the ``!FORMAT: `` prefix
        path: Declaring file, used in error messages
        line_number: Line of the declaration, used in error messages

    Returns:
        Compiled FormatSpec

    Raises:
        MalformedFormatError: On an empty or duplicate placeholder name, a
            format without placeholders, or a pattern that fails to compile
        UnknownFieldError: If a placeholder is outside the field vocabulary
        UnknownKeyError: If a key placeholder names an unknown key
    """
    fields: list[Field] = []
    seen: set[str] = set()
    parts: list[str] = []
    position = 0

    for placeholder in _PLACEHOLDER.finditer(format_string):
        name = placeholder.group(1)
        if not name:
            raise MalformedFormatError("empty placeholder name '<>'", path, line_number)
        if name in seen:
            raise MalformedFormatError(f"duplicate field name {name!r}", path, line_number)
        seen.add(name)
        fields.append(parse_field(name))

        parts.append(re.escape(format_string[position : placeholder.start()]))
        parts.append(_TOKEN)
        position = placeholder.end()

    if not fields:
        raise MalformedFormatError(
            f"format declares no fields: {format_string!r}", path, line_number
        )

    parts.append(re.escape(format_string[position:]))
    parts.append(r"\s*")

    try:
        pattern = re.compile("".join(parts))
    except re.error as e:
        raise MalformedFormatError(f"format does not compile: {e}", path, line_number) from e

    return FormatSpec(format_string, tuple(fields), pattern)
