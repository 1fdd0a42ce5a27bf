"""
Instruction fields and raw per-frame instructions.

A field name is classified once into a closed set of kinds:

    MX        -> FieldKind.MOUSE_X
    MY        -> FieldKind.MOUSE_Y
    K<name>   -> FieldKind.KEY     (code resolved through key_codes)
    M<n>      -> FieldKind.BUTTON  (code is the integer n)

Downstream code switches over FieldKind instead of re-inspecting prefixes for
every instruction.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum, auto

from .key_codes import key_code
from .playback_exceptions import UnknownFieldError

# Literal values meaning "this field is inactive this frame"
NO_INPUT = frozenset({".", "_", "-"})

_BUTTON_NUMBER = re.compile(r"\d+")


def is_no_input(value: str | None) -> bool:
    """True for a missing value or one of the no-input sentinels."""
    return value is None or value in NO_INPUT


class FieldKind(Enum):
    """Kinds of instruction fields."""

    MOUSE_X = auto()
    MOUSE_Y = auto()
    KEY = auto()
    BUTTON = auto()


@dataclass(frozen=True)
class Field:
    """A classified field with its resolved key or button code."""

    name: str
    kind: FieldKind
    code: int | None = None

    @property
    def is_mouse_axis(self) -> bool:
        return self.kind in (FieldKind.MOUSE_X, FieldKind.MOUSE_Y)


@functools.lru_cache(maxsize=None)
def parse_field(name: str) -> Field:
    """
    Classify a field name.

    Args:
        name: Field name as written between ``<`` and ``>`` in a format

    Returns:
        The classified Field

    Raises:
        UnknownFieldError: If the name is outside the field vocabulary
        UnknownKeyError: If a ``K`` field names an unknown key
    """
    if name == "MX":
        return Field(name, FieldKind.MOUSE_X)
    if name == "MY":
        return Field(name, FieldKind.MOUSE_Y)
    if name.startswith("K") and len(name) > 1:
        return Field(name, FieldKind.KEY, key_code(name[1:]))
    if name.startswith("M") and _BUTTON_NUMBER.fullmatch(name[1:]):
        return Field(name, FieldKind.BUTTON, int(name[1:]))
    raise UnknownFieldError(name)


@dataclass(frozen=True)
class RawInstruction(Mapping[str, str]):
    """
    Immutable field-name to raw-value mapping for one frame.

    Equality only looks at the values; the source location is kept for
    error messages.
    """

    entries: tuple[tuple[str, str], ...]
    source: str | None = field(default=None, compare=False)
    line_number: int | None = field(default=None, compare=False)
    _lookup: dict[str, str] = field(init=False, repr=False, compare=False, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "_lookup", dict(self.entries))

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[str, str],
        source: str | None = None,
        line_number: int | None = None,
    ) -> RawInstruction:
        """Build an instruction from any mapping, keeping its iteration order."""
        return cls(tuple((str(k), str(v)) for k, v in mapping.items()), source, line_number)

    def __getitem__(self, name: str) -> str:
        return self._lookup[name]

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def field_names(self) -> frozenset[str]:
        return frozenset(self._lookup)

    def as_dict(self) -> dict[str, str]:
        return dict(self.entries)

    def describe_location(self) -> str:
        """Human-readable origin, e.g. ``main.tas:12``."""
        if self.source is None:
            return "<memory>"
        if self.line_number is None:
            return self.source
        return f"{self.source}:{self.line_number}"

    def __str__(self) -> str:
        body = " ".join(f"{name}={value}" for name, value in self.entries)
        return f"[RawInstruction {body}]"
