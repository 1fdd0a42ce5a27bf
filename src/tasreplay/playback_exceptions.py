"""
tasreplay Exception Hierarchy

Exception classes for parsing, compiling and replaying TAS files. Every error
carries a stable error code so callers (the CLI, a host editor) can map it to
a user-facing message without string matching.

Format errors remember where they happened: the file path and the 1-based
line number are folded into the message when known.
"""

from __future__ import annotations


class TasReplayError(Exception):
    """Base exception for all tasreplay errors."""

    def __init__(self, message: str, error_code: str = "TAS_GENERAL_ERROR"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class LocatedError(TasReplayError):
    """Error tied to a position in a source file."""

    def __init__(
        self,
        message: str,
        error_code: str,
        path: str | None = None,
        line_number: int | None = None,
    ):
        self.path = path
        self.line_number = line_number
        super().__init__(self._with_location(message, path, line_number), error_code)
        self.reason = message

    @staticmethod
    def _with_location(message: str, path: str | None, line_number: int | None) -> str:
        if path is None:
            return message
        if line_number is None:
            return f"{path}: {message}"
        return f"{path}:{line_number}: {message}"


class MalformedFormatError(LocatedError):
    """
    Raised when a ``!FORMAT:`` declaration cannot be compiled.

    Causes: duplicate placeholder names, an empty placeholder, or a format
    whose generated pattern does not compile.
    """

    def __init__(self, message: str, path: str | None = None, line_number: int | None = None):
        super().__init__(message, "MALFORMED_FORMAT", path, line_number)


class InvalidFileFormatError(LocatedError):
    """
    Raised when a TAS file violates the structural grammar.

    Causes: missing or bad header, bad indentation, a data line that does not
    match the declared format, an invalid REPEAT count, INCLUDE inside a
    FRAGMENT file, or an INCLUDE cycle.
    """

    def __init__(self, message: str, path: str | None = None, line_number: int | None = None):
        super().__init__(message, "INVALID_FILE_FORMAT", path, line_number)


class InstructionError(TasReplayError):
    """Base exception for instruction compilation failures."""

    pass


class IncompatibleInstructionError(InstructionError):
    """Raised when an instruction is compiled against a predecessor with a different field set."""

    def __init__(self, message: str):
        super().__init__(message, "INCOMPATIBLE_INSTRUCTION")


class UnknownKeyError(InstructionError):
    """Raised when a ``K<name>`` field names a key outside the key table."""

    def __init__(self, key_name: str):
        super().__init__(f"Unknown key name: {key_name!r}", "UNKNOWN_KEY")
        self.key_name = key_name


class UnknownFieldError(InstructionError):
    """Raised when a field name is not MX, MY, K<name> or M<n>."""

    def __init__(self, field_name: str):
        super().__init__(f"Unknown instruction field: {field_name!r}", "UNKNOWN_FIELD")
        self.field_name = field_name


class InvalidValueError(InstructionError):
    """Raised when a coordinate is neither a no-input sentinel nor an integer."""

    def __init__(self, field_name: str, value: str):
        super().__init__(
            f"Field {field_name} expects an integer or a no-input sentinel, got {value!r}",
            "INVALID_VALUE",
        )
        self.field_name = field_name
        self.value = value


class ResourceUnavailableError(TasReplayError):
    """
    Raised when a TAS file cannot be read.

    Distinct from format errors: the file may be perfectly valid but missing,
    unreadable or not decodable as UTF-8.
    """

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message, "RESOURCE_UNAVAILABLE")
        self.path = path


class PlaybackInProgressError(TasReplayError):
    """Raised when a run is started while another run owns the input sink."""

    def __init__(self, message: str = "A playback run already owns the input sink"):
        super().__init__(message, "PLAYBACK_IN_PROGRESS")
