"""tasreplay - parse, compile and replay tool-assisted input files."""

__version__ = "0.1.0"

from .config import CONFIG, ConfigManager, MouseOffset, PlaybackSettings
from .file_cache import FileCache
from .frame_counter import FrameCounter, LineFrameInfo, LineKind
from .input_sink import InputSink, InputState, InputStateTracker, LoggingInputSink, RecordingInputSink
from .instruction_fields import NO_INPUT, Field, FieldKind, RawInstruction, parse_field
from .instruction_format import FormatSpec, compile_format
from .instructions import CompiledInstruction, InstructionCompiler, compile_sequence
from .playback import CompiledPlayback, Playback
from .playback_exceptions import (
    IncompatibleInstructionError,
    InstructionError,
    InvalidFileFormatError,
    InvalidValueError,
    MalformedFormatError,
    PlaybackInProgressError,
    ResourceUnavailableError,
    TasReplayError,
    UnknownFieldError,
    UnknownKeyError,
)
from .scheduler import Clock, PlaybackCursor, PlaybackResult, PlaybackRun, PlaybackScheduler, SystemClock
from .structural_parser import FileType, LineCursor, ParsedUnit, StructuralParser

__all__ = [
    # Configuration
    "CONFIG",
    "ConfigManager",
    "MouseOffset",
    "PlaybackSettings",
    # Parsing
    "compile_format",
    "FormatSpec",
    "Field",
    "FieldKind",
    "parse_field",
    "NO_INPUT",
    "RawInstruction",
    "FileCache",
    "FileType",
    "LineCursor",
    "ParsedUnit",
    "StructuralParser",
    "FrameCounter",
    "LineFrameInfo",
    "LineKind",
    # Compilation and playback
    "CompiledInstruction",
    "InstructionCompiler",
    "compile_sequence",
    "Playback",
    "CompiledPlayback",
    "InputSink",
    "InputState",
    "InputStateTracker",
    "LoggingInputSink",
    "RecordingInputSink",
    "Clock",
    "SystemClock",
    "PlaybackCursor",
    "PlaybackResult",
    "PlaybackRun",
    "PlaybackScheduler",
    # Errors
    "TasReplayError",
    "MalformedFormatError",
    "InvalidFileFormatError",
    "InstructionError",
    "IncompatibleInstructionError",
    "UnknownKeyError",
    "UnknownFieldError",
    "InvalidValueError",
    "ResourceUnavailableError",
    "PlaybackInProgressError",
]
