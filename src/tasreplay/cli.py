"""
tasreplay command-line tool.

    tasreplay count a.tas b.tas        frame counts
    tasreplay check main.tas --typed   parse + compile, exit 1 on error
    tasreplay annotate main.tas        source with a frame-number gutter
    tasreplay preview main.tas         held inputs per frame
    tasreplay replay main.tas --quick  dry-run playback into a logging sink
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import structlog
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .common_logging import configure_logging
from .config import CONFIG
from .file_cache import FileCache, read_source
from .frame_counter import FrameCounter
from .input_sink import LoggingInputSink
from .playback import Playback
from .playback_exceptions import TasReplayError
from .scheduler import PlaybackScheduler

logger = structlog.get_logger(__name__)


def _codes(codes: frozenset[int]) -> str:
    return " ".join(str(code) for code in sorted(codes)) or "-"


def cmd_count(args: argparse.Namespace, console: Console, cache: FileCache) -> int:
    counter = FrameCounter(cache)
    table = Table(show_header=True, box=None)
    table.add_column("File")
    table.add_column("Frames", justify="right")

    status = 0
    for path in args.files:
        try:
            frames = counter.count_file(path)
        except TasReplayError as e:
            table.add_row(escape(path), f"[red]{e.error_code}[/red]")
            status = 1
            continue
        table.add_row(escape(path), "indeterminate" if frames is None else str(frames))

    console.print(table)
    return status


def cmd_check(args: argparse.Namespace, console: Console, cache: FileCache) -> int:
    playback = Playback.load(args.file, cache=cache, require_type=args.typed)
    compiled = playback.compile()
    frames = FrameCounter(cache).count_file(args.file)

    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_row("File", escape(str(playback.path)))
    table.add_row("Type", playback.file_type.value if playback.file_type else "-")
    table.add_row("Instructions", str(len(playback)))
    table.add_row("Frames", "indeterminate" if frames is None else str(frames))
    table.add_row("Effective", str(sum(1 for c in compiled if not c.is_empty)))
    bounds = playback.mouse_bounds()
    table.add_row("Mouse bounds", f"{bounds[0]} x {bounds[1]}" if bounds else "-")
    console.print(table)
    console.print("[green]OK[/green]")
    return 0


def cmd_annotate(args: argparse.Namespace, console: Console, cache: FileCache) -> int:
    text = read_source(args.file)
    infos = FrameCounter(cache).annotate(text, Path(args.file).resolve().parent)
    for info, line in zip(infos, text.splitlines()):
        console.print(f"{info.label:>6} | {line}", markup=False, highlight=False)
    return 0


def cmd_preview(args: argparse.Namespace, console: Console, cache: FileCache) -> int:
    playback = Playback.load(args.file, cache=cache, require_type=args.typed)
    states = playback.compile().preview()

    table = Table(show_header=True, box=None)
    table.add_column("Frame", justify="right")
    table.add_column("Mouse")
    table.add_column("Buttons")
    table.add_column("Keys")
    for frame, state in enumerate(states[: args.limit] if args.limit else states, start=1):
        mouse = f"{state.mouse_position[0]},{state.mouse_position[1]}" if state.mouse_position else "-"
        table.add_row(str(frame), mouse, _codes(state.held_buttons), _codes(state.held_keys))
    console.print(table)
    return 0


def cmd_replay(args: argparse.Namespace, console: Console, cache: FileCache) -> int:
    playback = Playback.load(args.file, cache=cache, require_type=args.typed)
    compiled = playback.compile()
    scheduler = PlaybackScheduler(LoggingInputSink(), period_ms=args.period)

    if args.quick:
        result = scheduler.run_quick(compiled)
    else:
        run = scheduler.start(compiled)
        try:
            result = run.wait()
        except KeyboardInterrupt:
            run.cancel()
            result = run.result

    table = Table(show_header=False, box=None, padding=(0, 1))
    for key, value in (result.to_dict() if result else {}).items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)
    return 1 if result is None or result.failed else 0


COMMANDS = {
    "count": cmd_count,
    "check": cmd_check,
    "annotate": cmd_annotate,
    "preview": cmd_preview,
    "replay": cmd_replay,
}


def positive_int(text: str) -> int:
    value = int(text)
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    settings = CONFIG.settings
    parser = argparse.ArgumentParser(prog="tasreplay", description="Parse, inspect and replay TAS files")
    parser.add_argument("--x-offset", type=int, default=None, help="Mouse X offset (default: from config)")
    parser.add_argument("--y-offset", type=int, default=None, help="Mouse Y offset (default: from config)")
    parser.add_argument(
        "--typed", action="store_true", help="Require a !TYPE: declaration on the root file"
    )
    parser.add_argument(
        "--log-level", default=settings.log_level, help=f"Log level (default: {settings.log_level})"
    )
    parser.add_argument("--json-logs", action="store_true", default=settings.log_json, help="Emit JSON logs")

    sub = parser.add_subparsers(dest="command", required=True)

    count = sub.add_parser("count", help="Print frame counts")
    count.add_argument("files", nargs="+")

    check = sub.add_parser("check", help="Parse and compile a file")
    check.add_argument("file")

    annotate = sub.add_parser("annotate", help="Show the frame number of every line")
    annotate.add_argument("file")

    preview = sub.add_parser("preview", help="Show held inputs per frame")
    preview.add_argument("file")
    preview.add_argument("--limit", type=int, default=0, help="Only show the first N frames")

    replay = sub.add_parser("replay", help="Dry-run playback into a logging sink")
    replay.add_argument("file")
    mode = replay.add_mutually_exclusive_group()
    mode.add_argument(
        "--period", type=positive_int, default=settings.frame_period_ms, help="Frame period in ms"
    )
    mode.add_argument("--quick", action="store_true", help="Replay without delays")

    return parser


def main(argv: list[str] | None = None, console: Console | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = console or Console(highlight=False)

    try:
        configure_logging(args.log_level, args.json_logs)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 2

    if args.x_offset is not None or args.y_offset is not None:
        current = CONFIG.mouse_offset
        CONFIG.set_mouse_offset(
            args.x_offset if args.x_offset is not None else current.x,
            args.y_offset if args.y_offset is not None else current.y,
        )

    try:
        return COMMANDS[args.command](args, console, FileCache())
    except TasReplayError as e:
        logger.debug("Command failed", command=args.command, error_code=e.error_code)
        console.print(f"[red]{e.error_code}[/red]: {escape(str(e))}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
