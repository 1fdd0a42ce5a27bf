"""
Playback Scheduler

Drives an instruction sequence into an input sink, either as fast as
possible or one instruction per fixed period.

Timing model for fixed-interval runs:
- tick k is due at start + k * period (fixed rate, first tick immediately)
- a late tick is applied as soon as possible; instructions are never skipped
- drift (actual minus due time) is measured per tick for diagnostics only
- cancellation is checked at every tick boundary, never mid-instruction

Time comes from an injectable Clock so tests can run timed playback without
real waits.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from .config import CONFIG, ConfigManager
from .input_sink import InputSink
from .instruction_fields import RawInstruction
from .instructions import CompiledInstruction, InstructionCompiler
from .playback_exceptions import PlaybackInProgressError

logger = structlog.get_logger(__name__)


class Clock(Protocol):
    """Time source for the scheduling loop."""

    def now(self) -> float:
        """Monotonic time in seconds."""
        ...

    def wait(self, cancel_event: threading.Event, timeout: float) -> bool:
        """
        Wait up to timeout seconds or until cancel_event is set.

        Returns:
            True if cancellation was requested
        """
        ...


class SystemClock:
    """Clock backed by time.monotonic and Event.wait."""

    def now(self) -> float:
        return time.monotonic()

    def wait(self, cancel_event: threading.Event, timeout: float) -> bool:
        if timeout <= 0:
            return cancel_event.is_set()
        return cancel_event.wait(timeout)


class PlaybackCursor:
    """
    Position in a sequence plus the previous raw instruction.

    Raw instructions are compiled against their predecessor on the fly. A
    step always consumes its instruction. One that fails to compile does not
    become the predecessor of the next one; once compiled it does, even if
    the sink fails partway through applying it.
    """

    def __init__(
        self,
        instructions: Iterable[CompiledInstruction | RawInstruction],
        compiler: InstructionCompiler | None = None,
    ):
        self._instructions = tuple(instructions)
        self._compiler = compiler
        self._index = 0
        self._previous: RawInstruction | None = None

    @property
    def position(self) -> int:
        return self._index

    def __len__(self) -> int:
        return len(self._instructions)

    def has_next(self) -> bool:
        return self._index < len(self._instructions)

    def step(self, sink: InputSink) -> None:
        """Apply the next instruction to sink."""
        instruction = self._instructions[self._index]
        self._index += 1
        if isinstance(instruction, RawInstruction):
            if self._compiler is None:
                self._compiler = InstructionCompiler()
            compiled = self._compiler.compile(instruction, self._previous)
            # the sink may already hold part of this instruction
            self._previous = instruction
            compiled.apply(sink)
        else:
            instruction.apply(sink)


@dataclass
class PlaybackResult:
    """Statistics of one playback run."""

    mode: str
    total: int
    ticks: int = 0
    applied: int = 0
    failed: int = 0
    cancelled: bool = False
    elapsed_seconds: float = 0.0
    max_drift_ms: float = 0.0
    mean_interval_ms: float | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return not self.cancelled and self.ticks == self.total

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "total": self.total,
            "ticks": self.ticks,
            "applied": self.applied,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "elapsed_seconds": round(self.elapsed_seconds, 6),
            "max_drift_ms": round(self.max_drift_ms, 3),
            "mean_interval_ms": (
                round(self.mean_interval_ms, 3) if self.mean_interval_ms is not None else None
            ),
        }


class PlaybackRun:
    """Handle on a fixed-interval run executing on its worker thread."""

    def __init__(self, cancel_event: threading.Event):
        self._cancel_event = cancel_event
        self._thread: threading.Thread | None = None
        self._done = threading.Event()
        self._result: PlaybackResult | None = None
        self._error: BaseException | None = None

    @property
    def is_running(self) -> bool:
        return not self._done.is_set()

    @property
    def result(self) -> PlaybackResult | None:
        """Statistics once the run has ended, else None."""
        return self._result

    def cancel(self, timeout: float = 2.0) -> None:
        """
        Request cancellation and wait for the worker to stop.

        The current instruction finishes; no further tick fires. Called from
        the worker itself (for example from inside a sink), it only signals.
        """
        self._cancel_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Playback worker did not stop within timeout", timeout=timeout)

    def wait(self, timeout: float | None = None) -> PlaybackResult | None:
        """
        Block until the run ends.

        Returns:
            The result, or None if the timeout expired first

        Raises:
            Exception: Whatever stopped the worker outside of a tick
        """
        if not self._done.wait(timeout):
            return None
        if self._error is not None:
            raise self._error
        return self._result

    def _finish(self, result: PlaybackResult | None, error: BaseException | None = None) -> None:
        self._result = result
        self._error = error
        self._done.set()


class PlaybackScheduler:
    """
    Replays instruction sequences into one exclusively owned input sink.

    Only one run at a time may own the sink; starting another while a run is
    active raises PlaybackInProgressError.

    Example:
        scheduler = PlaybackScheduler(sink, period_ms=16)
        run = scheduler.start(playback.compile())
        ...
        run.cancel()
    """

    def __init__(
        self,
        sink: InputSink,
        period_ms: float | None = None,
        clock: Clock | None = None,
        compiler: InstructionCompiler | None = None,
        config: ConfigManager | None = None,
    ):
        config = config or CONFIG
        if period_ms is None:
            period_ms = config.settings.frame_period_ms
        if period_ms <= 0:
            raise ValueError(f"period_ms must be positive, got {period_ms}")
        self.sink = sink
        self.period_ms = period_ms
        self.clock = clock or SystemClock()
        self.compiler = compiler
        self._sink_lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._sink_lock.locked()

    def _acquire_sink(self) -> None:
        if not self._sink_lock.acquire(blocking=False):
            raise PlaybackInProgressError()

    def run_quick(
        self,
        instructions: Iterable[CompiledInstruction | RawInstruction],
        cancel_event: threading.Event | None = None,
    ) -> PlaybackResult:
        """
        Apply every instruction in order without delay, on the caller thread.

        Errors propagate and end the run. A set cancel_event stops the run
        before the next instruction.
        """
        self._acquire_sink()
        try:
            cursor = PlaybackCursor(instructions, self.compiler)
            cancel_event = cancel_event or threading.Event()
            result = PlaybackResult("quick", len(cursor))
            started = self.clock.now()
            logger.info("Quick playback started", instructions=len(cursor))

            while cursor.has_next():
                if cancel_event.is_set():
                    result.cancelled = True
                    break
                result.ticks += 1
                cursor.step(self.sink)
                result.applied += 1

            result.elapsed_seconds = self.clock.now() - started
            logger.info("Quick playback finished", **result.to_dict())
            return result
        finally:
            self._sink_lock.release()

    def run_timed(
        self,
        instructions: Iterable[CompiledInstruction | RawInstruction],
        cancel_event: threading.Event | None = None,
    ) -> PlaybackResult:
        """
        Fixed-interval playback on the caller thread.

        start() runs the same loop on a worker thread; this blocking variant
        is for callers that already own a thread.
        """
        self._acquire_sink()
        try:
            return self._timed_loop(
                PlaybackCursor(instructions, self.compiler), cancel_event or threading.Event()
            )
        finally:
            self._sink_lock.release()

    def start(self, instructions: Iterable[CompiledInstruction | RawInstruction]) -> PlaybackRun:
        """
        Start fixed-interval playback on a dedicated worker thread.

        Returns immediately with a PlaybackRun handle.

        Raises:
            PlaybackInProgressError: If another run owns the sink
        """
        self._acquire_sink()
        try:
            cursor = PlaybackCursor(instructions, self.compiler)
            cancel_event = threading.Event()
            run = PlaybackRun(cancel_event)
            thread = threading.Thread(
                target=self._worker, args=(run, cursor, cancel_event), name="tas-playback", daemon=True
            )
            run._thread = thread
            thread.start()
        except Exception:
            self._sink_lock.release()
            raise
        return run

    def _worker(
        self, run: PlaybackRun, cursor: PlaybackCursor, cancel_event: threading.Event
    ) -> None:
        try:
            result = self._timed_loop(cursor, cancel_event)
        except Exception as e:
            logger.exception("Playback worker stopped unexpectedly")
            self._sink_lock.release()
            run._finish(None, e)
            return
        self._sink_lock.release()
        run._finish(result)

    def _timed_loop(self, cursor: PlaybackCursor, cancel_event: threading.Event) -> PlaybackResult:
        period = self.period_ms / 1000.0
        result = PlaybackResult("timed", len(cursor))
        logger.info("Timed playback started", instructions=len(cursor), period_ms=self.period_ms)

        started = self.clock.now()
        last_tick: float | None = None
        interval_total = 0.0

        while cursor.has_next():
            due = started + result.ticks * period
            if self.clock.wait(cancel_event, due - self.clock.now()):
                result.cancelled = True
                break

            tick_time = self.clock.now()
            drift_ms = max(0.0, (tick_time - due) * 1000.0)
            result.max_drift_ms = max(result.max_drift_ms, drift_ms)
            if drift_ms > self.period_ms:
                logger.warning("Late tick", tick=result.ticks, drift_ms=round(drift_ms, 3))
            if last_tick is not None:
                interval_total += tick_time - last_tick
            last_tick = tick_time

            tick = result.ticks
            result.ticks += 1
            try:
                cursor.step(self.sink)
                result.applied += 1
            except Exception as e:
                result.failed += 1
                result.errors.append(f"tick {tick}: {e}")
                logger.error("Tick failed", tick=tick, error=str(e), exc_info=True)

        if result.ticks > 1:
            result.mean_interval_ms = interval_total / (result.ticks - 1) * 1000.0
        result.elapsed_seconds = self.clock.now() - started
        logger.info("Timed playback finished", **result.to_dict())
        return result
