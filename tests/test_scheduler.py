"""
Tests for PlaybackScheduler.

Covers:
- Quick mode ordering, cancellation and error propagation
- Fixed-rate timing with an injected clock (waits, drift, no skipping)
- Failed ticks in timed mode
- Worker-thread runs, cancellation and exclusive sink ownership
"""

import threading

import pytest

from tasreplay.config import ConfigManager, MouseOffset, PlaybackSettings
from tasreplay.input_sink import InputStateTracker, RecordingInputSink
from tasreplay.instruction_fields import RawInstruction
from tasreplay.instructions import CompiledInstruction, InstructionCompiler
from tasreplay.playback_exceptions import (
    IncompatibleInstructionError,
    InvalidValueError,
    PlaybackInProgressError,
)
from tasreplay.scheduler import PlaybackCursor, PlaybackResult, PlaybackScheduler, SystemClock


class FakeClock:
    """Clock that only moves when the scheduler waits or a test advances it."""

    def __init__(self, start: float = 100.0):
        self.time = start
        self.waits: list[float] = []

    def now(self) -> float:
        return self.time

    def wait(self, cancel_event: threading.Event, timeout: float) -> bool:
        self.waits.append(timeout)
        if cancel_event.is_set():
            return True
        self.time += max(0.0, timeout)
        return False


class SlowSink(RecordingInputSink):
    """Each key press takes `cost` seconds of fake time."""

    def __init__(self, clock: FakeClock, cost: float):
        super().__init__()
        self.clock = clock
        self.cost = cost

    def press_key(self, code: int) -> None:
        super().press_key(code)
        self.clock.time += self.cost


class FlakyKeyboard(InputStateTracker):
    """Tracks held state; pressing `failing_code` raises the first time."""

    def __init__(self, failing_code: int):
        super().__init__()
        self.failing_code = failing_code
        self.failures = 0

    def press_key(self, code: int) -> None:
        if code == self.failing_code and self.failures == 0:
            self.failures += 1
            raise RuntimeError(f"device rejected key {code}")
        super().press_key(code)


def press(code: int) -> CompiledInstruction:
    return CompiledInstruction(keys_to_press=frozenset({code}))


def raw(**values: str) -> RawInstruction:
    return RawInstruction.from_mapping(values)


@pytest.fixture
def zero_offset_compiler() -> InstructionCompiler:
    return InstructionCompiler(offset=MouseOffset(0, 0))


@pytest.mark.fast
@pytest.mark.unit
class TestQuickMode:
    """Test as-fast-as-possible playback."""

    def test_applies_in_order(self) -> None:
        sink = RecordingInputSink()
        result = PlaybackScheduler(sink, clock=FakeClock()).run_quick([press(1), press(2), press(3)])

        assert sink.events == [("press_key", 1), ("press_key", 2), ("press_key", 3)]
        assert result.mode == "quick"
        assert result.applied == 3
        assert result.completed

    def test_compiles_raw_instructions(self, zero_offset_compiler) -> None:
        """Raw instructions are delta-compiled against their predecessor."""
        sink = RecordingInputSink()
        scheduler = PlaybackScheduler(sink, clock=FakeClock(), compiler=zero_offset_compiler)

        scheduler.run_quick([raw(KA="A"), raw(KA="A"), raw(KA="A"), raw(KA=".")])

        assert sink.events == [("press_key", ord("A")), ("release_key", ord("A"))]

    def test_error_propagates_and_releases_sink(self, zero_offset_compiler) -> None:
        sink = RecordingInputSink()
        scheduler = PlaybackScheduler(sink, clock=FakeClock(), compiler=zero_offset_compiler)

        with pytest.raises(InvalidValueError):
            scheduler.run_quick([raw(MX="1", MY="1"), raw(MX="x", MY="1")])

        assert sink.events == [("move", 1, 1)]
        assert not scheduler.busy

    def test_preset_cancel_applies_nothing(self) -> None:
        sink = RecordingInputSink()
        cancel = threading.Event()
        cancel.set()

        result = PlaybackScheduler(sink, clock=FakeClock()).run_quick([press(1)], cancel)

        assert sink.events == []
        assert result.cancelled
        assert not result.completed

    def test_empty_sequence(self) -> None:
        result = PlaybackScheduler(RecordingInputSink(), clock=FakeClock()).run_quick([])

        assert result.total == 0
        assert result.completed


@pytest.mark.fast
@pytest.mark.unit
class TestTimedMode:
    """Test fixed-interval playback against a fake clock."""

    def test_one_instruction_per_period(self) -> None:
        """First tick fires immediately, then one per period."""
        clock = FakeClock()
        sink = RecordingInputSink()
        scheduler = PlaybackScheduler(sink, period_ms=10, clock=clock)

        result = scheduler.run_timed([press(n) for n in range(4)])

        assert [event[1] for event in sink.events] == [0, 1, 2, 3]
        assert clock.waits == pytest.approx([0.0, 0.01, 0.01, 0.01])
        assert result.mode == "timed"
        assert result.ticks == 4
        assert result.mean_interval_ms == pytest.approx(10.0)
        assert result.max_drift_ms == pytest.approx(0.0, abs=1e-6)
        assert result.elapsed_seconds == pytest.approx(0.03)

    def test_slow_sink_drifts_but_never_skips(self) -> None:
        """Late ticks fire immediately and drift is measured."""
        clock = FakeClock()
        sink = SlowSink(clock, cost=0.05)
        scheduler = PlaybackScheduler(sink, period_ms=16, clock=clock)

        result = scheduler.run_timed([press(n) for n in range(3)])

        assert [event[1] for event in sink.events] == [0, 1, 2]
        assert result.applied == 3
        assert result.max_drift_ms == pytest.approx(68.0)
        assert result.mean_interval_ms == pytest.approx(50.0)

    def test_failed_tick_does_not_stop_run(self, zero_offset_compiler) -> None:
        """A failing tick is recorded; the next tick compiles against the last good one."""
        sink = RecordingInputSink()
        scheduler = PlaybackScheduler(
            sink, period_ms=10, clock=FakeClock(), compiler=zero_offset_compiler
        )
        sequence = [
            raw(MX="1", MY="1", KA="A"),
            raw(MX="x", MY="1", KA="."),
            raw(MX="2", MY="2", KA="."),
        ]

        result = scheduler.run_timed(sequence)

        assert sink.events == [
            ("move", 1, 1),
            ("press_key", ord("A")),
            ("move", 2, 2),
            ("release_key", ord("A")),
        ]
        assert result.ticks == 3
        assert result.applied == 2
        assert result.failed == 1
        assert result.errors[0].startswith("tick 1: ")
        assert not scheduler.busy

    def test_sink_failure_mid_tick_releases_on_next_line(self, zero_offset_compiler) -> None:
        """Keys pressed before the sink failed are released by the following line."""
        sink = FlakyKeyboard(failing_code=ord("B"))
        scheduler = PlaybackScheduler(
            sink, period_ms=10, clock=FakeClock(), compiler=zero_offset_compiler
        )
        sequence = [raw(KA=".", KB="."), raw(KA="A", KB="B"), raw(KA=".", KB=".")]

        result = scheduler.run_timed(sequence)

        assert sink.failures == 1
        assert result.ticks == 3
        assert result.applied == 2
        assert result.failed == 1
        assert result.errors[0].startswith("tick 1: device rejected key")
        assert sink.held_keys == set()

    def test_cancel_at_tick_boundary(self) -> None:
        """Cancellation lets the current instruction finish, then stops."""
        cancel = threading.Event()

        class CancellingSink(RecordingInputSink):
            def press_key(self, code: int) -> None:
                super().press_key(code)
                if code == 1:
                    cancel.set()

        sink = CancellingSink()
        result = PlaybackScheduler(sink, period_ms=10, clock=FakeClock()).run_timed(
            [press(n) for n in range(5)], cancel
        )

        assert sink.events == [("press_key", 0), ("press_key", 1)]
        assert result.cancelled
        assert result.ticks == 2

    def test_to_dict(self) -> None:
        result = PlaybackResult("timed", 2, ticks=2, applied=2, mean_interval_ms=16.00049)

        assert result.to_dict() == {
            "mode": "timed",
            "total": 2,
            "ticks": 2,
            "applied": 2,
            "failed": 0,
            "cancelled": False,
            "elapsed_seconds": 0.0,
            "max_drift_ms": 0.0,
            "mean_interval_ms": 16.0,
        }


@pytest.mark.fast
@pytest.mark.unit
class TestCursor:
    """Test the cursor's predecessor tracking."""

    def test_failed_step_is_not_predecessor(self, zero_offset_compiler) -> None:
        sink = RecordingInputSink()
        cursor = PlaybackCursor([raw(KA="A"), raw(KA="bad", KB="x"), raw(KA=".")], zero_offset_compiler)

        cursor.step(sink)
        with pytest.raises(IncompatibleInstructionError):
            cursor.step(sink)
        cursor.step(sink)

        assert cursor.position == 3
        assert not cursor.has_next()
        assert sink.events == [("press_key", ord("A")), ("release_key", ord("A"))]

    def test_compiled_step_is_predecessor_when_sink_fails(self, zero_offset_compiler) -> None:
        sink = FlakyKeyboard(failing_code=ord("B"))
        cursor = PlaybackCursor([raw(KA="A", KB="B"), raw(KA=".", KB=".")], zero_offset_compiler)

        with pytest.raises(RuntimeError):
            cursor.step(sink)
        assert sink.held_keys == {ord("A")}

        cursor.step(sink)

        assert cursor.position == 2
        assert sink.held_keys == set()


@pytest.mark.fast
@pytest.mark.unit
class TestConfiguration:
    """Test scheduler construction."""

    @pytest.mark.parametrize("period", [0, -5])
    def test_rejects_non_positive_period(self, period) -> None:
        with pytest.raises(ValueError):
            PlaybackScheduler(RecordingInputSink(), period_ms=period)

    def test_period_defaults_to_settings(self) -> None:
        config = ConfigManager(PlaybackSettings(frame_period_ms=25))

        assert PlaybackScheduler(RecordingInputSink(), config=config).period_ms == 25

    def test_system_clock_is_default(self) -> None:
        assert isinstance(PlaybackScheduler(RecordingInputSink(), period_ms=5).clock, SystemClock)


@pytest.mark.medium
@pytest.mark.unit
class TestWorkerThread:
    """Test runs on the dedicated worker thread."""

    def test_start_runs_on_worker(self) -> None:
        threads = []

        class ThreadRecordingSink(RecordingInputSink):
            def press_key(self, code: int) -> None:
                super().press_key(code)
                threads.append(threading.current_thread().name)

        sink = ThreadRecordingSink()
        scheduler = PlaybackScheduler(sink, period_ms=1)

        run = scheduler.start([press(n) for n in range(5)])
        result = run.wait(timeout=5)

        assert result is not None
        assert result.ticks == 5
        assert result.completed
        assert set(threads) == {"tas-playback"}
        assert not run.is_running
        assert not scheduler.busy

    def test_sink_is_exclusive(self) -> None:
        """A second run is refused while the first owns the sink."""
        entered = threading.Event()
        release = threading.Event()

        class BlockingSink(RecordingInputSink):
            def press_key(self, code: int) -> None:
                super().press_key(code)
                entered.set()
                release.wait(5)

        scheduler = PlaybackScheduler(BlockingSink(), period_ms=1)
        run = scheduler.start([press(1)])
        assert entered.wait(5)

        with pytest.raises(PlaybackInProgressError) as exc_info:
            scheduler.run_quick([press(2)])
        with pytest.raises(PlaybackInProgressError):
            scheduler.start([press(2)])
        assert exc_info.value.error_code == "PLAYBACK_IN_PROGRESS"
        assert scheduler.busy

        release.set()
        assert run.wait(timeout=5).completed
        assert not scheduler.busy

    def test_cancel_from_another_thread(self) -> None:
        """cancel() stops a long-period run without waiting for the next tick."""
        first_tick = threading.Event()

        class SignallingSink(RecordingInputSink):
            def press_key(self, code: int) -> None:
                super().press_key(code)
                first_tick.set()

        sink = SignallingSink()
        scheduler = PlaybackScheduler(sink, period_ms=1000)
        run = scheduler.start([press(n) for n in range(5)])
        assert first_tick.wait(5)

        run.cancel(timeout=5)

        assert not run.is_running
        assert run.result.cancelled
        assert run.result.ticks == 1
        assert sink.events == [("press_key", 0)]

    def test_worker_failure_reaches_wait(self) -> None:
        """Errors outside a tick end the run and are re-raised by wait()."""

        class BrokenClock(FakeClock):
            def wait(self, cancel_event, timeout):
                raise RuntimeError("clock failure")

        scheduler = PlaybackScheduler(RecordingInputSink(), period_ms=1, clock=BrokenClock())
        run = scheduler.start([press(1)])

        with pytest.raises(RuntimeError, match="clock failure"):
            run.wait(timeout=5)
        assert run.result is None
        assert not scheduler.busy
