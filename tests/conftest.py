"""Shared test fixtures for Trace Stat tests."""

from collections.abc import Callable

import pytest

from trace_stat.schema import Span
from trace_stat.tools.frames_tree import FramesTree
from trace_stat.tools.statistics import StatisticsSnapshot

# Dyadic tick so that span durations and their sums are exact binary floats
TICK = 1.0 / 1024
TICK_MS = TICK * 1000

FRAME_ID = 0


# ============================================================================
# Helper Functions
# ============================================================================


def span(timer_id: int, depth: int, start: float, end: float, thread_id: int = 2) -> Span:
    """Build a span; times are in seconds."""
    return Span(
        thread_id=thread_id, timer_id=timer_id, start_time=start, end_time=end, depth=depth
    )


def layout_frame(
    start: float,
    groups: list[tuple[int, int, int]],
    frame_timer_id: int = FRAME_ID,
    nested: dict[int, list[tuple[int, int, int]]] | None = None,
) -> list[Span]:
    """
    Lay out one frame with its children back to back.

    Args:
        start: Frame start time in seconds.
        groups: (timer_id, num_calls, ticks_per_call) for the root's children.
        frame_timer_id: Timer id of the frame root.
        nested: Optional children of a child timer, same tuple format, placed
            at the start of every call of that timer.

    Returns:
        Spans in capture order. The root has one tick of exclusive time.
    """
    nested = nested or {}
    children: list[Span] = []
    t = start
    for timer_id, num_calls, ticks in groups:
        for _ in range(num_calls):
            children.append(span(timer_id, 1, t, t + ticks * TICK))
            inner = t
            for inner_id, inner_calls, inner_ticks in nested.get(timer_id, []):
                for _ in range(inner_calls):
                    children.append(span(inner_id, 2, inner, inner + inner_ticks * TICK))
                    inner += inner_ticks * TICK
            t += ticks * TICK
    root = span(frame_timer_id, 0, start, t + TICK)
    return [root] + children


def build_history(frames: list[list[Span]], num_timers: int = 16) -> StatisticsSnapshot:
    spans = [s for frame in frames for s in frame]
    snapshot = StatisticsSnapshot()
    snapshot.derive_from_frames(FramesTree.build(spans, FRAME_ID, num_timers=num_timers))
    return snapshot


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def make_span() -> Callable[..., Span]:
    return span


@pytest.fixture
def make_frame() -> Callable[..., list[Span]]:
    return layout_frame


@pytest.fixture
def make_history() -> Callable[..., StatisticsSnapshot]:
    return build_history


@pytest.fixture
def simple_frame_spans() -> list[Span]:
    """Frame of 10s with two children of 3s and 4s."""
    return [
        span(FRAME_ID, 0, 0.0, 10.0),
        span(1, 1, 1.0, 4.0),
        span(2, 1, 1.0, 5.0),
    ]


@pytest.fixture
def timers_csv(tmp_path):
    path = tmp_path / "timers.csv"
    path.write_text(
        "Id,Type,Name,File,Line\n"
        "0,CPU,FEngineLoop::Tick,LaunchEngineLoop.cpp,5000\n"
        "1,CPU,UWorld::Tick,LevelTick.cpp,1400\n"
        "2,CPU,FTickTaskManager::RunTickGroup,TickTaskManager.cpp,800\n"
        "4,CPU,Slate::Tick,SlateApplication.cpp,1500\n"
    )
    return path


@pytest.fixture
def events_csv(tmp_path):
    """Three frames on thread 2 plus noise on thread 1 and a truncated span."""
    rows = ["ThreadId,TimerId,StartTime,EndTime,Depth"]
    for i in range(3):
        base = float(i)
        rows += [
            f"2,0,{base},{base + 0.5},0",
            f"2,1,{base + 0.0625},{base + 0.25},1",
            f"2,2,{base + 0.125},{base + 0.1875},2",
            f"1,4,{base},{base + 0.75},0",
            f"2,4,{base + 0.25},{base + 0.375},1",
        ]
    rows.append("2,0,3.0,inf,0")
    rows.append("2,1,3.0625,inf,1")
    path = tmp_path / "events.csv"
    path.write_text("\n".join(rows) + "\n")
    return path
