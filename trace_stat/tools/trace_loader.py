"""Loading of timer descriptor tables and span logs exported by the profiler."""

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

import pandas as pd

from ..decorators import instrumented_step
from ..exceptions import InputFormatError, InputNotFoundError
from ..schema import Span, TimerDescriptor
from .registry import TimerRegistry

logger = logging.getLogger(__name__)

TIMER_COLUMNS = {
    "Id": "int64",
    "Type": "string",
    "Name": "string",
    "File": "string",
    "Line": "int32",
}
SPAN_COLUMNS = {
    "ThreadId": "int64",
    "TimerId": "int64",
    "StartTime": "float64",
    "EndTime": "float64",
    "Depth": "int32",
}


def _read_table(path: str | Path, columns: dict[str, str]) -> pd.DataFrame:
    if not Path(path).is_file():
        raise InputNotFoundError(str(path))
    try:
        # "inf" in the time columns marks a span that was still open at capture end
        return pd.read_csv(path, usecols=list(columns), dtype=columns)
    except (ValueError, KeyError) as e:
        raise InputFormatError(f"Failed to parse {path}: {e}") from e


@instrumented_step("Loading timers")
def load_timers(path: str | Path) -> list[TimerDescriptor | None]:
    """
    Loads the timer descriptor table into a dense array indexed by local id.

    Args:
        path: CSV file with Id, Type, Name, File and Line columns.

    Returns:
        A list sized max(Id) + 1; ids missing from the table are None.
    """
    frame = _read_table(path, TIMER_COLUMNS).fillna({"Type": "", "Name": "", "File": ""})
    if frame.empty:
        return []

    timers: list[TimerDescriptor | None] = [None] * (int(frame["Id"].max()) + 1)
    for row in frame.itertuples(index=False):
        timers[int(row.Id)] = TimerDescriptor(
            id=int(row.Id),
            type=str(row.Type),
            name=str(row.Name),
            file=str(row.File),
            line=int(row.Line),
        )
    logger.debug(f"Loaded {len(frame)} timer descriptors")
    return timers


@instrumented_step("Loading timing events")
def load_spans(path: str | Path, thread_id: int) -> list[Span]:
    """
    Loads the span log, keeping only the spans of one thread in file order.

    File order is capture order, which the tree builder relies on.

    Args:
        path: CSV file with ThreadId, TimerId, StartTime, EndTime and Depth columns.
        thread_id: The thread whose spans are kept.
    """
    frame = _read_table(path, SPAN_COLUMNS)
    if (frame["Depth"] < 0).any():
        raise InputFormatError(f"Negative Depth in {path}")
    frame = frame[frame["ThreadId"] == thread_id]

    spans = [
        Span.model_construct(
            thread_id=int(row.ThreadId),
            timer_id=int(row.TimerId),
            start_time=float(row.StartTime),
            end_time=float(row.EndTime),
            depth=int(row.Depth),
        )
        for row in frame.itertuples(index=False)
    ]
    logger.debug(f"Loaded {len(spans)} spans for thread {thread_id}")
    return spans


def generate_id_mapping(
    timers: list[TimerDescriptor | None], registry: TimerRegistry
) -> list[int | None]:
    """Maps every local timer id to its global registry id."""
    return [registry.get_id(t.name) if t is not None else None for t in timers]


def translate_spans(
    spans: Iterable[Span], id_mapping: list[int | None]
) -> Iterator[Span]:
    """
    Rewrites local timer ids to global ids.

    Spans whose local id has no descriptor get timer_id -1, which the tree
    builder treats as out of range.
    """
    for span in spans:
        global_id = None
        if 0 <= span.timer_id < len(id_mapping):
            global_id = id_mapping[span.timer_id]
        yield span.model_copy(update={"timer_id": -1 if global_id is None else global_id})


def find_timer_id(timers: list[TimerDescriptor | None], name: str) -> int | None:
    """Returns the local id of the first timer with the given name."""
    for timer in timers:
        if timer is not None and timer.name == name:
            return timer.id
    return None
