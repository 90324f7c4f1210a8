"""Text reports for analysis and comparison results."""

import logging
import sys
from typing import TextIO

from ..schema import MetricDiff, StatComparison
from .frame_analyzer import ExceptionContainer
from .registry import TimerRegistry
from .statistics import rank_comparisons

logger = logging.getLogger(__name__)


class ResultStream:
    """
    Sends report entries to the console and/or a results file.

    The first `show` entries are printed; with `dump` every entry is also
    written to the results file. add() returns False once neither sink wants
    more entries, so callers can stop early.
    """

    def __init__(
        self,
        dump: bool,
        show: int,
        results_path: str = "results.txt",
        console: TextIO | None = None,
    ):
        self._show = show
        self._console = console or sys.stdout
        self._writer: TextIO | None = None
        if dump:
            self._writer = open(results_path, "w", encoding="utf-8")
            logger.info(f"Dumping results to {results_path}")

    def __enter__(self) -> "ResultStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    def add(self, message: str) -> bool:
        if self._show > 0:
            print("\n" + message, file=self._console)
            self._show -= 1

        if self._writer is not None:
            self._writer.write("\n" + message + "\n")

        return self._show > 0 or self._writer is not None


def _signed(value: float) -> str:
    return f"+{value}" if value > 0 else str(value)


def format_metric(metric: MetricDiff) -> str:
    lines = []
    for label, attr in (
        ("Mean", "mean"),
        ("Variance", "variance"),
        ("Standard deviation", "standard_deviation"),
        ("Median", "median"),
    ):
        delta = getattr(metric.diff, attr)
        lines.append(
            f"{label} ({_signed(delta.relative)}): {getattr(metric.lhs, attr)} -> "
            f"{getattr(metric.rhs, attr)} ({_signed(delta.absolute)})\n"
        )
    return "".join(lines)


def format_comparison(comparison: StatComparison, registry: TimerRegistry) -> str:
    name = registry.get_name(comparison.timer_id)
    if comparison.parent_id is not None:
        name = f"{name}({registry.get_name(comparison.parent_id)})"
    return "".join(f"{name}, {m.metric}:\n{format_metric(m)}" for m in comparison.metrics)


def report_exceptions(
    exceptions: ExceptionContainer, registry: TimerRegistry, results: ResultStream
) -> int:
    """Writes anomalies by descending cumulative deviation; returns the number written."""
    written = 0
    for key, record in exceptions.ranked():
        written += 1
        message = (
            f"{registry.get_name(key.timer_id)}({registry.get_name(key.parent_id)})\n"
            f"{key.kind.value}: {len(record.events)} events, Deviation {record.deviation}"
        )
        if not results.add(message):
            break
    return written


def report_comparisons(
    comparisons: list[StatComparison], registry: TimerRegistry, results: ResultStream
) -> int:
    """Writes comparison records by descending determinant; returns the number written."""
    written = 0
    for comparison in rank_comparisons(comparisons):
        written += 1
        if not results.add(format_comparison(comparison, registry)):
            break
    return written
