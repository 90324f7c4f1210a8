"""Historical timing baselines per timer and per call-site.

A snapshot keeps two views of every timer, both indexed by its global id:

- common: inclusive and exclusive durations over every occurrence of the timer
- branch: the same durations plus the number of calls per parent occurrence,
  keyed by the id of the calling (parent) timer

Raw samples are retained so that a snapshot loaded from disk can keep
accumulating captures and still derive exact medians.
"""

import logging
import math
from collections import Counter
from collections.abc import Iterator

import numpy as np
from pydantic import BaseModel, Field, PrivateAttr

from ..decorators import instrumented_step
from ..exceptions import StaleStatisticError
from ..schema import BranchStatsView, Delta, MetricDiff, StatComparison, StatDiff, StatsView, StatView
from .frames_tree import FramesTree

logger = logging.getLogger(__name__)

MS_PER_SECOND = 1000.0

INCL_DURATION = "Including duration"
EXCL_DURATION = "Excluding duration"
NUM_CALLS = "Number of calls"


def median_of(values: list[float] | np.ndarray) -> float:
    """Median of a sequence; the two middle elements are averaged for even counts."""
    if len(values) == 0:
        return 0.0
    return float(np.median(values))


class Stat(BaseModel):
    """Samples of one scalar metric and the summary derived from them."""

    mean: float = 0.0
    variance: float = 0.0
    standard_deviation: float = 0.0
    median: float = 0.0
    samples: list[float] = Field(default_factory=list)

    _pending: bool = PrivateAttr(default=False)

    def add(self, value: float) -> None:
        self.samples.append(float(value))
        self._pending = True

    def derive(self) -> None:
        """Recomputes mean, population variance, standard deviation and median."""
        self._pending = False
        if not self.samples:
            return

        self.samples.sort()
        data = np.asarray(self.samples, dtype=np.float64)

        self.mean = float(data.mean())
        self.variance = float(np.mean((data - self.mean) ** 2))
        self.standard_deviation = math.sqrt(self.variance)
        self.median = median_of(data)

    @property
    def sample_count(self) -> int:
        return len(self.samples)

    @property
    def pending(self) -> bool:
        return self._pending

    def view(self) -> StatView:
        if self._pending:
            raise StaleStatisticError("Statistic has samples that were not derived yet")
        return StatView(
            mean=self.mean,
            variance=self.variance,
            standard_deviation=self.standard_deviation,
            median=self.median,
            sample_count=self.sample_count,
        )


class Stats(BaseModel):
    """Duration statistics of one timer, in milliseconds."""

    incl_duration: Stat = Field(default_factory=Stat)
    excl_duration: Stat = Field(default_factory=Stat)

    def add(self, incl_duration: float, excl_duration: float) -> None:
        self.incl_duration.add(incl_duration)
        self.excl_duration.add(excl_duration)

    def derive(self) -> None:
        self.incl_duration.derive()
        self.excl_duration.derive()

    def view(self) -> StatsView:
        return StatsView(
            incl_duration=self.incl_duration.view(),
            excl_duration=self.excl_duration.view(),
        )


class BranchStats(BaseModel):
    """Statistics of one timer when called from one specific parent timer."""

    common_stats: Stats = Field(default_factory=Stats)
    num_calls: Stat = Field(default_factory=Stat)

    def derive(self) -> None:
        self.common_stats.derive()
        self.num_calls.derive()

    def view(self) -> BranchStatsView:
        return BranchStatsView(
            common_stats=self.common_stats.view(), num_calls=self.num_calls.view()
        )


class StatsEntry(BaseModel):
    """Everything known about one global timer id."""

    common: Stats = Field(default_factory=Stats)
    branch: dict[int, BranchStats] = Field(default_factory=dict)


def _stats_metrics(lhs: StatsView, rhs: StatsView) -> list[MetricDiff]:
    return [
        _metric_diff(INCL_DURATION, lhs.incl_duration, rhs.incl_duration),
        _metric_diff(EXCL_DURATION, lhs.excl_duration, rhs.excl_duration),
    ]


def _metric_diff(metric: str, lhs: StatView, rhs: StatView) -> MetricDiff:
    return MetricDiff(metric=metric, lhs=lhs, rhs=rhs, diff=compare_stat(lhs, rhs))


def _delta(lhs: float, rhs: float) -> Delta:
    absolute = rhs - lhs
    scale = max(abs(lhs), abs(rhs))
    relative = absolute / scale if scale != 0.0 else 0.0
    return Delta(relative=relative, absolute=absolute)


def compare_stat(lhs: StatView, rhs: StatView) -> StatDiff:
    """
    Computes the change of every summary value from lhs to rhs.

    The relative change is taken against the larger magnitude of the two
    values, so it stays within [-1, 1] and swapping the operands negates it.
    """
    return StatDiff(
        mean=_delta(lhs.mean, rhs.mean),
        variance=_delta(lhs.variance, rhs.variance),
        standard_deviation=_delta(lhs.standard_deviation, rhs.standard_deviation),
        median=_delta(lhs.median, rhs.median),
    )


class StatisticsSnapshot(BaseModel):
    """
    Dense, id-indexed collection of timer statistics.

    The snapshot only grows: new ids extend it and previously accumulated
    samples are kept, so the same snapshot can absorb many captures.

    Example:
        >>> snapshot = StatisticsSnapshot()
        >>> snapshot.derive_from_frames(frames_tree)
        >>> snapshot.get(timer_id).incl_duration.mean
    """

    entries: list[StatsEntry] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def ensure_size(self, size: int) -> None:
        if len(self.entries) < size:
            self.entries.extend(StatsEntry() for _ in range(size - len(self.entries)))

    def _branch(self, timer_id: int, parent_id: int) -> BranchStats:
        branch = self.entries[timer_id].branch
        stats = branch.get(parent_id)
        if stats is None:
            stats = branch[parent_id] = BranchStats()
        return stats

    @instrumented_step("Deriving stats")
    def derive_from_frames(self, frames_tree: FramesTree) -> None:
        """
        Adds the samples of every frame node and re-derives all statistics.

        For each node: inclusive and exclusive durations go to the timer's
        common stats and, if the node has a parent, to the (timer, parent)
        branch. Each group of same-timer children adds its size as one
        number-of-calls sample to the (child, node) branch.
        """
        self.ensure_size(frames_tree.max_num_stats)

        for node in frames_tree.nodes():
            incl_duration = node.duration * MS_PER_SECOND
            excl_duration = node.exclusive_duration * MS_PER_SECOND

            self.entries[node.timer_id].common.add(incl_duration, excl_duration)

            parent = node.parent
            if parent is not None:
                self._branch(node.timer_id, parent.timer_id).common_stats.add(
                    incl_duration, excl_duration
                )

            for child_id, num_calls in Counter(c.timer_id for c in node.children).items():
                self._branch(child_id, node.timer_id).num_calls.add(num_calls)

        self.derive()

    def derive(self) -> None:
        for entry in self.entries:
            entry.common.derive()
            for branch_stats in entry.branch.values():
                branch_stats.derive()

    def get(self, timer_id: int) -> StatsView | None:
        """Timer-wide statistics, or None for an unknown id."""
        if timer_id < 0 or timer_id >= len(self.entries):
            return None
        return self.entries[timer_id].common.view()

    def get_branch(self, timer_id: int, parent_id: int) -> BranchStatsView | None:
        """Statistics of a timer under one parent, or None if never observed."""
        if timer_id < 0 or timer_id >= len(self.entries):
            return None
        branch_stats = self.entries[timer_id].branch.get(parent_id)
        if branch_stats is None:
            return None
        return branch_stats.view()

    def branch_keys(self, timer_id: int) -> list[int]:
        if timer_id < 0 or timer_id >= len(self.entries):
            return []
        return list(self.entries[timer_id].branch)


@instrumented_step("Comparing stats")
def compare(lhs: StatisticsSnapshot, rhs: StatisticsSnapshot) -> list[StatComparison]:
    """
    Compares two snapshots id by id.

    Emits one record per timer id comparing the timer-wide statistics
    (parent_id None), then one record per metric for every (timer, parent)
    branch present on either side. A missing side counts as all zeros.
    Ranking by determinant is left to the caller.
    """
    return list(_iter_comparisons(lhs, rhs))


def _iter_comparisons(
    lhs: StatisticsSnapshot, rhs: StatisticsSnapshot
) -> Iterator[StatComparison]:
    empty_stats = StatsView()
    empty_branch = BranchStatsView()

    for timer_id in range(max(len(lhs), len(rhs))):
        common_lhs = lhs.get(timer_id) or empty_stats
        common_rhs = rhs.get(timer_id) or empty_stats
        yield StatComparison(
            timer_id=timer_id, metrics=_stats_metrics(common_lhs, common_rhs)
        )

        parent_ids = dict.fromkeys(lhs.branch_keys(timer_id) + rhs.branch_keys(timer_id))
        for parent_id in parent_ids:
            branch_lhs = lhs.get_branch(timer_id, parent_id) or empty_branch
            branch_rhs = rhs.get_branch(timer_id, parent_id) or empty_branch
            metrics = _stats_metrics(branch_lhs.common_stats, branch_rhs.common_stats)
            metrics.append(_metric_diff(NUM_CALLS, branch_lhs.num_calls, branch_rhs.num_calls))
            for metric in metrics:
                yield StatComparison(timer_id=timer_id, parent_id=parent_id, metrics=[metric])


def rank_comparisons(comparisons: list[StatComparison]) -> list[StatComparison]:
    """Orders comparison records by descending determinant."""
    return sorted(comparisons, key=lambda c: c.determinant, reverse=True)
