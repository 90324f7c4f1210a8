"""Attribution of frame slowdowns to specific call sites.

A frame is slower than usual when its inclusive duration exceeds the
historical mean by more than one standard deviation. The analyzer walks the
frame top-down and looks, at each node, for children that explain part of that
excess: call sites that historically appear under this parent far less often
than their siblings, call sites invoked more often
than usual, and calls whose own (exclusive) time is unusually long. Findings
are aggregated per (kind, timer, parent) across every analyzed frame.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..config import NEGLIGIBLE_DURATION, RARE_EVENT_RATIO, RELEVANCE_THRESHOLD, AnalysisConfig
from ..decorators import instrumented_step
from ..schema import ExceptionEvent, ExceptionKind, FrameAnalysis, StatView
from ..telemetry import get_meter, set_span_attribute
from .frames_tree import FrameNode
from .statistics import MS_PER_SECOND, StatisticsSnapshot, median_of

logger = logging.getLogger(__name__)

meter = get_meter(__name__)

anomalies_detected = meter.create_counter(
    name="trace_stat.analysis.anomalies_detected",
    description="Count of anomalous call sites found in analyzed frames",
    unit="1",
)


def calculate_deviation(value: float, stat: StatView) -> float:
    """Excess of a value over the normal band (mean + one standard deviation)."""
    return max(0.0, value - (stat.mean + stat.standard_deviation))


@dataclass(frozen=True)
class ExceptionKey:
    kind: ExceptionKind
    timer_id: int
    parent_id: int


@dataclass
class ExceptionRecord:
    """All occurrences of one kind of anomaly at one call site."""

    deviation: float = 0.0
    events: list[ExceptionEvent] = field(default_factory=list)

    def add(self, event: ExceptionEvent) -> None:
        self.events.append(event)
        self.deviation += event.deviation


class ExceptionContainer:
    """
    Accumulates anomalies across the frames of one analysis batch.

    Containers filled independently (e.g. one per worker) can be combined with
    merge(); the result does not depend on the merge order except for the
    order of events inside a record.
    """

    def __init__(self) -> None:
        self.exceptions: dict[ExceptionKey, ExceptionRecord] = {}

    def add(
        self,
        kind: ExceptionKind,
        frame_id: int,
        timer_id: int,
        parent_id: int,
        deviation: float,
        start_time: float,
        end_time: float,
    ) -> None:
        key = ExceptionKey(kind=kind, timer_id=timer_id, parent_id=parent_id)
        record = self.exceptions.get(key)
        if record is None:
            record = self.exceptions[key] = ExceptionRecord()
        record.add(
            ExceptionEvent(
                frame_id=frame_id, start_time=start_time, end_time=end_time, deviation=deviation
            )
        )
        anomalies_detected.add(1, {"type": kind.name.lower()})

    def merge(self, other: "ExceptionContainer") -> None:
        for key, other_record in other.exceptions.items():
            record = self.exceptions.get(key)
            if record is None:
                record = self.exceptions[key] = ExceptionRecord()
            record.events.extend(other_record.events)
            record.deviation += other_record.deviation

    def ranked(self) -> list[tuple[ExceptionKey, ExceptionRecord]]:
        """Records ordered by descending cumulative deviation."""
        return sorted(self.exceptions.items(), key=lambda item: item[1].deviation, reverse=True)

    def __len__(self) -> int:
        return len(self.exceptions)


@dataclass
class _ChildGroup:
    timer_id: int
    nodes: list[FrameNode] = field(default_factory=list)
    duration: float = 0.0

    @property
    def num_calls(self) -> int:
        return len(self.nodes)


@dataclass
class _Baseline:
    incl_duration: StatView
    excl_duration: StatView
    num_calls: StatView | None


def _group_children(node: FrameNode) -> list[_ChildGroup]:
    groups: dict[int, _ChildGroup] = {}
    for child in node.children:
        group = groups.get(child.timer_id)
        if group is None:
            group = groups[child.timer_id] = _ChildGroup(child.timer_id)
        group.nodes.append(child)
        group.duration += child.duration * MS_PER_SECOND
    return list(groups.values())


class FrameAnalyzer:
    """Classifies one frame against a baseline snapshot.

    Durations are compared in milliseconds, the unit of the snapshot.
    """

    def __init__(
        self,
        frame_id: int,
        root: FrameNode,
        stats: StatisticsSnapshot,
        exceptions: ExceptionContainer | None = None,
        config: AnalysisConfig | None = None,
    ):
        self.frame_id = frame_id
        self.exceptions = exceptions if exceptions is not None else ExceptionContainer()
        self.root_deviation = 0.0
        self.compensated_deviation = 0.0

        self._stats = stats
        self._relevance_threshold = config.relevance_threshold if config else RELEVANCE_THRESHOLD
        self._rare_event_ratio = config.rare_event_ratio if config else RARE_EVENT_RATIO
        negligible = config.negligible_duration if config else NEGLIGIBLE_DURATION
        self._negligible_duration = negligible * MS_PER_SECOND

        root_stats = stats.get(root.timer_id)
        if root_stats is None or root_stats.incl_duration.sample_count == 0:
            # First-seen frame timer, nothing to compare against
            return

        self.root_deviation = calculate_deviation(
            root.duration * MS_PER_SECOND, root_stats.incl_duration
        )
        self.compensated_deviation = self._traverse_children(root)

    def result(self) -> FrameAnalysis:
        return FrameAnalysis(
            frame_id=self.frame_id,
            root_deviation=self.root_deviation,
            compensated_deviation=self.compensated_deviation,
        )

    def _is_relevant(self, stat: StatView) -> bool:
        return stat.sample_count > self._relevance_threshold

    def _resolve_baseline(self, timer_id: int, parent_id: int) -> _Baseline | None:
        """
        Picks the call-site baseline when it has enough samples, otherwise the
        timer-wide one. None when neither is reliable.
        """
        branch_stats = self._stats.get_branch(timer_id, parent_id)
        if branch_stats is not None and self._is_relevant(branch_stats.num_calls):
            return _Baseline(
                incl_duration=branch_stats.common_stats.incl_duration,
                excl_duration=branch_stats.common_stats.excl_duration,
                num_calls=branch_stats.num_calls,
            )

        common_stats = self._stats.get(timer_id)
        if common_stats is not None and self._is_relevant(common_stats.incl_duration):
            return _Baseline(
                incl_duration=common_stats.incl_duration,
                excl_duration=common_stats.excl_duration,
                num_calls=None,
            )

        return None

    def _median_num_records(self, node: FrameNode, groups: list[_ChildGroup]) -> float:
        """Median number of historical parent occurrences over the child call sites."""
        num_records = []
        for group in groups:
            branch_stats = self._stats.get_branch(group.timer_id, node.timer_id)
            num_records.append(branch_stats.num_calls.sample_count if branch_stats else 0)
        return median_of(num_records)

    def _traverse_children(self, node: FrameNode) -> float:
        compensated_deviation = 0.0

        groups = _group_children(node)
        median_num_records = self._median_num_records(node, groups)

        for group in sorted(groups, key=lambda g: g.duration, reverse=True):
            if group.duration < self._negligible_duration:
                break

            baseline = self._resolve_baseline(group.timer_id, node.timer_id)
            first, last = group.nodes[0], group.nodes[-1]

            if baseline is not None and baseline.num_calls is not None:
                # Seen under this parent far less often than its siblings
                if baseline.num_calls.sample_count < self._rare_event_ratio * median_num_records:
                    self.exceptions.add(
                        ExceptionKind.RARE_EVENT,
                        self.frame_id,
                        group.timer_id,
                        node.timer_id,
                        group.duration,
                        first.start_time,
                        last.end_time,
                    )
                    compensated_deviation += group.duration
                else:
                    num_calls_deviation = calculate_deviation(group.num_calls, baseline.num_calls)
                    if num_calls_deviation > 0:
                        deviation = num_calls_deviation * baseline.incl_duration.mean
                        self.exceptions.add(
                            ExceptionKind.TOO_MANY_CALLS,
                            self.frame_id,
                            group.timer_id,
                            node.timer_id,
                            deviation,
                            first.start_time,
                            last.end_time,
                        )
                        compensated_deviation += deviation

            for child in group.nodes:
                if baseline is not None:
                    excl_duration = child.exclusive_duration * MS_PER_SECOND
                    excl_deviation = calculate_deviation(excl_duration, baseline.excl_duration)
                    if excl_deviation > 0:
                        self.exceptions.add(
                            ExceptionKind.EXCESSIVE_EXCLUSIVE_DURATION,
                            self.frame_id,
                            child.timer_id,
                            node.timer_id,
                            excl_deviation,
                            child.start_time,
                            child.end_time,
                        )
                        compensated_deviation += excl_deviation

                compensated_deviation += self._traverse_children(child)

        return compensated_deviation


@instrumented_step("Analyzing frames")
def analyze_frames(
    frames: Iterable[tuple[int, FrameNode]],
    stats: StatisticsSnapshot,
    exceptions: ExceptionContainer | None = None,
    config: AnalysisConfig | None = None,
) -> tuple[ExceptionContainer, list[FrameAnalysis]]:
    """
    Analyzes a batch of frames against one baseline.

    Args:
        frames: (frame index, frame root) pairs.
        stats: The baseline snapshot; it is only read.
        exceptions: Accumulator to extend; a new one is created when omitted.
        config: Classifier thresholds.

    Returns:
        The accumulator and the per-frame deviation summaries.
    """
    exceptions = exceptions if exceptions is not None else ExceptionContainer()
    results = [
        FrameAnalyzer(frame_id, root, stats, exceptions, config).result()
        for frame_id, root in frames
    ]
    set_span_attribute("trace_stat.anomalies", len(exceptions))
    logger.info(f"Analyzed {len(results)} frames, {len(exceptions)} distinct anomalies")
    return exceptions, results
