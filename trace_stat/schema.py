"""Pydantic schemas for Trace Stat inputs and results.

This module defines Pydantic schemas for:
- Trace inputs (TimerDescriptor, Span)
- Read-only statistic views handed out by the statistics engine
- Classifier output (ExceptionKind, ExceptionEvent, FrameAnalysis)
- Comparison output (MetricDiff, StatDiff, StatComparison)
"""

import math
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TimerDescriptor(BaseModel):
    """One row of the timer descriptor table, indexed by its trace-local id."""

    id: int = Field(description="Trace-local timer id")
    type: str = Field(default="", description="Timer category")
    name: str = Field(description="Timer name, the key into the name registry")
    file: str = Field(default="", description="Source file that declares the timer")
    line: int = Field(default=0, description="Source line that declares the timer")


class Span(BaseModel):
    """One timed span of the span log."""

    model_config = ConfigDict(frozen=True)

    thread_id: int = Field(default=0, description="Capturing thread")
    timer_id: int = Field(description="Timer id, local or global depending on stage")
    start_time: float = Field(description="Start time in seconds")
    end_time: float = Field(description="End time in seconds, inf when truncated")
    depth: int = Field(ge=0, description="Stack depth")

    @property
    def is_closed(self) -> bool:
        return math.isfinite(self.start_time) and math.isfinite(self.end_time)


# =============================================================================
# Statistic views
# =============================================================================


class StatView(BaseModel):
    """Read-only copy of the derived fields of one statistic."""

    model_config = ConfigDict(frozen=True)

    mean: float = 0.0
    variance: float = 0.0
    standard_deviation: float = 0.0
    median: float = 0.0
    sample_count: int = 0

    def __str__(self) -> str:
        return (
            f"Mean {self.mean} Variance {self.variance} "
            f"StandardDeviation {self.standard_deviation} Median {self.median} "
            f"SampleCount {self.sample_count}\n"
        )


class StatsView(BaseModel):
    """Read-only copy of the duration statistics of one timer."""

    model_config = ConfigDict(frozen=True)

    incl_duration: StatView = Field(default_factory=StatView)
    excl_duration: StatView = Field(default_factory=StatView)

    def __str__(self) -> str:
        return (
            "Including duration:\n"
            f"{self.incl_duration}\n\n"
            "Excluding duration:\n"
            f"{self.excl_duration}\n"
        )


class BranchStatsView(BaseModel):
    """Read-only copy of the statistics of one (timer, parent) call-site."""

    model_config = ConfigDict(frozen=True)

    common_stats: StatsView = Field(default_factory=StatsView)
    num_calls: StatView = Field(default_factory=StatView)

    def __str__(self) -> str:
        return f"{self.common_stats}\nNumber of calls:\n{self.num_calls}\n"


# =============================================================================
# Classifier output
# =============================================================================


class ExceptionKind(str, Enum):
    """Kinds of anomalies reported by the frame classifier."""

    RARE_EVENT = "Rare event in the context"
    TOO_MANY_CALLS = "Enormous number of occurrences of the event"
    EXCESSIVE_EXCLUSIVE_DURATION = "Enormous event excluding duration"


class ExceptionEvent(BaseModel):
    """One occurrence of an anomaly inside a frame."""

    model_config = ConfigDict(frozen=True)

    frame_id: int = Field(description="Index of the frame in the analyzed forest")
    start_time: float = Field(description="Start of the offending span(s) in seconds")
    end_time: float = Field(description="End of the offending span(s) in seconds")
    deviation: float = Field(description="Attributed excess time in milliseconds")


class FrameAnalysis(BaseModel):
    """Deviation summary of one analyzed frame."""

    frame_id: int
    root_deviation: float = 0.0
    compensated_deviation: float = 0.0

    @property
    def unexplained_deviation(self) -> float:
        return max(0.0, self.root_deviation - self.compensated_deviation)


# =============================================================================
# Comparison output
# =============================================================================


class Delta(BaseModel):
    """Relative and absolute change of a single summary value."""

    model_config = ConfigDict(frozen=True)

    relative: float = 0.0
    absolute: float = 0.0


class StatDiff(BaseModel):
    """Changes of the four summary values of one statistic."""

    model_config = ConfigDict(frozen=True)

    mean: Delta = Field(default_factory=Delta)
    variance: Delta = Field(default_factory=Delta)
    standard_deviation: Delta = Field(default_factory=Delta)
    median: Delta = Field(default_factory=Delta)

    @property
    def determinant(self) -> float:
        return sum(
            d.relative * d.absolute
            for d in (self.mean, self.variance, self.standard_deviation, self.median)
        )


class MetricDiff(BaseModel):
    """Comparison of one named metric between two snapshots."""

    model_config = ConfigDict(frozen=True)

    metric: str
    lhs: StatView
    rhs: StatView
    diff: StatDiff


class StatComparison(BaseModel):
    """One comparison record; parent_id is None for timer-wide statistics."""

    model_config = ConfigDict(frozen=True)

    timer_id: int
    parent_id: int | None = None
    metrics: list[MetricDiff] = Field(default_factory=list)

    @property
    def determinant(self) -> float:
        return sum(m.diff.determinant for m in self.metrics)
